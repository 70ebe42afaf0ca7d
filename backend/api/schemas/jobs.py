"""
Scheduled job run API schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobFailureResponse(BaseModel):
    """One failed unit of work within a run."""

    entity_key: str = Field(..., description="User id or formula code that failed")
    error: str = Field(..., description="Truncated error message")


class JobRunResponse(BaseModel):
    """Persisted summary of one job run."""

    id: str
    job_name: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[JobFailureResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class JobRunListResponse(BaseModel):
    """Latest job runs, newest first."""

    items: List[JobRunResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of runs returned")
