"""
Job run endpoints for external alerting.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.jobs import JobRunListResponse, JobRunResponse
from infrastructure.database import get_db
from services.job_runs import MAX_LISTED_RUNS, JobRunRepository

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get("/runs", response_model=JobRunListResponse)
async def list_job_runs(
    job_name: Optional[str] = Query(None, max_length=100, description="Filter by job name"),
    limit: int = Query(20, ge=1, le=MAX_LISTED_RUNS),
    db: AsyncSession = Depends(get_db),
):
    """List the latest persisted job run summaries."""
    runs = await JobRunRepository(db).list_recent(job_name=job_name, limit=limit)
    items = [JobRunResponse.model_validate(run) for run in runs]
    return JobRunListResponse(items=items, total=len(items))
