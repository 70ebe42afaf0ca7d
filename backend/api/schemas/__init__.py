"""
API request and response schemas.
"""

from .jobs import JobFailureResponse, JobRunListResponse, JobRunResponse

__all__ = [
    "JobFailureResponse",
    "JobRunResponse",
    "JobRunListResponse",
]
