"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobqueue.constants import DEFAULT_PRIORITY


class CreateJobRequest(BaseModel):
    """Request body for enqueuing a registered handler."""

    job_type: str = Field(..., description="Registered handler discriminator")
    data: dict[str, Any] = Field(default_factory=dict, description="Handler arguments")
    priority: int = Field(default=DEFAULT_PRIORITY, description="Higher runs first")
    run_at: datetime | None = Field(
        default=None, description="Earliest execution time (UTC)"
    )


class CreateJobResponse(BaseModel):
    """Response body after enqueuing a job."""

    id: int
    name: str
    priority: int
    run_at: datetime
    message: str = "Job enqueued"


class JobResponse(BaseModel):
    """Full job details response."""

    id: int
    name: str
    priority: int
    attempts: int
    handler: str
    run_at: datetime
    locked_at: datetime | None
    locked_by: str | None
    created_at: datetime
    updated_at: datetime
    last_error: str | None = None


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobFailureResponse(BaseModel):
    """One entry of a job's failure history."""

    id: int
    job_id: int
    message: str
    trace: str | None
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime

