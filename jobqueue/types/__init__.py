"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    CreateJobRequest,
    CreateJobResponse,
    HealthResponse,
    JobFailureResponse,
    JobListResponse,
    JobResponse,
)
from jobqueue.types.events import (
    EventEmitter,
    JobEvent,
)
from jobqueue.types.job import (
    JobContext,
    JobPayload,
    Reservation,
    current_job_context,
)

__all__ = [
    # API types
    "CreateJobRequest",
    "CreateJobResponse",
    "JobResponse",
    "JobListResponse",
    "JobFailureResponse",
    "HealthResponse",
    # Job types
    "JobPayload",
    "JobContext",
    "Reservation",
    "current_job_context",
    # Event types
    "JobEvent",
    "EventEmitter",
]
