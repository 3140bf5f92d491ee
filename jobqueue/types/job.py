"""
Job-related type definitions for internal use.
"""

from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import RescheduleOutcome, ReservationStatus


class JobPayload(BaseModel):
    """
    Stored form of a job handler.
    The discriminator selects the decoder; data holds its arguments.
    """

    job_type: str
    data: dict[str, Any]


@dataclass
class JobContext:
    """
    Context of the job a worker is currently executing.
    Handlers reach it through current_job_context().
    """

    job_id: int
    attempts: int
    worker_id: str
    locked_at: datetime | None
    session: AsyncSession


_current_job: ContextVar[JobContext | None] = ContextVar("current_job", default=None)


def current_job_context() -> JobContext | None:
    """The job being executed by the current worker task, if any."""
    return _current_job.get()


def set_job_context(context: JobContext | None):
    """Bind the executing job's context. Returns a token for reset_job_context."""
    return _current_job.set(context)


def reset_job_context(token) -> None:
    _current_job.reset(token)


@dataclass
class Reservation:
    """
    Result of one reservation attempt by a worker.
    """

    status: ReservationStatus
    job_id: int | None = None
    name: str | None = None
    runtime_seconds: float | None = None
    error: str | None = None
    outcome: RescheduleOutcome | None = None

    @classmethod
    def nothing(cls) -> "Reservation":
        return cls(status=ReservationStatus.NOTHING)

    @property
    def found_job(self) -> bool:
        """Check whether a job was claimed during this reservation."""
        return self.status != ReservationStatus.NOTHING
