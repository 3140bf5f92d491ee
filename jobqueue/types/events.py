"""
Event type definitions for structured job lifecycle notifications.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from jobqueue import clock
from jobqueue.constants import (
    EVENT_JOB_COMPLETED,
    EVENT_JOB_ENQUEUED,
    EVENT_JOB_LOCKED,
    EVENT_JOB_REMOVED,
    EVENT_JOB_RESCHEDULED,
    EVENT_LEASE_CONFLICT,
)

logger = logging.getLogger(__name__)


class JobEvent(BaseModel):
    """
    Event emitted when a job changes state.
    Delivered to whatever sinks subscribed to the emitter.
    """

    event_type: str
    job_id: int
    name: str | None = None
    worker_id: str | None = None
    timestamp: datetime
    data: dict[str, Any] | None = None

    @classmethod
    def job_enqueued(
        cls,
        job_id: int,
        name: str,
        priority: int,
        run_at: datetime,
    ) -> "JobEvent":
        """Create a job enqueued event."""
        return cls(
            event_type=EVENT_JOB_ENQUEUED,
            job_id=job_id,
            name=name,
            timestamp=clock.db_time_now(),
            data={"priority": priority, "run_at": run_at.isoformat()},
        )

    @classmethod
    def job_locked(cls, job_id: int, name: str, worker_id: str) -> "JobEvent":
        """Create a lease acquired event."""
        return cls(
            event_type=EVENT_JOB_LOCKED,
            job_id=job_id,
            name=name,
            worker_id=worker_id,
            timestamp=clock.db_time_now(),
        )

    @classmethod
    def lease_conflict(cls, job_id: int, name: str, worker_id: str) -> "JobEvent":
        """Create a lost-claim event."""
        return cls(
            event_type=EVENT_LEASE_CONFLICT,
            job_id=job_id,
            name=name,
            worker_id=worker_id,
            timestamp=clock.db_time_now(),
        )

    @classmethod
    def job_completed(
        cls,
        job_id: int,
        name: str,
        worker_id: str,
        runtime_seconds: float,
    ) -> "JobEvent":
        """Create a job completed event."""
        return cls(
            event_type=EVENT_JOB_COMPLETED,
            job_id=job_id,
            name=name,
            worker_id=worker_id,
            timestamp=clock.db_time_now(),
            data={"runtime_seconds": runtime_seconds},
        )

    @classmethod
    def job_rescheduled(
        cls,
        job_id: int,
        name: str,
        worker_id: str,
        error: str,
        attempts: int,
        run_at: datetime,
    ) -> "JobEvent":
        """Create a job failed-and-rescheduled event."""
        return cls(
            event_type=EVENT_JOB_RESCHEDULED,
            job_id=job_id,
            name=name,
            worker_id=worker_id,
            timestamp=clock.db_time_now(),
            data={"error": error, "attempts": attempts, "run_at": run_at.isoformat()},
        )

    @classmethod
    def job_removed(
        cls,
        job_id: int,
        name: str,
        worker_id: str,
        error: str,
        attempts: int,
    ) -> "JobEvent":
        """Create a job permanently removed event."""
        return cls(
            event_type=EVENT_JOB_REMOVED,
            job_id=job_id,
            name=name,
            worker_id=worker_id,
            timestamp=clock.db_time_now(),
            data={"error": error, "total_attempts": attempts},
        )


EventSink = Callable[[JobEvent], None]


class EventEmitter:
    """
    Fan-out of job events to subscribed sinks.

    A failing sink is logged and skipped; it never affects job processing.
    """

    def __init__(self, sinks: list[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks or [])

    def subscribe(self, sink: EventSink) -> EventSink:
        self._sinks.append(sink)
        return sink

    def unsubscribe(self, sink: EventSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def emit(self, event: JobEvent) -> None:
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception:
                logger.exception(
                    "Event sink failed",
                    extra={"event_type": event.event_type, "job_id": event.job_id},
                )


# Process-wide emitter used by producers and workers by default
default_emitter = EventEmitter()
