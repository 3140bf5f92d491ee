"""
Producer API: turn a handler into a stored job.

Encoding happens before anything touches the database, so a handler that
cannot be stored raises to the caller and leaves no row behind.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue import clock
from jobqueue.constants import DEFAULT_PRIORITY, SPAN_ENQUEUE_JOB
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.payload import PayloadRegistry, PerformableMethod, default_registry
from jobqueue.types.events import EventEmitter, JobEvent, default_emitter

logger = logging.getLogger(__name__)


async def enqueue(
    session: AsyncSession,
    handler: Any,
    priority: int = DEFAULT_PRIORITY,
    run_at: datetime | None = None,
    registry: PayloadRegistry | None = None,
    emitter: EventEmitter | None = None,
) -> int:
    """
    Store a handler as a new job.

    The row is flushed but not committed; it becomes visible to workers when
    the caller's transaction commits.

    Args:
        session: Session to insert through.
        handler: A performable object of a registered payload type.
        priority: Higher runs first.
        run_at: Earliest execution time. Defaults to now.
        registry: Registry used to encode the handler.
        emitter: Event emitter notified after the insert.

    Returns:
        The new job id.

    Raises:
        TypeError: If the handler has no perform capability.
        SerializationError: If the handler cannot be encoded.
    """
    registry = registry or default_registry
    emitter = emitter or default_emitter

    with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
        handler_text = registry.encode(handler)
        job = await JobRepository(session).create_job(
            handler=handler_text,
            priority=priority,
            run_at=clock.to_db_time(run_at) if run_at else None,
        )
        span.set_attribute("job_id", job.id)
        span.set_attribute("priority", job.priority)

    job_type = registry.job_type_of(handler)
    name = registry.describe(job)
    get_metrics().record_job_enqueued(job_type)
    emitter.emit(JobEvent.job_enqueued(job.id, name, job.priority, job.run_at))
    logger.info(
        f"Enqueued {name}",
        extra={"job_id": job.id, "job_type": job_type, "priority": job.priority},
    )
    return job.id


async def enqueue_call(
    session: AsyncSession,
    target: Any,
    method: str,
    *args: Any,
    priority: int = DEFAULT_PRIORITY,
    run_at: datetime | None = None,
    registry: PayloadRegistry | None = None,
    emitter: EventEmitter | None = None,
) -> int:
    """
    Defer a method call on an entity or named target.

    Example:
        await enqueue_call(session, user, "send_welcome_email", priority=5)

    Raises:
        AttributeError: If the target has no such method.
        SerializationError: If the target or an argument cannot be stored.
    """
    return await enqueue(
        session,
        PerformableMethod(target, method, args),
        priority=priority,
        run_at=run_at,
        registry=registry,
        emitter=emitter,
    )
