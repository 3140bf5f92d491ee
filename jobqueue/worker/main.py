"""
Worker process for executing jobs.

A worker repeatedly selects candidate jobs, claims one with a lease,
executes it and retires it. Workers never talk to each other: the
conditional UPDATE behind each claim is the only coordination.
"""

import asyncio
import logging
import signal
import time
import traceback
from contextlib import AbstractAsyncContextManager
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import Settings, WorkerConfig, get_settings
from jobqueue.constants import (
    DEFAULT_WORK_OFF_COUNT,
    SPAN_ACQUIRE_LEASE,
    SPAN_EXECUTE_JOB,
    RescheduleOutcome,
    ReservationStatus,
)
from jobqueue.db import close_db, get_engine, get_session_context, init_db
from jobqueue.db.connection import create_engine_from_settings
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.errors import LeaseConflict
from jobqueue.observability.logging import bind_worker_context, clear_context, setup_logging
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from jobqueue.payload import PayloadRegistry, default_registry, load_registry, run_performable
from jobqueue.types.events import EventEmitter, JobEvent, default_emitter
from jobqueue.types.job import JobContext, Reservation, reset_job_context, set_job_context
from jobqueue.worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that claims and executes one job at a time.

    Features:
    - Candidate batches so a lost claim falls through to the next job
    - Lease takeover only after expiry, lease refresh for its own jobs
    - Quartic retry backoff and permanent removal after max attempts
    - Graceful shutdown on SIGTERM/SIGINT, releasing held leases
    """

    def __init__(
        self,
        config: WorkerConfig | None = None,
        registry: PayloadRegistry | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        retry_policy: RetryPolicy | None = None,
        emitter: EventEmitter | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the worker.

        Args:
            config: Identity, priority band, lease and batch settings.
                Defaults to values from the environment.
            registry: Payload registry used to decode handlers.
            session_factory: Session factory. Defaults to the one set up
                by init_db().
            retry_policy: Retry policy for failed jobs.
            emitter: Sink fan-out for lifecycle events.
            settings: Settings the default config and retry policy are
                built from. Defaults to the cached environment settings.
        """
        settings = settings or get_settings()

        self.config = config or WorkerConfig.from_settings(settings)
        self.registry = registry or default_registry
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=settings.max_attempts)
        self.emitter = emitter or default_emitter

        self._session_factory = session_factory
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def worker_id(self) -> str:
        return self.config.worker_id

    def _session(self) -> AbstractAsyncContextManager[AsyncSession]:
        return get_session_context(self._session_factory)

    async def reserve(self, lease_duration: timedelta | None = None) -> Reservation:
        """
        Claim and run at most one job.

        Fetches a batch of candidates and tries to lease them in order. A lost
        claim moves on to the next candidate; the first successful claim is
        executed and the call returns. Store errors propagate to the caller.

        Args:
            lease_duration: Lease length for this call. Defaults to the
                worker's configured lease duration.

        Returns:
            Reservation describing what happened.
        """
        max_run_time = self.config.lease_duration if lease_duration is None else lease_duration

        with get_tracer().start_as_current_span(SPAN_ACQUIRE_LEASE) as span:
            async with self._session() as session:
                candidates = await JobRepository(session).find_available(
                    worker_id=self.worker_id,
                    limit=self.config.batch_size,
                    max_run_time=max_run_time,
                    min_priority=self.config.min_priority,
                    max_priority=self.config.max_priority,
                )
            span.set_attribute("candidates", len(candidates))

        for job in candidates:
            name = self.registry.describe(job)
            try:
                logger.info(f"Acquiring lock on {name}", extra={"job_id": job.id})
                async with self._session() as session:
                    await JobRepository(session).lock_exclusively(
                        job, max_run_time, self.worker_id
                    )
            except LeaseConflict:
                logger.warning(
                    f"Failed to acquire exclusive lock for {name}",
                    extra={"job_id": job.id},
                )
                self._metrics.record_lease_conflict(self.worker_id)
                self.emitter.emit(JobEvent.lease_conflict(job.id, name, self.worker_id))
                continue

            self._metrics.record_lease_acquired(self.worker_id)
            self.emitter.emit(JobEvent.job_locked(job.id, name, self.worker_id))
            return await self._run(job, name)

        return Reservation.nothing()

    async def _run(self, job: Job, name: str) -> Reservation:
        """
        Execute a leased job and retire it.

        Decoding, execution and deletion share one session, so database
        writes made by the handler commit together with the deletion or
        roll back together on failure.
        """
        start_time = time.perf_counter()

        try:
            async with self._session() as session:
                handler = await self.registry.decode(job.handler, session)
                name = handler.display_name

                token = set_job_context(
                    JobContext(
                        job_id=job.id,
                        attempts=job.attempts,
                        worker_id=self.worker_id,
                        locked_at=job.locked_at,
                        session=session,
                    )
                )
                try:
                    with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                        span.set_attribute("job_id", job.id)
                        span.set_attribute("job", name)
                        span.set_attribute("attempts", job.attempts)
                        await run_performable(handler)
                finally:
                    reset_job_context(token)

                await JobRepository(session).delete_job(job.id)
        except Exception as e:
            return await self._fail(job, name, e, time.perf_counter() - start_time)

        runtime = time.perf_counter() - start_time
        logger.info(
            f"{name} completed after {runtime:.4f}",
            extra={"job_id": job.id, "duration": runtime},
        )
        self._metrics.record_job_completed(status="succeeded", duration_seconds=runtime)
        self.emitter.emit(JobEvent.job_completed(job.id, name, self.worker_id, runtime))

        return Reservation(
            status=ReservationStatus.SUCCEEDED,
            job_id=job.id,
            name=name,
            runtime_seconds=runtime,
        )

    async def _fail(
        self,
        job: Job,
        name: str,
        error: Exception,
        runtime: float,
    ) -> Reservation:
        """Hand a failed execution to the retry policy and log it."""
        message = str(error) or type(error).__name__
        trace = "".join(traceback.format_exception(error))
        failed_attempts = job.attempts + 1

        async with self._session() as session:
            outcome = await self.retry_policy.reschedule(
                JobRepository(session),
                job,
                message,
                trace,
                name=name,
            )

        self.log_exception(job, name, error, failed_attempts)
        self._metrics.record_job_completed(status="failed", duration_seconds=runtime)

        if outcome == RescheduleOutcome.REMOVED:
            self._metrics.record_job_removed()
            self.emitter.emit(
                JobEvent.job_removed(job.id, name, self.worker_id, message, failed_attempts)
            )
        else:
            self.emitter.emit(
                JobEvent.job_rescheduled(
                    job.id, name, self.worker_id, message, job.attempts, job.run_at
                )
            )

        return Reservation(
            status=ReservationStatus.FAILED,
            job_id=job.id,
            name=name,
            runtime_seconds=runtime,
            error=message,
            outcome=outcome,
        )

    def log_exception(self, job: Job, name: str, error: Exception, attempts: int) -> None:
        """Report a job failure. Override to send failures elsewhere."""
        logger.error(
            f"{name} failed with {type(error).__name__}: {error} - {attempts} failed attempts",
            exc_info=error,
            extra={"job_id": job.id, "attempts": attempts},
        )

    async def work_off(self, num: int = DEFAULT_WORK_OFF_COUNT) -> tuple[int, int]:
        """
        Process up to num jobs, stopping early when nothing is available.

        Args:
            num: Maximum number of reservations.

        Returns:
            Tuple of (succeeded, failed) counts.
        """
        success, failure = 0, 0

        for _ in range(num):
            reservation = await self.reserve()
            if reservation.status == ReservationStatus.NOTHING:
                break
            if reservation.status == ReservationStatus.SUCCEEDED:
                success += 1
            else:
                failure += 1

        return success, failure

    async def start(self) -> None:
        """Run work_off passes until stop() is called."""
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "min_priority": self.config.min_priority,
                "max_priority": self.config.max_priority,
                "batch_size": self.config.batch_size,
            },
        )
        bind_worker_context(self.worker_id)

        self._running = True
        self._stop_event.clear()

        try:
            while self._running:
                started = time.perf_counter()
                try:
                    success, failure = await self.work_off()
                    await self._update_queue_depth()
                except Exception as e:
                    logger.exception(f"Error in worker loop: {e}")
                    await self._pause()
                    continue

                count = success + failure
                if count == 0:
                    await self._pause()
                else:
                    elapsed = time.perf_counter() - started
                    logger.info(
                        f"{count} jobs processed at {count / elapsed:.4f} j/s, {failure} failed",
                        extra={"succeeded": success, "failed": failure},
                    )
        finally:
            await self._release_leases()
            logger.info("Worker stopped", extra={"worker_id": self.worker_id})
            clear_context()

    async def stop(self) -> None:
        """Stop the worker after the job in progress finishes."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

    async def _pause(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.poll_interval)
        except TimeoutError:
            pass

    async def _update_queue_depth(self) -> None:
        async with self._session() as session:
            self._metrics.update_queue_depth(await JobRepository(session).count_jobs())

    async def _release_leases(self) -> None:
        try:
            async with self._session() as session:
                await JobRepository(session).clear_locks(self.worker_id)
        except Exception:
            logger.exception(
                "Failed to release leases on shutdown",
                extra={"worker_id": self.worker_id},
            )


async def run_async(
    config: WorkerConfig | None = None,
    settings: Settings | None = None,
    registry: PayloadRegistry | None = None,
) -> None:
    """
    Run a worker until SIGTERM/SIGINT.

    Handler modules named in settings are imported before the first job is
    claimed unless a registry is passed in.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    registry = registry or load_registry(settings.handler_modules)
    await init_db(create_engine_from_settings(settings))

    if settings.otel_enabled:
        setup_tracing(settings)
        instrument_sqlalchemy(get_engine())
    get_metrics().serve(settings.prometheus_port)

    worker = Worker(
        config=config or WorkerConfig.from_settings(settings),
        registry=registry,
        settings=settings,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
