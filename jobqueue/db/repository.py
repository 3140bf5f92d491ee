"""
Job repository for database operations.
Implements the data access patterns the queue relies on: insert, atomic
conditional lease updates, ordered candidate selection and deletion.
"""

import logging
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue import clock
from jobqueue.constants import DEFAULT_BATCH_SIZE, DEFAULT_LEASE_DURATION_SECONDS
from jobqueue.db.models import Job, JobFailure
from jobqueue.errors import LeaseConflict

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job insertion
    - Candidate selection ordered by priority and due time
    - Lease acquisition with a single conditional UPDATE
    - Rescheduling, deletion and failure history
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def create_job(
        self,
        handler: str,
        priority: int = 0,
        run_at: datetime | None = None,
    ) -> Job:
        """
        Insert a new job.

        Args:
            handler: The encoded payload.
            priority: Job priority (higher runs first).
            run_at: Earliest execution time. Defaults to now.

        Returns:
            The persisted Job with its id assigned.
        """
        now = clock.db_time_now()
        job = Job(
            handler=handler,
            priority=int(priority),
            attempts=0,
            run_at=run_at or now,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": job.id, "priority": job.priority, "run_at": job.run_at.isoformat()},
        )
        return job

    async def get_job(self, job_id: int) -> Job | None:
        """
        Get a job by ID with fresh column values.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        limit: int = 20,
        offset: int = 0,
        locked: bool | None = None,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs in selection order.

        Args:
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.
            locked: Only leased jobs if True, only unleased if False.

        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if locked is True:
            filters.append(Job.locked_by.is_not(None))
        elif locked is False:
            filters.append(Job.locked_by.is_(None))

        count_stmt = select(func.count()).select_from(Job).where(*filters)
        total = (await self._session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Job)
            .where(*filters)
            .order_by(Job.priority.desc(), Job.run_at.asc(), Job.id.asc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all(), total

    async def count_jobs(self) -> int:
        """Count all job rows."""
        stmt = select(func.count()).select_from(Job)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def find_available(
        self,
        worker_id: str,
        limit: int = DEFAULT_BATCH_SIZE,
        max_run_time: timedelta = timedelta(seconds=DEFAULT_LEASE_DURATION_SECONDS),
        min_priority: int | None = None,
        max_priority: int | None = None,
    ) -> Sequence[Job]:
        """
        Select candidate jobs this worker may try to claim.

        A job is a candidate if it is already leased to this worker (resuming
        after a restart, regardless of run_at), or if it is due and either
        unleased or leased longer ago than max_run_time.

        Args:
            worker_id: Identity of the selecting worker.
            limit: Maximum number of candidates.
            max_run_time: Lease duration after which a lease counts as expired.
            min_priority: Optional inclusive lower priority bound.
            max_priority: Optional inclusive upper priority bound.

        Returns:
            Candidates ordered by priority descending, then run_at ascending.
        """
        now = clock.db_time_now()
        expired_before = now - max_run_time

        filters = [
            or_(
                Job.locked_by == worker_id,
                and_(
                    Job.run_at <= now,
                    or_(Job.locked_at.is_(None), Job.locked_at < expired_before),
                ),
            )
        ]
        if min_priority is not None:
            filters.append(Job.priority >= min_priority)
        if max_priority is not None:
            filters.append(Job.priority <= max_priority)

        stmt = (
            select(Job)
            .where(and_(*filters))
            .order_by(Job.priority.desc(), Job.run_at.asc(), Job.id.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def lock_exclusively(
        self,
        job: Job,
        max_run_time: timedelta,
        worker_id: str,
    ) -> Job:
        """
        Take or refresh the lease on a job with one conditional UPDATE.

        A worker that does not hold the lease can only take it when the job is
        unleased or its lease is older than max_run_time. A worker that already
        holds it simply refreshes locked_at.

        Args:
            job: The candidate job.
            max_run_time: Lease duration.
            worker_id: Identity of the claiming worker.

        Returns:
            The same Job with its lease fields updated.

        Raises:
            LeaseConflict: If no row (or more than one) was updated.
        """
        now = clock.db_time_now()

        if job.locked_by != worker_id:
            stmt = (
                update(Job)
                .where(
                    and_(
                        Job.id == job.id,
                        or_(
                            Job.locked_at.is_(None),
                            Job.locked_at < now - max_run_time,
                        ),
                    )
                )
                .values(locked_at=now, locked_by=worker_id, updated_at=now)
            )
        else:
            stmt = (
                update(Job)
                .where(and_(Job.id == job.id, Job.locked_by == worker_id))
                .values(locked_at=now, updated_at=now)
            )

        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LeaseConflict(job.id, worker_id)

        job.locked_at = now
        job.locked_by = worker_id
        job.updated_at = now
        return job

    async def clear_locks(self, worker_id: str) -> int:
        """
        Release every lease held by a worker.

        Args:
            worker_id: The worker identity.

        Returns:
            Number of jobs unlocked.
        """
        stmt = (
            update(Job)
            .where(Job.locked_by == worker_id)
            .values(locked_at=None, locked_by=None, updated_at=clock.db_time_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(
                f"Cleared {count} leases",
                extra={"worker_id": worker_id},
            )
        return count

    async def reschedule_job(
        self,
        job: Job,
        run_at: datetime,
    ) -> Job:
        """
        Persist a failed job for another attempt.

        Increments attempts, moves run_at and clears the lease. Only the
        current lease holder calls this.

        Args:
            job: The failed job.
            run_at: When the job becomes eligible again.

        Returns:
            The updated Job.
        """
        now = clock.db_time_now()
        attempts = job.attempts + 1
        stmt = (
            update(Job)
            .where(Job.id == job.id)
            .values(
                attempts=attempts,
                run_at=run_at,
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

        job.attempts = attempts
        job.run_at = run_at
        job.locked_at = None
        job.locked_by = None
        job.updated_at = now
        return job

    async def delete_job(self, job_id: int) -> bool:
        """
        Delete a job row.

        Args:
            job_id: The job id.

        Returns:
            True if a row was deleted.
        """
        stmt = (
            delete(Job)
            .where(Job.id == job_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def clear_jobs(self) -> int:
        """Delete every job. Returns the number of rows removed."""
        result = await self._session.execute(
            delete(Job).execution_options(synchronize_session=False)
        )
        count = result.rowcount
        logger.info(f"Cleared {count} jobs")
        return count

    async def record_failure(
        self,
        job_id: int,
        message: str,
        trace: str | None = None,
    ) -> JobFailure:
        """
        Append an entry to a job's failure history.

        Args:
            job_id: The failed job id.
            message: Error message.
            trace: Formatted traceback.

        Returns:
            The persisted JobFailure.
        """
        failure = JobFailure(
            job_id=job_id,
            message=message,
            trace=trace,
            created_at=clock.db_time_now(),
        )
        self._session.add(failure)
        await self._session.flush()
        return failure

    async def list_failures(self, job_id: int) -> Sequence[JobFailure]:
        """Failure history of a job, oldest first."""
        stmt = (
            select(JobFailure)
            .where(JobFailure.job_id == job_id)
            .order_by(JobFailure.id.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def last_failure(self, job_id: int) -> JobFailure | None:
        """Most recent failure of a job, if any."""
        stmt = (
            select(JobFailure)
            .where(JobFailure.job_id == job_id)
            .order_by(JobFailure.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def clear_failures(self, job_id: int | None = None) -> int:
        """
        Delete failure history.

        Args:
            job_id: Only clear this job's history. Clears everything if None.

        Returns:
            Number of rows removed.
        """
        stmt = delete(JobFailure)
        if job_id is not None:
            stmt = stmt.where(JobFailure.job_id == job_id)
        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get queue statistics.

        Returns:
            Counts of all, leased, due, and scheduled-in-future jobs.
        """
        now = clock.db_time_now()
        stmt = select(
            func.count(),
            func.count(Job.locked_by),
            func.count().filter(and_(Job.run_at <= now, Job.locked_by.is_(None))),
            func.count().filter(Job.run_at > now),
        ).select_from(Job)
        total, locked, due, scheduled = (await self._session.execute(stmt)).one()
        return {
            "total": total,
            "locked": locked,
            "due": due,
            "scheduled": scheduled,
        }
