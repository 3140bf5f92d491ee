"""
Unit tests for the job repository.
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.errors import LeaseConflict

LEASE = timedelta(hours=4)
HANDLER = '{"job_type":"echo","data":{"message":"hi"}}'


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def test_create_job_defaults(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that a new job is due now, unleased and never attempted."""
        job = await repo.create_job(HANDLER)
        await db_session.commit()

        assert job.id is not None
        assert job.priority == 0
        assert job.attempts == 0
        assert job.run_at == frozen_clock.now
        assert job.locked_at is None
        assert job.locked_by is None
        assert job.is_locked is False

    async def test_get_job_by_id(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test getting a job by ID."""
        job = await repo.create_job(HANDLER, priority=3)
        await db_session.commit()

        retrieved = await repo.get_job(job.id)

        assert retrieved is not None
        assert retrieved.id == job.id
        assert retrieved.priority == 3
        assert retrieved.handler == HANDLER

    async def test_get_job_not_found(self, repo: JobRepository):
        """Test getting a non-existent job."""
        assert await repo.get_job(999_999) is None


class TestFindAvailable:
    """Tests for candidate selection."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        return JobRepository(db_session)

    async def test_orders_by_priority_then_run_at(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that higher priority wins and earlier run_at breaks ties."""
        now = frozen_clock.now
        low = await repo.create_job(HANDLER, priority=0, run_at=now - timedelta(minutes=10))
        high_late = await repo.create_job(HANDLER, priority=10, run_at=now - timedelta(minutes=1))
        high_early = await repo.create_job(HANDLER, priority=10, run_at=now - timedelta(minutes=5))
        await db_session.commit()

        candidates = await repo.find_available("w1", limit=5, max_run_time=LEASE)

        assert [j.id for j in candidates] == [high_early.id, high_late.id, low.id]

    async def test_limit_caps_batch(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that no more than limit candidates are returned."""
        for _ in range(7):
            await repo.create_job(HANDLER)
        await db_session.commit()

        candidates = await repo.find_available("w1", limit=5, max_run_time=LEASE)

        assert len(candidates) == 5

    async def test_future_jobs_are_not_candidates(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that a job scheduled in the future is skipped."""
        await repo.create_job(HANDLER, run_at=frozen_clock.now + timedelta(seconds=60))
        await db_session.commit()

        assert await repo.find_available("w1", max_run_time=LEASE) == []

        frozen_clock.advance(seconds=60)
        assert len(await repo.find_available("w1", max_run_time=LEASE)) == 1

    async def test_priority_band(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that min/max priority bounds are inclusive."""
        for priority in (-10, -5, 0, 5, 10):
            await repo.create_job(HANDLER, priority=priority)
        await db_session.commit()

        candidates = await repo.find_available(
            "w1", max_run_time=LEASE, min_priority=-5, max_priority=5
        )

        assert sorted(j.priority for j in candidates) == [-5, 0, 5]

    async def test_leased_job_hidden_until_expiry(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that another worker only sees a leased job after the lease expires."""
        job = await repo.create_job(HANDLER)
        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        assert await repo.find_available("w2", max_run_time=LEASE) == []

        frozen_clock.advance(hours=4, seconds=1)
        candidates = await repo.find_available("w2", max_run_time=LEASE)
        assert [j.id for j in candidates] == [job.id]

    async def test_own_lease_selected_regardless_of_run_at(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that a worker finds jobs it already holds, even when not yet due."""
        job = await repo.create_job(HANDLER, run_at=frozen_clock.now + timedelta(days=1))
        job.locked_by = "w1"
        job.locked_at = frozen_clock.now
        await db_session.commit()

        candidates = await repo.find_available("w1", max_run_time=LEASE)

        assert [j.id for j in candidates] == [job.id]


class TestLeases:
    """Tests for lease acquisition and release."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        return JobRepository(db_session)

    async def test_lock_unleased_job(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that an unleased job can be claimed."""
        job = await repo.create_job(HANDLER)
        await db_session.commit()

        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.locked_by == "w1"
        assert stored.locked_at == frozen_clock.now

    async def test_second_claim_conflicts(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that a live lease cannot be taken by another worker."""
        job = await repo.create_job(HANDLER)
        await db_session.commit()

        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        # w2 still holds the copy it selected before w1 claimed the job
        stale = Job(id=job.id, locked_by=None, locked_at=None)
        with pytest.raises(LeaseConflict) as exc_info:
            await repo.lock_exclusively(stale, LEASE, "w2")

        assert exc_info.value.job_id == job.id
        assert exc_info.value.worker_id == "w2"
        stored = await repo.get_job(job.id)
        assert stored.locked_by == "w1"

    async def test_expired_lease_can_be_taken(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that a lease older than the lease duration is reclaimed."""
        job = await repo.create_job(HANDLER)
        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        frozen_clock.advance(hours=4, seconds=1)
        await repo.lock_exclusively(job, LEASE, "w2")
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.locked_by == "w2"
        assert stored.locked_at == frozen_clock.now

    async def test_holder_refreshes_own_lease(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that the current holder can re-lock before expiry."""
        job = await repo.create_job(HANDLER)
        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        frozen_clock.advance(minutes=30)
        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.locked_at == frozen_clock.now

    async def test_lock_deleted_job_conflicts(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that claiming a job that disappeared fails."""
        job = await repo.create_job(HANDLER)
        await db_session.commit()
        await repo.delete_job(job.id)
        await db_session.commit()

        with pytest.raises(LeaseConflict):
            await repo.lock_exclusively(job, LEASE, "w1")

    async def test_clear_locks_only_touches_own_leases(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that clear_locks releases exactly the worker's leases."""
        mine = [await repo.create_job(HANDLER) for _ in range(2)]
        theirs = await repo.create_job(HANDLER)
        for job in mine:
            await repo.lock_exclusively(job, LEASE, "w1")
        await repo.lock_exclusively(theirs, LEASE, "w2")
        await db_session.commit()

        cleared = await repo.clear_locks("w1")
        await db_session.commit()

        assert cleared == 2
        for job in mine:
            stored = await repo.get_job(job.id)
            assert stored.locked_by is None
            assert stored.locked_at is None
        assert (await repo.get_job(theirs.id)).locked_by == "w2"


class TestRescheduleAndFailures:
    """Tests for rescheduling, deletion and failure history."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        return JobRepository(db_session)

    async def test_reschedule_increments_and_releases(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test that rescheduling bumps attempts, moves run_at and clears the lease."""
        job = await repo.create_job(HANDLER)
        await repo.lock_exclusively(job, LEASE, "w1")
        await db_session.commit()

        run_at = frozen_clock.now + timedelta(seconds=6)
        await repo.reschedule_job(job, run_at)
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.attempts == 1
        assert stored.run_at == run_at
        assert stored.locked_by is None
        assert stored.locked_at is None

    async def test_failure_history_survives_deletion(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that failures stay queryable after the job row is gone."""
        job = await repo.create_job(HANDLER)
        await repo.record_failure(job.id, "first", "trace 1")
        await repo.record_failure(job.id, "second", "trace 2")
        assert await repo.delete_job(job.id) is True
        await db_session.commit()

        failures = await repo.list_failures(job.id)
        assert [f.message for f in failures] == ["first", "second"]
        assert (await repo.last_failure(job.id)).message == "second"

        assert await repo.clear_failures(job.id) == 2
        await db_session.commit()
        assert await repo.list_failures(job.id) == []

    async def test_delete_missing_job(self, repo: JobRepository):
        """Test that deleting an unknown id reports nothing deleted."""
        assert await repo.delete_job(424242) is False

    async def test_clear_jobs_and_stats(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        frozen_clock,
    ):
        """Test queue statistics and clearing the table."""
        due = await repo.create_job(HANDLER)
        await repo.create_job(HANDLER)
        await repo.create_job(HANDLER, run_at=frozen_clock.now + timedelta(hours=1))
        await repo.lock_exclusively(due, LEASE, "w1")
        await db_session.commit()

        stats = await repo.get_job_stats()
        assert stats == {"total": 3, "locked": 1, "due": 1, "scheduled": 1}
        assert await repo.count_jobs() == 3

        jobs, total = await repo.list_jobs(locked=True)
        assert total == 1
        assert jobs[0].id == due.id

        assert await repo.clear_jobs() == 3
        await db_session.commit()
        assert await repo.count_jobs() == 0
