"""
Retry policy for failed jobs.

After the n-th consecutive failure a job waits n**4 + 5 seconds before it is
eligible again (6s, 21s, 86s, ... about 3.8 days after the 24th). The
failure that would bring attempts to max_attempts deletes the job instead.
Every failure is appended to the job's failure history either way.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from jobqueue import clock
from jobqueue.constants import MAX_ATTEMPTS, RescheduleOutcome
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Quartic backoff with a hard attempt ceiling."""

    max_attempts: int = MAX_ATTEMPTS

    @staticmethod
    def backoff(attempts: int) -> timedelta:
        """Delay before the next run after the given number of failures."""
        return timedelta(seconds=attempts**4 + 5)

    def next_run_at(self, attempts: int, now: datetime | None = None) -> datetime:
        return (now or clock.db_time_now()) + self.backoff(attempts)

    def will_retry(self, job: Job) -> bool:
        """Check whether one more failure still leaves the job queued."""
        return job.attempts + 1 < self.max_attempts

    async def reschedule(
        self,
        repo: JobRepository,
        job: Job,
        message: str,
        trace: str | None = None,
        run_at: datetime | None = None,
        name: str | None = None,
    ) -> RescheduleOutcome:
        """
        Record a failed execution and reschedule or remove the job.

        Args:
            repo: Repository bound to the session to write through.
            job: The failed job, still leased by the caller.
            message: Error message.
            trace: Formatted traceback.
            run_at: Explicit next run time instead of the backoff.
            name: Display name for log lines.

        Returns:
            RescheduleOutcome: RESCHEDULED or REMOVED.
        """
        name = name or str(job.id)
        await repo.record_failure(job.id, message, trace)

        if self.will_retry(job):
            attempts = job.attempts + 1
            await repo.reschedule_job(job, run_at or self.next_run_at(attempts))
            logger.info(
                "Job rescheduled",
                extra={
                    "job_id": job.id,
                    "job": name,
                    "attempts": job.attempts,
                    "run_at": job.run_at.isoformat(),
                },
            )
            return RescheduleOutcome.RESCHEDULED

        await repo.delete_job(job.id)
        logger.warning(
            f"PERMANENTLY removing {name} because of {job.attempts + 1} consecutive failures",
            extra={"job_id": job.id, "job": name, "attempts": job.attempts + 1},
        )
        return RescheduleOutcome.REMOVED
