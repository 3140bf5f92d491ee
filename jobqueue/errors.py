"""
Exception types raised by the job queue.
"""


class JobQueueError(Exception):
    """Base class for all job queue errors."""


class LeaseConflict(JobQueueError):
    """
    Raised when a claim loses the race for a job.

    Non-fatal: the worker moves on to the next candidate.
    """

    def __init__(self, job_id: int, worker_id: str):
        self.job_id = job_id
        self.worker_id = worker_id
        super().__init__(
            f"Attempt to acquire exclusive lease on job {job_id} "
            f"for {worker_id!r} failed"
        )


class SerializationError(JobQueueError):
    """Raised to the producer when a handler cannot be stored."""


class DeserializationError(JobQueueError):
    """Raised when a stored payload cannot be turned back into a handler."""


class ConfigurationError(JobQueueError):
    """Raised at startup when operator configuration cannot be applied."""
