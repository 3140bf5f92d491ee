"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class ReservationStatus(StrEnum):
    """
    Outcome of a single reservation attempt.

    - SUCCEEDED: a job was claimed, executed and deleted
    - FAILED: a job was claimed and failed (rescheduled or removed)
    - NOTHING: no candidate could be claimed
    """

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOTHING = "nothing"


class RescheduleOutcome(StrEnum):
    """What the retry policy did with a failed job."""

    RESCHEDULED = "rescheduled"
    REMOVED = "removed"


# Queue policy
MAX_ATTEMPTS = 25
MAX_PAYLOAD_BYTES = 65535

# Worker defaults
DEFAULT_BATCH_SIZE = 5
DEFAULT_LEASE_DURATION_SECONDS = 4 * 60 * 60
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_WORK_OFF_COUNT = 100
DEFAULT_PRIORITY = 0

# Length of handler text shown when a job cannot be named by its payload
JOB_NAME_PREVIEW_LENGTH = 40

# API constants
API_V1_PREFIX = "/v1"
API_KEY_HEADER = "X-API-Key"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOBS_REMOVED = "jobs_removed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_LEASE_CONFLICTS = "lease_conflicts_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_ACQUIRE_LEASE = "acquire_lease"
SPAN_EXECUTE_JOB = "execute_job"

# Event types
EVENT_JOB_ENQUEUED = "job.enqueued"
EVENT_JOB_LOCKED = "job.locked"
EVENT_LEASE_CONFLICT = "job.lease_conflict"
EVENT_JOB_COMPLETED = "job.completed"
EVENT_JOB_RESCHEDULED = "job.rescheduled"
EVENT_JOB_REMOVED = "job.removed"
