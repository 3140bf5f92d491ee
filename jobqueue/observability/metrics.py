"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_REMOVED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_CONFLICTS,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth
    - Enqueued, completed and permanently removed jobs
    - Job execution duration
    - Lease acquisitions and lost claims
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of job rows in the queue",
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["job_type"],
            registry=self._registry,
        )

        # status is succeeded or failed
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job executions",
            ["status"],
            registry=self._registry,
        )

        self.jobs_removed = Counter(
            METRIC_JOBS_REMOVED,
            "Total number of jobs removed after exhausting their attempts",
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["status"],
            buckets=(0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 1800.0, 3600.0),
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_conflicts = Counter(
            METRIC_LEASE_CONFLICTS,
            "Total number of claims lost to another worker",
            ["worker_id"],
            registry=self._registry,
        )

    def record_job_enqueued(self, job_type: str) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(job_type=job_type).inc()

    def record_job_completed(self, status: str, duration_seconds: float) -> None:
        """Record the end of one execution."""
        self.jobs_completed.labels(status=status).inc()
        self.job_duration.labels(status=status).observe(duration_seconds)

    def record_job_removed(self) -> None:
        self.jobs_removed.inc()

    def record_lease_acquired(self, worker_id: str) -> None:
        self.lease_acquired.labels(worker_id=worker_id).inc()

    def record_lease_conflict(self, worker_id: str) -> None:
        self.lease_conflicts.labels(worker_id=worker_id).inc()

    def update_queue_depth(self, depth: int) -> None:
        self.queue_depth.set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST

    def serve(self, port: int) -> None:
        """Expose metrics over HTTP from a background thread (worker processes)."""
        start_http_server(port, registry=self._registry)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
