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
)

from bulkqueue.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_REAPED,
    METRIC_JOBS_STALLED,
    METRIC_QUEUE_DEPTH,
    JobStatus,
)
from bulkqueue.types.job import QueueStats

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the bulk upload queues.

    Collects metrics for:
    - Jobs per queue and state
    - Enqueues, claims and terminal transitions
    - Job execution duration
    - Stalled and reaped jobs
    - API requests
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
            "Number of job records per queue and state",
            ["queue", "state"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of jobs that reached a terminal state",
            ["queue", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 1800.0),
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed by executors",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_stalled = Counter(
            METRIC_JOBS_STALLED,
            "Total number of jobs failed after their lease expired",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_reaped = Counter(
            METRIC_JOBS_REAPED,
            "Total number of job records removed by the reaper",
            ["queue"],
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    def record_job_enqueued(self, queue: str) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(queue=queue).inc()

    def record_job_claimed(self, queue: str) -> None:
        self.jobs_claimed.labels(queue=queue).inc()

    def record_job_finished(
        self,
        queue: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a terminal transition."""
        self.jobs_finished.labels(queue=queue, status=status).inc()
        self.job_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_jobs_stalled(self, queue: str, count: int) -> None:
        self.jobs_stalled.labels(queue=queue).inc(count)

    def record_jobs_reaped(self, queue: str, count: int) -> None:
        self.jobs_reaped.labels(queue=queue).inc(count)

    def update_queue_depth(self, queue: str, stats: QueueStats) -> None:
        """Update per-state gauges for a queue."""
        for state in JobStatus:
            self.queue_depth.labels(queue=queue, state=state.value).set(
                getattr(stats, state.value)
            )

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(duration_seconds)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
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
