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

from hookrelay.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_DELIVERY_ATTEMPTS,
    METRIC_DELIVERY_DURATION,
    METRIC_ERROR_CALLBACKS,
    METRIC_JOBS_DEDUPLICATED,
    METRIC_JOBS_SUBMITTED,
    METRIC_JOBS_TERMINAL,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_CONCURRENCY,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the webhook dispatcher.

    Collects metrics for:
    - Job submissions and deduplicated submissions
    - Delivery attempts by outcome and their duration
    - Terminal job states
    - Error callback notifications
    - Live queue concurrency
    - Lease recovery
    - API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of webhook jobs enqueued",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_deduplicated = Counter(
            METRIC_JOBS_DEDUPLICATED,
            "Total number of submissions coalesced onto a pending duplicate",
            ["queue"],
            registry=self._registry,
        )

        # outcome: success, timeout, transport_error
        self.delivery_attempts = Counter(
            METRIC_DELIVERY_ATTEMPTS,
            "Total number of delivery attempts",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.delivery_duration = Histogram(
            METRIC_DELIVERY_DURATION,
            "Delivery attempt duration in seconds",
            ["queue", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        # status: completed, failed
        self.jobs_terminal = Counter(
            METRIC_JOBS_TERMINAL,
            "Total number of jobs reaching a terminal state",
            ["queue", "status"],
            registry=self._registry,
        )

        # outcome: delivered, error
        self.error_callbacks = Counter(
            METRIC_ERROR_CALLBACKS,
            "Total number of error callback notifications",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.queue_concurrency = Gauge(
            METRIC_QUEUE_CONCURRENCY,
            "Live concurrency limit of the queue worker",
            ["queue"],
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of expired leases recovered",
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

    def record_job_submitted(self, queue: str, created: bool) -> None:
        """Record a job submission."""
        if created:
            self.jobs_submitted.labels(queue=queue).inc()
        else:
            self.jobs_deduplicated.labels(queue=queue).inc()

    def record_attempt(self, queue: str, outcome: str, duration_seconds: float) -> None:
        """Record one delivery attempt."""
        self.delivery_attempts.labels(queue=queue, outcome=outcome).inc()
        self.delivery_duration.labels(queue=queue, outcome=outcome).observe(
            duration_seconds
        )

    def record_terminal(self, queue: str, status: str) -> None:
        """Record a job reaching a terminal state."""
        self.jobs_terminal.labels(queue=queue, status=status).inc()

    def record_error_callback(self, queue: str, outcome: str) -> None:
        """Record an error callback notification."""
        self.error_callbacks.labels(queue=queue, outcome=outcome).inc()

    def set_queue_concurrency(self, queue: str, concurrency: int) -> None:
        """Update the live concurrency of a queue."""
        self.queue_concurrency.labels(queue=queue).set(concurrency)

    def record_lease_expired(self, count: int = 1) -> None:
        """Record recovered leases."""
        self.lease_expired.inc(count)

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
        self.api_latency.labels(method=method, endpoint=endpoint).observe(
            duration_seconds
        )

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
    """Get the metrics collector instance, creating it on first use."""
    if _metrics is None:
        return setup_metrics()
    return _metrics
