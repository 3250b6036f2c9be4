"""
Metrics Collection with Prometheus.

Exposes access-control, reconciliation, and delivery metrics.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from studio_access.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    CONTENT_KIND = "content_kind"
    DECISION = "decision"
    PROVIDER = "provider"
    RESULT = "result"
    ERROR_TYPE = "error_type"


class AccessMetrics:
    """
    Centralized metrics for the Studio Access API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Access decisions by content kind and outcome
    - Payment reconciliations by provider and result
    - Webhook signature rejections
    - Signed URLs issued and storage failures
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "studio_access_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "studio_access_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "studio_access_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "studio_access_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Access Metrics
        # ====================================================================
        self.access_decisions_total = Counter(
            "studio_access_decisions_total",
            "Access decisions by content kind and outcome",
            [MetricLabels.CONTENT_KIND, MetricLabels.DECISION],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.purchases_initiated_total = Counter(
            "studio_access_purchases_initiated_total",
            "Purchases initiated",
            [MetricLabels.PROVIDER, MetricLabels.CONTENT_KIND],
        )

        self.reconciliations_total = Counter(
            "studio_access_reconciliations_total",
            "Payment reconciliation attempts by result",
            [MetricLabels.PROVIDER, MetricLabels.RESULT],
        )

        self.webhook_signature_failures_total = Counter(
            "studio_access_webhook_signature_failures_total",
            "Webhook deliveries rejected for an invalid signature",
            [MetricLabels.PROVIDER],
        )

        # ====================================================================
        # Delivery Metrics
        # ====================================================================
        self.signed_urls_issued_total = Counter(
            "studio_access_signed_urls_issued_total",
            "Signed download URLs issued",
            [MetricLabels.CONTENT_KIND],
        )

        self.storage_failures_total = Counter(
            "studio_access_storage_failures_total",
            "Storage operation failures",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "studio_access_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_access_decision(self, content_kind: str, decision: str) -> None:
        """Record an access decision."""
        self.access_decisions_total.labels(content_kind=content_kind, decision=decision).inc()

    def record_purchase_initiated(self, provider: str, content_kind: str) -> None:
        self.purchases_initiated_total.labels(provider=provider, content_kind=content_kind).inc()

    def record_reconciliation(self, provider: str, result: str) -> None:
        """Record a reconciliation attempt."""
        self.reconciliations_total.labels(provider=provider, result=result).inc()

    def record_webhook_signature_failure(self, provider: str) -> None:
        self.webhook_signature_failures_total.labels(provider=provider).inc()

    def record_signed_urls(self, content_kind: str, count: int) -> None:
        """Record signed URLs issued."""
        if count > 0:
            self.signed_urls_issued_total.labels(content_kind=content_kind).inc(count)

    def record_storage_failure(self, operation: str) -> None:
        self.storage_failures_total.labels(operation=operation).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = AccessMetrics()
