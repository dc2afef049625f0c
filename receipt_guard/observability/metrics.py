"""
Metrics Collection with Prometheus.

Exposes validation, replay and store API metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Histogram, Info

from receipt_guard.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    PLATFORM = "platform"
    RESULT = "result"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"


class ReceiptMetrics:
    """
    Centralized metrics for the receipt validation API.

    - HTTP requests (rate, duration)
    - Validations by platform and result (valid, invalid, cached, replay, error)
    - Grants and store notifications
    - Store API call latency
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""
        self.service_info = Info("receipt_guard_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # HTTP
        self.http_requests_total = Counter(
            "receipt_guard_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )
        self.http_request_duration_seconds = Histogram(
            "receipt_guard_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # Validation
        self.validations_total = Counter(
            "receipt_guard_validations_total",
            "Receipt validations by outcome",
            [MetricLabels.PLATFORM, MetricLabels.RESULT],
        )
        self.grants_total = Counter(
            "receipt_guard_grants_total",
            "Entitlements appended to a user's ledger",
            [MetricLabels.PLATFORM],
        )

        # Store APIs
        self.store_api_duration_seconds = Histogram(
            "receipt_guard_store_api_duration_seconds",
            "Store API call duration in seconds",
            [MetricLabels.PLATFORM, MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # Webhooks
        self.store_notifications_total = Counter(
            "receipt_guard_store_notifications_total",
            "Store notifications received",
            [MetricLabels.PLATFORM, "recorded"],
        )

        self.errors_total = Counter(
            "receipt_guard_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

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

    def record_validation(self, platform: str, result: str) -> None:
        """Record a validation result."""
        self.validations_total.labels(platform=platform, result=result).inc()

    def record_grant(self, platform: str) -> None:
        """Record an entitlement grant."""
        self.grants_total.labels(platform=platform).inc()

    def record_store_call(self, platform: str, operation: str, duration: float) -> None:
        """Record store API latency."""
        self.store_api_duration_seconds.labels(platform=platform, operation=operation).observe(
            duration
        )

    def record_notification(self, platform: str, recorded: bool) -> None:
        """Record a webhook notification."""
        self.store_notifications_total.labels(platform=platform, recorded=str(recorded)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ReceiptMetrics()
