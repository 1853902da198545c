"""
Metrics Collection with Prometheus.

Exposes checkout, webhook and entitlement metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from vibestore.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    MODE = "mode"
    EVENT_TYPE = "event_type"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class StoreMetrics:
    """
    Centralized metrics for the entitlement service.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Checkout sessions (rate, outcome, provider latency)
    - Webhook events (type, outcome)
    - Entitlement grants and grant failures (charged but not granted)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info("vibestore_service", "Service information")
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
            "vibestore_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "vibestore_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "vibestore_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Checkout Metrics
        # ====================================================================
        self.checkouts_total = Counter(
            "vibestore_checkouts_total",
            "Checkout sessions requested",
            [MetricLabels.MODE, MetricLabels.OUTCOME],
        )

        self.checkout_duration_seconds = Histogram(
            "vibestore_checkout_duration_seconds",
            "Checkout session creation duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Webhook / Entitlement Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "vibestore_webhook_events_total",
            "Webhook events received",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        self.entitlements_granted_total = Counter(
            "vibestore_entitlements_granted_total",
            "Entitlements durably granted",
            ["kind"],
        )

        self.entitlement_grant_failures_total = Counter(
            "vibestore_entitlement_grant_failures_total",
            "Verified payments that could not be recorded",
            [MetricLabels.ERROR_TYPE],
        )

        self.revenue_minor_total = Counter(
            "vibestore_revenue_minor_total",
            "Completed revenue in minor units",
            ["currency"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "vibestore_errors_total",
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

    def record_checkout(self, mode: str, outcome: str, duration: float) -> None:
        """Record checkout session creation."""
        self.checkouts_total.labels(mode=mode, outcome=outcome).inc()
        self.checkout_duration_seconds.observe(duration)

    def record_webhook(self, event_type: str, outcome: str) -> None:
        """Record a webhook delivery and how it was handled."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_grant(self, kind: str, amount_minor: int | None, currency: str | None) -> None:
        """Record a newly granted entitlement (never called for replays)."""
        self.entitlements_granted_total.labels(kind=kind).inc()
        if amount_minor and currency:
            self.revenue_minor_total.labels(currency=currency.upper()).inc(amount_minor)

    def record_grant_failure(self, error_type: str) -> None:
        """Record a verified payment that was not recorded."""
        self.entitlement_grant_failures_total.labels(error_type=error_type).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StoreMetrics()
