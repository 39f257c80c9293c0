"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Histogram, Info

from orchestrator.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class OrchestratorMetrics:
    """
    Centralized metrics for the production orchestrator.

    Covers:
    - HTTP requests (rate, duration)
    - Lease acquisitions (granted / conflict)
    - Production launches, dispatch failures and terminal outcomes
    - Credit movements (debits, refunds by reason)
    - Billing webhook events and admin overrides
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "orchestrator_service",
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
            "orchestrator_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "orchestrator_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Lease Metrics
        # ====================================================================
        self.lease_acquisitions_total = Counter(
            "orchestrator_lease_acquisitions_total",
            "Lease acquisition attempts",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Production Metrics
        # ====================================================================
        self.productions_started_total = Counter(
            "orchestrator_productions_started_total",
            "Productions dispatched to the generation worker",
            ["is_revision"],
        )

        self.dispatch_failures_total = Counter(
            "orchestrator_dispatch_failures_total",
            "Worker dispatch failures (rolled back)",
            [MetricLabels.ERROR_TYPE],
        )

        self.dispatch_duration_seconds = Histogram(
            "orchestrator_dispatch_duration_seconds",
            "Worker dispatch duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.videos_terminal_total = Counter(
            "orchestrator_videos_terminal_total",
            "Videos reaching a terminal status",
            ["status", MetricLabels.REASON],
        )

        self.callbacks_total = Counter(
            "orchestrator_callbacks_total",
            "Generation worker callbacks received",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credits_debited_total = Counter(
            "orchestrator_credits_debited_total",
            "Credits debited for productions",
        )

        self.credits_refunded_total = Counter(
            "orchestrator_credits_refunded_total",
            "Credits refunded",
            [MetricLabels.REASON],
        )

        # ====================================================================
        # Billing / Admin Metrics
        # ====================================================================
        self.billing_events_total = Counter(
            "orchestrator_billing_events_total",
            "Payment provider events processed",
            ["event_type", "action"],
        )

        self.admin_actions_total = Counter(
            "orchestrator_admin_actions_total",
            "Admin override operations",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "orchestrator_errors_total",
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

    def record_lease_acquisition(self, granted: bool) -> None:
        self.lease_acquisitions_total.labels(outcome="granted" if granted else "conflict").inc()

    def record_production_started(self, is_revision: bool, credits: float) -> None:
        self.productions_started_total.labels(is_revision=str(is_revision)).inc()
        self.credits_debited_total.inc(credits)

    def record_dispatch(self, duration: float, error_type: str | None = None) -> None:
        self.dispatch_duration_seconds.observe(duration)
        if error_type is not None:
            self.dispatch_failures_total.labels(error_type=error_type).inc()

    def record_terminal(self, status: str, reason: str) -> None:
        """Record a video reaching a terminal status (callback, timeout, cancel, admin)."""
        self.videos_terminal_total.labels(status=status, reason=reason).inc()

    def record_refund(self, reason: str, credits: float) -> None:
        if credits > 0:
            self.credits_refunded_total.labels(reason=reason).inc(credits)

    def record_callback(self, applied: bool) -> None:
        self.callbacks_total.labels(outcome="applied" if applied else "ignored").inc()

    def record_billing_event(self, event_type: str, action: str) -> None:
        self.billing_events_total.labels(event_type=event_type, action=action).inc()

    def record_admin_action(self, operation: str, success: bool) -> None:
        self.admin_actions_total.labels(
            operation=operation, outcome="success" if success else "error"
        ).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = OrchestratorMetrics()
