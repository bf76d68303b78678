"""
Prometheus metrics module for BookBeauty.

Service operation timings come from the @measure_operation decorator;
payment, webhook, refund and token counters are recorded by the payment
and Mollie Connect services.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "bookbeauty_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "bookbeauty_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "bookbeauty_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

payments_created_total = Counter(
    "bookbeauty_payments_created_total",
    "Payment creation requests by outcome",
    ["outcome"],
    registry=REGISTRY,
)

webhook_deliveries_total = Counter(
    "bookbeauty_mollie_webhook_deliveries_total",
    "Mollie webhook deliveries by outcome",
    ["outcome"],
    registry=REGISTRY,
)

refunds_total = Counter(
    "bookbeauty_refunds_total",
    "Cancellation refunds by cancel type and outcome",
    ["cancel_type", "outcome"],
    registry=REGISTRY,
)

token_refreshes_total = Counter(
    "bookbeauty_mollie_token_refreshes_total",
    "Connected-account token refreshes by outcome",
    ["outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    content_type = CONTENT_TYPE_LATEST

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'PaymentService')
            operation: Operation/method name (e.g., 'create_payment')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_payment_created(outcome: str) -> None:
        payments_created_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_webhook(outcome: str) -> None:
        webhook_deliveries_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_refund(cancel_type: str, outcome: str) -> None:
        refunds_total.labels(cancel_type=cancel_type, outcome=outcome).inc()

    @staticmethod
    def record_token_refresh(outcome: str) -> None:
        token_refreshes_total.labels(outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)


# Global instance
prometheus_metrics = PrometheusMetrics()
