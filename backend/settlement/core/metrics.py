"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at the /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Capacity admission
admission_requests = Counter(
    'seat_admission_requests_total',
    'Seat admission decisions',
    ['result']  # admitted, rejected, conflict
)

admission_latency = Histogram(
    'seat_admission_latency_seconds',
    'Seat admission latency (read-check-write)',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

db_retries = Counter(
    'db_retry_attempts_total',
    'Database retry attempts due to session version conflicts'
)

# Coupons
coupon_operations = Counter(
    'coupon_operations_total',
    'Coupon engine operations',
    ['operation', 'result']  # validate/apply/remove/duplicate, ok/rejected/conflict
)

# Payments
checkout_attempts = Counter(
    'checkout_attempts_total',
    'Checkout creation attempts per provider',
    ['provider', 'result']  # success, failure
)

webhook_events = Counter(
    'payment_webhook_events_total',
    'Provider notifications received',
    ['provider', 'event', 'result']  # applied, ignored, rejected
)

refund_requests = Counter(
    'refund_requests_total',
    'Refund requests sent to providers',
    ['provider', 'result']
)

# Admission gate backing store
redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

redis_circuit_breaker_open = Gauge(
    'redis_circuit_breaker_open',
    'Redis circuit breaker state (1=open, 0=closed)'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint body."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_admission(result: str):
    """Record admission decision. Result: admitted, rejected, conflict"""
    admission_requests.labels(result=result).inc()


def record_coupon_operation(operation: str, result: str):
    coupon_operations.labels(operation=operation, result=result).inc()


def record_checkout_attempt(provider: str, success: bool):
    checkout_attempts.labels(provider=provider, result="success" if success else "failure").inc()


def record_webhook_event(provider: str, event: str, result: str):
    webhook_events.labels(provider=provider, event=event, result=result).inc()


def record_refund(provider: str, success: bool):
    refund_requests.labels(provider=provider, result="success" if success else "failure").inc()
