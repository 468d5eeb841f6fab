"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at the /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation engine metrics
reservation_outcomes = Counter(
    'reservation_outcomes_total',
    'Reservation engine outcomes',
    ['operation', 'outcome']  # reserve/cancel/set_status x success, slot_full, duplicate, ...
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Latency of reservation engine write operations',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

transaction_retries = Counter(
    'reservation_transaction_retries_total',
    'Unit-of-work retries caused by transient storage conflicts',
    ['operation']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation_outcome(operation: str, outcome: str):
    """Record a write outcome. Outcome is "success" or an error code."""
    reservation_outcomes.labels(operation=operation, outcome=outcome).inc()


def record_transaction_retry(operation: str):
    transaction_retries.labels(operation=operation).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
