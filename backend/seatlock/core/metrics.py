"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Hold metrics
hold_attempts = Counter(
    'seat_hold_attempts_total',
    'Batch checkout attempts',
    ['result']  # success, conflict, error
)

seats_held = Counter(
    'seats_held_total',
    'Seats moved from AVAILABLE to CHECKOUT'
)

hold_releases = Counter(
    'seat_hold_releases_total',
    'Seats released back to AVAILABLE',
    ['reason']  # cancel, expired, declined, pending_timeout
)

registrations = Counter(
    'seat_registrations_total',
    'Registration submissions',
    ['result']  # success, invalid, expired, rejected, error
)

# Admin metrics
admin_actions = Counter(
    'admin_actions_total',
    'Privileged seat operations',
    ['action']  # approve, decline, reset, force_sale, update_prices
)

# Store metrics
store_operations = Counter(
    'seat_store_operations_total',
    'Seat store operations',
    ['operation', 'result']  # batch_upsert/delete/snapshot, ok/error
)

store_latency = Histogram(
    'seat_store_latency_seconds',
    'Seat store write latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Live state
active_countdowns = Gauge(
    'watchdog_active_countdowns',
    'Sessions with a running hold countdown'
)

store_subscribers = Gauge(
    'seat_store_subscribers',
    'Listeners registered on the seat store'
)

relay_errors = Counter(
    'seat_relay_errors_total',
    'Redis change relay errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_hold_attempt(result: str, seat_count: int = 0):
    """Record a checkout attempt. Result: success, conflict, error"""
    hold_attempts.labels(result=result).inc()
    if result == "success" and seat_count:
        seats_held.inc(seat_count)


def record_release(reason: str, seat_count: int):
    if seat_count:
        hold_releases.labels(reason=reason).inc(seat_count)


def record_registration(result: str):
    registrations.labels(result=result).inc()


def record_admin_action(action: str):
    admin_actions.labels(action=action).inc()


def record_store_operation(operation: str, ok: bool):
    store_operations.labels(operation=operation, result="ok" if ok else "error").inc()
