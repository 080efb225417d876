"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# HTTP metrics, labelled by route template to keep cardinality bounded
http_requests = Counter(
    'waitlist_http_requests_total',
    'HTTP requests handled',
    ['method', 'route', 'status']
)

http_latency = Histogram(
    'waitlist_http_request_latency_seconds',
    'HTTP request latency',
    ['method', 'route'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Admission metrics
join_requests = Counter(
    'waitlist_join_requests_total',
    'Total waiting list join requests',
    ['result']  # offered, waiting, already_active, rejected, error
)

join_latency = Histogram(
    'waitlist_join_latency_seconds',
    'Atomic join latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

entry_transitions = Counter(
    'waitlist_entry_transitions_total',
    'Waiting list entry status transitions',
    ['status']  # offered, purchased, expired, cancelled
)

offer_promotions = Counter(
    'waitlist_offer_promotions_total',
    'Waiting entries promoted to an offer',
    ['trigger']  # join, promote
)

capacity_invariant_violations = Counter(
    'waitlist_capacity_invariant_violations_total',
    'Offered plus committed quantity exceeded pool capacity'
)

# Sweeper metrics
sweep_runs = Counter(
    'waitlist_sweep_runs_total',
    'Offer expiry sweeps',
    ['result']  # ok, error
)

sweep_latency = Histogram(
    'waitlist_sweep_latency_seconds',
    'Full sweep duration',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

sweep_row_failures = Counter(
    'waitlist_sweep_row_failures_total',
    'Per-row failures skipped by the sweeper',
    ['operation']  # expire, promote
)

# Notification metrics
redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

notifier_degraded = Gauge(
    'waitlist_notifier_degraded',
    'Change notifications unavailable, observers polling (1=degraded, 0=ok)'
)


def metrics_endpoint() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_join(result: str):
    """Record join outcome. Result: offered, waiting, already_active, rejected, error"""
    join_requests.labels(result=result).inc()


def record_transition(status: str, count: int = 1):
    if count:
        entry_transitions.labels(status=status).inc(count)


def record_http_request(method: str, route: str, status_code: int, seconds: float):
    http_requests.labels(method=method, route=route, status=str(status_code)).inc()
    http_latency.labels(method=method, route=route).observe(seconds)


def record_promotions(trigger: str, count: int = 1):
    if count:
        offer_promotions.labels(trigger=trigger).inc(count)
