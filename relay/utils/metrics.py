"""
Prometheus metrics for observability
Exposes metrics for HTTP requests, upstream connections and event fan-out
"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest

# Prometheus content type
CONTENT_TYPE_LATEST = 'text/plain; version=0.0.4; charset=utf-8'

# HTTP Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors (5xx)',
    ['method', 'endpoint']
)

# Relay Metrics
upstream_connections = Gauge(
    'upstream_connections',
    'Number of upstream live connections held by the pool',
)

upstream_handshakes_total = Counter(
    'upstream_handshakes_total',
    'Upstream handshakes attempted, by result',
    ['result']
)

events_broadcast_total = Counter(
    'events_broadcast_total',
    'Canonical events broadcast to rooms',
    ['kind']
)

room_subscribers = Gauge(
    'room_subscribers',
    'Downstream subscribers per tenant room',
    ['tenant_id']
)

janitor_evictions_total = Counter(
    'janitor_evictions_total',
    'Idle upstream connections evicted by the janitor',
)


def get_metrics():
    """Get Prometheus metrics in text format"""
    return generate_latest()


def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record HTTP request metrics"""
    http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
    
    if status_code >= 500:
        http_errors_total.labels(method=method, endpoint=endpoint).inc()


def update_upstream_connections(count: int):
    """Update pooled connection count"""
    upstream_connections.set(count)


def record_handshake(result: str):
    """Record a handshake outcome: success, failure, timeout or aborted"""
    upstream_handshakes_total.labels(result=result).inc()


def record_broadcast(kind: str):
    """Increment broadcast counter for an event kind"""
    events_broadcast_total.labels(kind=kind).inc()


def update_room_subscribers(tenant_id: str, count: int):
    """Update subscriber gauge for a tenant"""
    room_subscribers.labels(tenant_id=tenant_id).set(count)


def record_eviction():
    """Increment janitor eviction counter"""
    janitor_evictions_total.inc()
