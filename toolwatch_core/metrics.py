"""Prometheus metrics for ToolWatch Core"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

# Request metrics
http_requests_total = Counter(
    'toolwatch_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'toolwatch_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Analytics metrics
evaluations_total = Counter(
    'toolwatch_evaluations_total',
    'Total analytics evaluations',
    ['status']
)

evaluation_duration_seconds = Histogram(
    'toolwatch_evaluation_duration_seconds',
    'Analytics evaluation duration in seconds'
)

hosts_classified_total = Counter(
    'toolwatch_hosts_classified_total',
    'Hosts classified, by classification',
    ['classification']
)

hosts_excluded_total = Counter(
    'toolwatch_hosts_excluded_total',
    'Hosts excluded from an evaluation, by reason',
    ['reason']
)

last_evaluation_hosts = Gauge(
    'toolwatch_last_evaluation_hosts',
    'Number of hosts in the most recent evaluation'
)

# Cache metrics
cache_requests_total = Counter(
    'toolwatch_cache_requests_total',
    'Evaluation cache lookups',
    ['result']
)


def track_request(method: str, endpoint: str, status_code: int, duration_ms: float):
    """Track an HTTP request"""
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status_code=str(status_code)
    ).inc()
    http_request_duration_seconds.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_ms / 1000)


def track_evaluation(duration_ms: float, host_count: int, status: str = 'success'):
    """Track a completed, failed or cancelled evaluation"""
    evaluations_total.labels(status=status).inc()
    if status == 'success':
        evaluation_duration_seconds.observe(duration_ms / 1000)
        last_evaluation_hosts.set(host_count)


def track_classification(classification: str):
    """Track one host classification"""
    hosts_classified_total.labels(classification=classification).inc()


def track_exclusion(reason: str):
    """Track a host left out of an evaluation"""
    hosts_excluded_total.labels(reason=reason).inc()


def track_cache(hit: bool):
    """Track an evaluation cache lookup"""
    cache_requests_total.labels(result='hit' if hit else 'miss').inc()


def get_metrics_response() -> Response:
    """Generate Prometheus metrics response"""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
