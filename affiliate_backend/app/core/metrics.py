"""
Prometheus metrics for application monitoring.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import time


# Request metrics
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

# Payment gateway metrics
gateway_requests_total = Counter(
    'gateway_requests_total',
    'Total number of payment gateway calls',
    ['operation', 'outcome']
)

gateway_request_duration_seconds = Histogram(
    'gateway_request_duration_seconds',
    'Payment gateway call duration in seconds',
    ['operation'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0]
)

# Business metrics
deposits_initialized_total = Counter(
    'deposits_initialized_total',
    'Total number of deposits initialized'
)

deposits_reconciled_total = Counter(
    'deposits_reconciled_total',
    'Total number of deposit reconciliations',
    ['outcome']
)

commissions_awarded_total = Counter(
    'commissions_awarded_total',
    'Total number of first-deposit commissions awarded'
)

withdrawals_processed_total = Counter(
    'withdrawals_processed_total',
    'Total number of withdrawals approved or rejected',
    ['status']
)

referral_clicks_total = Counter(
    'referral_clicks_total',
    'Total number of tracked referral link visits'
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        # Route template keeps label cardinality bounded (/ref/{code}, not /ref/ABCD1234)
        endpoint = request.url.path

        if endpoint == "/metrics":
            return await call_next(request)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            route = request.scope.get("route")
            if route is not None and getattr(route, "path", None):
                endpoint = route.path
            duration = time.time() - start_time

            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()

            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(duration)

        return response


def get_metrics_response(openmetrics: bool = False) -> Response:
    """
    Get Prometheus metrics response.

    Args:
        openmetrics: If True, return OpenMetrics format, else Prometheus format
    """
    if openmetrics:
        content = generate_latest_openmetrics()
        content_type = "application/openmetrics-text; version=1.0.0; charset=utf-8"
    else:
        content = generate_latest()
        content_type = CONTENT_TYPE_LATEST

    return Response(content=content, media_type=content_type)
