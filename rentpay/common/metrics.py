"""Prometheus metric definitions for the payments service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
payment_requests_total = Counter(
    "payment_requests_total",
    "STK push initiations by outcome",
    ["service", "outcome"],
)
payment_latency_seconds = Histogram(
    "payment_latency_seconds",
    "Latency of STK push initiation including gateway round-trips",
    ["service"],
)
payment_callbacks_total = Counter(
    "payment_callbacks_total",
    "Gateway callbacks by reconciliation outcome",
    ["service", "outcome"],
)
token_refresh_total = Counter(
    "token_refresh_total",
    "Gateway access token exchanges by result",
    ["service", "result"],
)
rate_limited_total = Counter("rate_limited_total", "Requests rejected by the rate limiter", ["service"])
orphaned_submissions_total = Counter(
    "orphaned_submissions_total",
    "Gateway-accepted pushes that could not be persisted locally",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
