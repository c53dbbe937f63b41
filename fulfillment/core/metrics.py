"""
Prometheus Metrics

Request metrics for every HTTP route plus a few fulfillment counters,
exposed in text format at GET /metrics. Process and platform collectors of
the default registry are included.
"""

import time

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from starlette.routing import Match

APP_LABEL = "drone-fulfillment"

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "HTTP requests handled",
    ["app", "method", "path", "status_code"],
)
HTTP_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["app", "method", "path"],
)

ORDERS_PLACED = Counter(
    "fulfillment_orders_placed_total",
    "Orders placed, by number of delivery zones",
    ["zones"],
)
ZONE_DEGRADATIONS = Counter(
    "fulfillment_zone_degradations_total",
    "Orders placed without delivery zones",
    ["reason"],
)
DELIVERED_NOTIFICATIONS = Counter(
    "fulfillment_delivered_notifications_total",
    "Delivered notifications queued",
)


def _route_path(request: Request) -> str:
    # Route template keeps label cardinality bounded (/api/orders/{order_id})
    route = request.scope.get("route")
    if route is None:
        for candidate in request.app.routes:
            match, _ = candidate.matches(request.scope)
            if match == Match.FULL:
                route = candidate
                break
    return getattr(route, "path", None) or "unmatched"


async def metrics_middleware(request: Request, call_next):
    """Count and time each request. Unhandled errors count as 500."""
    if request.url.path == "/metrics":
        return await call_next(request)

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        path = _route_path(request)
        HTTP_REQUESTS.labels(APP_LABEL, request.method, path, str(status_code)).inc()
        HTTP_LATENCY.labels(APP_LABEL, request.method, path).observe(time.perf_counter() - start)


def metrics_response() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
