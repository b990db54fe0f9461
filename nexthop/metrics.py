"""Prometheus metrics for the nexthop service.

All collectors live in a :class:`NexthopMetrics` instance with its own
``CollectorRegistry`` so several apps (e.g. one per test) can coexist in
one process without duplicate-registration errors.
"""

from __future__ import annotations

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

RESOLUTION_OUTCOMES = ("found", "absent", "error")


class NexthopMetrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.targets = Gauge(
            "nexthop_targets",
            "Number of gateway targets currently published",
            registry=self.registry,
        )
        self.resolutions = Counter(
            "nexthop_gateway_resolutions",
            "Default gateway lookups by address family and outcome",
            ["family", "outcome"],
            registry=self.registry,
        )
        self.evicted = Counter(
            "nexthop_targets_evicted",
            "Targets removed after exceeding the purge age",
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests",
            "HTTP requests served",
            ["method", "path", "status"],
            registry=self.registry,
        )
        self.http_duration = Histogram(
            "http_requests_duration_seconds",
            "HTTP request latency",
            ["method", "path"],
            registry=self.registry,
        )

    def record_resolution(self, family: str, outcome: str) -> None:
        if outcome not in RESOLUTION_OUTCOMES:
            raise ValueError(f"Unknown resolution outcome: {outcome!r}")
        self.resolutions.labels(family=family, outcome=outcome).inc()

    def render(self) -> Response:
        return Response(generate_latest(self.registry), media_type=CONTENT_TYPE_LATEST)


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Count and time every request by method, route path and status."""

    def __init__(self, app, metrics: NexthopMetrics) -> None:
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Route template rather than raw URL keeps label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", "unmatched")

        self.metrics.http_requests.labels(
            method=request.method, path=path, status=str(response.status_code)
        ).inc()
        self.metrics.http_duration.labels(method=request.method, path=path).observe(elapsed)
        return response
