"""HTTP request metrics as a plain ASGI middleware.

Series, all labelled with the route template rather than the raw path:

- ``http_request_total``: completed requests by method, path and status
- ``http_request_duration_seconds``: latency by method and path
- ``http_requests_in_flight``: requests currently being served
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram

if TYPE_CHECKING:
    from prometheus_client import CollectorRegistry
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

APP_LABEL = "neosynth-auth"
UNMATCHED = "unmatched"


class PrometheusMiddleware:
    """Count and time every HTTP request passing through the app.

    An exception escaping the app is recorded as a 500 and re-raised.
    """

    def __init__(self, app: ASGIApp, *, registry: CollectorRegistry) -> None:
        self.app = app
        self._requests = Counter(
            "http_request_total",
            "Total HTTP requests",
            ("method", "path", "status_code", "app"),
            registry=registry,
        )
        self._latency = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ("method", "path", "app"),
            registry=registry,
        )
        self._in_flight = Gauge(
            "http_requests_in_flight",
            "HTTP requests being served",
            ("app",),
            registry=registry,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        status = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        in_flight = self._in_flight.labels(app=APP_LABEL)
        in_flight.inc()
        start = time.perf_counter()
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            in_flight.dec()
            # The router stores the matched route on the scope it was handed.
            route = scope.get("route")
            path = getattr(route, "path", None) or UNMATCHED
            method = scope["method"]
            self._requests.labels(
                method=method, path=path, status_code=str(status), app=APP_LABEL
            ).inc()
            self._latency.labels(method=method, path=path, app=APP_LABEL).observe(
                time.perf_counter() - start
            )
