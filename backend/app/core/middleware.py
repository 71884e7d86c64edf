"""HTTP middleware: request metrics, correlation IDs, access logging and
canonical host redirects.
"""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Mount
from starlette.types import ASGIApp

from app.core.logging import clear_correlation_id, set_correlation_id
from app.core.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
)

# Client-supplied IDs end up in every log line; keep them short and plain
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def route_label(request: Request) -> str:
    """Route template for metric labels, so label cardinality stays bounded."""
    route = request.scope.get("route")
    if route is None:
        return "unmatched"
    if isinstance(route, Mount):
        return "static"
    return getattr(route, "path", "unmatched")


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and records time until the response starts."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        HTTP_REQUESTS_IN_PROGRESS.labels(method=method).inc()

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = route_label(request)
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, route=route).observe(
                time.perf_counter() - start_time
            )
            HTTP_REQUESTS_TOTAL.labels(
                method=method, route=route, status_code=str(status_code)
            ).inc()
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method).dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to the request context and echoes it back.

    A well-formed ``X-Correlation-ID`` from the client is reused; anything
    else is replaced with a fresh UUID.
    """

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        correlation_id = request.headers.get(self.CORRELATION_ID_HEADER, "")
        if not _CORRELATION_ID_RE.match(correlation_id):
            correlation_id = str(uuid.uuid4())

        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log. Probe endpoints are skipped to keep the log readable."""

    QUIET_PATHS = frozenset({"/health", "/metrics"})

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = logging.getLogger("app.requests")

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        if request.url.path in self.QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        self.logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
                "content_length": request.headers.get("content-length"),
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        self.logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
            },
        )
        return response


class CanonicalHostMiddleware(BaseHTTPMiddleware):
    """Permanently redirects other host names (e.g. the bare domain) to the
    canonical one. Local hosts are never redirected.
    """

    LOCAL_HOSTS = ("localhost", "127.0.0.1", "testserver", "[::1]")

    def __init__(self, app: ASGIApp, canonical_host: str):
        super().__init__(app)
        self.canonical_host = canonical_host.lower()

    @staticmethod
    def _hostname(host: str) -> str:
        if host.startswith("["):
            return host.split("]", 1)[0] + "]"
        return host.rsplit(":", 1)[0]

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        host = (request.headers.get("host") or "").lower()
        hostname = self._hostname(host)

        if host and hostname != self.canonical_host and hostname not in self.LOCAL_HOSTS:
            target = f"https://{self.canonical_host}{request.url.path}"
            if request.url.query:
                target = f"{target}?{request.url.query}"
            return RedirectResponse(url=target, status_code=301)

        return await call_next(request)


__all__ = [
    "MetricsMiddleware",
    "CorrelationIdMiddleware",
    "RequestLoggingMiddleware",
    "CanonicalHostMiddleware",
    "route_label",
]
