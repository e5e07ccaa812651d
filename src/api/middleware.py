"""Rate limiting and request logging middleware for the catalog API."""

import logging
import time
import uuid
from collections import deque
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("src.api.access")

REQUEST_ID_HEADER = "X-Request-ID"


def get_client_ip(
    request: Request,
    trusted_proxies: Optional[frozenset[str]] = None,
) -> str:
    """Client IP, honouring X-Forwarded-For only from trusted proxies."""
    direct_ip = request.client.host if request.client else None

    if trusted_proxies and direct_ip in trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

    return direct_ip or "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP sliding-window limiter.

    Paths in ``exempt_paths`` (health checks) are never limited. Responses
    carry ``X-RateLimit-Limit`` and ``X-RateLimit-Remaining``.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 100,
        trusted_proxies: Optional[frozenset[str]] = None,
        exempt_paths: frozenset[str] = frozenset({"/health"}),
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.window_seconds = 60.0
        self.trusted_proxies = trusted_proxies
        self.exempt_paths = exempt_paths
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = time.monotonic()

    def _trim(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _window(self, ip: str, now: float) -> deque[float]:
        hits = self._hits.get(ip)
        if hits is None:
            hits = self._hits[ip] = deque()
        self._trim(hits, now)
        return hits

    def sweep(self, now: float) -> None:
        """Drop expired hits for every IP and forget IPs with none left."""
        for ip in list(self._hits):
            hits = self._hits[ip]
            self._trim(hits, now)
            if not hits:
                del self._hits[ip]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        ip = get_client_ip(request, self.trusted_proxies)
        now = time.monotonic()
        if now - self._last_sweep >= self.window_seconds:
            self.sweep(now)
        hits = self._window(ip, now)

        if len(hits) >= self.requests_per_minute:
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "code": "RATE_LIMITED",
                        "message": f"Rate limit exceeded ({self.requests_per_minute} requests/minute)",
                    }
                },
                headers={
                    "X-RateLimit-Limit": str(self.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(int(self.window_seconds)),
                },
            )

        hits.append(now)
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(
            max(0, self.requests_per_minute - len(hits))
        )
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request, tagged with a request id.

    The id is taken from the ``X-Request-ID`` header when the client sends
    one, generated otherwise, and echoed back on the response.
    """

    def __init__(
        self,
        app,
        trusted_proxies: Optional[frozenset[str]] = None,
    ):
        super().__init__(app)
        self.trusted_proxies = trusted_proxies

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request.state.request_id = request_id

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "[%s] %s %s %d %.0fms %s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            get_client_ip(request, self.trusted_proxies),
        )
        return response
