"""API middleware for request processing."""

import logging
import time
from collections import defaultdict
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.utils.helpers import generate_uuid

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_STALE_CLIENT_THRESHOLD = 300  # seconds before a silent client's entry is evicted


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request and tags it with a correlation id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_uuid()
        request.state.request_id = request_id
        start_time = time.monotonic()

        logger.info(
            "Request: %s %s",
            request.method,
            request.url.path,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else "unknown",
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.monotonic() - start_time
            logger.error(
                "Request failed after %.3fs: %s",
                process_time,
                e,
                extra={"request_id": request_id, "process_time_s": round(process_time, 3)},
            )
            raise

        process_time = time.monotonic() - start_time
        logger.info(
            "Response: %s in %.3fs",
            response.status_code,
            process_time,
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "process_time_s": round(process_time, 3),
            },
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting per client and path prefix.

    ``limits`` maps a path prefix to the requests allowed per window; paths
    matching no prefix are not limited. Evicts stale client entries
    periodically to prevent unbounded memory growth.
    """

    def __init__(self, app, limits: dict[str, int], period: int = 60) -> None:
        super().__init__(app)
        # Longest prefix first so nested paths pick the most specific limit
        self.limits = dict(sorted(limits.items(), key=lambda item: len(item[0]), reverse=True))
        self.period = period
        self._request_counts: dict[tuple[str, str], list[float]] = defaultdict(list)
        self._last_cleanup = time.monotonic()

    def _bucket(self, path: str) -> Optional[str]:
        for prefix in self.limits:
            if path.startswith(prefix):
                return prefix
        return None

    def _cleanup_stale_clients(self, now: float) -> None:
        """Remove entries for clients that have not sent requests recently."""
        if now - self._last_cleanup < _STALE_CLIENT_THRESHOLD:
            return
        cutoff = now - max(_STALE_CLIENT_THRESHOLD, self.period)
        stale = [key for key, ts in self._request_counts.items() if not ts or ts[-1] < cutoff]
        for key in stale:
            del self._request_counts[key]
        self._last_cleanup = now

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check rate limits and process request."""
        bucket = self._bucket(request.url.path)
        if bucket is None or request.method == "OPTIONS":
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        key = (client_id, bucket)
        now = time.monotonic()
        window_start = now - self.period

        # Evict expired timestamps for this client
        self._request_counts[key] = [t for t in self._request_counts[key] if t > window_start]

        # Periodically evict idle clients
        self._cleanup_stale_clients(now)

        if len(self._request_counts[key]) >= self.limits[bucket]:
            logger.warning("Rate limit exceeded for %s on %s", client_id, bucket)
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests, please try again later", "retry_after": self.period},
                headers={"Retry-After": str(self.period)},
            )

        self._request_counts[key].append(now)
        return await call_next(request)
