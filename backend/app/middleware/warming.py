"""Keep-warm request tracking.

Requests carrying ``X-Warming-Request: true`` come from the frontend
prefetcher or the self-ping scheduler. They are counted, bypass origin
admission and are echoed back with ``X-Warming-*`` response headers.
"""

import threading
from datetime import UTC, datetime
from typing import Any

from fastapi import Request, Response
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware

WARMING_HEADER = "X-Warming-Request"
WARMING_SOURCE_HEADER = "X-Warming-Source"

FRONTEND_SOURCES = frozenset({"frontend-service", "blog-prefetch"})
SELF_WARMING_SOURCE = "self-warming"


def is_warming_request(headers: Headers) -> bool:
    return headers.get(WARMING_HEADER, "").lower() == "true"


class WarmingTracker:
    """Counts warming requests per source."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._frontend = 0
            self._self_warming = 0
            self._last_request_at: datetime | None = None
            self._sources: dict[str, int] = {}

    def record(self, source: str) -> None:
        with self._lock:
            self._total += 1
            self._last_request_at = datetime.now(UTC)
            self._sources[source] = self._sources.get(source, 0) + 1
            if source in FRONTEND_SOURCES:
                self._frontend += 1
            elif source == SELF_WARMING_SOURCE:
                self._self_warming += 1

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_warming_requests": self._total,
                "frontend_requests": self._frontend,
                "self_warming_requests": self._self_warming,
                "last_warming_request": (
                    self._last_request_at.isoformat() if self._last_request_at else None
                ),
                "sources": dict(self._sources),
            }


class WarmingMiddleware(BaseHTTPMiddleware):
    """Record warming requests and echo the warming headers."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if not is_warming_request(request.headers):
            return await call_next(request)

        source = request.headers.get(WARMING_SOURCE_HEADER) or "unknown"
        request.app.state.security.warming.record(source)

        response = await call_next(request)
        response.headers["X-Warming-Response"] = "true"
        response.headers["X-Warming-Time"] = datetime.now(UTC).isoformat()
        response.headers["X-Warming-Source-Echo"] = source
        return response
