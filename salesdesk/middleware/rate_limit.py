from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salesdesk.api.errors import error_response
from salesdesk.core.auth import bearer_subject
from salesdesk.core.config import get_settings


WINDOW_SECONDS = 60
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class TokenBucketLimiter:
    """Per (principal, route group) token buckets refilled continuously over the window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}

    def take(self, principal: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (principal, route_group)

        with self._lock:
            bucket = self._buckets.setdefault(key, _BucketState(tokens=float(capacity), last_refill=now))
            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * refill_rate)
            bucket.last_refill = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))

            bucket.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        path = request.url.path
        if not path.startswith("/api/") or request.method.upper() not in MUTATING_METHODS:
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            principal=bearer_subject(request) or "anonymous",
            route_group=route_group_for(path),
            capacity=settings.rate_limit_mutations_per_minute,
            window_seconds=WINDOW_SECONDS,
        )
        if allowed:
            return await call_next(request)

        return error_response(
            request,
            status_code=429,
            code="rate_limited",
            message="Too many requests",
            details={"retry_after_seconds": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


def route_group_for(path: str) -> str:
    """``/api/quotes/<id>/transition`` -> ``quotes``; settings tables group per table."""

    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "api"
    if parts[1] == "settings" and len(parts) >= 3:
        return f"settings/{parts[2]}"
    return parts[1]


def reset_rate_limiter() -> None:
    _limiter.clear()
