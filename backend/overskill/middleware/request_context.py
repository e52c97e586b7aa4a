"""Request context middleware: request ids, timing, access logs and rate limiting.

Everything happens in one pass:
- ``X-Request-ID`` is propagated from the caller or generated, and bound to
  the logging context so every log line of the request carries it
- the request duration is reported in ``X-Response-Time``
- each request is logged once with method, path, status and duration
- API traffic is throttled per client with a token bucket

``check_rate_limit`` is a pure function over an explicit bucket dict so it
can be tested without a running app.
"""

import logging
import threading
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..core.config import settings
from ..core.logging_config import request_id_var
from ..exceptions import ErrorCode

logger = logging.getLogger(__name__)

# {client_key: (available_tokens, last_refill_timestamp)}
_rate_buckets: dict[str, tuple[float, float]] = {}
_rate_lock = threading.Lock()

_rate_call_count = 0
_EVICT_EVERY = 100
_EVICT_AGE = 120.0

# Health probes and API docs are never throttled.
_EXEMPT_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})


def check_rate_limit(
    bucket: dict[str, tuple[float, float]],
    key: str,
    max_per_minute: int,
    now: Optional[float] = None,
) -> tuple[bool, float]:
    """Take one token for *key* if available.

    Args:
        bucket: Per-key state, modified in place.
        key: Client identifier.
        max_per_minute: Sustained rate and burst size. 0 disables limiting.
        now: Monotonic timestamp; injectable for tests.

    Returns:
        ``(allowed, retry_after_seconds)``; retry_after is 0.0 when allowed.
    """
    global _rate_call_count

    if max_per_minute <= 0:
        return True, 0.0
    if now is None:
        now = time.monotonic()

    _rate_call_count += 1
    if _rate_call_count % _EVICT_EVERY == 0:
        cutoff = now - _EVICT_AGE
        for stale in [k for k, (_, ts) in bucket.items() if ts < cutoff]:
            del bucket[stale]

    per_second = max_per_minute / 60.0
    tokens, last = bucket.get(key, (float(max_per_minute), now))
    tokens = min(float(max_per_minute), tokens + (now - last) * per_second)

    if tokens >= 1.0:
        bucket[key] = (tokens - 1.0, now)
        return True, 0.0

    bucket[key] = (tokens, now)
    return False, (1.0 - tokens) / per_second


def _client_key(request: Request) -> str:
    """First hop of ``X-Forwarded-For`` behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _rate_limited_response(retry_after: float, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": ErrorCode.RATE_LIMITED.value,
            "message": "Too many requests",
            "details": {"retry_after": round(retry_after, 1)},
        },
        headers={"Retry-After": str(int(retry_after) + 1), "X-Request-ID": request_id},
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id, timing, access log and rate limiting in one middleware."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request_id_var.set(request_id)
        path = request.url.path

        if path not in _EXEMPT_PATHS:
            client = _client_key(request)
            with _rate_lock:
                allowed, retry_after = check_rate_limit(_rate_buckets, client, settings.rate_limit_per_minute)
            if not allowed:
                logger.warning(
                    "Rate limit exceeded",
                    extra={"client": client, "path": path, "retry_after": round(retry_after, 1)},
                )
                return _rate_limited_response(retry_after, request_id)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"

        logger.info(
            f"{request.method} {path} {response.status_code}",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
