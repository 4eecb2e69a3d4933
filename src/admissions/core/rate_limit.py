"""
Rate Limiting Module

Sliding-window rate limiting backed by Redis sorted sets, with an
in-memory fallback when Redis is unavailable.

Used for:
- OTP requests per login identifier (enumeration and SMS/email abuse)
- Staff login and confirmation-code endpoints per client IP (brute force)
"""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from fastapi import HTTPException, Request, status

from admissions.core import redis as redis_module

logger = logging.getLogger(__name__)

# In-memory fallback. Format: {key: [timestamp, ...]}
# Only consistent within a single process.
_memory_store: dict[str, list[float]] = {}


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int = 0


class RateLimitExceeded(HTTPException):
    """HTTP 429 raised by the rate_limit decorator."""

    def __init__(self, limit: int, window_seconds: int, retry_after_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after_seconds": retry_after_seconds,
            },
            headers={"Retry-After": str(retry_after_seconds)},
        )


async def _check_rate_limit_redis(
    client,
    key: str,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    """
    Sliding window check using a Redis sorted set.

    Every call is recorded, including rejected ones, so a client hammering
    the endpoint keeps itself locked out.
    """
    now = time.time()
    window_start = now - window_seconds

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zcard(key)
    pipe.zadd(key, {f"{now}:{secrets.token_hex(4)}": now})
    pipe.zrange(key, 0, 0, withscores=True)
    pipe.expire(key, window_seconds)
    results = await pipe.execute()

    current_count = results[1]
    if current_count < limit:
        return RateLimitResult(allowed=True)

    oldest = results[3]
    oldest_ts = oldest[0][1] if oldest else now
    retry_after = max(1, int(oldest_ts + window_seconds - now))
    return RateLimitResult(allowed=False, retry_after_seconds=retry_after)


def _check_rate_limit_memory(
    key: str,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    """Fallback when Redis is unavailable. Does not span server instances."""
    now = time.time()
    window_start = now - window_seconds

    entries = [ts for ts in _memory_store.get(key, []) if ts > window_start]

    if len(entries) >= limit:
        _memory_store[key] = entries
        retry_after = max(1, int(entries[0] + window_seconds - now))
        return RateLimitResult(allowed=False, retry_after_seconds=retry_after)

    entries.append(now)
    _memory_store[key] = entries
    return RateLimitResult(allowed=True)


async def check_rate_limit(
    key: str,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    """
    Record a request against `key` and report whether it is within limits.

    Tries the shared Redis client first and falls back to process memory.

    Args:
        key: Unique key for this limit (e.g., "otp:user@example.com")
        limit: Maximum requests allowed in the window
        window_seconds: Window length in seconds

    Returns:
        RateLimitResult with a retry hint when the limit is exceeded
    """
    client = redis_module.redis_client

    if client is not None:
        try:
            return await _check_rate_limit_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_rate_limit_memory(key, limit, window_seconds)


async def _peek_rate_limit_redis(
    client,
    key: str,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    now = time.time()

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window_seconds)
    pipe.zcard(key)
    pipe.zrange(key, 0, 0, withscores=True)
    results = await pipe.execute()

    if results[1] < limit:
        return RateLimitResult(allowed=True)

    oldest = results[2]
    oldest_ts = oldest[0][1] if oldest else now
    return RateLimitResult(
        allowed=False,
        retry_after_seconds=max(1, int(oldest_ts + window_seconds - now)),
    )


def _peek_rate_limit_memory(
    key: str,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    now = time.time()
    entries = [ts for ts in _memory_store.get(key, []) if ts > now - window_seconds]

    if len(entries) < limit:
        return RateLimitResult(allowed=True)
    return RateLimitResult(
        allowed=False,
        retry_after_seconds=max(1, int(entries[0] + window_seconds - now)),
    )


async def peek_rate_limit(
    key: str,
    limit: int,
    window_seconds: int,
) -> RateLimitResult:
    """
    Report whether the next request against `key` would be allowed,
    without recording one.
    """
    client = redis_module.redis_client

    if client is not None:
        try:
            return await _peek_rate_limit_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit peek failed, using memory: {e}")

    return _peek_rate_limit_memory(key, limit, window_seconds)


def reset_memory_store() -> None:
    """Clear the in-memory fallback store."""
    _memory_store.clear()


def client_ip_key(request: Request) -> str:
    """Default key: client IP plus endpoint path."""
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{client_ip}:{request.url.path}"


def rate_limit(
    limit: int = 10,
    window_seconds: int = 60,
    key_func: Callable[[Request], str] | None = None,
):
    """
    Rate limiting decorator for FastAPI endpoints.

    The decorated endpoint must accept a `request: Request` parameter.

    Usage:
        @router.post("/login")
        @rate_limit(limit=10, window_seconds=300)
        async def login(request: Request, ...):
            ...

    Raises:
        RateLimitExceeded: When rate limit is exceeded (HTTP 429)
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request | None = kwargs.get("request")
            if request is None:
                request = next((arg for arg in args if isinstance(arg, Request)), None)

            if request is None:
                logger.warning(
                    f"Rate limit decorator on {func.__name__} couldn't find Request object"
                )
                return await func(*args, **kwargs)

            key = (key_func or client_ip_key)(request)
            result = await check_rate_limit(key, limit, window_seconds)

            if not result.allowed:
                logger.warning(f"Rate limit exceeded for {key}: {limit}/{window_seconds}s")
                raise RateLimitExceeded(limit, window_seconds, result.retry_after_seconds)

            return await func(*args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "RateLimitExceeded",
    "RateLimitResult",
    "check_rate_limit",
    "client_ip_key",
    "peek_rate_limit",
    "rate_limit",
    "reset_memory_store",
]
