"""
Redis Configuration

Shared async Redis client, used for OTP rate limiting.
"""

import logging

from redis.asyncio import Redis, from_url

from admissions.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """
    Connect to Redis and verify the connection.

    Call this on application startup.
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    redis_client = client
    logger.info("Redis connection established")
    return redis_client


async def close_redis() -> None:
    """Close the shared connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
