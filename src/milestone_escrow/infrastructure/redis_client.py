"""Redis client for idempotency keys on project creation.

Usage:
    from milestone_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from milestone_escrow.config import get_settings
from milestone_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _key(key: str) -> str:
    return f"idempotency:{key}"


async def set_idempotency(key: str, value: str = "1", redis: aioredis.Redis | None = None) -> bool:
    """Claim an idempotency key with a TTL.

    Returns False when the key was already claimed by another request.
    """
    settings = get_settings()
    redis = redis or get_redis()
    claimed = await redis.set(
        _key(key),
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def release_idempotency(key: str, redis: aioredis.Redis | None = None) -> None:
    """Forget a claimed key so a failed request can be retried with it."""
    redis = redis or get_redis()
    await redis.delete(_key(key))
