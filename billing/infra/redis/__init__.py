"""
Redis client infrastructure for pub/sub.

Audit events and per-user notifications are published through the async
client singleton defined here.
"""

import logging

import redis.asyncio as redis

from billing.configs import configs

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


async def get_redis_client() -> redis.Redis:
    """
    Get the global async Redis client instance.

    Creates a new connection on first call, reuses existing connection
    on subsequent calls.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            configs.Redis.REDIS_URL,
            decode_responses=True,
        )
        logger.info(f"Redis client initialized: {configs.Redis.HOST}:{configs.Redis.PORT}")
    return _redis_client


async def close_redis_client() -> None:
    """Close the global Redis client connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis client connection closed")


async def health_check() -> bool:
    """Check Redis connectivity."""
    try:
        client = await get_redis_client()
        await client.ping()
        return True
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return False
