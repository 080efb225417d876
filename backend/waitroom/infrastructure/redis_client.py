"""
Redis client for waiting-list change notifications.
Redis is advisory here: callers get None when it is disabled or down and
fall back to polling the store.
"""

from typing import Optional

import redis.asyncio as redis

from waitroom.core.config import get_settings
from waitroom.core.logging import get_logger
from waitroom.core.metrics import redis_connection_errors, notifier_degraded

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the shared connection. Returns None if Redis is disabled or unreachable."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        try:
            await client.ping()
        except (redis.RedisError, OSError) as e:
            redis_connection_errors.inc()
            notifier_degraded.set(1)
            logger.error("redis_connection_failed", error=str(e))
            await client.aclose()
            return None
        _redis_client = client
        notifier_degraded.set(0)
        logger.info("redis_connected", url=settings.REDIS_URL)

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
