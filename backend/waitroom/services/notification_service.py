"""
Redis pub/sub change notifications for the waiting list.
Implements ChangeNotifier using one channel per event.

Degradation:
  Publishing is best effort. On Redis failure the notification is dropped,
  the degraded gauge is raised and subscribers fall back to sleeping for
  their poll interval. Nothing in the admission path waits on Redis, and
  observers re-read the store on every wake-up, so a lost message only
  delays a UI refresh until the next poll.
"""

import asyncio
import json

import redis.asyncio as redis

from waitroom.core.config import get_settings
from waitroom.core.logging import get_logger
from waitroom.core.metrics import redis_connection_errors, notifier_degraded
from waitroom.infrastructure.redis_client import get_redis
from waitroom.services.interfaces.notifier import ChangeNotifier, Subscription
from waitroom.services.interfaces.polling_notifier import PollingSubscription

logger = get_logger(__name__)


def channel_for(event_id: str) -> str:
    return f"{get_settings().REDIS_CHANNEL_PREFIX}:{event_id}"


def _degrade(operation: str, error: Exception) -> None:
    redis_connection_errors.inc()
    notifier_degraded.set(1)
    logger.warning("notifier_degraded", operation=operation, error=str(error))


class RedisSubscription(Subscription):

    def __init__(self, pubsub):
        self.pubsub = pubsub
        self._broken = False

    async def wait(self, timeout: float) -> bool:
        if self._broken:
            await asyncio.sleep(timeout)
            return False
        try:
            message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        except (redis.RedisError, OSError) as e:
            _degrade("subscribe_wait", e)
            self._broken = True
            await asyncio.sleep(timeout)
            return False
        return message is not None

    async def close(self):
        try:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
        except (redis.RedisError, OSError) as e:
            logger.debug("subscription_close_failed", error=str(e))


class RedisNotifier(ChangeNotifier):
    """
    Redis-backed change notifications.

    Use when:
    - Several API instances serve observers for the same event
    - UIs need sub-second queue updates instead of poll latency
    """

    async def publish(self, event_id: str, change: dict):
        client = await get_redis()
        if client is None:
            return
        try:
            await client.publish(channel_for(event_id), json.dumps(change, default=str))
        except (redis.RedisError, OSError) as e:
            _degrade("publish", e)

    async def subscribe(self, event_id: str) -> Subscription:
        client = await get_redis()
        if client is None:
            return PollingSubscription()
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(channel_for(event_id))
        except (redis.RedisError, OSError) as e:
            _degrade("subscribe", e)
            return PollingSubscription()
        return RedisSubscription(pubsub)
