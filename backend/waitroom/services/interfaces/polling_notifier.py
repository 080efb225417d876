"""
Polling notifier - no push channel.
Observers fall back to their periodic re-fetch.
"""

import asyncio

from waitroom.services.interfaces.notifier import ChangeNotifier, Subscription


class PollingSubscription(Subscription):

    async def wait(self, timeout: float) -> bool:
        """Never notified; just paces the caller's poll loop."""
        await asyncio.sleep(timeout)
        return False

    async def close(self):
        pass


class PollingNotifier(ChangeNotifier):
    """
    No notifications - observers poll.

    Use when:
    - Redis is disabled (tests, single-box deployments)
    - Redis is down (RedisNotifier degrades to the same behaviour)
    """

    async def publish(self, event_id: str, change: dict):
        """No-op - nobody to tell."""
        pass

    async def subscribe(self, event_id: str) -> Subscription:
        return PollingSubscription()
