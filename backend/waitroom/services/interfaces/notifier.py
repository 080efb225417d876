"""
Change notification interface.
Lets observers react to waiting-list mutations without being tied to a broker.
"""

from abc import ABC, abstractmethod


class Subscription(ABC):
    """A live subscription to one event's waiting-list changes."""

    @abstractmethod
    async def wait(self, timeout: float) -> bool:
        """
        Block until a change arrives or `timeout` seconds pass.

        Returns:
            True if a change notification arrived
            False on timeout (caller should re-poll anyway)
        """
        pass

    @abstractmethod
    async def close(self):
        pass


class ChangeNotifier(ABC):
    """
    Interface for change notification backends.

    Implementations:
    - PollingNotifier: no push at all, observers rely on their poll interval
    - RedisNotifier: Redis pub/sub channel per event

    Notifications are hints. Observers always re-read the store.
    """

    @abstractmethod
    async def publish(self, event_id: str, change: dict):
        """
        Announce a mutation of an event's waiting list.

        Args:
            event_id: Event whose waiting list changed
            change: Small JSON-able description (entry id, new status)
        """
        pass

    @abstractmethod
    async def subscribe(self, event_id: str) -> Subscription:
        pass
