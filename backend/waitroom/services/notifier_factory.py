"""
Change notifier factory.
Configures which notification backend the services publish through.
"""

from typing import Optional

from waitroom.core.config import get_settings
from waitroom.models.waiting_list import EntryStatus
from waitroom.services.interfaces.notifier import ChangeNotifier
from waitroom.services.interfaces.polling_notifier import PollingNotifier
from waitroom.services.notification_service import RedisNotifier


def build_notifier() -> ChangeNotifier:
    """
    Redis pub/sub when REDIS_ENABLED, otherwise plain polling.
    """
    if get_settings().REDIS_ENABLED:
        return RedisNotifier()
    return PollingNotifier()


# Singleton instance
_notifier: Optional[ChangeNotifier] = None


def get_notifier() -> ChangeNotifier:
    """Get notifier singleton."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


def set_notifier(notifier: Optional[ChangeNotifier]) -> None:
    """Swap the process-wide notifier (tests, alternative brokers)."""
    global _notifier
    _notifier = notifier


async def announce(event_id: str, entry_id: int, status: EntryStatus) -> None:
    """Publish an entry change after its transaction committed."""
    await get_notifier().publish(
        event_id,
        {"type": "entry_changed", "event_id": event_id, "entry_id": entry_id, "status": status.value},
    )
