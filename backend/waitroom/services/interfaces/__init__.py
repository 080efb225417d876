"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .notifier import ChangeNotifier, Subscription
from .polling_notifier import PollingNotifier, PollingSubscription

__all__ = ['ChangeNotifier', 'Subscription', 'PollingNotifier', 'PollingSubscription']
