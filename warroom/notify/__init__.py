"""
Notify layer: change detection and subscriber fan-out
"""

from .feed import ChangeFeed, PollingChangeFeed
from .notifier import ChangeNotifier

__all__ = ["ChangeFeed", "ChangeNotifier", "PollingChangeFeed"]
