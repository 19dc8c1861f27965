from .engine import ConnectionTracker, TickResult
from .notifier import UpdateNotifier
