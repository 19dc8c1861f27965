from __future__ import annotations
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

class UpdateNotifier:
    """Single-slot listener. Last registration wins; ``None`` clears the slot.

    ``notify`` calls the listener synchronously on the caller's thread.
    """

    def __init__(self, name: str = "update"):
        self.name = name
        self._lock = threading.Lock()
        self._callback: Optional[Callable[..., None]] = None

    def register(self, callback: Optional[Callable[..., None]]) -> None:
        with self._lock:
            self._callback = callback

    def notify(self, *args) -> bool:
        with self._lock:
            cb = self._callback
        if cb is None:
            return False
        try:
            cb(*args)
        except Exception:
            logger.exception("%s callback failed", self.name)
        return True
