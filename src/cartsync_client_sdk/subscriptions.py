from __future__ import annotations

import threading
from typing import Callable


class Subscription:
    """Handle returned by every ``subscribe`` call; the listener's lifetime ends at ``unsubscribe``."""

    def __init__(self, on_unsubscribe: Callable[[Subscription], None]) -> None:
        self._on_unsubscribe = on_unsubscribe
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._on_unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()
