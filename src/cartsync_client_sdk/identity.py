from __future__ import annotations

import threading
from typing import Callable, Optional

from .logging_utils import get_logger
from .models import Identity, Role
from .subscriptions import Subscription

IdentityListener = Callable[[Optional[Identity], Optional[Identity]], None]

logger = get_logger(__name__)


class IdentityContext:
    """The one active identity of this client session.

    Every switch (login, logout, restore) bumps ``generation``; work started
    under an older generation belongs to a session that no longer exists.
    """

    def __init__(self, identity: Identity | None = None) -> None:
        self._lock = threading.RLock()
        self._current = identity
        self._generation = 1 if identity else 0
        self._listeners: list[tuple[Subscription, IdentityListener]] = []

    @property
    def current(self) -> Identity | None:
        return self._current

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def role(self) -> Role | None:
        return self._current.role if self._current else None

    def set_identity(self, identity: Identity) -> None:
        self._switch(identity)

    def clear(self) -> None:
        self._switch(None)

    def is_current(self, identity_id: str | None, generation: int) -> bool:
        with self._lock:
            current_id = self._current.id if self._current else None
            return current_id == identity_id and self._generation == generation

    def subscribe(self, listener: IdentityListener) -> Subscription:
        subscription = Subscription(self._remove)
        with self._lock:
            self._listeners.append((subscription, listener))
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._listeners = [entry for entry in self._listeners if entry[0] is not subscription]

    def _switch(self, identity: Identity | None) -> None:
        with self._lock:
            previous = self._current
            if previous == identity:
                return
            self._current = identity
            self._generation += 1
            listeners = list(self._listeners)
        for subscription, listener in listeners:
            if not subscription.active:
                continue
            try:
                listener(previous, identity)
            except Exception:
                logger.exception("identity listener failed")
