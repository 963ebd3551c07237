from __future__ import annotations

import threading
from collections import deque
from typing import Callable

from .logging_utils import get_logger
from .models import StockEvent
from .subscriptions import Subscription

WILDCARD = "*"

StockListener = Callable[[StockEvent], None]

logger = get_logger(__name__)


class StockBroadcast:
    """Keyed publish/subscribe channel for per-item stock levels.

    Events go through a single FIFO queue drained by whichever publisher
    finds it idle, so every subscriber sees the events of one item in
    publish order, including publishes made from inside a listener.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[tuple[Subscription, StockListener]]] = {}
        self._queue: deque[StockEvent] = deque()
        self._draining = False
        self._latest: dict[str, int] = {}

    def publish(self, item_id: str, new_stock: int) -> None:
        if new_stock < 0:
            raise ValueError(f"stock must be >= 0, got {new_stock}")
        event = StockEvent(item_id=str(item_id), new_stock=int(new_stock))
        with self._lock:
            self._latest[event.item_id] = event.new_stock
            self._queue.append(event)
            if self._draining:
                return
            self._draining = True
        self._drain()

    def subscribe(self, item_id: str, listener: StockListener) -> Subscription:
        key = str(item_id)
        subscription = Subscription(lambda sub: self._remove(key, sub))
        with self._lock:
            self._subscribers.setdefault(key, []).append((subscription, listener))
        return subscription

    def latest(self, item_id: str) -> int | None:
        return self._latest.get(str(item_id))

    def subscriber_count(self, item_id: str | None = None) -> int:
        with self._lock:
            if item_id is not None:
                return len(self._subscribers.get(str(item_id), []))
            return sum(len(entries) for entries in self._subscribers.values())

    def _remove(self, key: str, subscription: Subscription) -> None:
        with self._lock:
            remaining = [entry for entry in self._subscribers.get(key, []) if entry[0] is not subscription]
            if remaining:
                self._subscribers[key] = remaining
            else:
                self._subscribers.pop(key, None)

    def _drain(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._draining = False
                        return
                    event = self._queue.popleft()
                    targets = list(self._subscribers.get(event.item_id, [])) + list(
                        self._subscribers.get(WILDCARD, [])
                    )
                for subscription, listener in targets:
                    if not subscription.active:
                        continue
                    try:
                        listener(event)
                    except Exception:
                        logger.exception("stock listener failed for item %s", event.item_id)
        except BaseException:
            with self._lock:
                self._draining = False
            raise
