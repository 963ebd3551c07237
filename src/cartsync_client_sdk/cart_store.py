from __future__ import annotations

import threading
from decimal import Decimal
from typing import Callable

from .local_cache import LocalCartCache
from .logging_utils import get_logger
from .models import CartLine, CartSnapshot, CatalogItem, StockEvent
from .subscriptions import Subscription

CartListener = Callable[[CartSnapshot], None]

logger = get_logger(__name__)


def _foreign(snapshot: CartSnapshot, identity_id: str | None) -> bool:
    return identity_id is not None and snapshot.identity_id != identity_id


class CartStateStore:
    """Single in-memory source of truth for the active identity's cart.

    Every write builds a fresh ``CartSnapshot``, persists it under the
    snapshot's own identity and notifies listeners synchronously, outside
    the lock.

    Line writers take an optional ``identity_id``: when given, the write
    only lands if the current snapshot still belongs to that identity,
    checked under the store lock.
    """

    def __init__(self, cache: LocalCartCache | None = None, identity_id: str | None = None) -> None:
        self._lock = threading.RLock()
        self._cache = cache
        self._snapshot = CartSnapshot.empty(identity_id)
        self._listeners: list[tuple[Subscription, CartListener]] = []

    def read(self) -> CartSnapshot:
        return self._snapshot

    def subscribe(self, listener: CartListener) -> Subscription:
        subscription = Subscription(self._remove)
        with self._lock:
            self._listeners.append((subscription, listener))
        return subscription

    def replace(self, snapshot: CartSnapshot) -> CartSnapshot:
        with self._lock:
            self._snapshot = snapshot
        self._commit(snapshot)
        return snapshot

    def reset(self, identity_id: str | None = None, enabled: bool | None = None) -> CartSnapshot:
        """Drop every line without touching any identity's cache entry."""
        snapshot = CartSnapshot.empty(identity_id, enabled=enabled)
        with self._lock:
            self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def apply_delta(
        self,
        item_id: str,
        delta: int,
        price_hint: Decimal | None = None,
        *,
        item: CatalogItem | None = None,
        pending: bool | None = None,
        identity_id: str | None = None,
    ) -> CartSnapshot:
        with self._lock:
            current = self._snapshot
            if _foreign(current, identity_id):
                return current
            line = current.lines.get(item_id)
            if line is None:
                if delta <= 0:
                    return current
                line = (
                    CartLine.from_catalog(item).model_copy(update={"item_id": item_id})
                    if item is not None
                    else CartLine(item_id=item_id)
                )
            elif item is not None and line.cached_stock is None:
                line = line.model_copy(update={"cached_stock": item.stock})
            quantity = max(0, line.quantity + delta)
            update: dict[str, object] = {"quantity": quantity}
            if pending is not None:
                update["pending"] = pending
            if price_hint is not None:
                update["unit_price"] = max(Decimal("0"), Decimal(str(price_hint)))
            lines = dict(current.lines)
            lines[item_id] = line.model_copy(update=update)
            snapshot = self._rebuild(current, lines)
        self._commit(snapshot)
        return snapshot

    def set_pending(self, item_id: str, pending: bool, *, identity_id: str | None = None) -> CartSnapshot:
        return self._update_line(item_id, identity_id, pending=pending)

    def set_quantity(self, item_id: str, quantity: int, *, identity_id: str | None = None) -> CartSnapshot:
        return self._update_line(item_id, identity_id, quantity=max(0, quantity))

    def set_stock(self, item_id: str, stock: int, *, identity_id: str | None = None) -> CartSnapshot:
        return self._update_line(item_id, identity_id, cached_stock=max(0, stock))

    def apply_stock_event(self, event: StockEvent) -> None:
        if event.item_id in self._snapshot.lines:
            self.set_stock(event.item_id, event.new_stock)

    def restore_line(
        self,
        item_id: str,
        line: CartLine | None,
        position: int | None = None,
        *,
        identity_id: str | None = None,
    ) -> CartSnapshot:
        """Put ``item_id`` back exactly as it was (``None`` means absent)."""
        with self._lock:
            current = self._snapshot
            if _foreign(current, identity_id):
                return current
            entries = [(key, value) for key, value in current.lines.items() if key != item_id]
            if line is not None:
                index = len(entries) if position is None else min(max(position, 0), len(entries))
                entries.insert(index, (item_id, line))
            snapshot = self._rebuild(current, dict(entries))
        self._commit(snapshot)
        return snapshot

    def set_enabled(self, enabled: bool | None) -> CartSnapshot:
        with self._lock:
            current = self._snapshot
            if current.enabled is enabled:
                return current
            snapshot = CartSnapshot(identity_id=current.identity_id, lines=current.lines, enabled=enabled)
            self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def _update_line(self, item_id: str, identity_id: str | None, **changes: object) -> CartSnapshot:
        with self._lock:
            current = self._snapshot
            line = current.lines.get(item_id)
            if line is None or _foreign(current, identity_id):
                return current
            if all(getattr(line, key) == value for key, value in changes.items()):
                return current
            lines = dict(current.lines)
            lines[item_id] = line.model_copy(update=changes)
            snapshot = self._rebuild(current, lines)
        self._commit(snapshot)
        return snapshot

    def _rebuild(self, current: CartSnapshot, lines: dict[str, CartLine]) -> CartSnapshot:
        snapshot = CartSnapshot(identity_id=current.identity_id, lines=lines, enabled=current.enabled)
        self._snapshot = snapshot
        return snapshot

    def _commit(self, snapshot: CartSnapshot) -> None:
        if self._cache is not None and snapshot.identity_id:
            self._cache.save(snapshot.identity_id, snapshot)
        self._notify(snapshot)

    def _notify(self, snapshot: CartSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for subscription, listener in listeners:
            if not subscription.active:
                continue
            try:
                listener(snapshot)
            except Exception:
                logger.exception("cart listener failed")

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._listeners = [entry for entry in self._listeners if entry[0] is not subscription]
