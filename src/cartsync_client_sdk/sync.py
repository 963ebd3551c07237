from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from .cart_store import CartStateStore
from .exceptions import ApiError, NotFoundError, TransientRemoteError
from .identity import IdentityContext
from .local_cache import LocalCartCache
from .logging_utils import get_logger, log_action
from .models import CartLine, CartSnapshot, Identity, RemoteCart
from .mutations import CatalogReader

logger = get_logger(__name__)


class RemoteCartReader(Protocol):
    def get_cart(self, identity_id: str) -> RemoteCart: ...


class SyncStatus(str, Enum):
    SYNCED = "synced"
    EMPTY = "empty"
    ADMINISTRATOR = "administrator"
    DEGRADED = "degraded"
    STALE_IDENTITY = "stale_identity"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class SyncResult:
    status: SyncStatus
    snapshot: CartSnapshot
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return isinstance(self.error, TransientRemoteError)


class SyncCoordinator:
    """Reconciles the store with the remote cart of the active identity.

    Remote lines that arrive without a stock figure or a title are filled in
    from ``stock_lookup`` (the latest broadcast value) and then from the
    catalog. A failed catalog lookup leaves the line as the cart service
    sent it.
    """

    def __init__(
        self,
        identity: IdentityContext,
        store: CartStateStore,
        cart_client: RemoteCartReader,
        cache: LocalCartCache | None = None,
        in_flight: Callable[[], frozenset[str]] | None = None,
        catalog_client: CatalogReader | None = None,
        stock_lookup: Callable[[str], int | None] | None = None,
    ) -> None:
        self._identity = identity
        self._store = store
        self._cart_client = cart_client
        self._cache = cache
        self._in_flight = in_flight or frozenset
        self._catalog_client = catalog_client
        self._stock_lookup = stock_lookup

    def paint_from_cache(self, identity: Identity) -> CartSnapshot:
        if identity.is_administrator:
            return self._store.reset(identity.id, enabled=False)
        cached = self._cache.load(identity.id) if self._cache else None
        if cached is None:
            return self._store.reset(identity.id, enabled=None)
        return self._store.replace(CartSnapshot(identity_id=identity.id, lines=cached.lines, enabled=None))

    def sync_for_identity(self, identity: Identity) -> SyncResult:
        generation = self._identity.generation
        if not self._identity.is_current(identity.id, generation):
            return SyncResult(status=SyncStatus.STALE_IDENTITY, snapshot=self._store.read())

        if identity.is_administrator:
            snapshot = self._store.reset(identity.id, enabled=False)
            self._log(identity, "sync", "skipped_administrator")
            return SyncResult(status=SyncStatus.ADMINISTRATOR, snapshot=snapshot)

        try:
            remote = self._cart_client.get_cart(identity.id)
        except NotFoundError:
            if not self._identity.is_current(identity.id, generation):
                return SyncResult(status=SyncStatus.STALE_IDENTITY, snapshot=self._store.read())
            snapshot = self._store.replace(self._merge(identity.id, [], enabled=True))
            self._log(identity, "sync", "empty")
            return SyncResult(status=SyncStatus.EMPTY, snapshot=snapshot)
        except (ApiError, ValueError) as exc:
            self._log(identity, "sync", "degraded", getattr(exc, "trace_id", None))
            return SyncResult(status=SyncStatus.DEGRADED, snapshot=self._store.read(), error=exc)

        remote_lines = [self._hydrate(line) for line in remote.lines]
        if not self._identity.is_current(identity.id, generation):
            self._log(identity, "sync", "dropped_stale_identity")
            return SyncResult(status=SyncStatus.STALE_IDENTITY, snapshot=self._store.read())
        snapshot = self._store.replace(self._merge(identity.id, remote_lines, enabled=remote.enabled))
        self._log(identity, "sync", "synced")
        return SyncResult(status=SyncStatus.SYNCED, snapshot=snapshot)

    def refresh(self) -> SyncResult:
        current = self._identity.current
        if current is None:
            return SyncResult(status=SyncStatus.ANONYMOUS, snapshot=self._store.read())
        return self.sync_for_identity(current)

    def refresh_enabled_flag(self) -> bool | None:
        """Re-read the remote flag without touching the lines.

        Anything short of a clear answer (network trouble, 5xx, garbled
        payload) leaves the flag unknown, which blocks mutation.
        """
        current = self._identity.current
        if current is None:
            return None
        if current.is_administrator:
            self._store.set_enabled(False)
            return False
        generation = self._identity.generation
        flag: bool | None
        try:
            flag = self._cart_client.get_cart(current.id).enabled
        except NotFoundError:
            flag = True
        except (ApiError, ValueError):
            flag = None
        if self._identity.is_current(current.id, generation):
            self._store.set_enabled(flag)
        self._log(current, "refresh_enabled_flag", str(flag).lower())
        return flag

    def _hydrate(self, line: CartLine) -> CartLine:
        update: dict[str, object] = {}
        if line.cached_stock is None and self._stock_lookup is not None:
            latest = self._stock_lookup(line.item_id)
            if latest is not None:
                update["cached_stock"] = latest
        needs_catalog = "cached_stock" not in update and line.cached_stock is None
        if (needs_catalog or not line.title) and self._catalog_client is not None:
            try:
                item = self._catalog_client.get_item(line.item_id)
            except (ApiError, ValueError) as exc:
                logger.warning("catalog lookup for cart line %s failed: %s", line.item_id, exc)
            else:
                if needs_catalog:
                    update["cached_stock"] = item.stock
                if not line.title:
                    update["title"] = item.title
                if line.image_ref is None and item.image_ref:
                    update["image_ref"] = item.image_ref
        return line.model_copy(update=update) if update else line

    def _merge(self, identity_id: str, remote_lines: list[CartLine], enabled: bool | None) -> CartSnapshot:
        # Lines with a mutation in flight belong to the mutation controller
        # until it confirms or rolls back.
        busy = self._in_flight()
        local = self._store.read()
        incoming = CartSnapshot.from_lines(identity_id, remote_lines)
        lines: dict[str, CartLine] = {}
        for item_id, line in incoming.lines.items():
            if item_id in busy and local.identity_id == identity_id:
                kept = local.lines.get(item_id)
                if kept is not None:
                    lines[item_id] = kept
                continue
            lines[item_id] = line
        if local.identity_id == identity_id:
            for item_id in busy:
                if item_id not in lines and item_id in local.lines:
                    lines[item_id] = local.lines[item_id]
        return CartSnapshot(identity_id=identity_id, lines=lines, enabled=enabled)

    def _log(self, identity: Identity, action: str, outcome: str, trace_id: str | None = None) -> None:
        log_action(
            logger,
            module="cart_sync",
            action=action,
            identity_id=identity.id,
            role=identity.role.value,
            outcome=outcome,
            trace_id=trace_id,
        )
