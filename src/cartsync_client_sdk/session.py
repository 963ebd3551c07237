from __future__ import annotations

from typing import Any, Callable

from .cart_store import CartListener, CartStateStore
from .clients.base import CredentialProvider
from .clients.cart_client import CartClient
from .clients.catalog_client import CatalogClient
from .clients.orders_client import OrdersClient
from .config import ClientConfig
from .eligibility import CartEligibilityGate
from .exceptions import ClientValidationError, ValidationIssue
from .http_client import HttpClient, TraceContext
from .identity import IdentityContext
from .local_cache import JsonFileStorage, KeyValueStorage, LocalCartCache
from .logging_utils import get_logger, log_action
from .models import CartSnapshot, CartSummary, CatalogItem, Identity, RemoteCart
from .mutations import (
    Dispatcher,
    MutationTicket,
    OptimisticMutationController,
    inline_dispatcher,
    thread_dispatcher,
)
from .stock_broadcast import WILDCARD, StockBroadcast, StockListener
from .subscriptions import Subscription
from .sync import SyncCoordinator, SyncResult

logger = get_logger(__name__)


class CartSession:
    """Everything one client process needs to show and edit a cart.

    The rendering layer talks to this object only: it subscribes to cart
    and stock updates, calls ``add_one``/``remove_one`` and asks
    ``is_enabled`` before offering cart actions.
    """

    def __init__(
        self,
        cart_client: CartClient,
        catalog_client: CatalogClient | None = None,
        orders_client: OrdersClient | None = None,
        cache: LocalCartCache | None = None,
        dispatcher: Dispatcher | None = None,
        on_mutation_complete: Callable[[MutationTicket], None] | None = None,
    ) -> None:
        self.cart_client = cart_client
        self.orders_client = orders_client
        self.identity = IdentityContext()
        self.broadcast = StockBroadcast()
        self.cache = cache or LocalCartCache()
        self.store = CartStateStore(self.cache)
        self.gate = CartEligibilityGate(self.identity, self.store)
        self.mutations = OptimisticMutationController(
            self.identity,
            self.store,
            self.gate,
            self.broadcast,
            cart_client,
            catalog_client=catalog_client,
            dispatcher=dispatcher,
            on_complete=on_mutation_complete,
        )
        self.sync = SyncCoordinator(
            self.identity,
            self.store,
            cart_client,
            cache=self.cache,
            in_flight=self.mutations.in_flight,
            catalog_client=catalog_client,
            stock_lookup=self.broadcast.latest,
        )
        self._subscriptions = [
            self.broadcast.subscribe(WILDCARD, self.store.apply_stock_event),
            self.identity.subscribe(self._on_identity_change),
        ]

    @classmethod
    def create(
        cls,
        config: ClientConfig,
        credential: CredentialProvider,
        storage: KeyValueStorage | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> CartSession:
        http = HttpClient(config=config, trace=TraceContext())
        if storage is None:
            storage = JsonFileStorage(app_name=config.cache_app_name, directory=config.cache_dir)
        if dispatcher is None:
            dispatcher = thread_dispatcher if config.background_mutations else inline_dispatcher
        return cls(
            cart_client=CartClient(http=http, credential=credential),
            catalog_client=CatalogClient(http=http, credential=credential),
            orders_client=OrdersClient(http=http, credential=credential),
            cache=LocalCartCache(storage),
            dispatcher=dispatcher,
        )

    def login(self, identity: Identity) -> SyncResult:
        self.identity.set_identity(identity)
        return self.sync.sync_for_identity(identity)

    def logout(self) -> None:
        current = self.identity.current
        if current is None:
            return
        self.identity.clear()
        self.cache.clear(current.id)
        self._log(current, "logout", "cleared")

    def refresh(self) -> SyncResult:
        return self.sync.refresh()

    def refresh_enabled_flag(self) -> bool | None:
        return self.sync.refresh_enabled_flag()

    def read(self) -> CartSnapshot:
        return self.store.read()

    def is_enabled(self) -> bool:
        return self.gate.is_enabled()

    def add_one(self, item_id: str, item: CatalogItem | None = None) -> MutationTicket:
        return self.mutations.add_one(item_id, item)

    def remove_one(self, item_id: str) -> MutationTicket:
        return self.mutations.remove_one(item_id)

    def subscribe_cart(self, listener: CartListener) -> Subscription:
        return self.store.subscribe(listener)

    def subscribe_stock(self, item_id: str, listener: StockListener) -> Subscription:
        return self.broadcast.subscribe(item_id, listener)

    def checkout(self, payment_method: str) -> dict[str, Any] | None:
        """Place the order, then drop every local trace of the old cart."""
        if self.orders_client is None:
            raise RuntimeError("orders client not configured")
        current = self.gate.require()
        if self.mutations.in_flight():
            raise ClientValidationError(
                [ValidationIssue(field="cart", reason="cart changes are still being saved")]
            )
        order = self.orders_client.create_order_from_cart(current.id, payment_method)
        self.cache.clear(current.id)
        self.store.reset(current.id, enabled=self.store.read().enabled)
        self.sync.sync_for_identity(current)
        self._log(current, "checkout", "ordered")
        return order

    def list_user_carts(self) -> list[CartSummary]:
        current = self._require_administrator("only administrators can list carts")
        carts = self.cart_client.list_carts()
        self._log(current, "list_carts", f"{len(carts)}_carts")
        return carts

    def set_user_cart_enabled(self, identity_id: str, enabled: bool) -> RemoteCart:
        current = self._require_administrator("only administrators can change cart status")
        if enabled:
            result = self.cart_client.enable_cart(identity_id)
        else:
            result = self.cart_client.disable_cart(identity_id)
        self._log(current, "enable_cart" if enabled else "disable_cart", "done")
        return result

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def _require_administrator(self, reason: str) -> Identity:
        current = self.identity.current
        if current is None or not current.is_administrator:
            raise ClientValidationError([ValidationIssue(field="role", reason=reason)])
        return current

    def _on_identity_change(self, previous: Identity | None, current: Identity | None) -> None:
        if current is None:
            self.store.reset(None)
            return
        self.sync.paint_from_cache(current)

    def _log(self, identity: Identity, action: str, outcome: str) -> None:
        log_action(
            logger,
            module="cart_session",
            action=action,
            identity_id=identity.id,
            role=identity.role.value,
            outcome=outcome,
        )
