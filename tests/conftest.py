from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
SDK_SRC = BASE_DIR / "src"

sys.path.insert(0, str(SDK_SRC))

from cartsync_client_sdk.exceptions import (  # noqa: E402
    ApiError,
    ConflictError,
    NotFoundError,
    ServerError,
    ValidationError,
)
from cartsync_client_sdk.models import (  # noqa: E402
    CartLine,
    CartSummary,
    CatalogItem,
    MutationReceipt,
    RemoteCart,
)


class FakeCartServer:
    """In-process stand-in for the remote cart and catalog services."""

    def __init__(self) -> None:
        self.stock: dict[str, int] = {}
        self.prices: dict[str, Decimal] = {}
        self.carts: dict[str, dict[str, int]] = {}
        self.enabled: dict[str, bool | None] = {}
        self.get_errors: dict[str, Exception] = {}
        self.mutation_errors: list[Exception] = []
        self.quantity_overrides: dict[str, int] = {}
        # Cart reads carry only id, quantity and price, like the bare line list.
        self.bare_lines = False
        self.calls: list[tuple[str, ...]] = []

    def add_item(self, item_id: str, stock: int, price: str = "10") -> None:
        self.stock[item_id] = stock
        self.prices[item_id] = Decimal(price)

    def get_cart(self, identity_id: str) -> RemoteCart:
        self.calls.append(("get_cart", identity_id))
        if identity_id in self.get_errors:
            raise self.get_errors[identity_id]
        if identity_id not in self.carts:
            raise NotFoundError(
                code="NOT_FOUND",
                message="cart not found",
                details=None,
                trace_id=None,
                status_code=404,
            )
        lines = [
            CartLine(
                item_id=item_id,
                quantity=quantity,
                unit_price=self.prices.get(item_id, Decimal("0")),
                title="" if self.bare_lines else f"Record {item_id}",
                cached_stock=None if self.bare_lines else self.stock.get(item_id, 0),
            )
            for item_id, quantity in self.carts[identity_id].items()
        ]
        return RemoteCart(enabled=self.enabled.get(identity_id, True), lines=lines)

    def list_carts(self) -> list[CartSummary]:
        self.calls.append(("list_carts",))
        return [
            CartSummary(identity_id=identity_id, enabled=self.enabled.get(identity_id, True))
            for identity_id in self.carts
        ]

    def get_item(self, item_id: str) -> CatalogItem:
        self.calls.append(("get_item", item_id))
        if item_id not in self.stock:
            raise NotFoundError(
                code="NOT_FOUND",
                message="record not found",
                details=None,
                trace_id=None,
                status_code=404,
            )
        return CatalogItem(
            item_id=item_id,
            title=f"Record {item_id}",
            unit_price=self.prices[item_id],
            stock=self.stock[item_id],
        )

    def add_line(self, identity_id: str, item_id: str, qty: int = 1) -> MutationReceipt:
        self.calls.append(("add_line", identity_id, item_id))
        if self.mutation_errors:
            raise self.mutation_errors.pop(0)
        available = self.stock.get(item_id, 0)
        if available < qty:
            raise ConflictError(
                code="OUT_OF_STOCK",
                message="not enough stock",
                details={"newStock": available},
                trace_id=None,
                status_code=409,
            )
        self.stock[item_id] = available - qty
        cart = self.carts.setdefault(identity_id, {})
        cart[item_id] = cart.get(item_id, 0) + qty
        return self._receipt(identity_id, item_id)

    def remove_line(self, identity_id: str, item_id: str, qty: int = 1) -> MutationReceipt:
        self.calls.append(("remove_line", identity_id, item_id))
        if self.mutation_errors:
            raise self.mutation_errors.pop(0)
        cart = self.carts.setdefault(identity_id, {})
        if cart.get(item_id, 0) < qty:
            raise ValidationError(
                code="NOT_IN_CART",
                message="item not in cart",
                details=None,
                trace_id=None,
                status_code=400,
            )
        cart[item_id] -= qty
        if cart[item_id] == 0:
            del cart[item_id]
        self.stock[item_id] = self.stock.get(item_id, 0) + qty
        return self._receipt(identity_id, item_id)

    def disable_cart(self, identity_id: str) -> RemoteCart:
        self.calls.append(("disable_cart", identity_id))
        self.enabled[identity_id] = False
        return RemoteCart(enabled=False, lines=[])

    def enable_cart(self, identity_id: str) -> RemoteCart:
        self.calls.append(("enable_cart", identity_id))
        self.enabled[identity_id] = True
        return RemoteCart(enabled=True, lines=[])

    def create_order_from_cart(self, identity_id: str, payment_method: str) -> dict[str, object]:
        self.calls.append(("create_order", identity_id, payment_method))
        self.carts.pop(identity_id, None)
        return {"order_id": "order-1", "paymentMethod": payment_method}

    def remote_calls(self, name: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] == name]

    def _receipt(self, identity_id: str, item_id: str) -> MutationReceipt:
        quantity = self.quantity_overrides.pop(item_id, self.carts[identity_id].get(item_id, 0))
        return MutationReceipt(new_stock=self.stock[item_id], quantity=quantity)


class DeferredDispatcher:
    """Collects remote work so a test decides when each call resolves."""

    def __init__(self) -> None:
        self.queue: list[Callable[[], None]] = []

    def __call__(self, work: Callable[[], None]) -> None:
        self.queue.append(work)

    def run_next(self) -> None:
        self.queue.pop(0)()

    def run_all(self) -> None:
        while self.queue:
            self.run_next()


def transient_error() -> ApiError:
    return ServerError(
        code="UNAVAILABLE",
        message="service down",
        details=None,
        trace_id="trace-503",
        status_code=503,
    )


@pytest.fixture
def server() -> FakeCartServer:
    return FakeCartServer()


@pytest.fixture
def deferred() -> DeferredDispatcher:
    return DeferredDispatcher()


@pytest.fixture
def make_transient_error() -> Callable[[], ApiError]:
    return transient_error
