from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

import pytest

from cartsync_client_sdk.cart_store import CartStateStore
from cartsync_client_sdk.eligibility import CartEligibilityGate
from cartsync_client_sdk.exceptions import ClientValidationError, ConflictError, MutationInProgressError
from cartsync_client_sdk.identity import IdentityContext
from cartsync_client_sdk.local_cache import LocalCartCache, MemoryStorage
from cartsync_client_sdk.models import CartLine, CartSnapshot, Identity
from cartsync_client_sdk.mutations import (
    MutationState,
    MutationTicket,
    OptimisticMutationController,
    inline_dispatcher,
)
from cartsync_client_sdk.stock_broadcast import WILDCARD, StockBroadcast

ALICE = Identity(id="alice@example.com")
BOB = Identity(id="bob@example.com")
ROOT = Identity(id="root@example.com", role="admin")


@dataclass
class Harness:
    context: IdentityContext
    store: CartStateStore
    broadcast: StockBroadcast
    controller: OptimisticMutationController
    completed: list[MutationTicket] = field(default_factory=list)


def _harness(server, dispatcher=inline_dispatcher, identity=ALICE, enabled=True, catalog=True) -> Harness:
    context = IdentityContext(identity)
    store = CartStateStore(LocalCartCache(MemoryStorage()))
    store.reset(identity.id if identity else None, enabled=enabled)
    broadcast = StockBroadcast()
    broadcast.subscribe(WILDCARD, store.apply_stock_event)
    completed: list[MutationTicket] = []
    controller = OptimisticMutationController(
        context,
        store,
        CartEligibilityGate(context, store),
        broadcast,
        server,
        catalog_client=server if catalog else None,
        dispatcher=dispatcher,
        on_complete=completed.append,
    )
    return Harness(context, store, broadcast, controller, completed)


def _seed(harness: Harness, server, item_id: str, quantity: int, cached_stock: int | None) -> None:
    server.carts.setdefault(ALICE.id, {})[item_id] = quantity
    line = CartLine(
        item_id=item_id,
        quantity=quantity,
        unit_price=server.prices.get(item_id, Decimal("10")),
        cached_stock=cached_stock,
    )
    current = harness.store.read()
    lines = dict(current.lines)
    lines[item_id] = line
    harness.store.replace(CartSnapshot(identity_id=current.identity_id, lines=lines, enabled=current.enabled))


def test_add_one_new_item_confirms_and_publishes_stock(server) -> None:
    server.add_item("A", stock=5, price="10")
    harness = _harness(server)
    stock_seen: list[int] = []
    harness.broadcast.subscribe("A", lambda event: stock_seen.append(event.new_stock))

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.CONFIRMED
    assert ticket.ok
    line = harness.store.read().lines["A"]
    assert line.quantity == 1
    assert line.pending is False
    assert line.cached_stock == 4
    assert line.title == "Record A"
    assert stock_seen == [4]
    assert harness.completed == [ticket]
    assert harness.controller.in_flight() == frozenset()


@pytest.mark.parametrize(
    "ops",
    [
        "+++",
        "++-+-",
        "+--+",
        "-+++--+",
        "+------",
    ],
)
def test_final_quantity_is_net_adds_minus_removes(server, ops: str) -> None:
    server.add_item("A", stock=100)
    harness = _harness(server)
    expected = 0

    for op in ops:
        if op == "+":
            ticket = harness.controller.add_one("A")
            expected += 1
        else:
            ticket = harness.controller.remove_one("A")
            expected = max(0, expected - 1)
        assert ticket.state is MutationState.CONFIRMED

    assert harness.store.read().quantity_of("A") == expected
    assert server.carts[ALICE.id].get("A", 0) == expected


def test_failed_add_restores_previous_snapshot(server, make_transient_error) -> None:
    server.add_item("A", stock=10)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=1, cached_stock=10)
    before = harness.store.read()
    server.mutation_errors.append(make_transient_error())

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.ROLLED_BACK
    assert ticket.error is not None
    assert harness.store.read() == before


def test_failed_remove_restores_line_in_place(server, make_transient_error) -> None:
    server.add_item("A", stock=10)
    server.add_item("B", stock=10)
    server.add_item("C", stock=10)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=1, cached_stock=10)
    _seed(harness, server, "B", quantity=1, cached_stock=10)
    _seed(harness, server, "C", quantity=2, cached_stock=10)
    before = harness.store.read()
    server.mutation_errors.append(make_transient_error())

    ticket = harness.controller.remove_one("B")

    assert ticket.state is MutationState.ROLLED_BACK
    assert harness.store.read() == before
    assert list(harness.store.read().lines) == ["A", "B", "C"]


def test_failed_add_of_new_item_leaves_no_line(server, make_transient_error) -> None:
    server.add_item("A", stock=3)
    harness = _harness(server)
    before = harness.store.read()
    server.mutation_errors.append(make_transient_error())

    harness.controller.add_one("A")

    assert harness.store.read() == before


def test_rollback_is_not_retried(server, make_transient_error) -> None:
    server.add_item("A", stock=3)
    harness = _harness(server)
    server.mutation_errors.append(make_transient_error())

    harness.controller.add_one("A")

    assert len(server.remote_calls("add_line")) == 1


@pytest.mark.parametrize("enabled", [False, None])
def test_disabled_or_unconfirmed_cart_rejects_mutations(server, enabled) -> None:
    server.add_item("A", stock=3)
    harness = _harness(server, enabled=enabled)

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.REJECTED
    assert isinstance(ticket.error, ClientValidationError)
    assert server.calls == []
    assert harness.store.read().lines == {}


def test_administrator_mutations_are_rejected_without_remote_call(server) -> None:
    server.add_item("A", stock=3)
    harness = _harness(server, identity=ROOT)

    added = harness.controller.add_one("A")
    removed = harness.controller.remove_one("A")

    for ticket in (added, removed):
        assert ticket.state is MutationState.REJECTED
        assert isinstance(ticket.error, ClientValidationError)
    assert server.calls == []


def test_add_beyond_known_stock_is_rejected(server) -> None:
    server.add_item("A", stock=5)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=2, cached_stock=2)
    before = harness.store.read()

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.REJECTED
    assert ticket.error is not None
    assert "only 2 in stock" in str(ticket.error)
    assert harness.store.read() == before
    assert server.remote_calls("add_line") == []


def test_server_reported_zero_stock_blocks_further_adds(server) -> None:
    server.add_item("A", stock=1)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=1, cached_stock=3)

    ticket = harness.controller.add_one("A")

    assert ticket.receipt is not None
    assert ticket.receipt.new_stock == 0
    line = harness.store.read().lines["A"]
    assert line.cached_stock == 0
    assert line.quantity == 2

    blocked = harness.controller.add_one("A")
    assert blocked.state is MutationState.REJECTED
    assert len(server.remote_calls("add_line")) == 1

    server.stock["A"] = 5
    harness.broadcast.publish("A", 5)
    assert harness.controller.add_one("A").state is MutationState.CONFIRMED


def test_stock_conflict_adopts_server_value(server) -> None:
    server.add_item("A", stock=0)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=1, cached_stock=3)
    stock_seen: list[int] = []
    harness.broadcast.subscribe("A", lambda event: stock_seen.append(event.new_stock))

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.ROLLED_BACK
    assert isinstance(ticket.error, ConflictError)
    line = harness.store.read().lines["A"]
    assert line.quantity == 1
    assert line.cached_stock == 0
    assert line.pending is False
    assert stock_seen == [0]
    assert harness.controller.add_one("A").state is MutationState.REJECTED


def test_server_quantity_wins_on_mismatch(server) -> None:
    server.add_item("A", stock=10)
    server.quantity_overrides["A"] = 4
    harness = _harness(server)

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.CONFIRMED
    assert ticket.conflict is not None
    assert ticket.conflict.code == "QUANTITY_MISMATCH"
    assert harness.store.read().quantity_of("A") == 4


def test_back_to_back_add_reports_mutation_in_progress(server, deferred) -> None:
    server.add_item("X", stock=5)
    harness = _harness(server, dispatcher=deferred)

    first = harness.controller.add_one("X")
    second = harness.controller.add_one("X")

    assert first.state is MutationState.PENDING
    assert second.state is MutationState.REJECTED
    assert isinstance(second.error, MutationInProgressError)
    assert harness.store.read().lines["X"].pending is True
    assert harness.controller.is_pending("X")

    deferred.run_all()

    assert first.state is MutationState.CONFIRMED
    assert harness.store.read().quantity_of("X") == 1
    assert harness.store.read().lines["X"].pending is False
    assert len(server.remote_calls("add_line")) == 1


def test_remove_while_add_pending_is_rejected(server, deferred) -> None:
    server.add_item("X", stock=5)
    harness = _harness(server, dispatcher=deferred)

    harness.controller.add_one("X")
    second = harness.controller.remove_one("X")

    assert isinstance(second.error, MutationInProgressError)
    deferred.run_all()
    assert harness.store.read().quantity_of("X") == 1


def test_different_items_can_be_in_flight_together(server, deferred) -> None:
    server.add_item("A", stock=5)
    server.add_item("B", stock=5)
    harness = _harness(server, dispatcher=deferred)

    harness.controller.add_one("A")
    harness.controller.add_one("B")

    assert harness.controller.in_flight() == frozenset({"A", "B"})
    deferred.run_next()
    assert harness.controller.in_flight() == frozenset({"B"})
    deferred.run_next()
    assert harness.store.read().total_items == 2


def test_hung_call_leaves_line_pending(server, deferred) -> None:
    server.add_item("A", stock=5)
    harness = _harness(server, dispatcher=deferred)

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.PENDING
    assert not ticket.done
    assert ticket.elapsed_seconds >= 0
    assert harness.store.read().lines["A"].pending is True
    assert harness.controller.pending_tickets() == [ticket]


def test_result_for_previous_identity_is_dropped(server, deferred) -> None:
    server.add_item("A", stock=5)
    harness = _harness(server, dispatcher=deferred)
    stock_seen: list[int] = []
    harness.broadcast.subscribe("A", lambda event: stock_seen.append(event.new_stock))

    ticket = harness.controller.add_one("A")
    harness.context.set_identity(BOB)
    harness.store.reset(BOB.id, enabled=True)
    deferred.run_all()

    assert ticket.state is MutationState.CONFIRMED
    assert ticket.dropped is True
    assert harness.store.read().identity_id == BOB.id
    assert harness.store.read().lines == {}
    assert stock_seen == [4]
    assert harness.controller.pending_tickets() == []


def test_failure_for_previous_identity_does_not_touch_new_cart(server, deferred, make_transient_error) -> None:
    server.add_item("A", stock=5)
    harness = _harness(server, dispatcher=deferred)
    harness.controller.add_one("A")
    harness.context.set_identity(BOB)
    harness.store.reset(BOB.id, enabled=True)
    harness.store.apply_delta("A", +3)
    server.mutation_errors.append(make_transient_error())

    deferred.run_all()

    assert harness.store.read().quantity_of("A") == 3


def test_remove_of_absent_item_is_noop(server) -> None:
    harness = _harness(server)

    ticket = harness.controller.remove_one("ghost")

    assert ticket.state is MutationState.CONFIRMED
    assert ticket.error is None
    assert server.calls == []


def test_add_of_unknown_item_without_catalog_is_rejected(server) -> None:
    harness = _harness(server, catalog=False)

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.REJECTED
    assert "item details unavailable" in str(ticket.error)


def test_catalog_lookup_failure_is_rejected(server) -> None:
    harness = _harness(server)

    ticket = harness.controller.add_one("missing")

    assert ticket.state is MutationState.REJECTED
    assert server.remote_calls("add_line") == []
    assert harness.store.read().lines == {}


def test_completion_callback_failure_is_contained(server) -> None:
    server.add_item("A", stock=5)
    context = IdentityContext(ALICE)
    store = CartStateStore()
    store.reset(ALICE.id, enabled=True)

    def broken(ticket: MutationTicket) -> None:
        raise RuntimeError("toast failed")

    controller = OptimisticMutationController(
        context,
        store,
        CartEligibilityGate(context, store),
        StockBroadcast(),
        server,
        catalog_client=server,
        dispatcher=inline_dispatcher,
        on_complete=broken,
    )

    assert controller.add_one("A").state is MutationState.CONFIRMED
    assert store.read().quantity_of("A") == 1


def test_line_with_unknown_stock_checks_catalog_before_adding(server) -> None:
    server.add_item("A", stock=50)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=2, cached_stock=None)

    ticket = harness.controller.add_one("A")

    assert ticket.state is MutationState.CONFIRMED
    assert server.remote_calls("get_item") == [("get_item", "A")]
    line = harness.store.read().lines["A"]
    assert line.quantity == 3
    assert line.cached_stock == 49


def test_line_with_unknown_stock_and_no_catalog_is_left_to_server(server) -> None:
    server.add_item("A", stock=0)
    harness = _harness(server, catalog=False)
    _seed(harness, server, "A", quantity=1, cached_stock=None)

    ticket = harness.controller.add_one("A")

    assert len(server.remote_calls("add_line")) == 1
    assert ticket.state is MutationState.ROLLED_BACK
    line = harness.store.read().lines["A"]
    assert line.quantity == 1
    assert line.cached_stock == 0


def test_known_stock_skips_catalog(server) -> None:
    server.add_item("A", stock=5)
    harness = _harness(server)
    _seed(harness, server, "A", quantity=1, cached_stock=5)

    harness.controller.add_one("A")

    assert server.remote_calls("get_item") == []


def _switch_to_bob_after_check(harness: Harness, bob_lines: dict[str, CartLine]):
    def switch(ticket: MutationTicket) -> bool:
        harness.context.set_identity(BOB)
        harness.store.replace(CartSnapshot(identity_id=BOB.id, lines=bob_lines, enabled=True))
        return True

    return switch


def test_confirmation_racing_identity_switch_keeps_new_cart(server, deferred, monkeypatch) -> None:
    server.add_item("A", stock=10)
    server.quantity_overrides["A"] = 7
    harness = _harness(server, dispatcher=deferred)
    _seed(harness, server, "A", quantity=1, cached_stock=10)
    ticket = harness.controller.add_one("A")
    bob_line = CartLine(item_id="A", quantity=1, cached_stock=10)
    monkeypatch.setattr(harness.controller, "_is_live", _switch_to_bob_after_check(harness, {"A": bob_line}))

    deferred.run_all()

    snapshot = harness.store.read()
    assert ticket.conflict is not None
    assert snapshot.identity_id == BOB.id
    assert snapshot.lines["A"].quantity == 1
    assert snapshot.lines["A"].pending is False


def test_rollback_racing_identity_switch_keeps_new_cart(server, deferred, monkeypatch, make_transient_error) -> None:
    server.add_item("A", stock=10)
    harness = _harness(server, dispatcher=deferred)
    _seed(harness, server, "A", quantity=1, cached_stock=10)
    ticket = harness.controller.add_one("A")
    server.mutation_errors.append(make_transient_error())
    monkeypatch.setattr(harness.controller, "_is_live", _switch_to_bob_after_check(harness, {}))

    deferred.run_all()

    assert ticket.state is MutationState.ROLLED_BACK
    assert harness.store.read().identity_id == BOB.id
    assert harness.store.read().lines == {}
