from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from .cart_store import CartStateStore
from .eligibility import CartEligibilityGate
from .exceptions import (
    ApiError,
    ClientValidationError,
    ConflictError,
    MutationInProgressError,
    ValidationIssue,
)
from .identity import IdentityContext
from .logging_utils import get_logger, log_action
from .models import CartLine, CatalogItem, MutationReceipt
from .normalizers import stock_from_error_details
from .stock_broadcast import StockBroadcast

Dispatcher = Callable[[Callable[[], None]], None]

logger = get_logger(__name__)


def inline_dispatcher(work: Callable[[], None]) -> None:
    work()


def thread_dispatcher(work: Callable[[], None]) -> None:
    threading.Thread(target=work, daemon=True).start()


class RemoteCartWriter(Protocol):
    def add_line(self, identity_id: str, item_id: str, qty: int = 1) -> MutationReceipt: ...

    def remove_line(self, identity_id: str, item_id: str, qty: int = 1) -> MutationReceipt: ...


class CatalogReader(Protocol):
    def get_item(self, item_id: str) -> CatalogItem: ...


class MutationState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"


_FINAL_STATES = {MutationState.CONFIRMED, MutationState.ROLLED_BACK, MutationState.REJECTED}


@dataclass
class MutationTicket:
    item_id: str
    delta: int
    identity_id: str | None
    generation: int
    state: MutationState = MutationState.IDLE
    error: Exception | None = None
    conflict: ConflictError | None = None
    receipt: MutationReceipt | None = None
    dropped: bool = False
    started_at: float = field(default_factory=time.monotonic)
    prior_line: CartLine | None = field(default=None, repr=False)
    prior_position: int | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.state in _FINAL_STATES

    @property
    def ok(self) -> bool:
        return self.state is MutationState.CONFIRMED

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


class OptimisticMutationController:
    """Add/remove one unit at a time, optimistically.

    Each (identity, item) pair runs ``IDLE -> PENDING -> CONFIRMED |
    ROLLED_BACK``; requests refused before anything changes end in
    ``REJECTED``. Only one ticket per pair may be pending. The remote call
    runs on ``dispatcher``; its outcome is folded back into the store only
    if the identity session that issued it is still the active one.
    Failed calls are never retried here.
    """

    def __init__(
        self,
        identity: IdentityContext,
        store: CartStateStore,
        gate: CartEligibilityGate,
        broadcast: StockBroadcast,
        cart_client: RemoteCartWriter,
        catalog_client: CatalogReader | None = None,
        dispatcher: Dispatcher | None = None,
        on_complete: Callable[[MutationTicket], None] | None = None,
    ) -> None:
        self._identity = identity
        self._store = store
        self._gate = gate
        self._broadcast = broadcast
        self._cart_client = cart_client
        self._catalog_client = catalog_client
        self._dispatch = dispatcher or thread_dispatcher
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._pending: dict[tuple[str | None, str], MutationTicket] = {}

    def add_one(self, item_id: str, item: CatalogItem | None = None) -> MutationTicket:
        return self._begin(str(item_id), +1, item)

    def remove_one(self, item_id: str) -> MutationTicket:
        return self._begin(str(item_id), -1, None)

    def in_flight(self) -> frozenset[str]:
        current = self._identity.current
        identity_id = current.id if current else None
        with self._lock:
            return frozenset(item for owner, item in self._pending if owner == identity_id)

    def is_pending(self, item_id: str) -> bool:
        return str(item_id) in self.in_flight()

    def pending_tickets(self) -> list[MutationTicket]:
        with self._lock:
            return list(self._pending.values())

    def _begin(self, item_id: str, delta: int, item: CatalogItem | None) -> MutationTicket:
        current = self._identity.current
        ticket = MutationTicket(
            item_id=item_id,
            delta=delta,
            identity_id=current.id if current else None,
            generation=self._identity.generation,
        )
        issue = self._gate.check()
        if issue is not None:
            return self._reject(ticket, ClientValidationError([issue]))
        key = (ticket.identity_id, item_id)
        with self._lock:
            if key in self._pending:
                return self._reject(ticket, MutationInProgressError(item_id))

        known_line = self._store.read().line(item_id)
        needs_item = known_line is None or self._known_stock(item_id, known_line) is None
        if delta > 0 and item is None and needs_item:
            if self._catalog_client is not None:
                try:
                    item = self._catalog_client.get_item(item_id)
                except (ApiError, ValueError) as exc:
                    if known_line is None:
                        return self._reject(ticket, exc)
                    logger.warning("catalog lookup for %s failed; server will arbitrate stock", item_id)
            elif known_line is None:
                return self._reject(
                    ticket,
                    ClientValidationError([ValidationIssue(field="item", reason="item details unavailable")]),
                )

        with self._lock:
            if key in self._pending:
                return self._reject(ticket, MutationInProgressError(item_id))
            snapshot = self._store.read()
            line = snapshot.line(item_id)
            if delta > 0:
                issue = self._stock_issue(item_id, line, item)
                if issue is not None:
                    return self._reject(ticket, ClientValidationError([issue]))
            elif line is None:
                ticket.state = MutationState.CONFIRMED
                self._log(ticket, "noop")
                return ticket
            ticket.prior_line = line
            ticket.prior_position = list(snapshot.lines).index(item_id) if line is not None else None
            ticket.state = MutationState.PENDING
            self._pending[key] = ticket

        if item is not None:
            latest = self._broadcast.latest(item_id)
            if latest is not None:
                item = item.model_copy(update={"stock": latest})
        self._store.apply_delta(item_id, delta, item=item, pending=True, identity_id=ticket.identity_id)
        self._log(ticket, "pending")
        self._dispatch(lambda: self._execute(ticket))
        return ticket

    def _known_stock(self, item_id: str, line: CartLine | None) -> int | None:
        if line is not None and line.cached_stock is not None:
            return line.cached_stock
        return self._broadcast.latest(item_id)

    def _stock_issue(self, item_id: str, line: CartLine | None, item: CatalogItem | None) -> ValidationIssue | None:
        quantity = line.quantity if line is not None else 0
        stock = self._known_stock(item_id, line)
        if stock is None and item is not None:
            stock = item.stock
        # No figure from anywhere: the server arbitrates and a conflict rolls back.
        if stock is not None and stock <= quantity:
            return ValidationIssue(field="stock", reason=f"only {stock} in stock for {item_id}")
        return None

    def _execute(self, ticket: MutationTicket) -> None:
        call = self._cart_client.add_line if ticket.delta > 0 else self._cart_client.remove_line
        try:
            receipt = call(ticket.identity_id or "", ticket.item_id, 1)
        except Exception as exc:
            self._fail(ticket, exc)
            return
        self._confirm(ticket, receipt)

    def _confirm(self, ticket: MutationTicket, receipt: MutationReceipt) -> None:
        ticket.receipt = receipt
        if self._is_live(ticket):
            item_id = ticket.item_id
            expected = max(0, (ticket.prior_line.quantity if ticket.prior_line else 0) + ticket.delta)
            if receipt.quantity is not None and receipt.quantity != expected:
                ticket.conflict = ConflictError(
                    code="QUANTITY_MISMATCH",
                    message=f"server holds {receipt.quantity} of {item_id}, expected {expected}",
                    details={"expected": expected, "actual": receipt.quantity},
                    trace_id=None,
                    status_code=200,
                )
                self._adopt_quantity(ticket, receipt.quantity)
            owner = ticket.identity_id
            self._store.set_pending(item_id, False, identity_id=owner)
            if receipt.new_stock is not None:
                self._store.set_stock(item_id, receipt.new_stock, identity_id=owner)
        else:
            ticket.dropped = True
        if receipt.new_stock is not None:
            self._broadcast.publish(ticket.item_id, receipt.new_stock)
        ticket.state = MutationState.CONFIRMED
        self._finish(ticket, "conflict_resolved" if ticket.conflict else "confirmed")

    def _fail(self, ticket: MutationTicket, exc: Exception) -> None:
        ticket.error = exc
        server_stock = stock_from_error_details(exc.details) if isinstance(exc, ConflictError) else None
        if self._is_live(ticket):
            restored = ticket.prior_line
            current_line = self._store.read().line(ticket.item_id)
            if restored is not None and current_line is not None:
                restored = restored.model_copy(update={"cached_stock": current_line.cached_stock})
            owner = ticket.identity_id
            self._store.restore_line(ticket.item_id, restored, ticket.prior_position, identity_id=owner)
            if server_stock is not None:
                self._store.set_stock(ticket.item_id, server_stock, identity_id=owner)
        else:
            ticket.dropped = True
        if server_stock is not None:
            self._broadcast.publish(ticket.item_id, server_stock)
        ticket.state = MutationState.ROLLED_BACK
        self._finish(ticket, "rolled_back", getattr(exc, "trace_id", None))

    def _adopt_quantity(self, ticket: MutationTicket, quantity: int) -> None:
        current_line = self._store.read().line(ticket.item_id)
        if current_line is not None:
            self._store.set_quantity(ticket.item_id, quantity, identity_id=ticket.identity_id)
        elif quantity > 0 and ticket.prior_line is not None:
            self._store.restore_line(
                ticket.item_id,
                ticket.prior_line.model_copy(update={"quantity": quantity}),
                ticket.prior_position,
                identity_id=ticket.identity_id,
            )

    def _is_live(self, ticket: MutationTicket) -> bool:
        return self._identity.is_current(ticket.identity_id, ticket.generation)

    def _reject(self, ticket: MutationTicket, error: Exception) -> MutationTicket:
        ticket.state = MutationState.REJECTED
        ticket.error = error
        self._log(ticket, "rejected")
        return ticket

    def _finish(self, ticket: MutationTicket, outcome: str, trace_id: str | None = None) -> None:
        with self._lock:
            key = (ticket.identity_id, ticket.item_id)
            if self._pending.get(key) is ticket:
                del self._pending[key]
        self._log(ticket, outcome, trace_id)
        if self._on_complete is not None:
            try:
                self._on_complete(ticket)
            except Exception:
                logger.exception("mutation completion callback failed")

    def _log(self, ticket: MutationTicket, outcome: str, trace_id: str | None = None) -> None:
        role = self._identity.role
        log_action(
            logger,
            module="cart_mutations",
            action="add_one" if ticket.delta > 0 else "remove_one",
            identity_id=ticket.identity_id,
            role=role.value if role else None,
            outcome=outcome,
            item_id=ticket.item_id,
            trace_id=trace_id,
        )
