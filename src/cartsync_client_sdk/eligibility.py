from __future__ import annotations

from .cart_store import CartStateStore
from .exceptions import ClientValidationError, ValidationIssue
from .identity import IdentityContext
from .models import Identity, Role

_NO_IDENTITY = ValidationIssue(field="identity", reason="no active identity")


def is_cart_enabled(role: Role | None, remote_flag: bool | None) -> bool:
    """Administrators never get a cart; shoppers need an explicit ``True`` from the server."""
    if role is None or role is Role.ADMINISTRATOR:
        return False
    return remote_flag is True


class CartEligibilityGate:
    def __init__(self, identity: IdentityContext, store: CartStateStore) -> None:
        self._identity = identity
        self._store = store

    def is_enabled(self) -> bool:
        return self.check() is None

    def check(self) -> ValidationIssue | None:
        current = self._identity.current
        if current is None:
            return _NO_IDENTITY
        return self._issue_for(current)

    def require(self) -> Identity:
        """Return the identity allowed to use the cart, or raise why none is."""
        current = self._identity.current
        if current is None:
            raise ClientValidationError([_NO_IDENTITY])
        issue = self._issue_for(current)
        if issue is not None:
            raise ClientValidationError([issue])
        return current

    def _issue_for(self, current: Identity) -> ValidationIssue | None:
        if current.role is Role.ADMINISTRATOR:
            return ValidationIssue(field="role", reason="administrators cannot use a cart")
        snapshot = self._store.read()
        if snapshot.identity_id != current.id:
            return ValidationIssue(field="identity", reason="cart not loaded for the active identity")
        if snapshot.enabled is None:
            return ValidationIssue(field="enabled", reason="cart status not confirmed yet")
        if not is_cart_enabled(current.role, snapshot.enabled):
            return ValidationIssue(field="enabled", reason="cart disabled for this user")
        return None
