from __future__ import annotations

from dataclasses import dataclass

from .exceptions import (
    ApiError,
    AuthError,
    ClientValidationError,
    ConflictError,
    MutationInProgressError,
    NotFoundError,
    PermissionDeniedError,
    TransientRemoteError,
    ValidationError,
)


@dataclass(frozen=True)
class UserFacingError:
    message: str
    kind: str
    retryable: bool = False
    details: str | None = None
    trace_id: str | None = None

    @property
    def technical_details(self) -> str | None:
        if self.details:
            return self.details
        return None


def to_user_facing_error(exc: Exception) -> UserFacingError:
    if isinstance(exc, MutationInProgressError):
        return UserFacingError(message="Still working on this item, please wait.", kind="validation")
    if isinstance(exc, ClientValidationError):
        return UserFacingError(message=str(exc), kind="validation", details="CLIENT_VALIDATION")
    if not isinstance(exc, ApiError):
        return UserFacingError(message=str(exc) or "Unexpected cart error", kind="unknown")

    details = f"{exc.code} (HTTP {exc.status_code})"
    if exc.details:
        details = f"{details}: {exc.details}"
    primary = exc.message.strip() or "Request failed"
    if isinstance(exc, ConflictError):
        kind, retryable = "conflict", False
        primary = "Stock changed while you were shopping; your cart shows the latest figures."
    elif isinstance(exc, TransientRemoteError):
        kind, retryable = "transient", True
        primary = "Could not reach the cart service. Try again."
    elif isinstance(exc, NotFoundError):
        kind, retryable = "not_found", False
    elif isinstance(exc, (AuthError, PermissionDeniedError)):
        kind, retryable = "auth", False
    elif isinstance(exc, ValidationError):
        kind, retryable = "validation", False
    else:
        kind, retryable = "unknown", False
    return UserFacingError(
        message=primary,
        kind=kind,
        retryable=retryable,
        details=details,
        trace_id=exc.trace_id,
    )
