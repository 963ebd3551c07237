from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ApiError(Exception):
    code: str
    message: str
    details: object | None
    trace_id: str | None
    status_code: int
    raw_payload: object | None = None

    def __str__(self) -> str:
        trace = f" trace_id={self.trace_id}" if self.trace_id else ""
        return f"[{self.status_code}] {self.code}: {self.message}{trace}"


class AuthError(ApiError):
    """Authentication failed or the bearer credential is no longer valid."""


class PermissionDeniedError(ApiError):
    """The identity is not allowed to touch this cart."""


class NotFoundError(ApiError):
    """404. For carts this means "no cart yet", not a failure."""


class ValidationError(ApiError):
    """400/422 or an explicit ``success: false`` envelope."""


class ConflictError(ApiError):
    """Server state disagrees with the optimistic assumption (409, stock races)."""


class TransientRemoteError(ApiError):
    """Failures the caller may retry: network, throttling, 5xx."""


class RateLimitError(TransientRemoteError):
    pass


class ServerError(TransientRemoteError):
    pass


class TransportError(TransientRemoteError):
    """Network/transport failure before an HTTP response was returned."""


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    reason: str


class ClientValidationError(ValueError):
    """A cart mutation was refused locally; nothing was sent and nothing changed."""

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = issues
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.issues:
            return "Validation failed"
        issue = self.issues[0]
        return f"{issue.field}: {issue.reason}"


class MutationInProgressError(ClientValidationError):
    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__([ValidationIssue(field="item_id", reason=f"mutation in progress for {item_id}")])
