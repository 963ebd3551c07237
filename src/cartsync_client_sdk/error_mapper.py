from __future__ import annotations

from typing import Mapping

from .exceptions import (
    ApiError,
    AuthError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from .normalizers import stock_from_error_details

_STATUS_ERRORS: dict[int, type[ApiError]] = {
    400: ValidationError,
    401: AuthError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    429: RateLimitError,
}


def error_class_for(status_code: int) -> type[ApiError]:
    mapped = _STATUS_ERRORS.get(status_code)
    if mapped is not None:
        return mapped
    return ServerError if status_code >= 500 else ApiError


def map_error(status_code: int, payload: Mapping[str, object] | None, trace_id: str | None) -> ApiError:
    """Build the exception for a non-2xx cart service response.

    The cart service answers failed writes with ``{success, message, data}``
    rather than ``{code, message, details}``; ``data`` is used as details in
    that case. A rejected write whose details report the item's stock is a
    stock race and comes back as ``ConflictError`` even on a 400.
    """
    payload = payload or {}
    details = payload.get("details")
    if details is None and isinstance(payload.get("data"), (dict, list)):
        details = payload["data"]
    mapped = error_class_for(status_code)
    if mapped is ValidationError and stock_from_error_details(details) is not None:
        mapped = ConflictError
    payload_trace_id = payload.get("trace_id")
    return mapped(
        code=str(payload.get("code") or "HTTP_ERROR"),
        message=str(payload.get("message") or "Request failed"),
        details=details,
        trace_id=str(payload_trace_id) if payload_trace_id is not None else trace_id,
        status_code=status_code,
        raw_payload=dict(payload),
    )
