"""Turn whatever the cart service sent into one canonical shape.

The cart endpoints have shipped several envelopes over time (bare arrays,
``{"data": [...]}``, ``{"items": [...]}``, ``{"success": true, "data": {...}}``
wrappers around a single cart) and mix camelCase, PascalCase and snake_case
keys. Everything here is pure so it can be tested against literal fixtures.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping

from .exceptions import ValidationError
from .models import CartLine, CartSummary, CatalogItem, MutationReceipt, RemoteCart

_LINE_LIST_KEYS = ("items", "CartDetails", "cartDetails", "lines", "$values")
_ENABLED_KEYS = ("enabled", "Enabled", "isEnabled", "cartEnabled")
_MISSING = object()


class EnvelopeKind(str, Enum):
    ARRAY = "array"
    DATA = "data"
    ITEMS = "items"
    SINGLE = "single"
    EMPTY = "empty"


def classify_cart_envelope(payload: Any) -> EnvelopeKind:
    if isinstance(payload, list):
        return EnvelopeKind.ARRAY
    if not isinstance(payload, Mapping) or not payload:
        return EnvelopeKind.EMPTY
    if "data" in payload and isinstance(payload["data"], (list, Mapping)):
        return EnvelopeKind.DATA
    if any(isinstance(payload.get(key), list) for key in _LINE_LIST_KEYS):
        return EnvelopeKind.ITEMS
    return EnvelopeKind.SINGLE


def normalize_cart_payload(payload: Any) -> RemoteCart:
    """Parse any known cart envelope.

    A response that never mentions the flag means the cart was never
    disabled. A flag that is present but unreadable stays ``None``.
    """
    flag, lines = _parse_cart(payload)
    return RemoteCart(enabled=True if flag is _MISSING else flag, lines=lines)


def normalize_cart_summaries(payload: Any) -> list[CartSummary]:
    """Parse the administrator's list of every cart; rows without an owner are skipped."""
    rows: Any = payload
    if isinstance(payload, Mapping):
        rows = next((payload[key] for key in ("data", "$values", "carts") if isinstance(payload.get(key), list)), [])
    if not isinstance(rows, list):
        return []
    summaries: list[CartSummary] = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        owner = _first(row, ("UserEmail", "userEmail", "email", "identity_id"))
        if owner is None:
            continue
        cart_id = _first(row, ("IdCart", "idCart", "id"))
        total = _to_decimal(_first(row, ("TotalPrice", "totalPrice", "total")))
        flag, lines = _parse_cart(row)
        summaries.append(
            CartSummary(
                identity_id=str(owner),
                cart_id=str(cart_id) if cart_id is not None else None,
                total_price=max(Decimal("0"), total if total is not None else Decimal("0")),
                enabled=True if flag is _MISSING else flag,
                lines=lines,
            )
        )
    return summaries


def _parse_cart(payload: Any) -> tuple[Any, list[CartLine]]:
    kind = classify_cart_envelope(payload)
    if kind is EnvelopeKind.EMPTY:
        return _MISSING, []
    if kind is EnvelopeKind.ARRAY:
        return _MISSING, _normalize_lines(payload)
    if kind is EnvelopeKind.DATA:
        inner_flag, lines = _parse_cart(payload["data"])
        return (inner_flag if inner_flag is not _MISSING else _first_flag(payload)), lines
    if kind is EnvelopeKind.ITEMS:
        rows: list[Any] = next(payload[key] for key in _LINE_LIST_KEYS if isinstance(payload.get(key), list))
        return _first_flag(payload), _normalize_lines(rows)
    # A single cart object with no line list is either one wrapped line or an
    # empty cart header ({"IdCart": 3, "enabled": true}).
    if _looks_like_line(payload):
        return _first_flag(payload), _normalize_lines([payload])
    return _first_flag(payload), []


def normalize_cart_line(raw: Mapping[str, Any]) -> CartLine:
    details = _first_mapping(raw, ("recordDetails", "RecordDetails", "record", "Record", "item"))
    item_id = _first(raw, ("recordId", "RecordId", "record_id", "itemId", "item_id", "IdRecord", "idRecord"))
    if item_id is None:
        item_id = _first(details, ("_id", "id", "IdRecord", "idRecord"))
    if item_id is None:
        raise ValueError("cart line has no item identifier")
    quantity = _to_int(_first(raw, ("amount", "Amount", "quantity", "Quantity", "qty")))
    price = _to_decimal(_first(raw, ("price", "Price", "unitPrice", "unit_price")))
    if price is None:
        price = _to_decimal(_first(details, ("price", "Price")))
    title = _first(details, ("title", "TitleRecord", "titleRecord")) or _first(
        raw, ("title", "Title", "titleRecord", "TitleRecord", "RecordTitle")
    )
    image = _first(details, ("image", "ImageRecord", "imageRecord")) or _first(
        raw, ("image", "Image", "imageRecord", "ImageRecord")
    )
    stock = _to_int(_first(details, ("stock", "Stock")))
    if stock is None:
        stock = _to_int(_first(raw, ("stock", "Stock")))
    return CartLine(
        item_id=str(item_id),
        quantity=max(0, quantity if quantity is not None else 1),
        unit_price=max(Decimal("0"), price if price is not None else Decimal("0")),
        title=str(title or ""),
        image_ref=str(image) if image else None,
        cached_stock=max(0, stock) if stock is not None else None,
    )


def normalize_enabled_flag(value: Any) -> bool | None:
    """Return the flag only when the server said something unambiguous."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False
    return None


def normalize_mutation_receipt(payload: Any) -> MutationReceipt:
    if payload is None:
        return MutationReceipt()
    if not isinstance(payload, Mapping):
        raise ValidationError(
            code="INVALID_RESPONSE",
            message="Expected cart mutation response to be a JSON object",
            details=payload,
            trace_id=None,
            status_code=200,
            raw_payload=payload,
        )
    if payload.get("success") is False:
        raise ValidationError(
            code=str(payload.get("code") or "MUTATION_REJECTED"),
            message=str(payload.get("message") or "Cart mutation rejected"),
            details=payload.get("data"),
            trace_id=None,
            status_code=200,
            raw_payload=dict(payload),
        )
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else {}
    record = _first_mapping(data, ("record", "Record")) or _first_mapping(payload, ("record", "Record"))
    new_stock = _to_int(_first(payload, ("newStock", "new_stock")))
    for source, keys in ((data, ("newStock", "new_stock")), (record, ("stock", "Stock")), (data, ("stock",)), (payload, ("stock",))):
        if new_stock is not None:
            break
        new_stock = _to_int(_first(source, keys))
    quantity = _to_int(_first(data, ("amount", "Amount", "quantity", "qty")))
    if quantity is None:
        quantity = _to_int(_first(payload, ("amount", "Amount", "quantity", "qty")))
    message = payload.get("message")
    return MutationReceipt(
        new_stock=max(0, new_stock) if new_stock is not None else None,
        quantity=max(0, quantity) if quantity is not None else None,
        message=str(message) if message else None,
    )


def stock_from_error_details(details: Any) -> int | None:
    if not isinstance(details, Mapping):
        return None
    record = _first_mapping(details, ("record", "Record"))
    for source, keys in ((details, ("newStock", "new_stock", "stock", "available")), (record, ("stock",))):
        value = _to_int(_first(source, keys))
        if value is not None:
            return max(0, value)
    return None


def normalize_catalog_item(payload: Any) -> CatalogItem:
    raw = payload
    if isinstance(raw, Mapping) and isinstance(raw.get("data"), Mapping):
        raw = raw["data"]
    if not isinstance(raw, Mapping):
        raise ValueError("Expected catalog item to be a JSON object")
    item_id = _first(raw, ("IdRecord", "idRecord", "_id", "id", "recordId"))
    if item_id is None:
        raise ValueError("catalog item has no identifier")
    price = _to_decimal(_first(raw, ("Price", "price")))
    stock = _to_int(_first(raw, ("stock", "Stock")))
    if stock is None:
        stock = _to_int(_first(_first_mapping(raw, ("data",)), ("stock",)))
    image = _first(raw, ("ImageRecord", "imageRecord", "image"))
    return CatalogItem(
        item_id=str(item_id),
        title=str(_first(raw, ("TitleRecord", "title", "titleRecord")) or ""),
        image_ref=str(image) if image else None,
        unit_price=max(Decimal("0"), price if price is not None else Decimal("0")),
        stock=max(0, stock or 0),
    )


def _normalize_lines(rows: Iterable[Any]) -> list[CartLine]:
    return [normalize_cart_line(row) for row in rows if isinstance(row, Mapping)]


def _looks_like_line(payload: Mapping[str, Any]) -> bool:
    return any(key in payload for key in ("recordId", "RecordId", "record_id", "itemId", "item_id", "IdRecord"))


def _first_flag(payload: Mapping[str, Any]) -> Any:
    for key in _ENABLED_KEYS:
        if key in payload:
            return normalize_enabled_flag(payload[key])
    return _MISSING


def _first(source: Mapping[str, Any] | None, keys: Iterable[str]) -> Any:
    if not source:
        return None
    for key in keys:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return None


def _first_mapping(source: Mapping[str, Any] | None, keys: Iterable[str]) -> Mapping[str, Any]:
    if not source:
        return {}
    for key in keys:
        value = source.get(key)
        if isinstance(value, Mapping):
            return value
    return {}


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        if value is None or value == "":
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None
