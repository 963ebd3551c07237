from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class Role(str, Enum):
    SHOPPER = "Shopper"
    ADMINISTRATOR = "Administrator"

    @classmethod
    def parse(cls, value: str | Role | None) -> Role:
        if isinstance(value, Role):
            return value
        normalized = (value or "").strip().lower()
        if normalized in {"admin", "administrator"}:
            return cls.ADMINISTRATOR
        return cls.SHOPPER


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    role: Role = Role.SHOPPER

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: object) -> Role:
        return Role.parse(value if isinstance(value, (str, Role)) else None)

    @property
    def is_administrator(self) -> bool:
        return self.role is Role.ADMINISTRATOR


class CatalogItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    title: str = ""
    image_ref: str | None = None
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    stock: int = Field(default=0, ge=0)


class CartLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    quantity: int = Field(default=0, ge=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    title: str = ""
    image_ref: str | None = None
    # None until the server, catalog or a stock event reports a figure
    cached_stock: int | None = Field(default=None, ge=0)
    pending: bool = False

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_catalog(cls, item: CatalogItem, quantity: int = 0) -> CartLine:
        return cls(
            item_id=item.item_id,
            quantity=quantity,
            unit_price=item.unit_price,
            title=item.title,
            image_ref=item.image_ref,
            cached_stock=item.stock,
        )


class CartSnapshot(BaseModel):
    """Full cart of one identity at a point in time.

    Totals are derived from ``lines`` on every access; zero-quantity lines
    never make it into a snapshot.
    """

    model_config = ConfigDict(frozen=True)

    identity_id: str | None = None
    lines: dict[str, CartLine] = Field(default_factory=dict)
    enabled: bool | None = None

    @field_validator("lines", mode="after")
    @classmethod
    def _drop_empty_lines(cls, lines: dict[str, CartLine]) -> dict[str, CartLine]:
        return {item_id: line for item_id, line in lines.items() if line.quantity > 0}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines.values())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_price(self) -> Decimal:
        return sum((line.subtotal for line in self.lines.values()), Decimal("0"))

    def line(self, item_id: str) -> CartLine | None:
        return self.lines.get(item_id)

    def quantity_of(self, item_id: str) -> int:
        line = self.lines.get(item_id)
        return line.quantity if line else 0

    @classmethod
    def empty(cls, identity_id: str | None = None, enabled: bool | None = None) -> CartSnapshot:
        return cls(identity_id=identity_id, lines={}, enabled=enabled)

    @classmethod
    def from_lines(
        cls, identity_id: str | None, lines: list[CartLine], enabled: bool | None = None
    ) -> CartSnapshot:
        merged: dict[str, CartLine] = {}
        for line in lines:
            existing = merged.get(line.item_id)
            if existing is not None:
                line = line.model_copy(update={"quantity": existing.quantity + line.quantity})
            merged[line.item_id] = line
        return cls(identity_id=identity_id, lines=merged, enabled=enabled)


@dataclass(frozen=True)
class StockEvent:
    item_id: str
    new_stock: int


class RemoteCart(BaseModel):
    enabled: bool | None = None
    lines: list[CartLine] = Field(default_factory=list)


class MutationReceipt(BaseModel):
    new_stock: int | None = Field(default=None, ge=0)
    quantity: int | None = Field(default=None, ge=0)
    message: str | None = None


class CartSummary(BaseModel):
    """One row of the administrator's cart overview."""

    identity_id: str
    cart_id: str | None = None
    total_price: Decimal = Field(default=Decimal("0"), ge=0)
    enabled: bool | None = None
    lines: list[CartLine] = Field(default_factory=list)
