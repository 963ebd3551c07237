from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .base import BaseClient, encode_segment


@dataclass
class OrdersClient(BaseClient):
    def create_order_from_cart(self, identity_id: str, payment_method: str) -> dict[str, Any] | None:
        if not payment_method.strip():
            raise ValueError("payment_method must not be empty")
        payload = self._request(
            "POST",
            f"orders/create/{encode_segment(identity_id)}",
            json_body={"paymentMethod": payment_method},
            module="orders",
            operation="create_order_from_cart",
        )
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            return payload["data"]
        return payload if isinstance(payload, dict) else None
