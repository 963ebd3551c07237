from __future__ import annotations

import uuid
from dataclasses import dataclass

from ..models import CartSummary, MutationReceipt, RemoteCart
from ..normalizers import normalize_cart_payload, normalize_cart_summaries, normalize_mutation_receipt
from .base import BaseClient, encode_segment


@dataclass
class CartClient(BaseClient):
    def get_cart(self, identity_id: str) -> RemoteCart:
        payload = self._request(
            "GET",
            f"carts/{encode_segment(identity_id)}",
            module="cart",
            operation="get_cart",
        )
        return normalize_cart_payload(payload)

    def list_carts(self) -> list[CartSummary]:
        payload = self._request("GET", "Carts", module="cart", operation="list_carts")
        return normalize_cart_summaries(payload)

    def add_line(self, identity_id: str, item_id: str, qty: int = 1) -> MutationReceipt:
        return self._mutate("add", identity_id, item_id, qty)

    def remove_line(self, identity_id: str, item_id: str, qty: int = 1) -> MutationReceipt:
        return self._mutate("remove", identity_id, item_id, qty)

    def disable_cart(self, identity_id: str) -> RemoteCart:
        payload = self._request(
            "POST",
            f"carts/disable/{encode_segment(identity_id)}",
            json_body={},
            module="cart",
            operation="disable_cart",
        )
        cart = normalize_cart_payload(payload)
        return cart.model_copy(update={"enabled": False})

    def enable_cart(self, identity_id: str) -> RemoteCart:
        payload = self._request(
            "POST",
            f"carts/enable/{encode_segment(identity_id)}",
            json_body={},
            module="cart",
            operation="enable_cart",
        )
        cart = normalize_cart_payload(payload)
        return cart.model_copy(update={"enabled": True})

    def _mutate(self, action: str, identity_id: str, item_id: str, qty: int) -> MutationReceipt:
        if qty < 1:
            raise ValueError("qty must be at least 1")
        payload = self._request(
            "POST",
            f"carts/{action}/{encode_segment(identity_id)}",
            json_body={"recordId": item_id, "amount": qty},
            headers={"Idempotency-Key": str(uuid.uuid4())},
            module="cart",
            operation=f"{action}_line",
        )
        return normalize_mutation_receipt(payload)
