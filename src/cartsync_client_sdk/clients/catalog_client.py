from __future__ import annotations

from dataclasses import dataclass

from ..models import CatalogItem
from ..normalizers import normalize_catalog_item
from .base import BaseClient, encode_segment


@dataclass
class CatalogClient(BaseClient):
    def get_item(self, item_id: str) -> CatalogItem:
        payload = self._request(
            "GET",
            f"records/{encode_segment(item_id)}",
            module="catalog",
            operation="get_item",
        )
        return normalize_catalog_item(payload)
