from .base import BaseClient, CredentialProvider
from .cart_client import CartClient
from .catalog_client import CatalogClient
from .orders_client import OrdersClient

__all__ = [
    "BaseClient",
    "CartClient",
    "CatalogClient",
    "CredentialProvider",
    "OrdersClient",
]
