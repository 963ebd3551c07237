from .cart_store import CartStateStore
from .config import ClientConfig, ConfigError, load_config
from .eligibility import CartEligibilityGate, is_cart_enabled
from .exceptions import (
    ApiError,
    AuthError,
    ClientValidationError,
    ConflictError,
    MutationInProgressError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServerError,
    TransientRemoteError,
    TransportError,
    ValidationError,
    ValidationIssue,
)
from .http_client import HttpClient, TraceContext
from .identity import IdentityContext
from .local_cache import JsonFileStorage, LocalCartCache, MemoryStorage
from .models import (
    CartLine,
    CartSnapshot,
    CartSummary,
    CatalogItem,
    Identity,
    MutationReceipt,
    RemoteCart,
    Role,
    StockEvent,
)
from .mutations import (
    MutationState,
    MutationTicket,
    OptimisticMutationController,
    inline_dispatcher,
    thread_dispatcher,
)
from .session import CartSession
from .stock_broadcast import WILDCARD, StockBroadcast
from .subscriptions import Subscription
from .sync import SyncCoordinator, SyncResult, SyncStatus
from .ui_errors import UserFacingError, to_user_facing_error

__all__ = [
    "ApiError",
    "AuthError",
    "CartEligibilityGate",
    "CartLine",
    "CartSession",
    "CartSnapshot",
    "CartStateStore",
    "CartSummary",
    "CatalogItem",
    "ClientConfig",
    "ClientValidationError",
    "ConfigError",
    "ConflictError",
    "HttpClient",
    "Identity",
    "IdentityContext",
    "JsonFileStorage",
    "LocalCartCache",
    "MemoryStorage",
    "MutationInProgressError",
    "MutationReceipt",
    "MutationState",
    "MutationTicket",
    "NotFoundError",
    "OptimisticMutationController",
    "PermissionDeniedError",
    "RateLimitError",
    "RemoteCart",
    "Role",
    "ServerError",
    "StockBroadcast",
    "StockEvent",
    "Subscription",
    "SyncCoordinator",
    "SyncResult",
    "SyncStatus",
    "TraceContext",
    "TransientRemoteError",
    "TransportError",
    "UserFacingError",
    "ValidationError",
    "ValidationIssue",
    "WILDCARD",
    "inline_dispatcher",
    "is_cart_enabled",
    "load_config",
    "thread_dispatcher",
    "to_user_facing_error",
]
