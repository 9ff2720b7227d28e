"""Server-side sessions with per-session locking for ASGI applications."""

from .config import SessionSettings, get_settings, override_settings
from .cookies import CookieManager
from .dependencies import destroy_session, get_session, regenerate_session
from .errors import (
    ConfigurationError,
    DataIntegrityWarning,
    IoUnavailable,
    LockTimeout,
    SessionError,
    TransientBackendFailure,
    WriteFailed,
)
from .fingerprint import fingerprint
from .flash import FlashBag
from .handlers import (
    BaseHandler,
    DynamoDBHandler,
    FileHandler,
    MemcachedHandler,
    MemoryHandler,
    MemoryStore,
    NullHandler,
    RedisHandler,
    SessionHandler,
)
from .middleware import SessionMiddleware
from .registry import (
    create_handler,
    get_handler_factory,
    register_handler,
    registered_handlers,
    unregister_handler,
)
from .session import Session

__all__ = [
    "SessionSettings",
    "get_settings",
    "override_settings",
    "CookieManager",
    "Session",
    "FlashBag",
    "SessionMiddleware",
    "get_session",
    "destroy_session",
    "regenerate_session",
    "fingerprint",
    "SessionHandler",
    "BaseHandler",
    "NullHandler",
    "FileHandler",
    "RedisHandler",
    "MemcachedHandler",
    "MemoryHandler",
    "MemoryStore",
    "DynamoDBHandler",
    "register_handler",
    "unregister_handler",
    "get_handler_factory",
    "registered_handlers",
    "create_handler",
    "SessionError",
    "ConfigurationError",
    "TransientBackendFailure",
    "IoUnavailable",
    "LockTimeout",
    "WriteFailed",
    "DataIntegrityWarning",
]
