"""Handler registry: maps a configuration string to a handler factory.

Built-in handlers are registered below. Applications add their own with an
explicit ``register_handler()`` call while configuring the process::

    register_handler("sql", lambda settings, ip, cookies: SqlHandler(settings, ip, cookies))
"""

from __future__ import annotations

import logging
from typing import Callable

from .config import SessionSettings
from .cookies import CookieManager
from .errors import ConfigurationError
from .handlers import (
    DynamoDBHandler,
    FileHandler,
    MemcachedHandler,
    MemoryHandler,
    NullHandler,
    RedisHandler,
    SessionHandler,
)

logger = logging.getLogger(__name__)

HandlerFactory = Callable[[SessionSettings, str, CookieManager | None], SessionHandler]

_registry: dict[str, HandlerFactory] = {}


def register_handler(name: str, factory: HandlerFactory, *, replace: bool = False) -> None:
    if name in _registry and not replace:
        raise ValueError(f"Session handler '{name}' is already registered")
    _registry[name] = factory


def unregister_handler(name: str) -> None:
    _registry.pop(name, None)


def get_handler_factory(name: str) -> HandlerFactory:
    try:
        return _registry[name]
    except KeyError:
        raise ConfigurationError.unknown_handler(name) from None


def registered_handlers() -> list[str]:
    return sorted(_registry)


def create_handler(
    settings: SessionSettings,
    ip_address: str = "",
    cookies: CookieManager | None = None,
) -> SessionHandler:
    """Build the handler named by ``settings.handler`` for one request."""
    handler = get_handler_factory(settings.handler)(settings, ip_address, cookies)
    if not isinstance(handler, SessionHandler):
        raise ConfigurationError(
            f"Session: factory for '{settings.handler}' returned {type(handler).__name__}, "
            "which does not implement the session handler interface"
        )
    logger.debug("Session: using %s", type(handler).__name__)
    return handler


register_handler("file", FileHandler)
register_handler("redis", RedisHandler)
register_handler("memcached", MemcachedHandler)
register_handler("dynamodb", DynamoDBHandler)
register_handler("memory", MemoryHandler)
register_handler("array", MemoryHandler)
register_handler("null", NullHandler)
