"""Session handler contract and shared handler plumbing."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from ..config import SessionSettings
from ..cookies import CookieManager
from ..errors import SessionError
from ..fingerprint import EMPTY_FINGERPRINT

logger = logging.getLogger(__name__)

LOCK_TTL = 300  # seconds


@runtime_checkable
class SessionHandler(Protocol):
    """Capability set every storage backend provides.

    Per request the orchestrator calls ``open`` -> ``read`` -> ``write`` ->
    ``close`` (or ``destroy`` instead of ``write``). ``collect`` runs on its
    own schedule and never takes the per-session lock.
    """

    async def open(self, path: str, name: str) -> bool:
        """Acquire backend resources. Raises ConfigurationError when misconfigured."""
        ...

    async def read(self, session_id: str) -> str | None:
        """Lock the session and return its payload ("" if new), or None on failure."""
        ...

    async def write(self, session_id: str, data: str) -> bool:
        """Persist the payload, or only refresh its lifetime when unchanged."""
        ...

    async def close(self) -> bool:
        """Release the lock and backend resources. Idempotent."""
        ...

    async def destroy(self, session_id: str) -> bool:
        """Delete the stored payload and expire the client cookie."""
        ...

    async def collect(self, max_lifetime: int) -> int | None:
        """Remove entries older than ``max_lifetime`` seconds; None if the store can't be listed."""
        ...


class BaseHandler:
    """State and helpers shared by the built-in handlers.

    The default locking is the no-op variant: backends without a native lock
    (memory, DynamoDB) always report the session as locked.
    """

    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
    ) -> None:
        self.settings = settings
        self.ip_address = ip_address
        self.cookies = cookies

        self.cookie_name = settings.cookie_name
        self.match_ip = settings.match_ip
        self.save_path = settings.save_path
        self.expiration = settings.expiration
        self.key_prefix = settings.key_prefix

        cookies = cookies or CookieManager.from_settings(settings)
        self.cookie_domain = cookies.domain
        self.cookie_path = cookies.path
        self.cookie_secure = cookies.secure

        self.fingerprint = EMPTY_FINGERPRINT
        self.lock = False
        self.session_id: str | None = None
        self.last_error: SessionError | None = None

    async def collect(self, max_lifetime: int) -> int | None:
        return 0

    async def lock_session(self, session_id: str) -> bool:
        self.lock = True
        return True

    async def release_lock(self) -> bool:
        self.lock = False
        return True

    def destroy_cookie(self) -> bool:
        """Expire the client cookie; called from ``destroy()``."""
        if self.cookies is not None:
            self.cookies.forget(self.cookie_name)
        return True

    def fail(self, error: SessionError, level: int = logging.ERROR) -> bool:
        """Record and log an operational failure. Always returns False."""
        self.last_error = error
        logger.log(level, "%s", error)
        return False


class NullHandler(BaseHandler):
    """Stores nothing. Every request starts with an empty session."""

    async def open(self, path: str, name: str) -> bool:
        return True

    async def read(self, session_id: str) -> str | None:
        await self.lock_session(session_id)
        if self.session_id is None:
            self.session_id = session_id
        self.fingerprint = EMPTY_FINGERPRINT
        return ""

    async def write(self, session_id: str, data: str) -> bool:
        self.session_id = session_id
        return self.lock

    async def close(self) -> bool:
        return await self.release_lock()

    async def destroy(self, session_id: str) -> bool:
        await self.release_lock()
        return self.destroy_cookie()
