"""In-memory session handler for development/testing.

Not suitable for production: sessions are lost on restart and not
shared across processes. There is no lock either.
"""

from __future__ import annotations

import logging
import time

from ..config import SessionSettings
from ..cookies import CookieManager
from ..fingerprint import fingerprint
from .base import BaseHandler

logger = logging.getLogger(__name__)


class MemoryStore:
    """Payloads keyed by storage key, with their last modification time."""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        return entry[0] if entry else None

    def put(self, key: str, payload: str) -> None:
        self._store[key] = (payload, time.time())

    def touch(self, key: str) -> bool:
        entry = self._store.get(key)
        if entry is None:
            return False
        self._store[key] = (entry[0], time.time())
        return True

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def mtime(self, key: str) -> float | None:
        entry = self._store.get(key)
        return entry[1] if entry else None

    def keys(self) -> list[str]:
        return list(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)


default_store = MemoryStore()


class MemoryHandler(BaseHandler):
    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
        store: MemoryStore | None = None,
    ) -> None:
        super().__init__(settings, ip_address, cookies)
        self.store = store if store is not None else default_store
        self.key_prefix = f"{self.key_prefix}{self.cookie_name}:"
        if self.match_ip:
            self.key_prefix += f"{self.ip_address}:"
        self.opened = False

    async def open(self, path: str, name: str) -> bool:
        self.opened = True
        return True

    async def read(self, session_id: str) -> str | None:
        if not self.opened or not await self.lock_session(session_id):
            return None
        if self.session_id is None:
            self.session_id = session_id

        data = self.store.get(self.key_prefix + session_id) or ""
        self.fingerprint = fingerprint(data)
        return data

    async def write(self, session_id: str, data: str) -> bool:
        if not self.opened:
            return False

        key = self.key_prefix + session_id
        if session_id != self.session_id:
            self.session_id = session_id
        elif self.fingerprint == fingerprint(data):
            # unchanged; a brand-new empty session is not stored at all
            return self.store.touch(key) if key in self.store else True

        self.store.put(key, data)
        self.fingerprint = fingerprint(data)
        return True

    async def close(self) -> bool:
        self.opened = False
        return await self.release_lock()

    async def destroy(self, session_id: str) -> bool:
        self.store.delete(self.key_prefix + session_id)
        await self.release_lock()
        return self.destroy_cookie()

    async def collect(self, max_lifetime: int) -> int | None:
        cutoff = time.time() - max_lifetime
        collected = 0
        for key in self.store.keys():
            if not key.startswith(self.key_prefix):
                continue
            mtime = self.store.mtime(key)
            if mtime is not None and mtime <= cutoff:
                self.store.delete(key)
                collected += 1
        logger.debug("Session: garbage collector removed %d in-memory session(s)", collected)
        return collected
