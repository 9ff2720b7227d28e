"""Locking protocol shared by the remote cache handlers.

Remote caches only offer "create if absent, with TTL", so the lock is a
separate key ``{prefix}{id}:lock`` holding the acquisition timestamp. It is
polled with a fixed backoff and a bounded attempt budget, renewed on every
write and deleted on close/destroy. The TTL doubles as crash recovery: a
dead holder's lock simply expires.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass

from ..config import SessionSettings
from ..cookies import CookieManager
from ..errors import IoUnavailable, LockTimeout, WriteFailed
from ..fingerprint import fingerprint
from .base import LOCK_TTL, BaseHandler

logger = logging.getLogger(__name__)


class LockState(enum.Enum):
    RELEASED = "released"
    HELD = "held"


@dataclass
class RemoteLock:
    """Lock bookkeeping for one handler instance."""

    key: str | None = None
    state: LockState = LockState.RELEASED
    acquired_at: int | None = None

    @property
    def held(self) -> bool:
        return self.state is LockState.HELD

    def acquire(self, key: str, now: int) -> None:
        self.key = key
        self.state = LockState.HELD
        self.acquired_at = now

    def release(self) -> None:
        self.key = None
        self.state = LockState.RELEASED
        self.acquired_at = None


class RemoteHandler(BaseHandler):
    """Read/write/destroy over a key-value cache with TTLs.

    Subclasses connect in ``open()``, disconnect in ``close()`` and provide
    the cache primitives below. ``transport_errors`` lists the client
    exceptions that mean "backend unavailable".
    """

    default_retry_interval: float = 0.1
    default_max_retries: int = 300
    transport_errors: tuple[type[BaseException], ...] = (OSError,)

    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
    ) -> None:
        super().__init__(settings, ip_address, cookies)
        self.session_expiration = settings.ttl
        # several session cookies can share one cache
        self.key_prefix = f"{self.key_prefix}{self.cookie_name}:"
        self.lock_retry_interval = (
            settings.lock_retry_interval
            if settings.lock_retry_interval is not None
            else self.default_retry_interval
        )
        self.lock_max_retries = settings.lock_max_retries or self.default_max_retries
        self.remote_lock = RemoteLock()
        self.key_exists = False

    # -- cache primitives ---------------------------------------------------

    @property
    def connected(self) -> bool:
        raise NotImplementedError

    async def _get(self, key: str) -> bytes | None:
        raise NotImplementedError

    async def _set(self, key: str, value: str, ttl: int) -> bool:
        raise NotImplementedError

    async def _add(self, key: str, value: str, ttl: int) -> bool:
        """Atomically set ``key`` only if it does not exist."""
        raise NotImplementedError

    async def _expire(self, key: str, ttl: int) -> bool:
        raise NotImplementedError

    async def _delete(self, key: str) -> bool:
        raise NotImplementedError

    async def _renew_lock(self, key: str) -> bool:
        return await self._expire(key, LOCK_TTL)

    # -- handler contract ---------------------------------------------------

    def data_key(self, session_id: str) -> str:
        return self.key_prefix + session_id

    def lock_key(self, session_id: str) -> str:
        return self.key_prefix + session_id + ":lock"

    async def read(self, session_id: str) -> str | None:
        if not self.connected:
            self.fail(IoUnavailable(f"Session: {type(self).__name__} is not connected"))
            return None

        try:
            if not await self.lock_session(session_id):
                return None

            if self.session_id is None:
                self.session_id = session_id

            raw = await self._get(self.data_key(session_id))
            if raw is None:
                data = ""
            elif isinstance(raw, bytes):
                data = raw.decode("utf-8")
            else:
                data = str(raw)
        except self.transport_errors as exc:
            self.fail(IoUnavailable(f"Session: {type(self).__name__} read failed: {exc}"))
            return None
        except UnicodeDecodeError as exc:
            self.fail(IoUnavailable(f"Session: stored data for '{self.data_key(session_id)}' is not valid UTF-8: {exc}"))
            await self._release_on_close()
            return None

        self.key_exists = raw is not None
        self.fingerprint = fingerprint(data)
        return data

    async def write(self, session_id: str, data: str) -> bool:
        if not self.connected:
            return self.fail(IoUnavailable(f"Session: {type(self).__name__} is not connected"))

        try:
            # regenerated id: swap locks before touching any data
            if session_id != self.session_id:
                if not await self.release_lock() or not await self.lock_session(session_id):
                    return False
                self.key_exists = False
                self.session_id = session_id

            if not self.remote_lock.held:
                return False

            await self._renew_lock(self.remote_lock.key)

            new_fingerprint = fingerprint(data)
            if new_fingerprint != self.fingerprint or not self.key_exists:
                if await self._set(self.data_key(session_id), data, self.session_expiration):
                    self.fingerprint = new_fingerprint
                    self.key_exists = True
                    return True
                return self.fail(WriteFailed(f"Session: unable to store data for '{self.data_key(session_id)}'"))

            return await self._expire(self.data_key(session_id), self.session_expiration)
        except self.transport_errors as exc:
            return self.fail(IoUnavailable(f"Session: {type(self).__name__} write failed: {exc}"))

    async def destroy(self, session_id: str) -> bool:
        # never destroy data this handler did not lock
        if not self.connected or not self.remote_lock.held:
            return False

        try:
            if not await self._delete(self.data_key(session_id)):
                logger.debug("Session: delete of '%s' removed nothing", self.data_key(session_id))
            self.key_exists = False
            await self.release_lock()
        except self.transport_errors as exc:
            return self.fail(IoUnavailable(f"Session: {type(self).__name__} destroy failed: {exc}"))

        return self.destroy_cookie()

    async def lock_session(self, session_id: str) -> bool:
        """Acquire the emulated lock, or renew it if this handler already holds it."""
        lock_key = self.lock_key(session_id)

        # the same handler instance is reused when the id is regenerated
        if self.remote_lock.held and self.remote_lock.key == lock_key:
            return await self._renew_lock(lock_key)

        for _ in range(self.lock_max_retries):
            now = int(time.time())
            if await self._add(lock_key, str(now), LOCK_TTL):
                self.remote_lock.acquire(lock_key, now)
                self.lock = True
                return True
            await asyncio.sleep(self.lock_retry_interval)

        return self.fail(LockTimeout(self.data_key(session_id), self.lock_max_retries))

    async def release_lock(self) -> bool:
        """Delete the lock key. A key that already expired counts as released."""
        if self.connected and self.remote_lock.held:
            if not await self._delete(self.remote_lock.key):
                logger.debug("Session: lock '%s' had already expired", self.remote_lock.key)
            self.remote_lock.release()
            self.lock = False
        return True

    async def _release_on_close(self) -> bool:
        try:
            return await self.release_lock()
        except self.transport_errors as exc:
            self.fail(IoUnavailable(f"Session: error while releasing lock on close(): {exc}"))
            self.remote_lock.release()
            self.lock = False
            return False
