"""Session handler that keeps one file per session on the local filesystem.

The lock is an exclusive ``flock`` on the session file itself. A second
request for the same id blocks in ``read()`` until the first one calls
``close()``; the OS drops the lock if the holding process dies.
"""

from __future__ import annotations

import asyncio
import fcntl
import hashlib
import logging
import os
import re
import tempfile
import time

from ..config import SessionSettings
from ..cookies import CookieManager
from ..errors import ConfigurationError, DataIntegrityWarning, IoUnavailable
from ..fingerprint import EMPTY_FINGERPRINT, fingerprint
from .base import BaseHandler

logger = logging.getLogger(__name__)

SESSION_ID_REGEX = "[0-9a-f]{32}"


class FileHandler(BaseHandler):
    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
    ) -> None:
        super().__init__(settings, ip_address, cookies)

        if self.save_path:
            self.save_path = self.save_path.rstrip("/\\")
        else:
            self.save_path = os.path.join(tempfile.gettempdir(), "sessionlock", "session")

        self.session_id_regex = SESSION_ID_REGEX
        self.file_path = ""
        self.file_new = False
        self._fd: int | None = None

    async def open(self, path: str, name: str) -> bool:
        if not os.path.isdir(path):
            try:
                os.makedirs(path, 0o700, exist_ok=True)
            except OSError as exc:
                raise ConfigurationError.invalid_save_path(path) from exc

        if not os.access(path, os.W_OK):
            raise ConfigurationError.write_protected_save_path(path)

        self.save_path = path
        # the cookie name prefixes every file so several session cookies can share a directory
        ip_hash = hashlib.md5(self.ip_address.encode(), usedforsecurity=False).hexdigest() if self.match_ip else ""
        self.file_path = os.path.join(path, name + ip_hash)
        return True

    async def read(self, session_id: str) -> str | None:
        if self._fd is None:
            if not await self._open_locked(session_id):
                return None

            if self.session_id is None:
                self.session_id = session_id

            if self.file_new:
                os.chmod(self.file_path + session_id, 0o600)
                self.fingerprint = EMPTY_FINGERPRINT
                return ""
        else:
            # re-read of an already locked session, e.g. after a reset mid-request
            os.lseek(self._fd, 0, os.SEEK_SET)

        chunks = []
        try:
            while chunk := os.read(self._fd, 8192):
                chunks.append(chunk)
            raw = b"".join(chunks)
            data = raw.decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self.fail(IoUnavailable(f"Session: unable to read file '{self.file_path + session_id}': {exc}"))
            await self.close()
            return None

        self.fingerprint = fingerprint(raw)
        return data

    async def write(self, session_id: str, data: str) -> bool:
        # a different id means the session was regenerated; move the lock over first
        if session_id != self.session_id:
            if self._fd is not None:
                await self.close()
            self.session_id = session_id
            if self.file_path and not await self._open_locked(session_id):
                return False
            if self.file_new:
                os.chmod(self.file_path + session_id, 0o600)
            self.fingerprint = EMPTY_FINGERPRINT

        if self._fd is None:
            return False

        payload = data.encode("utf-8")
        if self.fingerprint == fingerprint(payload):
            if self.file_new:
                return True
            try:
                os.utime(self.file_path + session_id)
            except OSError as exc:
                return self.fail(IoUnavailable(f"Session: unable to touch '{self.file_path + session_id}': {exc}"))
            return True

        written = 0
        try:
            if not self.file_new:
                os.ftruncate(self._fd, 0)
                os.lseek(self._fd, 0, os.SEEK_SET)
            while written < len(payload):
                written += os.write(self._fd, payload[written:])
        except OSError as exc:
            self.fingerprint = fingerprint(payload[:written])
            return self.fail(
                DataIntegrityWarning(
                    f"Session: unable to write data to '{self.file_path + session_id}': {exc}",
                    written=written,
                    expected=len(payload),
                ),
                logging.WARNING,
            )

        self.fingerprint = fingerprint(payload)
        self.file_new = False
        return True

    async def close(self) -> bool:
        if self._fd is not None:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                os.close(self._fd)
                self._fd = None
                self.file_new = False
                self.lock = False
        return True

    async def destroy(self, session_id: str) -> bool:
        await self.close()
        if not self.file_path:
            return False

        target = self.file_path + session_id
        if not os.path.isfile(target):
            return True
        try:
            os.unlink(target)
        except OSError as exc:
            return self.fail(IoUnavailable(f"Session: unable to delete '{target}': {exc}"))
        return self.destroy_cookie()

    async def collect(self, max_lifetime: int) -> int | None:
        try:
            entries = list(os.scandir(self.save_path))
        except OSError as exc:
            self.fail(
                IoUnavailable(f"Session: garbage collector couldn't list files under directory '{self.save_path}': {exc}"),
                logging.DEBUG,
            )
            return None

        cutoff = time.time() - max_lifetime
        ip_pattern = "[0-9a-f]{32}" if self.match_ip else ""
        pattern = re.compile(r"\A" + re.escape(self.cookie_name) + ip_pattern + self.session_id_regex + r"\Z")

        collected = 0
        for entry in entries:
            # anything not matching the pattern is not a session file, or not ours
            if not pattern.match(entry.name):
                continue
            try:
                if not entry.is_file() or entry.stat().st_mtime > cutoff:
                    continue
                os.unlink(entry.path)
            except FileNotFoundError:
                continue
            collected += 1

        logger.debug("Session: garbage collector removed %d file(s) from '%s'", collected, self.save_path)
        return collected

    async def _open_locked(self, session_id: str) -> bool:
        target = self.file_path + session_id

        try:
            fd = os.open(target, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as exc:
            return self.fail(IoUnavailable(f"Session: unable to open file '{target}': {exc}"))

        try:
            # blocks until the current holder closes; run off the event loop
            await asyncio.to_thread(fcntl.flock, fd, fcntl.LOCK_EX)
            # only decide under the lock; the previous holder may have written meanwhile
            self.file_new = os.fstat(fd).st_size == 0
        except OSError as exc:
            os.close(fd)
            return self.fail(IoUnavailable(f"Session: unable to obtain lock for file '{target}': {exc}"))

        self._fd = fd
        self.lock = True
        return True
