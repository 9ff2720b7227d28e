"""Per-request session state bound to a storage handler.

A ``Session`` is created for each request, started with the id from the
incoming cookie, mutated like a dict by request code, and closed (written
and unlocked) when the response starts.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from collections.abc import Iterator, MutableMapping
from typing import Any

from .config import SessionSettings, get_settings
from .cookies import CookieManager
from .flash import VARS_KEY, FlashBag
from .handlers import SessionHandler

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"\A[0-9a-f]{32}\Z")
LAST_REGENERATE_KEY = "__last_regenerate"
RESERVED_KEYS = frozenset({VARS_KEY, LAST_REGENERATE_KEY})


def generate_session_id() -> str:
    return secrets.token_hex(16)


def is_valid_session_id(value: Any) -> bool:
    return isinstance(value, str) and SESSION_ID_PATTERN.match(value) is not None


def dumps(data: dict[str, Any]) -> str:
    """Serialize session data. An empty session is the empty string."""
    if not data:
        return ""
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def loads(payload: str) -> dict[str, Any]:
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Session: failed to deserialize stored session data, starting empty")
        return {}
    if not isinstance(data, dict):
        logger.warning("Session: stored session data is not a mapping, starting empty")
        return {}
    return data


class Session(MutableMapping[str, Any]):
    """The request's session map plus its lifecycle against one handler."""

    def __init__(
        self,
        handler: SessionHandler,
        settings: SessionSettings | None = None,
        cookies: CookieManager | None = None,
    ) -> None:
        self.handler = handler
        self.settings = settings or get_settings()
        self.cookies = cookies

        self.id: str | None = None
        self.incoming_id: str | None = None
        self._data: dict[str, Any] = {}
        self.flash = FlashBag(self._data)

        self.started = False
        self.active = False
        self.destroyed = False
        self.closed = False

    @property
    def data(self) -> dict[str, Any]:
        """The raw map, reserved keys included."""
        return self._data

    async def start(
        self,
        session_id: str | None = None,
        *,
        allow_regenerate: bool = True,
        now: float | None = None,
    ) -> Session:
        if self.started:
            logger.warning("Session: session has already been started")
            return self

        now = time.time() if now is None else now
        if session_id is not None and not is_valid_session_id(session_id):
            logger.warning("Session: invalid session cookie detected and ignored")
            session_id = None

        self.incoming_id = session_id
        self.id = session_id or generate_session_id()
        self.started = True

        path = getattr(self.handler, "save_path", self.settings.save_path)
        if not await self.handler.open(path, self.settings.cookie_name):
            logger.error("Session: %s could not be opened, continuing without a session", type(self.handler).__name__)
            return self

        payload = await self.handler.read(self.id)
        if payload is None:
            logger.warning("Session: unable to read session, continuing with an empty one")
            return self

        self._data.update(loads(payload))
        self.active = True

        if self.settings.time_to_update > 0 and self.incoming_id is not None:
            last = self._data.get(LAST_REGENERATE_KEY)
            if last is None:
                self._data[LAST_REGENERATE_KEY] = int(now)
            elif allow_regenerate and now - last >= self.settings.time_to_update:
                await self.regenerate(self.settings.regenerate_destroy, now=now)

        self.flash.sweep(now)
        return self

    async def regenerate(self, destroy: bool = False, now: float | None = None) -> None:
        """Move the session to a fresh id; the handler swaps locks on the next write."""
        if not self.active:
            return

        if destroy:
            await self.handler.destroy(self.id)

        self.id = generate_session_id()
        self._data[LAST_REGENERATE_KEY] = int(time.time() if now is None else now)
        logger.debug("Session: id regenerated")

    async def destroy(self) -> bool:
        if not self.started or self.closed:
            return False

        ok = await self.handler.destroy(self.id) if self.active else False
        self._data.clear()
        self.destroyed = True
        self.active = False
        try:
            await self.handler.close()
        finally:
            self.closed = True
        return ok

    async def close(self) -> bool:
        """Write the session and release the handler. Safe to call more than once."""
        if self.closed:
            return True

        ok = True
        try:
            if self.active and not self.destroyed and (self._data or self.id == self.incoming_id):
                if self._data and self.settings.time_to_update > 0:
                    self._data.setdefault(LAST_REGENERATE_KEY, int(time.time()))
                ok = await self.handler.write(self.id, dumps(self._data))
                if not ok:
                    logger.warning("Session: data for this request was not saved")
                # never hand the client an id whose data was not stored
                if ok or self.id == self.incoming_id:
                    self._queue_cookie()
        finally:
            closed = await self.handler.close() if self.started else True
            self.closed = True
        return ok and closed

    def _queue_cookie(self) -> None:
        if self.cookies is None:
            return
        expiration = self.settings.expiration
        if self.id != self.incoming_id or expiration > 0:
            self.cookies.queue(self.settings.cookie_name, self.id, expiration or None)

    # -- mapping ------------------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key in RESERVED_KEYS:
            raise KeyError(f"'{key}' is reserved for session bookkeeping")
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self.flash.unmark_flash(key)
        self.flash.unmark_temp(key)

    def __iter__(self) -> Iterator[str]:
        return (key for key in list(self._data) if key not in RESERVED_KEYS)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __repr__(self) -> str:
        return f"<Session id={self.id!r} active={self.active} keys={list(self)!r}>"
