"""Flash and temp data tracked inside the session map.

The metadata lives under the reserved ``__vars`` key of the session data:

- flash keys map to ``"new"`` (set during this request) or ``"old"`` (set
  during the previous one); they survive exactly one more session load.
- temp keys map to an absolute Unix timestamp and survive until it passes,
  however many requests happen in between.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

VARS_KEY = "__vars"
NEW = "new"
OLD = "old"


def _as_keys(key: str | Iterable[str]) -> list[str]:
    return [key] if isinstance(key, str) else list(key)


class FlashBag:
    """Flash/temp bookkeeping over a session data dict (mutated in place)."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data

    @property
    def _vars(self) -> dict[str, Any]:
        return self.data.setdefault(VARS_KEY, {})

    def _drop_vars_if_empty(self) -> None:
        if not self.data.get(VARS_KEY):
            self.data.pop(VARS_KEY, None)

    def sweep(self, now: float | None = None) -> None:
        """Age flash data and drop expired entries. Run once per session load."""
        marks = self.data.get(VARS_KEY)
        if not marks:
            self.data.pop(VARS_KEY, None)
            return

        now = time.time() if now is None else now
        for key, state in list(marks.items()):
            if state == NEW:
                marks[key] = OLD
            # keep this after the NEW check so a just-promoted key is not dropped
            elif state == OLD or (isinstance(state, (int, float)) and state < now):
                self.data.pop(key, None)
                del marks[key]

        self._drop_vars_if_empty()

    # -- flash --------------------------------------------------------------

    def set_flash(self, key: str | Mapping[str, Any], value: Any = None) -> None:
        items = dict(key) if isinstance(key, Mapping) else {key: value}
        self.data.update(items)
        self.mark_flash(list(items))

    def mark_flash(self, key: str | Iterable[str]) -> bool:
        """Mark existing keys as flash data. False (and no change) if any key is missing."""
        keys = _as_keys(key)
        if any(k not in self.data for k in keys):
            return False
        self._vars.update(dict.fromkeys(keys, NEW))
        return True

    def keep_flash(self, key: str | Iterable[str]) -> bool:
        """Let flash data survive one more request."""
        return self.mark_flash(key)

    def unmark_flash(self, key: str | Iterable[str]) -> None:
        marks = self.data.get(VARS_KEY)
        if marks is None:
            return
        for k in _as_keys(key):
            if isinstance(marks.get(k), str):
                del marks[k]
        self._drop_vars_if_empty()

    def flash_keys(self) -> list[str]:
        return [k for k, state in self.data.get(VARS_KEY, {}).items() if isinstance(state, str)]

    def get_flash(self, key: str | None = None) -> Any:
        if key is not None:
            if key not in self.flash_keys():
                return None
            return self.data.get(key)
        return {k: self.data.get(k) for k in self.flash_keys()}

    # -- temp ---------------------------------------------------------------

    def set_temp(self, key: str | Mapping[str, Any], value: Any = None, ttl: int = 300, now: float | None = None) -> None:
        items = dict(key) if isinstance(key, Mapping) else {key: value}
        self.data.update(items)
        self.mark_temp(list(items), ttl, now=now)

    def mark_temp(
        self,
        key: str | Iterable[str] | Mapping[str, int],
        ttl: int = 300,
        now: float | None = None,
    ) -> bool:
        """Mark existing keys as temp data.

        ``key`` may be a single key, a list sharing ``ttl``, or a mapping of
        key -> ttl in seconds. False (and no change) if any key is missing.
        """
        ttls = dict(key) if isinstance(key, Mapping) else dict.fromkeys(_as_keys(key), ttl)
        if any(k not in self.data for k in ttls):
            return False

        now = int(time.time() if now is None else now)
        self._vars.update({k: now + int(seconds) for k, seconds in ttls.items()})
        return True

    def unmark_temp(self, key: str | Iterable[str]) -> None:
        marks = self.data.get(VARS_KEY)
        if marks is None:
            return
        for k in _as_keys(key):
            if isinstance(marks.get(k), int):
                del marks[k]
        self._drop_vars_if_empty()

    def temp_keys(self) -> list[str]:
        return [k for k, state in self.data.get(VARS_KEY, {}).items() if isinstance(state, int)]

    def get_temp(self, key: str | None = None) -> Any:
        if key is not None:
            if key not in self.temp_keys():
                return None
            return self.data.get(key)
        return {k: self.data.get(k) for k in self.temp_keys()}

    def remove_temp(self, key: str) -> None:
        self.unmark_temp(key)
        self.data.pop(key, None)
