"""Set-Cookie bookkeeping for the session cookie.

Handlers only need two things from here: the configured cookie flags and a
way to expire the client cookie when a session is destroyed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import SessionSettings

EXPIRED = "Thu, 01 Jan 1970 00:00:01 GMT"


@dataclass
class CookieManager:
    path: str = "/"
    domain: str = ""
    secure: bool = False
    httponly: bool = True
    samesite: str = "lax"
    _queued: dict[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_settings(cls, s: SessionSettings) -> CookieManager:
        return cls(
            path=s.cookie_path,
            domain=s.cookie_domain,
            secure=s.cookie_secure,
            samesite=s.cookie_samesite,
        )

    def make(self, name: str, value: str, max_age: int | None = None, *, expires: str | None = None) -> str:
        """Build a Set-Cookie header value. ``max_age=None`` is a browser-session cookie."""
        parts = [f"{name}={value}"]
        if max_age is not None:
            parts.append(f"Max-Age={max_age}")
        if expires:
            parts.append(f"Expires={expires}")
        parts.append(f"Path={self.path}")
        if self.domain:
            parts.append(f"Domain={self.domain}")
        if self.httponly:
            parts.append("HttpOnly")
        if self.samesite:
            parts.append(f"SameSite={self.samesite}")
        if self.secure:
            parts.append("Secure")
        return "; ".join(parts)

    def queue(self, name: str, value: str, max_age: int | None = None, *, expires: str | None = None) -> None:
        self._queued[name] = self.make(name, value, max_age, expires=expires)

    def forget(self, name: str) -> None:
        """Tell the client to drop the cookie."""
        self.queue(name, "", 0, expires=EXPIRED)

    def has_queued(self, name: str) -> bool:
        return name in self._queued

    def headers(self) -> list[str]:
        return list(self._queued.values())
