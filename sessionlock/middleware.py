"""ASGI server-side session middleware.

Reads the session id from a cookie, starts a ``Session`` on the configured
handler (which locks it for the duration of the request), attaches it to
request.state.session, and writes + unlocks it when the response starts.
"""

from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import SessionSettings, get_settings
from .cookies import CookieManager
from .registry import create_handler
from .session import Session


class SessionMiddleware:
    """ASGI middleware for server-side sessions.

    The session is closed before the first response byte goes out so the
    lock is released as early as possible; a ``finally`` guarantees the
    close even when the app raises.
    """

    def __init__(self, app: ASGIApp, settings: SessionSettings | None = None) -> None:
        self.app = app
        self.settings = settings or get_settings()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        conn = HTTPConnection(scope)
        ip_address = conn.client.host if conn.client else ""
        cookies = CookieManager.from_settings(self.settings)
        handler = create_handler(self.settings, ip_address, cookies)
        session = Session(handler, self.settings, cookies)

        # background requests must not rotate the id under a page's feet
        is_ajax = conn.headers.get("x-requested-with", "").lower() == "xmlhttprequest"

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                await session.close()
                headers = MutableHeaders(scope=message)
                for cookie in cookies.headers():
                    headers.append("set-cookie", cookie)

            await send(message)

        try:
            await session.start(conn.cookies.get(self.settings.cookie_name), allow_regenerate=not is_ajax)

            # Attach session to scope so request.state.session works
            scope["state"] = scope.get("state", {})
            scope["state"]["session"] = session

            await self.app(scope, receive, send_wrapper)
        finally:
            await session.close()
