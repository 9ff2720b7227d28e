"""FastAPI dependency injection: session access."""

from __future__ import annotations

from fastapi import HTTPException, Request

from .session import Session


def get_session(request: Request) -> Session:
    """Get the session from request state."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(status_code=500, detail={"error": "SessionMiddleware is not installed"})
    return session


async def destroy_session(request: Request) -> None:
    """Delete the stored session and expire the cookie."""
    await get_session(request).destroy()


async def regenerate_session(request: Request, destroy: bool = False) -> None:
    """Move the session to a new id, e.g. right after login."""
    await get_session(request).regenerate(destroy)
