"""Tests for the ASGI session middleware and FastAPI dependencies."""

import asyncio
import os
from unittest.mock import patch

import httpx
import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from sessionlock import (
    Session,
    SessionMiddleware,
    SessionSettings,
    destroy_session,
    get_session,
    regenerate_session,
)

COOKIE = "sessionlock_session"


@pytest.fixture
def simple_app(file_settings):
    """Minimal app for testing session middleware in isolation."""
    app = FastAPI()

    @app.get("/set")
    async def set_value(request: Request):
        request.state.session["key"] = "value"
        return {"ok": True}

    @app.get("/get")
    async def get_value(session: Session = Depends(get_session)):
        return {"key": session.get("key")}

    @app.get("/destroy", dependencies=[Depends(destroy_session)])
    async def destroy():
        return {"ok": True}

    @app.get("/login", dependencies=[Depends(regenerate_session)])
    async def login(session: Session = Depends(get_session)):
        session["user"] = "alice"
        return {"id": session.id}

    @app.get("/flash")
    async def flash(session: Session = Depends(get_session)):
        session.flash.set_flash("notice", "Saved!")
        return {"ok": True}

    @app.get("/notice")
    async def notice(session: Session = Depends(get_session)):
        return {"notice": session.flash.get_flash("notice")}

    @app.get("/boom")
    async def boom(request: Request):
        request.state.session["key"] = "before error"
        raise RuntimeError("boom")

    app.add_middleware(SessionMiddleware, settings=file_settings)
    return app


@pytest.fixture
def session_client(simple_app):
    return TestClient(simple_app, cookies={})


def test_new_session_sets_cookie(session_client):
    resp = session_client.get("/set")
    assert resp.status_code == 200
    assert COOKIE in resp.cookies


def test_session_persists_across_requests(session_client):
    session_client.get("/set")
    resp = session_client.get("/get")
    assert resp.json()["key"] == "value"


def test_session_empty_by_default(session_client):
    resp = session_client.get("/get")
    assert resp.json()["key"] is None
    assert "set-cookie" not in resp.headers


def test_session_destroy_clears_data(session_client, save_dir):
    session_client.get("/set")
    session_id = session_client.cookies.get(COOKIE)
    resp = session_client.get("/destroy")

    assert "Max-Age=0" in resp.headers["set-cookie"]
    assert not os.path.exists(os.path.join(save_dir, COOKIE + session_id))
    resp = session_client.get("/get")
    assert resp.json()["key"] is None


def test_session_cookie_is_httponly(session_client):
    resp = session_client.get("/set")
    cookie_header = resp.headers.get("set-cookie", "")
    assert "HttpOnly" in cookie_header


def test_session_cookie_samesite_lax(session_client):
    resp = session_client.get("/set")
    cookie_header = resp.headers.get("set-cookie", "")
    assert "SameSite=lax" in cookie_header


def test_invalid_cookie_creates_new_session(session_client):
    session_client.cookies.set(COOKIE, "garbage-value")
    resp = session_client.get("/get")
    assert resp.status_code == 200
    assert resp.json()["key"] is None


def test_regenerate_moves_session_to_new_id(session_client):
    session_client.get("/set")
    old_id = session_client.cookies.get(COOKIE)

    resp = session_client.get("/login")
    new_id = resp.json()["id"]
    assert new_id != old_id
    assert session_client.cookies.get(COOKIE) == new_id

    resp = session_client.get("/get")
    assert resp.json()["key"] == "value"


def test_flash_message_shown_once(session_client):
    session_client.get("/flash")
    assert session_client.get("/notice").json()["notice"] == "Saved!"
    assert session_client.get("/notice").json()["notice"] is None


def test_lock_released_when_app_raises(simple_app, file_settings):
    client = TestClient(simple_app, cookies={}, raise_server_exceptions=False)
    client.get("/set")

    resp = client.get("/boom")
    assert resp.status_code == 500

    # a follow-up request for the same id must not block on a leaked lock
    resp = client.get("/get")
    assert resp.status_code == 200


def test_unreachable_backend_serves_request_without_session():
    app = FastAPI()

    @app.get("/count")
    async def count(session: Session = Depends(get_session)):
        session["hits"] = session.get("hits", 0) + 1
        return {"hits": session["hits"], "active": session.active}

    # nothing listens on port 1
    app.add_middleware(
        SessionMiddleware,
        settings=SessionSettings(handler="redis", save_path="tcp://127.0.0.1:1?timeout=0.2"),
    )
    client = TestClient(app, cookies={})

    resp = client.get("/count")
    assert resp.status_code == 200
    assert resp.json() == {"hits": 1, "active": False}
    assert "set-cookie" not in resp.headers


def test_get_session_without_middleware():
    app = FastAPI()

    @app.get("/")
    async def index(session: Session = Depends(get_session)):
        return {}

    resp = TestClient(app).get("/")
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_concurrent_requests_for_one_session_are_serialized(file_settings):
    order = []
    app = FastAPI()

    @app.get("/slow")
    async def slow(request: Request):
        order.append("slow-start")
        await asyncio.sleep(0.2)
        request.state.session["step"] = "slow"
        order.append("slow-end")
        return {}

    @app.get("/fast")
    async def fast(request: Request):
        order.append("fast")
        return {"step": request.state.session.get("step")}

    app.add_middleware(SessionMiddleware, settings=file_settings)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        first = await client.get("/slow")
        session_id = first.cookies[COOKIE]
        order.clear()

        assert client.cookies[COOKIE] == session_id
        slow_task = asyncio.create_task(client.get("/slow"))
        await asyncio.sleep(0.05)
        fast = await client.get("/fast")

        await slow_task

    assert order == ["slow-start", "slow-end", "fast"]
    assert fast.json()["step"] == "slow"


def test_undecodable_session_file_does_not_leak_lock(session_client, save_dir):
    session_id = "0123456789abcdef0123456789abcdef"
    os.makedirs(save_dir, exist_ok=True)
    with open(os.path.join(save_dir, COOKIE + session_id), "wb") as f:
        f.write(b"\xff\xfe")
    session_client.cookies.set(COOKIE, session_id)

    assert session_client.get("/get").json()["key"] is None
    # the same id again must not wait on a lock left behind by the first request
    assert session_client.get("/get").status_code == 200


def test_lock_released_when_start_raises(simple_app, save_dir):
    client = TestClient(simple_app, cookies={})
    client.get("/set")
    session_id = client.cookies.get(COOKIE)

    def refuse(*args, **kwargs):
        raise RuntimeError("flash bookkeeping failed")

    with pytest.raises(RuntimeError):
        with patch("sessionlock.session.FlashBag.sweep", side_effect=refuse):
            client.get("/get")

    # the file lock taken during start() was released by the middleware
    assert client.get("/get").json()["key"] == "value"
    assert os.path.exists(os.path.join(save_dir, COOKIE + session_id))
