"""Shared fixtures for the sessionlock test suite."""

from __future__ import annotations

import time
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sessionlock.config import SessionSettings, override_settings
from sessionlock.cookies import CookieManager
from sessionlock.handlers import MemoryStore

SESSION_ID = "0123456789abcdef0123456789abcdef"
OTHER_SESSION_ID = "fedcba9876543210fedcba9876543210"


# ── Fake Redis (dict-backed, shared between clients) ──────────────────────

class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the session handler."""

    def __init__(self, store: dict[str, tuple[bytes, float | None]], down: bool = False, **kwargs: Any) -> None:
        self.store = store
        self.down = down
        self.kwargs = kwargs
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def _alive(self, key: str) -> bool:
        entry = self.store.get(key)
        if entry is None:
            return False
        if entry[1] is not None and entry[1] <= time.time():
            del self.store[key]
            return False
        return True

    async def ping(self) -> bool:
        if self.down:
            raise RedisConnectionError("Connection refused")
        return True

    async def get(self, key: str) -> bytes | None:
        self.calls.append(("get", key))
        return self.store[key][0] if self._alive(key) else None

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        self.calls.append(("set", key))
        if nx and self._alive(key):
            return None
        self.store[key] = (value.encode(), time.time() + ex if ex else None)
        return True

    async def expire(self, key: str, ttl: int) -> bool:
        self.calls.append(("expire", key))
        if not self._alive(key):
            return False
        self.store[key] = (self.store[key][0], time.time() + ttl)
        return True

    async def delete(self, key: str) -> int:
        self.calls.append(("delete", key))
        return 1 if self.store.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.closed = True


class FakeRedisFactory:
    """Stands in for the ``Redis`` class; every client shares one store."""

    def __init__(self) -> None:
        self.store: dict[str, tuple[bytes, float | None]] = {}
        self.clients: list[FakeRedis] = []
        self.down = False

    def __call__(self, **kwargs: Any) -> FakeRedis:
        client = FakeRedis(self.store, down=self.down, **kwargs)
        self.clients.append(client)
        return client


# ── Fake Memcached (one dict per server address) ──────────────────────────

class FakeMemcached:
    """Just enough of ``aiomcache.Client`` for the session handler."""

    def __init__(self, store: dict[bytes, tuple[bytes, float | None]], down: bool = False) -> None:
        self.store = store
        self.down = down
        self.calls: list[tuple[str, bytes]] = []
        self.closed = False

    def _alive(self, key: bytes) -> bool:
        entry = self.store.get(key)
        if entry is None:
            return False
        if entry[1] is not None and entry[1] <= time.time():
            del self.store[key]
            return False
        return True

    @staticmethod
    def _deadline(exptime: int) -> float | None:
        return time.time() + exptime if exptime else None

    async def version(self) -> bytes:
        if self.down:
            raise ConnectionRefusedError("Connection refused")
        return b"1.6.21"

    async def get(self, key: bytes) -> bytes | None:
        self.calls.append(("get", key))
        return self.store[key][0] if self._alive(key) else None

    async def set(self, key: bytes, value: bytes, exptime: int = 0) -> bool:
        self.calls.append(("set", key))
        self.store[key] = (value, self._deadline(exptime))
        return True

    async def add(self, key: bytes, value: bytes, exptime: int = 0) -> bool:
        self.calls.append(("add", key))
        if self._alive(key):
            return False
        self.store[key] = (value, self._deadline(exptime))
        return True

    async def replace(self, key: bytes, value: bytes, exptime: int = 0) -> bool:
        self.calls.append(("replace", key))
        if not self._alive(key):
            return False
        self.store[key] = (value, self._deadline(exptime))
        return True

    async def touch(self, key: bytes, exptime: int) -> bool:
        self.calls.append(("touch", key))
        if not self._alive(key):
            return False
        self.store[key] = (self.store[key][0], self._deadline(exptime))
        return True

    async def delete(self, key: bytes) -> bool:
        self.calls.append(("delete", key))
        return self.store.pop(key, None) is not None

    async def close(self) -> None:
        self.closed = True


class FakeMemcachedFactory:
    """Stands in for ``aiomcache.Client``; one store per ``host:port``."""

    def __init__(self) -> None:
        self.stores: dict[str, dict[bytes, tuple[bytes, float | None]]] = {}
        self.clients: list[FakeMemcached] = []
        self.down: set[str] = set()

    def __call__(self, host: str, port: int = 11211, **kwargs: Any) -> FakeMemcached:
        address = f"{host}:{port}"
        client = FakeMemcached(self.stores.setdefault(address, {}), down=address in self.down)
        self.clients.append(client)
        return client

    def merged(self) -> dict[bytes, tuple[bytes, float | None]]:
        merged: dict[bytes, tuple[bytes, float | None]] = {}
        for store in self.stores.values():
            merged.update(store)
        return merged


# ── Fixtures ──────────────────────────────────────────────────────────────

@pytest.fixture
def save_dir(tmp_path) -> str:
    return str(tmp_path / "sessions")


@pytest.fixture
def file_settings(save_dir) -> SessionSettings:
    return SessionSettings(handler="file", save_path=save_dir, time_to_update=0)


@pytest.fixture
def redis_settings() -> SessionSettings:
    return SessionSettings(
        handler="redis",
        save_path="tcp://127.0.0.1:6379",
        lock_retry_interval=0.01,
        lock_max_retries=200,
    )


@pytest.fixture
def memcached_settings() -> SessionSettings:
    return SessionSettings(
        handler="memcached",
        save_path="10.0.0.1:11211,10.0.0.2:11211",
        lock_retry_interval=0.01,
        lock_max_retries=200,
    )


@pytest.fixture
def memory_settings() -> SessionSettings:
    return SessionSettings(handler="memory", time_to_update=0)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cookies() -> CookieManager:
    return CookieManager()


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedisFactory:
    factory = FakeRedisFactory()
    monkeypatch.setattr("sessionlock.handlers.redis.Redis", factory)
    return factory


@pytest.fixture
def fake_memcached(monkeypatch) -> FakeMemcachedFactory:
    factory = FakeMemcachedFactory()
    monkeypatch.setattr("sessionlock.handlers.memcached.aiomcache.Client", factory)
    return factory


@pytest.fixture(autouse=True)
def _reset_settings():
    yield
    override_settings(None)
