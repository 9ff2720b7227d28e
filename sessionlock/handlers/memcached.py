"""Session handler backed by a pool of Memcached servers (``aiomcache``)."""

from __future__ import annotations

import bisect
import hashlib
import logging
import re
import time
from dataclasses import dataclass

import aiomcache
from aiomcache.exceptions import ClientException

from ..config import SessionSettings
from ..cookies import CookieManager
from ..errors import ConfigurationError, IoUnavailable
from .base import LOCK_TTL
from .remote import RemoteHandler

logger = logging.getLogger(__name__)

SERVER_PATTERN = re.compile(r",?([^,:]+):(\d{1,5})(?::(\d+))?")
VNODES_PER_WEIGHT = 100


@dataclass(frozen=True)
class MemcachedServer:
    host: str
    port: int
    weight: int = 1

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def parse_server_list(save_path: str) -> list[MemcachedServer]:
    """Parse ``host:port[:weight][,host:port[:weight]...]``, skipping duplicates."""
    if not save_path:
        raise ConfigurationError.empty_save_path()

    servers: list[MemcachedServer] = []
    seen: set[str] = set()
    for host, port, weight in SERVER_PATTERN.findall(save_path):
        server = MemcachedServer(host.strip(), int(port), int(weight) if weight else 1)
        if server.address in seen:
            logger.debug("Session: Memcached server pool already has %s", server.address)
            continue
        seen.add(server.address)
        servers.append(server)

    if not servers:
        raise ConfigurationError.invalid_save_path_format(save_path)
    return servers


class MemcachedPool:
    """Routes keys to servers over a weighted consistent-hash ring."""

    def __init__(self, clients: dict[MemcachedServer, aiomcache.Client]) -> None:
        self.clients = clients
        self._positions: list[int] = []
        self._owners: list[MemcachedServer] = []
        for server in clients:
            for i in range(VNODES_PER_WEIGHT * max(server.weight, 1)):
                position = self._hash(f"{server.address}:vnode:{i}".encode())
                idx = bisect.bisect_left(self._positions, position)
                self._positions.insert(idx, position)
                self._owners.insert(idx, server)

    @staticmethod
    def _hash(key: bytes) -> int:
        return int.from_bytes(hashlib.md5(key, usedforsecurity=False).digest()[:4], "big")

    def server_for(self, key: bytes) -> MemcachedServer:
        idx = bisect.bisect(self._positions, self._hash(key)) % len(self._positions)
        return self._owners[idx]

    def client_for(self, key: bytes) -> aiomcache.Client:
        return self.clients[self.server_for(key)]

    async def get(self, key: bytes) -> bytes | None:
        return await self.client_for(key).get(key)

    async def set(self, key: bytes, value: bytes, exptime: int = 0) -> bool:
        return await self.client_for(key).set(key, value, exptime=exptime)

    async def add(self, key: bytes, value: bytes, exptime: int = 0) -> bool:
        return await self.client_for(key).add(key, value, exptime=exptime)

    async def replace(self, key: bytes, value: bytes, exptime: int = 0) -> bool:
        return await self.client_for(key).replace(key, value, exptime=exptime)

    async def touch(self, key: bytes, exptime: int) -> bool:
        return await self.client_for(key).touch(key, exptime)

    async def delete(self, key: bytes) -> bool:
        return await self.client_for(key).delete(key)

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()


class MemcachedHandler(RemoteHandler):
    default_retry_interval = 1.0
    default_max_retries = 30
    transport_errors = (ClientException, OSError)

    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
    ) -> None:
        super().__init__(settings, ip_address, cookies)

        self.servers = parse_server_list(self.save_path)
        if self.match_ip:
            self.key_prefix += f"{self.ip_address}:"

        self.memcached: MemcachedPool | None = None

    @property
    def connected(self) -> bool:
        return self.memcached is not None

    async def open(self, path: str, name: str) -> bool:
        clients: dict[MemcachedServer, aiomcache.Client] = {}
        for server in self.servers:
            client = aiomcache.Client(server.host, server.port)
            try:
                await client.version()
            except self.transport_errors as exc:
                logger.error("Session: unable to add %s to the Memcached server pool: %s", server.address, exc)
                await client.close()
                continue
            clients[server] = client

        if not clients:
            return self.fail(IoUnavailable("Session: Memcached server pool is empty"))

        self.memcached = MemcachedPool(clients)
        return True

    async def close(self) -> bool:
        if self.memcached is None:
            return True

        ok = await self._release_on_close()
        try:
            await self.memcached.close()
        finally:
            self.memcached = None
        return ok

    async def _get(self, key: str) -> bytes | None:
        return await self.memcached.get(key.encode())

    async def _set(self, key: str, value: str, ttl: int) -> bool:
        return await self.memcached.set(key.encode(), value.encode("utf-8"), exptime=ttl)

    async def _add(self, key: str, value: str, ttl: int) -> bool:
        return await self.memcached.add(key.encode(), value.encode("utf-8"), exptime=ttl)

    async def _expire(self, key: str, ttl: int) -> bool:
        return await self.memcached.touch(key.encode(), ttl)

    async def _delete(self, key: str) -> bool:
        return await self.memcached.delete(key.encode())

    async def _renew_lock(self, key: str) -> bool:
        return await self.memcached.replace(key.encode(), str(int(time.time())).encode(), exptime=LOCK_TTL)
