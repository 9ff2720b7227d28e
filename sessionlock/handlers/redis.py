"""Session handler backed by Redis (``redis.asyncio``)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..config import SessionSettings
from ..cookies import CookieManager
from ..errors import ConfigurationError, IoUnavailable
from .remote import RemoteHandler

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6379
DEFAULT_PROTOCOL = "tcp"


@dataclass
class RedisServer:
    host: str = "localhost"
    port: int = DEFAULT_PORT
    unix_socket_path: str | None = None
    ssl: bool = False
    password: str | None = None
    database: int = 0
    timeout: float | None = None
    prefix: str | None = None


def parse_save_path(save_path: str) -> RedisServer:
    """Parse ``tcp://host:port?auth=..&database=N&timeout=S&prefix=P`` and friends.

    Also accepted: ``tls://host:port``, ``unix:///path/to.sock?..``, a bare
    ``/path/to.sock`` and a bare ``host[:port]``.
    """
    if not save_path:
        raise ConfigurationError.empty_save_path()

    match = re.fullmatch(r"unix://(/[^?]+)(?:\?(.*))?", save_path)
    if match:
        server = RedisServer(unix_socket_path=match.group(1), port=0)
        query = match.group(2) or ""
    else:
        if "://" not in save_path and not save_path.startswith("/"):
            save_path = f"{DEFAULT_PROTOCOL}://{save_path}"
        try:
            url = urlsplit(save_path)
            port = url.port
        except ValueError as exc:
            raise ConfigurationError.invalid_save_path_format(save_path) from exc

        if url.path.startswith("/") and not url.hostname:
            server = RedisServer(unix_socket_path=url.path, port=0)
        elif url.hostname:
            scheme = url.scheme or DEFAULT_PROTOCOL
            if scheme not in ("tcp", "tls", "redis", "rediss"):
                raise ConfigurationError.invalid_save_path_format(save_path)
            server = RedisServer(
                host=url.hostname,
                port=port or DEFAULT_PORT,
                ssl=scheme in ("tls", "rediss"),
            )
        else:
            raise ConfigurationError.invalid_save_path_format(save_path)
        query = url.query

    options = {key: values[-1] for key, values in parse_qs(query).items()}
    try:
        server.database = int(options.get("database", 0))
        timeout = float(options.get("timeout", 0))
    except ValueError as exc:
        raise ConfigurationError.invalid_save_path_format(save_path) from exc
    server.password = options.get("auth")
    server.timeout = timeout or None
    server.prefix = options.get("prefix")
    return server


class RedisHandler(RemoteHandler):
    default_retry_interval = 0.1
    default_max_retries = 300
    transport_errors = (RedisError, OSError)

    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
    ) -> None:
        super().__init__(settings, ip_address, cookies)

        self.server = parse_save_path(self.save_path)
        if self.server.prefix is not None:
            self.key_prefix = self.server.prefix

        if self.match_ip:
            self.key_prefix += f"{self.ip_address}:"

        self.redis: Redis | None = None

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def open(self, path: str, name: str) -> bool:
        server = self.server
        if server.unix_socket_path:
            client = Redis(
                unix_socket_path=server.unix_socket_path,
                password=server.password,
                db=server.database,
                socket_timeout=server.timeout,
            )
        else:
            client = Redis(
                host=server.host,
                port=server.port,
                password=server.password,
                db=server.database,
                socket_timeout=server.timeout,
                socket_connect_timeout=server.timeout,
                ssl=server.ssl,
            )

        try:
            await client.ping()
        except self.transport_errors as exc:
            await client.aclose()
            return self.fail(IoUnavailable(f"Session: unable to connect to Redis with the configured settings: {exc}"))

        self.redis = client
        return True

    async def close(self) -> bool:
        if self.redis is None:
            return True

        ok = await self._release_on_close()
        try:
            await self.redis.aclose()
        except RedisError as exc:
            ok = self.fail(IoUnavailable(f"Session: RedisError on close(): {exc}"))
        finally:
            self.redis = None
        return ok

    async def _get(self, key: str) -> bytes | None:
        return await self.redis.get(key)

    async def _set(self, key: str, value: str, ttl: int) -> bool:
        return bool(await self.redis.set(key, value, ex=ttl))

    async def _add(self, key: str, value: str, ttl: int) -> bool:
        # NX: only if absent, EX: expire after ttl seconds
        return bool(await self.redis.set(key, value, ex=ttl, nx=True))

    async def _expire(self, key: str, ttl: int) -> bool:
        return bool(await self.redis.expire(key, ttl))

    async def _delete(self, key: str) -> bool:
        return await self.redis.delete(key) == 1
