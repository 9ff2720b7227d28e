"""DynamoDB session handler for production deployments without a cache."""

from __future__ import annotations

import logging
import time
from contextlib import AsyncExitStack
from typing import Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import SessionSettings
from ..cookies import CookieManager
from ..errors import IoUnavailable, WriteFailed
from ..fingerprint import fingerprint
from .base import BaseHandler

logger = logging.getLogger(__name__)


class DynamoDBHandler(BaseHandler):
    """Session handler using AWS DynamoDB.

    Table schema:
        Partition key: session_id (S)
        Attributes: data (S, serialized session), updated_at (N), ttl (N)

    Enable TTL on the `ttl` attribute for automatic cleanup. DynamoDB has no
    advisory lock, so this handler uses the no-op lock and ``collect()``
    leaves expiry to the table TTL.
    """

    transport_errors = (BotoCoreError, ClientError)

    def __init__(
        self,
        settings: SessionSettings,
        ip_address: str = "",
        cookies: CookieManager | None = None,
    ) -> None:
        super().__init__(settings, ip_address, cookies)
        self._table_name = settings.dynamodb_table
        self._max_age = settings.ttl
        self._session = aioboto3.Session()
        self._endpoint_url = settings.dynamodb_endpoint or None
        self._region_name = settings.dynamodb_region
        self.key_prefix = f"{self.key_prefix}{self.cookie_name}:"
        if self.match_ip:
            self.key_prefix += f"{self.ip_address}:"
        self.key_exists = False
        self._stack: AsyncExitStack | None = None
        self._table: Any = None

    async def open(self, path: str, name: str) -> bool:
        stack = AsyncExitStack()
        try:
            dynamodb = await stack.enter_async_context(
                self._session.resource(
                    "dynamodb",
                    endpoint_url=self._endpoint_url,
                    region_name=self._region_name,
                )
            )
            self._table = await dynamodb.Table(self._table_name)
        except self.transport_errors as exc:
            await stack.aclose()
            return self.fail(IoUnavailable(f"Session: unable to open DynamoDB table '{self._table_name}': {exc}"))

        self._stack = stack
        return True

    async def read(self, session_id: str) -> str | None:
        if self._table is None or not await self.lock_session(session_id):
            return None
        if self.session_id is None:
            self.session_id = session_id

        try:
            response = await self._table.get_item(Key={"session_id": self.key_prefix + session_id})
        except self.transport_errors as exc:
            self.fail(IoUnavailable(f"Session: DynamoDB read failed: {exc}"))
            return None

        item = response.get("Item")
        # TTL deletion in DynamoDB is lazy; an expired item may still be returned
        if item is None or float(item.get("ttl", 0)) < time.time():
            self.key_exists = False
            data = ""
        else:
            self.key_exists = True
            data = item["data"]

        self.fingerprint = fingerprint(data)
        return data

    async def write(self, session_id: str, data: str) -> bool:
        if self._table is None:
            return False

        if session_id != self.session_id:
            self.session_id = session_id
            self.key_exists = False

        now = time.time()
        key = {"session_id": self.key_prefix + session_id}
        new_fingerprint = fingerprint(data)
        try:
            if new_fingerprint != self.fingerprint or not self.key_exists:
                await self._table.put_item(
                    Item={
                        **key,
                        "data": data,
                        "updated_at": int(now),
                        "ttl": int(now + self._max_age),
                    }
                )
                self.fingerprint = new_fingerprint
                self.key_exists = True
                return True

            await self._table.update_item(
                Key=key,
                UpdateExpression="SET updated_at = :now, #ttl = :ttl",
                ExpressionAttributeNames={"#ttl": "ttl"},
                ExpressionAttributeValues={":now": int(now), ":ttl": int(now + self._max_age)},
            )
        except self.transport_errors as exc:
            return self.fail(WriteFailed(f"Session: DynamoDB write failed: {exc}"))
        return True

    async def close(self) -> bool:
        await self.release_lock()
        if self._stack is not None:
            try:
                await self._stack.aclose()
            finally:
                self._stack = None
                self._table = None
        return True

    async def destroy(self, session_id: str) -> bool:
        if self._table is None:
            return False
        try:
            await self._table.delete_item(Key={"session_id": self.key_prefix + session_id})
        except self.transport_errors as exc:
            return self.fail(IoUnavailable(f"Session: DynamoDB delete failed: {exc}"))
        self.key_exists = False
        await self.release_lock()
        return self.destroy_cookie()
