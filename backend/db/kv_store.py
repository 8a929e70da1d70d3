"""
Key-Value Store — TTL-capable JSON store for job status and forecast memoization.

Backed by Redis in every deployed environment. Values are JSON documents;
keys follow the ``<namespace>:<kind>:<id>`` convention (``reorder:job:<uuid>``,
``forecast:<product_id>:<options>``).
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


class KeyValueStore(Protocol):
    async def get_json(self, key: str) -> Any | None: ...

    async def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
    """JSON get/set on top of a redis.asyncio client."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get_json(self, key: str) -> Any | None:
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("kv.decode_failed", key=key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(value, default=str)
        if ttl_seconds:
            await self.client.set(key, payload, ex=int(ttl_seconds))
        else:
            await self.client.set(key, payload)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def close(self) -> None:
        await self.client.aclose()
