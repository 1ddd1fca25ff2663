"""Redis cache client for Rangewatch."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

from .config import settings


class RedisCache:
    """Async Redis client wrapper storing JSON documents."""

    def __init__(self):
        self._client: redis.Redis | None = None

    async def connect(self, url: str | None = None) -> None:
        """Connect to Redis."""
        self._client = redis.from_url(
            url or settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    def use_client(self, client: redis.Redis) -> None:
        """Use an already constructed client."""
        self._client = client

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if not self._client:
            raise RuntimeError("Redis client not connected")
        return self._client

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def ping(self) -> bool:
        """Check Redis is reachable."""
        try:
            return bool(await self.client.ping())
        except (redis.RedisError, RuntimeError):
            return False

    async def get_json(self, key: str) -> Any | None:
        """Get and parse JSON from cache."""
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(
        self,
        key: str,
        value: str | dict[str, Any] | list[Any],
        ttl: int | None = None,
    ) -> None:
        """Set a value in cache."""
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        if ttl:
            await self.client.setex(key, ttl, value)
        else:
            await self.client.set(key, value)

    async def delete(self, key: str) -> None:
        """Delete a key from cache."""
        await self.client.delete(key)


# Singleton instance
redis_cache = RedisCache()
