"""Redis adapter via redis.asyncio."""

from __future__ import annotations

import asyncio
import pickle
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

log = structlog.get_logger(__name__)


class RedisAdapter:
    """Async Redis TTL cache; values are pickled.

    Read and write errors are logged and degrade to a cache miss so a
    flaky Redis never fails a stream request.

    Args:
        url: Redis URL (e.g. ``redis://localhost:6379/0``).
        ttl_seconds: Default TTL.
        max_concurrent: Max parallel Redis operations.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl_seconds: int = 3600,
        max_concurrent: int = 50,
    ) -> None:
        self.url = url
        self.default_ttl = ttl_seconds
        self._client: Redis | None = None
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> RedisAdapter:
        if self._client is None:
            self._client = Redis.from_url(self.url, decode_responses=False)
            try:
                await self._client.ping()
            except RedisError as e:
                log.error("redis_connection_failed", url=self.url, error=str(e))
                raise
            log.info("redis_connected", url=self.url)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            log.info("redis_closed")

    async def get(self, key: str) -> Any | None:
        if self._client is None:
            raise RuntimeError("Redis not initialized. Use 'async with cache:'")
        async with self._semaphore:
            try:
                raw = await self._client.get(key)
            except RedisError as e:
                log.error("redis_get_error", key=key, error=str(e))
                return None
        if raw is None:
            log.debug("cache_get", key=key, hit=False)
            return None
        try:
            value = pickle.loads(raw)
        except pickle.PickleError as e:
            log.error("redis_unpickle_error", key=key, error=str(e))
            return None
        log.debug("cache_get", key=key, hit=True)
        return value

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        if self._client is None:
            raise RuntimeError("Redis not initialized.")
        expire = ttl if ttl is not None else self.default_ttl
        packed = pickle.dumps(value)
        async with self._semaphore:
            try:
                if expire:
                    await self._client.setex(key, expire, packed)
                else:
                    await self._client.set(key, packed)
            except RedisError as e:
                log.error("redis_set_error", key=key, error=str(e))
                return
        log.debug("cache_set", key=key, ttl=expire, size_bytes=len(packed))

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        async with self._semaphore:
            try:
                return await self._client.delete(key) > 0
            except RedisError as e:
                log.error("redis_delete_error", key=key, error=str(e))
                return False

    async def exists(self, key: str) -> bool:
        if self._client is None:
            return False
        async with self._semaphore:
            try:
                return await self._client.exists(key) > 0
            except RedisError as e:
                log.error("redis_exists_error", key=key, error=str(e))
                return False

    async def clear(self) -> None:
        if self._client is None:
            return
        async with self._semaphore:
            try:
                await self._client.flushdb()
                log.warning("redis_flushed")
            except RedisError as e:
                log.error("redis_flush_error", error=str(e))
