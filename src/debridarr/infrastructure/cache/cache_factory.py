"""Creates the configured cache adapter."""

from __future__ import annotations

from typing import Literal

import structlog

from debridarr.domain.ports.cache import CachePort
from debridarr.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from debridarr.infrastructure.cache.redis_adapter import RedisAdapter

log = structlog.get_logger(__name__)

CacheBackend = Literal["diskcache", "redis"]


def create_cache(
    backend: CacheBackend = "diskcache",
    *,
    directory: str = "./.cache/debridarr",
    redis_url: str = "redis://localhost:6379/0",
    ttl_seconds: int = 3600,
    max_concurrent: int = 10,
) -> CachePort:
    """Return an (unopened) cache adapter for *backend*.

    Raises:
        ValueError: Unknown backend.
    """
    if backend == "diskcache":
        log.info("cache_factory_create", backend=backend, directory=directory)
        return DiskcacheAdapter(
            directory=directory,
            ttl_seconds=ttl_seconds,
            max_concurrent=max_concurrent,
        )
    if backend == "redis":
        log.info("cache_factory_create", backend=backend, url=redis_url)
        # Redis copes with far more parallel clients than SQLite.
        return RedisAdapter(url=redis_url, ttl_seconds=ttl_seconds, max_concurrent=50)
    raise ValueError(
        f"Unknown cache backend: {backend!r}. Must be 'diskcache' or 'redis'."
    )
