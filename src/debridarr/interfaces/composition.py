"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

import functools
from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import httpx
import structlog
from fastapi import FastAPI

from debridarr.application.use_cases import (
    DownloadUseCase,
    NextEpisodePrefetcher,
    StremioStreamUseCase,
    TorrentSearchUseCase,
)
from debridarr.infrastructure.cache.cache_factory import create_cache
from debridarr.infrastructure.common.retry_transport import RetryTransport
from debridarr.infrastructure.debrid import create_debrid
from debridarr.infrastructure.jackett.client import HttpxJackettClient
from debridarr.infrastructure.metadata.cinemeta import HttpxCinemetaClient
from debridarr.infrastructure.metrics import MetricsCollector
from debridarr.infrastructure.single_flight import SingleFlight
from debridarr.infrastructure.stremio.torrent_sorter import (
    bytes_to_size,
    sort_candidates,
)
from debridarr.infrastructure.torrent_info.client import HttpxTorrentInfoClient
from debridarr.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

_DRAIN_TIMEOUT_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan Hook: Initialize and cleanup all resources (DI Composition Root).

    Order matters:
        1. Metrics + single-flight table (no dependencies)
        2. Cache (required by every client)
        3. HTTP client (shared by every client)
        4. Jackett, torrent-info and Cinemeta clients
        5. Use cases
    Teardown runs in reverse.
    """
    state = cast(AppState, app.state)
    config = state.config

    # 1) Process-wide coordination state
    state.metrics = MetricsCollector()
    state.single_flight = SingleFlight()

    # 2) Cache
    cache = create_cache(
        backend=config.cache.backend,
        directory=str(config.cache.directory),
        redis_url=config.cache.redis_url,
        ttl_seconds=config.cache.ttl_seconds,
        max_concurrent=config.cache.max_concurrent,
    )
    await cache.__aenter__()
    state.cache = cache
    log.info("cache_initialized", backend=config.cache.backend)

    # 3) HTTP client with 429/503 retry
    state.http_client = httpx.AsyncClient(
        transport=RetryTransport(
            httpx.AsyncHTTPTransport(),
            max_retries=config.http_retry_max_attempts,
            backoff_base=config.http_retry_backoff_base,
            max_backoff=config.http_retry_max_backoff,
        ),
        timeout=httpx.Timeout(config.http_timeout_seconds),
        headers={"User-Agent": config.http_user_agent},
    )
    log.info(
        "http_client_initialized",
        timeout_seconds=config.http_timeout_seconds,
        retry_max_attempts=config.http_retry_max_attempts,
    )

    # 4) External collaborators
    state.indexers = HttpxJackettClient(
        base_url=config.jackett.url,
        api_key=config.jackett.api_key,
        http_client=state.http_client,
        cache=state.cache,
        timeout_seconds=config.jackett.timeout_seconds,
        indexers_ttl_seconds=config.jackett.indexers_ttl_seconds,
    )
    state.torrent_info = HttpxTorrentInfoClient(
        http_client=state.http_client,
        cache=state.cache,
        ttl_seconds=config.search.torrent_info_ttl_seconds,
    )
    state.metadata = HttpxCinemetaClient(
        base_url=config.cinemeta_url,
        http_client=state.http_client,
        cache=state.cache,
    )
    log.info("clients_initialized", jackett_url=config.jackett.url)

    # 5) Use cases
    debrid_factory = functools.partial(create_debrid, http_client=state.http_client)

    state.search_uc = TorrentSearchUseCase(
        indexers=state.indexers,
        torrent_info=state.torrent_info,
        single_flight=state.single_flight,
        config=config.search,
        sort_fn=sort_candidates,
        observer=state.metrics,
    )
    state.prefetcher = NextEpisodePrefetcher(
        metadata=state.metadata,
        search=state.search_uc,
        torrent_info=state.torrent_info,
    )
    state.stremio_stream_uc = StremioStreamUseCase(
        metadata=state.metadata,
        search=state.search_uc,
        prefetcher=state.prefetcher,
        debrid_factory=debrid_factory,
        format_size=bytes_to_size,
        addon_name=config.app_name,
    )
    state.download_uc = DownloadUseCase(
        torrent_info=state.torrent_info,
        cache=state.cache,
        single_flight=state.single_flight,
        prefetcher=state.prefetcher,
        debrid_factory=debrid_factory,
        ttl_seconds=config.search.download_ttl_seconds,
        metrics=state.metrics,
    )

    state.graceful_shutdown.mark_ready()
    log.info("app_startup_complete")

    try:
        yield
    finally:
        await state.graceful_shutdown.wait_for_drain(timeout=_DRAIN_TIMEOUT_SECONDS)

        await state.prefetcher.aclose()
        log.info("prefetcher_stopped")

        await state.http_client.aclose()
        log.info("http_client_closed")

        await state.cache.aclose()
        log.info("cache_closed")

        log.info("app_shutdown_complete")
