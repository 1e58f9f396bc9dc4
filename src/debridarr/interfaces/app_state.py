"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.datastructures import State

from debridarr.infrastructure.config import AppConfig
from debridarr.infrastructure.graceful_shutdown import GracefulShutdown

if TYPE_CHECKING:
    from debridarr.application.use_cases import (
        DownloadUseCase,
        NextEpisodePrefetcher,
        StremioStreamUseCase,
        TorrentSearchUseCase,
    )
    from debridarr.domain.ports import (
        CachePort,
        IndexerPort,
        MetadataPort,
        TorrentInfoPort,
    )
    from debridarr.infrastructure.metrics import MetricsCollector
    from debridarr.infrastructure.single_flight import SingleFlight


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    cache: CachePort
    http_client: httpx.AsyncClient
    single_flight: SingleFlight
    metrics: MetricsCollector
    graceful_shutdown: GracefulShutdown

    # Domain ports
    indexers: IndexerPort
    torrent_info: TorrentInfoPort
    metadata: MetadataPort

    # Use cases
    search_uc: TorrentSearchUseCase
    prefetcher: NextEpisodePrefetcher
    stremio_stream_uc: StremioStreamUseCase
    download_uc: DownloadUseCase
