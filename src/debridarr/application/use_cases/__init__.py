from .download import DownloadUseCase
from .next_episode import NextEpisodePrefetcher
from .stremio_stream import StremioStreamUseCase
from .torrent_search import TorrentSearchUseCase

__all__ = [
    "DownloadUseCase",
    "NextEpisodePrefetcher",
    "StremioStreamUseCase",
    "TorrentSearchUseCase",
]
