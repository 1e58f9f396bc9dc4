from .cache import CachePort
from .debrid import DebridPort
from .indexer import IndexerPort
from .metadata import MetadataPort
from .torrent_info import TorrentInfoPort

__all__ = [
    "CachePort",
    "DebridPort",
    "IndexerPort",
    "MetadataPort",
    "TorrentInfoPort",
]
