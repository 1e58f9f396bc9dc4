from .stream import (
    CachedFile,
    Candidate,
    ContentType,
    DebridError,
    DebridNotReadyError,
    DownloadProgress,
    EpisodeRef,
    Indexer,
    InvalidUserConfigError,
    MetadataNotFoundError,
    NoDownloadError,
    NoResultsError,
    Quality,
    ResolvedInfo,
    StreamDescriptor,
    StreamError,
    StreamRequest,
    TitleInfo,
    UnsupportedTypeError,
)

__all__ = [
    "CachedFile",
    "Candidate",
    "ContentType",
    "DebridError",
    "DebridNotReadyError",
    "DownloadProgress",
    "EpisodeRef",
    "Indexer",
    "InvalidUserConfigError",
    "MetadataNotFoundError",
    "NoDownloadError",
    "NoResultsError",
    "Quality",
    "ResolvedInfo",
    "StreamDescriptor",
    "StreamError",
    "StreamRequest",
    "TitleInfo",
    "UnsupportedTypeError",
]
