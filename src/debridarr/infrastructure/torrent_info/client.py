"""Resolves candidates to info hashes via magnet links or .torrent files."""

from __future__ import annotations

import base64
import hashlib
import json
import re
from typing import Any
from urllib.parse import parse_qs, urljoin, urlparse

import bencodepy
import httpx
import structlog

from debridarr.domain.entities.stream import (
    CachedFile,
    Candidate,
    NoDownloadError,
    ResolvedInfo,
    StreamError,
)
from debridarr.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

_MAX_REDIRECTS = 5
_BTIH_RE = re.compile(r"^urn:btih:([0-9a-zA-Z]+)$")


class TorrentInfoError(StreamError):
    """The candidate link yielded neither a magnet nor a valid torrent."""


def info_hash_from_magnet(magnet_url: str) -> str:
    """Extract the lowercase hex info hash from a magnet URI.

    Accepts both 40-char hex and 32-char base32 ``btih`` forms.
    """
    query = parse_qs(urlparse(magnet_url).query)
    for xt in query.get("xt", []):
        m = _BTIH_RE.match(xt)
        if m is None:
            continue
        raw = m.group(1)
        if len(raw) == 40:
            return raw.lower()
        if len(raw) == 32:
            return base64.b32decode(raw.upper()).hex()
    raise TorrentInfoError(f"No btih hash in magnet: {magnet_url[:80]}")


def _magnet_name(magnet_url: str) -> str:
    return parse_qs(urlparse(magnet_url).query).get("dn", [""])[0]


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _info_hash(data: bytes, info: dict[bytes, Any]) -> str:
    """SHA-1 of the info dictionary exactly as it appears in *data*.

    Re-encoding sorts keys, so the original byte span is hashed. A
    re-encoded dictionary has the same length, which bounds the span.
    """
    size = len(bencodepy.encode(info))
    pos = data.find(b"4:info")
    while pos != -1:
        span = data[pos + 6 : pos + 6 + size]
        try:
            if bencodepy.decode(span) == info:
                return hashlib.sha1(span).hexdigest()
        except (bencodepy.BencodeDecodeError, ValueError, TypeError):
            pass
        pos = data.find(b"4:info", pos + 1)
    return hashlib.sha1(bencodepy.encode(info)).hexdigest()


def parse_torrent(data: bytes) -> tuple[str, str, tuple[CachedFile, ...], bool]:
    """Decode a .torrent file into ``(info_hash, name, files, private)``."""
    try:
        meta = bencodepy.decode(data)
    except (bencodepy.BencodeDecodeError, ValueError, TypeError) as e:
        raise TorrentInfoError("Invalid torrent file") from e
    if not isinstance(meta, dict) or b"info" not in meta:
        raise TorrentInfoError("Torrent file has no info dictionary")

    info = meta[b"info"]
    info_hash = _info_hash(data, info)
    name = _text(info.get(b"name", b""))

    if b"files" in info:
        files = tuple(
            CachedFile(
                name="/".join(_text(p) for p in f.get(b"path", [])),
                size=int(f.get(b"length", 0)),
            )
            for f in info[b"files"]
        )
    else:
        files = (CachedFile(name=name, size=int(info.get(b"length", 0))),)

    return info_hash, name, files, info.get(b"private") == 1


def _serialize_info(info: ResolvedInfo) -> str:
    return json.dumps(
        {
            "info_hash": info.info_hash,
            "name": info.name,
            "size": info.size,
            "magnet_url": info.magnet_url,
            "link": info.link,
            "files": [[f.name, f.size] for f in info.files],
            "private": info.private,
        }
    )


def _deserialize_info(data: str) -> ResolvedInfo:
    d = json.loads(data)
    return ResolvedInfo(
        info_hash=d["info_hash"],
        name=d.get("name", ""),
        size=d.get("size", 0),
        magnet_url=d.get("magnet_url"),
        link=d.get("link", ""),
        files=tuple(CachedFile(name=n, size=s) for n, s in d.get("files", [])),
        private=d.get("private", False),
    )


class HttpxTorrentInfoClient:
    """Implements ``TorrentInfoPort`` over httpx + CachePort.

    Every resolved info is cached under the candidate id so the download
    endpoint (a later, separate request) can find it again.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        cache: CachePort,
        ttl_seconds: int = 7 * 86_400,
    ) -> None:
        self._http = http_client
        self._cache = cache
        self._ttl = ttl_seconds

    @staticmethod
    def _cache_key(candidate_id: str) -> str:
        return f"torrentinfo:{candidate_id}"

    async def resolve(self, candidate: Candidate) -> ResolvedInfo:
        data = await self._cache.get(self._cache_key(candidate.id))
        if data is not None:
            try:
                return _deserialize_info(data)
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                log.warning("torrent_info_cache_corrupt", candidate_id=candidate.id)

        info = await self._resolve_uncached(candidate)
        await self._cache.set(
            self._cache_key(candidate.id), _serialize_info(info), ttl=self._ttl
        )
        return info

    async def _resolve_uncached(self, candidate: Candidate) -> ResolvedInfo:
        if candidate.magnet_url:
            return ResolvedInfo(
                info_hash=candidate.info_hash
                or info_hash_from_magnet(candidate.magnet_url),
                name=candidate.name,
                size=candidate.size,
                magnet_url=candidate.magnet_url,
                link=candidate.link,
            )

        url = candidate.link
        for _ in range(_MAX_REDIRECTS):
            resp = await self._http.get(url, follow_redirects=False)
            if resp.is_redirect:
                location = resp.headers.get("location", "")
                if location.startswith("magnet:"):
                    return ResolvedInfo(
                        info_hash=info_hash_from_magnet(location),
                        name=_magnet_name(location) or candidate.name,
                        size=candidate.size,
                        magnet_url=location,
                        link=candidate.link,
                    )
                url = urljoin(url, location)
                continue
            resp.raise_for_status()
            info_hash, name, files, private = parse_torrent(resp.content)
            return ResolvedInfo(
                info_hash=info_hash,
                name=name or candidate.name,
                size=sum(f.size for f in files) or candidate.size,
                link=url,
                files=files,
                private=private,
            )
        raise TorrentInfoError(f"Too many redirects for candidate {candidate.id}")

    async def fetch_torrent_file(self, info: ResolvedInfo) -> bytes:
        if not info.link:
            raise NoDownloadError(f"No torrent file link for {info.info_hash}")
        resp = await self._http.get(info.link, follow_redirects=True)
        resp.raise_for_status()
        return resp.content

    async def get_by_id(self, candidate_id: str) -> ResolvedInfo:
        data = await self._cache.get(self._cache_key(candidate_id))
        if data is None:
            raise NoDownloadError(f"Unknown or expired torrent id {candidate_id}")
        try:
            return _deserialize_info(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            log.error("torrent_info_deserialize_error", candidate_id=candidate_id)
            raise NoDownloadError(f"Corrupt torrent info for {candidate_id}") from e
