"""Zero-impact in-memory pipeline metrics.

All counters are plain Python integers manipulated inside the single-threaded
async event loop: no locks, no I/O, no external dependencies.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class IndexerStats:
    """Accumulated statistics for a single indexer."""

    searches: int = 0
    successes: int = 0
    failures: int = 0
    total_results: int = 0
    total_duration_ns: int = 0
    info_failures: int = 0
    slow_infos: int = 0
    max_info_seconds: float = 0.0

    def snapshot(self) -> dict[str, object]:
        avg_ms = (
            round(self.total_duration_ns / self.searches / 1_000_000, 1)
            if self.searches
            else 0.0
        )
        return {
            "searches": self.searches,
            "successes": self.successes,
            "failures": self.failures,
            "total_results": self.total_results,
            "avg_duration_ms": avg_ms,
            "info_failures": self.info_failures,
            "slow_infos": self.slow_infos,
            "max_info_seconds": round(self.max_info_seconds, 1),
        }


@dataclass
class MetricsCollector:
    """Central in-memory metrics collector.

    Satisfies the search observer hook of ``TorrentSearchUseCase``:
    slow torrent-info resolutions are recorded per indexer for operators.
    """

    _indexers: dict[str, IndexerStats] = field(default_factory=dict)
    _downloads: int = 0
    _download_cache_hits: int = 0
    _start_ns: int = field(default_factory=time.perf_counter_ns)

    def _stats(self, indexer_id: str) -> IndexerStats:
        stats = self._indexers.get(indexer_id)
        if stats is None:
            stats = IndexerStats()
            self._indexers[indexer_id] = stats
        return stats

    def record_indexer_search(
        self,
        indexer_id: str,
        duration_ns: int,
        result_count: int,
        *,
        success: bool,
    ) -> None:
        stats = self._stats(indexer_id)
        stats.searches += 1
        stats.total_duration_ns += duration_ns
        if success:
            stats.successes += 1
            stats.total_results += result_count
        else:
            stats.failures += 1

    def record_info_failure(self, indexer_id: str) -> None:
        self._stats(indexer_id).info_failures += 1

    def record_slow_indexer(self, indexer_id: str, duration_s: float) -> None:
        stats = self._stats(indexer_id)
        stats.slow_infos += 1
        stats.max_info_seconds = max(stats.max_info_seconds, duration_s)

    def record_download(self, *, cache_hit: bool) -> None:
        self._downloads += 1
        if cache_hit:
            self._download_cache_hits += 1

    def slow_indexers(self) -> list[str]:
        """Indexer ids that produced at least one slow resolution."""
        return sorted(name for name, s in self._indexers.items() if s.slow_infos)

    def snapshot(self) -> dict[str, object]:
        """Return a JSON-serializable snapshot of all metrics."""
        uptime_ns = time.perf_counter_ns() - self._start_ns
        return {
            "uptime_seconds": round(uptime_ns / 1_000_000_000, 1),
            "indexers": {
                name: stats.snapshot() for name, stats in sorted(self._indexers.items())
            },
            "slow_indexers": self.slow_indexers(),
            "downloads": {
                "total": self._downloads,
                "cache_hits": self._download_cache_hits,
            },
        }
