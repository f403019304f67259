"""
Request counters and the read-only metrics snapshot.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.metrics import BackendMetrics, MetricsSnapshot
from watchlens.services.budget import CostTracker, QuotaTracker
from watchlens.services.cache import VideoCache


@dataclass
class _Counters:
    requests: int = 0
    successes: int = 0
    failures: int = 0
    latency: float = 0.0


class MetricsRecorder:
    """Thread-safe per-backend counters for backend attempts."""

    def __init__(self) -> None:
        self._by_backend: dict[str, _Counters] = {}
        self._lock = threading.Lock()

    def record(self, result: EnrichmentResult) -> None:
        """
        Count one backend attempt.

        Cache-served results are not attempts and are ignored here; cache
        hits are counted by the cache itself.

        Parameters
        ----------
        result : EnrichmentResult
            Outcome of the attempt.
        """
        if result.from_cache:
            return
        with self._lock:
            counters = self._by_backend.setdefault(result.provider, _Counters())
            counters.requests += 1
            counters.latency += result.elapsed_seconds
            if result.success:
                counters.successes += 1
            else:
                counters.failures += 1

    def snapshot(
        self,
        cache: VideoCache,
        cost: CostTracker,
        quota: QuotaTracker | None = None,
    ) -> MetricsSnapshot:
        """
        Build a read-only snapshot of all counters.

        Parameters
        ----------
        cache : VideoCache
            Cache providing hit/miss counts.
        cost : CostTracker
            Tracker providing cumulative spend and tokens.
        quota : QuotaTracker | None, optional
            Tracker providing remaining API quota.

        Returns
        -------
        MetricsSnapshot
            Frozen metrics view.
        """
        with self._lock:
            by_backend = {
                name: BackendMetrics(
                    requests=c.requests,
                    successes=c.successes,
                    failures=c.failures,
                    total_latency_seconds=c.latency,
                )
                for name, c in self._by_backend.items()
            }
        total = sum(m.requests for m in by_backend.values())
        latency = sum(m.total_latency_seconds for m in by_backend.values())
        cache_stats = cache.stats()
        lookups = cache_stats["hits"] + cache_stats["misses"]
        return MetricsSnapshot(
            total_requests=total,
            successful_requests=sum(m.successes for m in by_backend.values()),
            failed_requests=sum(m.failures for m in by_backend.values()),
            average_latency_seconds=latency / total if total else 0.0,
            cache_hits=cache_stats["hits"],
            cache_misses=cache_stats["misses"],
            cache_hit_rate=cache_stats["hits"] / lookups if lookups else 0.0,
            cumulative_cost=cost.total_cost,
            total_tokens=cost.total_tokens,
            quota_remaining=quota.remaining if quota is not None else None,
            by_backend=by_backend,
        )
