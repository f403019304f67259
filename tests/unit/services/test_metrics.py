"""
Tests for metrics counters and the enrichment context snapshot.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.exceptions import GracefulShutdownException
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import ErrorKind
from watchlens.models.video import ScrapedVideoData
from watchlens.services.budget import CostTracker, QuotaTracker
from watchlens.services.cache import VideoCache
from watchlens.services.context import EnrichmentContext
from watchlens.services.enrichment.shutdown_handler import ShutdownHandler
from watchlens.services.metrics import MetricsRecorder


def _success(provider: str, elapsed: float = 0.0, from_cache: bool = False) -> EnrichmentResult:
    return EnrichmentResult(
        video_id="dQw4w9WgXcQ",
        success=True,
        data=ScrapedVideoData(title="T"),
        provider=provider,
        elapsed_seconds=elapsed,
        from_cache=from_cache,
    )


class TestMetricsRecorder:
    """Test per-backend counters."""

    def test_records_attempts(self) -> None:
        """Test success, failure and latency accounting."""
        recorder = MetricsRecorder()
        recorder.record(_success("api", elapsed=0.5))
        recorder.record(_success("api", elapsed=1.5))
        recorder.record(
            EnrichmentResult.failure(
                "abc", "scraping", "boom", ErrorKind.TRANSIENT, elapsed_seconds=1.0
            )
        )

        snapshot = recorder.snapshot(VideoCache(60), CostTracker(Decimal("1")))

        assert snapshot.total_requests == 3
        assert snapshot.successful_requests == 2
        assert snapshot.failed_requests == 1
        assert snapshot.average_latency_seconds == pytest.approx(1.0)
        assert snapshot.by_backend["api"].successes == 2
        assert snapshot.by_backend["scraping"].failures == 1
        assert snapshot.quota_remaining is None

    def test_cache_results_are_not_attempts(self) -> None:
        """Test that cache-served results are ignored."""
        recorder = MetricsRecorder()
        recorder.record(_success("cache", from_cache=True))
        snapshot = recorder.snapshot(VideoCache(60), CostTracker(Decimal("1")))
        assert snapshot.total_requests == 0
        assert snapshot.by_backend == {}

    def test_snapshot_includes_cache_cost_and_quota(self) -> None:
        """Test the collaborating counters in the snapshot."""
        cache = VideoCache(60)
        cache.store("a", ScrapedVideoData(title="T"))
        cache.lookup("a")
        cache.lookup("b")
        cost = CostTracker(Decimal("1"))
        cost.add(Decimal("0.25"), 1000)
        quota = QuotaTracker(limit=100)
        quota.try_consume(3)

        snapshot = MetricsRecorder().snapshot(cache, cost, quota)

        assert snapshot.cache_hits == 1
        assert snapshot.cache_misses == 1
        assert snapshot.cache_hit_rate == 0.5
        assert snapshot.cumulative_cost == Decimal("0.25")
        assert snapshot.total_tokens == 1000
        assert snapshot.quota_remaining == 97

    def test_empty_snapshot(self) -> None:
        """Test that an idle recorder reports zeros."""
        snapshot = MetricsRecorder().snapshot(VideoCache(60), CostTracker(Decimal("1")))
        assert snapshot.average_latency_seconds == 0.0
        assert snapshot.cache_hit_rate == 0.0


class TestEnrichmentContext:
    """Test the shared context."""

    def test_create_sizes_from_config(self) -> None:
        """Test that budgets and TTL come from the run configuration."""
        config = EnrichmentConfig(quota_limit=500, cost_limit=Decimal("2"), cache_ttl_seconds=30)
        context = EnrichmentContext.create(config)

        assert context.quota.limit == 500
        assert context.cost.limit == Decimal("2")
        assert context.cache.default_ttl_seconds == 30
        assert context.snapshot().quota_remaining == 500

    def test_check_shutdown(self, config: EnrichmentConfig) -> None:
        """Test that the context raises once the handler receives a signal."""
        handler = ShutdownHandler()
        handler.reset()
        context = EnrichmentContext.create(config, shutdown=handler)
        try:
            context.check_shutdown()
            handler.request_shutdown("SIGTERM")
            with pytest.raises(GracefulShutdownException, match="SIGTERM"):
                context.check_shutdown()
        finally:
            handler.reset()

    def test_no_handler_never_requests_shutdown(self, context: EnrichmentContext) -> None:
        """Test a context without a shutdown handler."""
        context.check_shutdown()
