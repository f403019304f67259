"""
Shared test configuration and fixtures for watchlens.

Provides run configurations, a fresh enrichment context, sample payloads,
and an in-memory backend implementing the enrichment backend protocol so
that scheduler, cascade and pipeline behavior can be tested without
network access.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
from decimal import Decimal
from typing import Callable, Iterator, Optional, Sequence

import pytest

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.config.settings import Settings
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import ErrorKind, HaltReason
from watchlens.models.video import ScrapedVideoData
from watchlens.services.backends.base import BackendBatch
from watchlens.services.context import EnrichmentContext
from watchlens.services.enrichment.shutdown_handler import (
    ShutdownHandler,
    get_shutdown_handler,
)


class FakeBackend:
    """
    In-memory enrichment backend.

    Succeeds for every identifier except those listed in ``failures``.
    Optionally reserves and charges a fixed cost per item on the context's
    cost tracker (stopping with ``COST_LIMIT`` like the LLM backend), halts
    with ``RATE_LIMITED`` after ``halt_after`` items, and sleeps per
    identifier to shuffle completion order.
    """

    def __init__(
        self,
        name: str,
        max_batch_size: int = 1,
        available: bool = True,
        failures: Optional[dict[str, ErrorKind]] = None,
        halt_after: Optional[int] = None,
        cost_per_item: Decimal = Decimal("0"),
        context: Optional[EnrichmentContext] = None,
        delays: Optional[dict[str, float]] = None,
    ) -> None:
        self.name = name
        self.max_batch_size = max_batch_size
        self.available = available
        self.failures = failures or {}
        self.halt_after = halt_after
        self.cost_per_item = cost_per_item
        self.context = context
        self.delays = delays or {}
        self.calls: list[list[str]] = []
        self.processed = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def dispatched_ids(self) -> list[str]:
        return [video_id for call in self.calls for video_id in call]

    def is_available(self) -> bool:
        return self.available

    async def enrich(self, video_ids: Sequence[str]) -> BackendBatch:
        self.calls.append(list(video_ids))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            batch = BackendBatch()
            for video_id in video_ids:
                if self.halt_after is not None and self.processed >= self.halt_after:
                    batch.halt = HaltReason.RATE_LIMITED
                    break
                reserved = Decimal("0")
                if self.cost_per_item and self.context is not None:
                    if not self.context.cost.try_reserve(self.cost_per_item):
                        batch.halt = HaltReason.COST_LIMIT
                        break
                    reserved = self.cost_per_item
                await asyncio.sleep(self.delays.get(video_id, 0))
                self.processed += 1
                batch.results.append(self._result(video_id, reserved))
            return batch
        finally:
            self.in_flight -= 1

    def _result(self, video_id: str, reserved: Decimal) -> EnrichmentResult:
        if video_id in self.failures:
            if self.context is not None:
                self.context.cost.release(reserved)
            return EnrichmentResult.failure(
                video_id, self.name, f"{self.name} could not enrich {video_id}",
                self.failures[video_id],
            )
        cost = self.cost_per_item
        if cost and self.context is not None:
            self.context.cost.settle(reserved, cost, 100)
        return EnrichmentResult(
            video_id=video_id,
            success=True,
            data=ScrapedVideoData(
                title=f"{self.name} title for {video_id}",
                channel_name=f"{self.name} channel",
                duration_seconds=300,
            ),
            provider=self.name,
            cost=cost,
            tokens_used=100 if cost else 0,
        )

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    """Settings with no API keys and fast retries."""
    return Settings(
        youtube_api_key="",
        openrouter_api_key="",
        retry_backoff_seconds=0,
        inter_batch_delay_ms=0,
        scraping_request_delay_ms=0,
        parser_mode="inline",
    )


@pytest.fixture
def config() -> EnrichmentConfig:
    """Run configuration without pacing delays."""
    return EnrichmentConfig(inter_batch_delay_ms=0)


@pytest.fixture
def utc_clock() -> Callable[[], _dt.datetime]:
    """Fixed UTC clock at 2024-06-01 12:00."""
    return lambda: _dt.datetime(2024, 6, 1, 12, 0, tzinfo=_dt.timezone.utc)


@pytest.fixture
def context(config: EnrichmentConfig) -> EnrichmentContext:
    """Fresh enrichment context sized from the run configuration."""
    return EnrichmentContext.create(config)


@pytest.fixture
def signalled_shutdown() -> Iterator[ShutdownHandler]:
    """The process-wide shutdown handler after a SIGINT, reset afterwards."""
    handler = get_shutdown_handler()
    handler.reset()
    handler.request_shutdown("SIGINT")
    yield handler
    handler.reset()


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    """Factory for in-memory backends."""
    return FakeBackend


@pytest.fixture
def sample_data() -> ScrapedVideoData:
    """A fully populated payload."""
    return ScrapedVideoData(
        title="Never Gonna Give You Up",
        description="The official video",
        channel_name="Rick Astley",
        channel_id="UCuAXFkgsw1L7xaCfnd5JJOw",
        duration_seconds=213,
        view_count=1_500_000_000,
        like_count=16_000_000,
        comment_count=2_300_000,
        published_at=_dt.datetime(2009, 10, 25, 6, 57, 33, tzinfo=_dt.timezone.utc),
        tags=["rick astley", "never gonna give you up"],
        thumbnail_url="https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        category="Music",
    )
