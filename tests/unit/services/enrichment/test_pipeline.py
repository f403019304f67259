"""
Tests for the enrichment pipeline.

Backends are the in-memory ``FakeBackend`` from the shared conftest, except
for the quota test which drives the real YouTube API backend against a
mocked discovery client.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.exceptions import ConfigurationError
from watchlens.models.enums import ContentType, ErrorKind, HaltReason
from watchlens.models.video import VideoRecord
from watchlens.services.backends.llm import Completion, LLMBackend
from watchlens.services.backends.youtube_api import YouTubeAPIBackend
from watchlens.services.context import EnrichmentContext
from watchlens.services.enrichment.pipeline import (
    NO_IDENTIFIER_ERROR,
    EnrichmentPipeline,
    coerce_record,
    enrich_records,
)
from watchlens.services.enrichment.shutdown_handler import ShutdownHandler
from watchlens.services.parsing.worker_pool import WorkerPoolParser
from watchlens.services.pricing import ModelPrice, PricingTable

RICK = "dQw4w9WgXcQ"
GANGNAM = "9bZkp7q19f0"


def _url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def _records(ids: list[str]) -> list[dict[str, Any]]:
    return [{"url": _url(video_id)} for video_id in ids]


def _pipeline(
    context: EnrichmentContext, *backends: Any, **config: Any
) -> EnrichmentPipeline:
    config.setdefault("inter_batch_delay_ms", 0)
    return EnrichmentPipeline(
        context,
        {backend.name: backend for backend in backends},
        EnrichmentConfig(**config),
    )


class TestDeduplication:
    """Test cache and in-batch deduplication."""

    pytestmark = pytest.mark.asyncio

    async def test_shared_identifier_dispatched_once(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test three records with two unique videos make two dispatches."""
        api = make_backend("api", max_batch_size=50)
        records = [
            {"url": _url(RICK)},
            {"url": f"https://youtu.be/{RICK}?si=share"},
            {"url": _url(GANGNAM)},
        ]

        run = await _pipeline(context, api, preferred_backend="api").enrich(records)

        assert api.dispatched_ids == [RICK, GANGNAM]
        assert [r.video_id for r in run.records] == [RICK, RICK, GANGNAM]
        assert run.records[0].title == run.records[1].title == f"api title for {RICK}"
        assert all(record.enriched for record in run.records)
        assert run.report is not None
        assert run.report.summary.unique_videos == 2

    async def test_duplicates_within_large_batch(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test 100 records with 10 repeats dispatch 90 identifiers."""
        ids = [f"vid{i:08d}" for i in range(90)]
        api = make_backend("api", max_batch_size=50)

        run = await _pipeline(context, api, preferred_backend="api").enrich(
            _records(ids + ids[:10])
        )

        assert len(api.dispatched_ids) == 90
        assert len(set(api.dispatched_ids)) == 90
        assert run.enriched_count == 100

    async def test_second_run_served_from_cache(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test re-running the same records dispatches nothing."""
        api = make_backend("api", max_batch_size=50)
        pipeline = _pipeline(context, api, preferred_backend="api")
        records = _records([RICK, GANGNAM])

        first = await pipeline.enrich(records)
        calls = len(api.calls)
        second = await pipeline.enrich(records)

        assert len(api.calls) == calls
        assert [r.title for r in second.records] == [r.title for r in first.records]
        assert all(result is not None and result.from_cache for result in second.results)
        assert second.records[0].enrichment_source == "api"
        assert second.report is not None
        assert second.report.summary.cache_hits == 2
        assert [d.status for d in second.report.details] == ["cached", "cached"]

    async def test_concurrent_runs_share_in_flight_work(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test a run waits for an identifier another run is enriching."""
        api = make_backend("api", max_batch_size=50, delays={RICK: 0.05})
        first = _pipeline(context, api, preferred_backend="api")
        second = _pipeline(context, api, preferred_backend="api")

        run_a, run_b = await asyncio.gather(
            first.enrich(_records([RICK])), second.enrich(_records([RICK]))
        )

        assert api.dispatched_ids == [RICK]
        assert run_a.records[0].enriched and run_b.records[0].enriched
        assert run_b.results[0] is not None and run_b.results[0].from_cache


class TestCascadeAndLimits:
    """Test fallback, quota and cost behavior through the pipeline."""

    pytestmark = pytest.mark.asyncio

    async def test_cascade_trace(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test a record enriched by the fallback lists both backends."""
        llm = make_backend("llm", failures={RICK: ErrorKind.MALFORMED})
        api = make_backend("api", max_batch_size=50)

        run = await _pipeline(context, llm, api).enrich(_records([RICK]))

        record = run.records[0]
        assert record.enriched is True
        assert record.enrichment_source == "api"
        assert record.attempted_backends == ["llm", "api"]
        assert record.processing_errors == []

    async def test_exhausted_record(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test a record failing everywhere keeps its fields and gets an error."""
        llm = make_backend("llm", failures={RICK: ErrorKind.MALFORMED})

        run = await _pipeline(context, llm, enable_fallback=False).enrich(
            [{"url": _url(RICK), "title": "Original"}]
        )

        record = run.records[0]
        assert record.enriched is False
        assert record.title == "Original"
        assert record.processing_errors == [
            f"enrichment failed across all backends: llm: llm could not enrich {RICK}"
        ]
        assert run.report is not None
        assert run.report.details[0].status == "failed"

    async def test_quota_refuses_second_call(self, context: EnrichmentContext) -> None:
        """Test a 100-unit budget allows one 100-unit call and refuses the next."""
        ids = [f"vid{i:08d}" for i in range(20)]
        service = MagicMock()
        execute = service.videos.return_value.list.return_value.execute
        execute.return_value = {
            "items": [
                {"id": video_id, "snippet": {"title": f"T {video_id}", "channelTitle": "C"}}
                for video_id in ids
            ]
        }
        api = YouTubeAPIBackend(
            "key", context, quota_cost_per_call=100, service=service, http_factory=lambda: None
        )

        run = await _pipeline(
            context,
            api,
            preferred_backend="api",
            enable_fallback=False,
            quota_limit=100,
            batch_size=10,
        ).enrich(_records(ids))

        assert execute.call_count == 1
        assert run.halts == {"api": HaltReason.QUOTA_EXHAUSTED}
        assert run.enriched_count == 10
        assert run.records[10].processing_errors[-1].endswith("api: quota exhausted")
        assert context.quota.remaining == 0

    async def test_cost_limit_stops_llm(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test a $1.00 ceiling at $0.05 per item enriches exactly 20 records."""
        llm = make_backend("llm", cost_per_item=Decimal("0.05"), context=context)

        run = await _pipeline(
            context, llm, enable_fallback=False, cost_limit=Decimal("1.00")
        ).enrich(_records([f"vid{i:08d}" for i in range(30)]))

        assert run.enriched_count == 20
        assert run.halts == {"llm": HaltReason.COST_LIMIT}
        assert run.records[20].processing_errors[-1].endswith("llm: cost limit reached")
        assert run.results[25] is not None
        assert run.results[25].error_kind == ErrorKind.COST_LIMIT
        assert run.report is not None
        assert run.report.summary.total_cost == Decimal("1.00")
        assert run.report.summary.halts == ["llm: cost limit reached"]

    async def test_cost_limit_with_concurrent_llm_requests(
        self, context: EnrichmentContext
    ) -> None:
        """Test concurrent LLM items stop exactly at a ceiling inside a chunk."""

        async def complete(system: str, user: str) -> Completion:
            await asyncio.sleep(0.001)
            return Completion(
                text='{"title": "Some video", "channelName": "Some channel"}',
                prompt_tokens=1000,
                completion_tokens=0,
                model="test/model",
            )

        client = MagicMock(model="test/model")
        client.complete = AsyncMock(side_effect=complete)
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value="<html><title>Some video</title></html>")
        llm = LLMBackend(
            client,
            fetcher,
            WorkerPoolParser("inline"),
            context,
            pricing=PricingTable({"test/model": ModelPrice(Decimal("0.05"), Decimal("0"))}),
        )

        run = await _pipeline(
            context, llm, enable_fallback=False, cost_limit=Decimal("0.90")
        ).enrich(_records([f"vid{i:08d}" for i in range(40)]))

        assert run.enriched_count == 18
        assert client.complete.await_count == 18
        assert context.cost.run_cost == Decimal("0.90")
        assert context.cost.reserved == 0
        assert run.halts == {"llm": HaltReason.COST_LIMIT}
        assert run.records[18].processing_errors[-1].endswith("llm: cost limit reached")

    async def test_cost_attributed_once_per_identifier(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test spend is charged to the first record of a shared identifier."""
        llm = make_backend("llm", cost_per_item=Decimal("0.05"), context=context)

        run = await _pipeline(context, llm).enrich(_records([RICK, RICK]))

        assert run.records[0].enrichment_cost == Decimal("0.05")
        assert run.records[0].tokens_used == 100
        assert run.records[1].enrichment_cost == Decimal("0")

    async def test_no_backend_available(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test the run is rejected before any work."""
        llm = make_backend("llm", available=False)

        with pytest.raises(ConfigurationError):
            await _pipeline(context, llm).enrich(_records([RICK]))
        assert llm.calls == []

    async def test_shutdown_marks_run_interrupted(
        self,
        context: EnrichmentContext,
        make_backend: Callable[..., Any],
        signalled_shutdown: ShutdownHandler,
    ) -> None:
        """Test a pending shutdown leaves every record failed."""
        context.shutdown = signalled_shutdown
        llm = make_backend("llm")

        run = await _pipeline(context, llm).enrich(_records([RICK, GANGNAM]))

        assert run.interrupted is True
        assert run.enriched_count == 0
        assert llm.calls == []


class TestRecords:
    """Test record handling and merging."""

    pytestmark = pytest.mark.asyncio

    async def test_order_preserved(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test output order matches input order when completions are shuffled."""
        ids = [f"vid{i:08d}" for i in range(6)]
        delays = {video_id: 0.06 - i * 0.01 for i, video_id in enumerate(ids)}
        llm = make_backend("llm", delays=delays)

        run = await _pipeline(context, llm).enrich(_records(ids))

        assert [r.video_id for r in run.records] == ids
        assert [r.title for r in run.records] == [f"llm title for {i}" for i in ids]

    async def test_caller_records_untouched(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test the pipeline works on copies."""
        original = VideoRecord(url=_url(RICK), title="Original", tags=["mine"])
        llm = make_backend("llm")

        run = await _pipeline(context, llm).enrich([original])

        assert original.title == "Original"
        assert original.enriched is False
        assert run.records[0] is not original
        assert run.records[0].title == f"llm title for {RICK}"

    async def test_record_without_identifier(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test an unrecognized URL is reported and skipped."""
        llm = make_backend("llm")

        run = await _pipeline(context, llm).enrich([{"url": "https://example.com/clip"}])

        assert run.results == [None]
        assert run.records[0].processing_errors == [NO_IDENTIFIER_ERROR]
        assert llm.calls == []
        assert run.report is not None
        assert run.report.details[0].status == "skipped"

    async def test_shorts_url_classified(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test a /shorts/ URL marks the record as a Short."""
        llm = make_backend("llm")

        run = await _pipeline(context, llm).enrich(
            [{"url": f"https://www.youtube.com/shorts/{RICK}"}]
        )

        assert run.records[0].content_type == ContentType.SHORT

    async def test_cached_payload_merged_into_new_record(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test a cache hit fills a new record and classifies it by its own URL."""
        api = make_backend("api", max_batch_size=50)
        pipeline = _pipeline(context, api, preferred_backend="api")
        await pipeline.enrich(_records([RICK]))

        run = await pipeline.enrich([{"url": f"https://www.youtube.com/shorts/{RICK}"}])

        record = run.records[0]
        assert record.enriched is True
        assert record.enrichment_source == "api"
        assert record.title == f"api title for {RICK}"
        assert record.content_type == ContentType.SHORT
        assert len(api.calls) == 1

    async def test_report_summary(
        self, context: EnrichmentContext, make_backend: Callable[..., Any]
    ) -> None:
        """Test the report counts enriched and failed records per backend."""
        llm = make_backend("llm", failures={GANGNAM: ErrorKind.NO_DATA})

        run = await _pipeline(context, llm, enable_fallback=False).enrich(
            _records([RICK, GANGNAM])
        )

        assert run.report is not None
        summary = run.report.summary
        assert summary.records_processed == 2
        assert summary.records_enriched == 1
        assert summary.records_failed == 1
        assert summary.by_backend == {"llm": 1}
        assert run.report.preferred_backend == "llm"


def test_coerce_record_from_mapping() -> None:
    """Test mappings are validated into records."""
    record = coerce_record({"url": _url(RICK), "videoId": RICK})
    assert record.video_id == RICK


@pytest.mark.asyncio
async def test_enrich_records_uses_container() -> None:
    """Test the convenience function runs a container-built pipeline."""
    run = MagicMock()
    run.records = [VideoRecord(url=_url(RICK), enriched=True)]
    pipeline = MagicMock()
    pipeline.enrich = AsyncMock(return_value=run)

    with patch("watchlens.container.container") as container:
        container.create_pipeline.return_value = pipeline
        records = await enrich_records([{"url": _url(RICK)}], {"preferredBackend": "api"})

    container.create_pipeline.assert_called_once_with({"preferredBackend": "api"})
    assert records == run.records
