"""
Enrichment pipeline: records in, enriched working copies out.

For a batch of watch records the pipeline:

1. copies each record and extracts its video identifier from the URL,
2. serves identifiers already in the cache without dispatching them,
3. claims the remaining unique identifiers in the context's in-flight
   registry (duplicates within the batch, and identifiers another run is
   already enriching, are not dispatched again),
4. sends the claimed identifiers through the fallback cascade,
5. merges the resulting payloads into every record sharing an identifier
   and records processing errors on the rest.

The caller's records are never modified.
"""

from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.models.enrichment import CacheEntry, EnrichmentResult
from watchlens.models.enrichment_report import (
    EnrichmentDetail,
    EnrichmentReport,
    EnrichmentSummary,
)
from watchlens.models.enums import ErrorKind, FallbackState, HaltReason
from watchlens.models.metrics import MetricsSnapshot
from watchlens.models.video import ScrapedVideoData, VideoRecord
from watchlens.services.backends.base import EnrichmentBackend
from watchlens.services.classification import classify_content_type
from watchlens.services.context import EnrichmentContext
from watchlens.services.enrichment.fallback import (
    FallbackOrchestrator,
    FallbackOutcome,
    exhausted_message,
)
from watchlens.services.enrichment.scheduler import BatchScheduler
from watchlens.services.identifiers import extract_video_id, is_shorts_url

logger = logging.getLogger(__name__)

RecordInput = Union[VideoRecord, Mapping[str, Any]]

NO_IDENTIFIER_ERROR = "could not extract a video id from URL"
CACHE_PROVIDER = "cache"


@dataclass
class EnrichmentRun:
    """
    Everything a pipeline run produced.

    Attributes
    ----------
    records : list[VideoRecord]
        Enriched working copies, in input order.
    results : list[EnrichmentResult | None]
        Final result per record; None for records without an identifier.
    metrics : MetricsSnapshot
        Process-wide metrics at the end of the run.
    halts : dict[str, HaltReason]
        Halt signals observed, by backend name.
    report : EnrichmentReport
        Summary and per-record details for the run.
    """

    records: list[VideoRecord]
    results: list[Optional[EnrichmentResult]]
    metrics: MetricsSnapshot
    halts: dict[str, HaltReason] = field(default_factory=dict)
    report: Optional[EnrichmentReport] = None

    @property
    def enriched_count(self) -> int:
        return sum(1 for record in self.records if record.enriched)

    @property
    def failed_count(self) -> int:
        return len(self.records) - self.enriched_count

    @property
    def all_enriched(self) -> bool:
        """Check whether every record was enriched."""
        return self.failed_count == 0

    @property
    def interrupted(self) -> bool:
        """Check whether a shutdown request cut the run short."""
        return HaltReason.SHUTDOWN in self.halts.values()


def coerce_record(record: RecordInput) -> VideoRecord:
    """
    Build a working copy of a caller record.

    Parameters
    ----------
    record : VideoRecord | Mapping[str, Any]
        A record model, or a mapping with at least ``url``.

    Returns
    -------
    VideoRecord
        A deep copy the pipeline may mutate.
    """
    if isinstance(record, VideoRecord):
        return record.model_copy(deep=True)
    return VideoRecord.model_validate(dict(record))


class EnrichmentPipeline:
    """
    Enrich watch records through cache, scheduler and fallback cascade.

    Parameters
    ----------
    context : EnrichmentContext
        Shared cache, budgets, metrics and shutdown handler.
    backends : Mapping[str, EnrichmentBackend]
        Configured backends by name.
    config : EnrichmentConfig
        Run options.
    scheduler : BatchScheduler | None, optional
        Dispatcher (default: one built from ``config``).

    Examples
    --------
    >>> pipeline = container.create_pipeline({"preferredBackend": "api"})
    >>> run = await pipeline.enrich([{"url": "https://youtu.be/dQw4w9WgXcQ"}])
    >>> run.records[0].title
    'Rick Astley - Never Gonna Give You Up (Official Music Video)'
    """

    def __init__(
        self,
        context: EnrichmentContext,
        backends: Mapping[str, EnrichmentBackend],
        config: EnrichmentConfig,
        scheduler: Optional[BatchScheduler] = None,
    ) -> None:
        self.context = context
        self.backends = dict(backends)
        self.config = config
        self.scheduler = scheduler or BatchScheduler(
            context,
            max_concurrent_requests=config.max_concurrent_requests,
            batch_size=config.batch_size,
            inter_batch_delay_ms=config.inter_batch_delay_ms,
        )

    async def enrich(self, records: Sequence[RecordInput]) -> EnrichmentRun:
        """
        Enrich a batch of records.

        Parameters
        ----------
        records : Sequence[VideoRecord | Mapping[str, Any]]
            Caller records; left untouched.

        Returns
        -------
        EnrichmentRun
            Working copies in input order, one final result per record,
            metrics, halts and the run report.

        Raises
        ------
        ConfigurationError
            Before any work, if no backend can run.
        """
        self.context.cost.start_run(self.config.cost_limit)
        if self.context.quota.limit != self.config.quota_limit:
            self.context.quota.set_limit(self.config.quota_limit)
        orchestrator = FallbackOrchestrator(self.backends, self.scheduler, self.config)
        orchestrator.ensure_runnable()

        started_at = _dt.datetime.now(_dt.timezone.utc)
        quota_before = self.context.quota.consumed_total

        working = [coerce_record(record) for record in records]
        unique_ids: list[str] = []
        for record in working:
            if record.video_id is None:
                record.video_id = extract_video_id(record.url)
            if record.video_id is None:
                record.processing_errors.append(NO_IDENTIFIER_ERROR)
            else:
                unique_ids.append(record.video_id)
        unique_ids = list(dict.fromkeys(unique_ids))

        hits: dict[str, CacheEntry] = {}
        misses: list[str] = []
        for video_id in unique_ids:
            entry = self.context.cache.lookup(video_id)
            if entry is None:
                misses.append(video_id)
            else:
                hits[video_id] = entry

        logger.info(
            "Enriching %d records (%d unique ids, %d cached)",
            len(working),
            len(unique_ids),
            len(hits),
        )

        outcome = await self._dispatch(misses, orchestrator, hits)

        results = self._apply(working, hits, outcome)
        run = EnrichmentRun(
            records=working,
            results=results,
            metrics=self.context.snapshot(),
            halts=dict(orchestrator.halts),
        )
        run.report = self._build_report(
            run,
            started_at=started_at,
            unique_ids=len(unique_ids),
            cache_hits=len(hits),
            quota_used=self.context.quota.consumed_total - quota_before,
        )
        logger.info(
            "Enrichment finished: %d/%d records enriched",
            run.enriched_count,
            len(working),
        )
        return run

    async def _dispatch(
        self,
        video_ids: list[str],
        orchestrator: FallbackOrchestrator,
        hits: dict[str, CacheEntry],
    ) -> FallbackOutcome:
        outcome = FallbackOutcome()
        pending = video_ids
        while pending:
            claimed = self.context.cache.mark_in_flight(pending)
            claimed_set = set(claimed)
            waiting = [video_id for video_id in pending if video_id not in claimed_set]

            if claimed:
                try:
                    partial = await orchestrator.run(claimed)
                    self._store(partial)
                finally:
                    self.context.cache.clear_in_flight(claimed)
                outcome.merge(partial)

            if waiting and HaltReason.SHUTDOWN in orchestrator.halts.values():
                for video_id in waiting:
                    outcome.results[video_id] = EnrichmentResult.failure(
                        video_id,
                        self.config.preferred_backend.value,
                        HaltReason.SHUTDOWN.value,
                        ErrorKind.SHUTDOWN,
                    )
                    outcome.states[video_id] = FallbackState.EXHAUSTED
                break

            if not waiting:
                break

            # Claimed by a concurrent run or stored since our lookup.
            logger.debug("Waiting on %d ids enriched by another run", len(waiting))
            await self.context.cache.wait_for(waiting)
            pending = []
            for video_id in waiting:
                entry = self.context.cache.lookup(video_id)
                if entry is None:
                    pending.append(video_id)
                else:
                    hits[video_id] = entry
        return outcome

    def _store(self, outcome: FallbackOutcome) -> None:
        for video_id, result in outcome.results.items():
            if result.success and result.data is not None:
                self.context.cache.store(
                    video_id,
                    result.data,
                    ttl_seconds=self.config.cache_ttl_seconds,
                    provider=result.provider,
                )

    def _apply(
        self,
        working: list[VideoRecord],
        hits: dict[str, CacheEntry],
        outcome: FallbackOutcome,
    ) -> list[Optional[EnrichmentResult]]:
        results: list[Optional[EnrichmentResult]] = []
        charged: set[str] = set()
        for record in working:
            video_id = record.video_id
            if video_id is None:
                results.append(None)
                continue

            entry = hits.get(video_id)
            if entry is not None:
                result = EnrichmentResult(
                    video_id=video_id,
                    success=True,
                    data=entry.data,
                    provider=CACHE_PROVIDER,
                    from_cache=True,
                )
                self._merge(record, entry.data, entry.provider or CACHE_PROVIDER)
                results.append(result)
                continue

            result = outcome.results[video_id]
            record.attempted_backends = outcome.attempted_backends(video_id)
            if video_id not in charged:
                # Spend is attributed once per identifier, to its first record.
                charged.add(video_id)
                for attempt in outcome.attempts.get(video_id, []):
                    record.enrichment_cost += attempt.cost
                    record.tokens_used += attempt.tokens_used

            if outcome.states.get(video_id) is FallbackState.SUCCEEDED and result.data is not None:
                self._merge(record, result.data, result.provider)
            else:
                record.processing_errors.append(
                    exhausted_message(outcome.attempts.get(video_id, []))
                )
            results.append(result)
        return results

    def _merge(self, record: VideoRecord, data: ScrapedVideoData, source: str) -> None:
        record.apply(data)
        if record.content_type is None or is_shorts_url(record.url):
            record.content_type = classify_content_type(
                source_url=record.url,
                is_livestream=data.is_livestream,
                is_premiere=data.is_premiere,
                is_short=data.is_short,
                duration_seconds=data.duration_seconds,
                short_max_duration_seconds=self.config.short_max_duration_seconds,
            )
        record.enriched = True
        record.enrichment_source = source

    def _build_report(
        self,
        run: EnrichmentRun,
        started_at: _dt.datetime,
        unique_ids: int,
        cache_hits: int,
        quota_used: int,
    ) -> EnrichmentReport:
        by_backend: dict[str, int] = {}
        details: list[EnrichmentDetail] = []
        seen: set[str] = set()
        for record, result in zip(run.records, run.results):
            if result is None:
                status = "skipped"
            elif result.from_cache:
                status = "cached"
            elif record.enriched:
                status = "enriched"
            else:
                status = "failed"
            if (
                result is not None
                and result.success
                and not result.from_cache
                and result.video_id not in seen
            ):
                seen.add(result.video_id)
                by_backend[result.provider] = by_backend.get(result.provider, 0) + 1
            details.append(
                EnrichmentDetail(
                    url=record.url,
                    video_id=record.video_id,
                    status=status,
                    provider=record.enrichment_source,
                    attempted_backends=list(record.attempted_backends),
                    title=record.title,
                    error=record.processing_errors[-1] if record.processing_errors else None,
                )
            )

        summary = EnrichmentSummary(
            records_processed=len(run.records),
            records_enriched=run.enriched_count,
            records_failed=run.failed_count,
            unique_videos=unique_ids,
            cache_hits=cache_hits,
            by_backend=by_backend,
            total_cost=self.context.cost.run_cost,
            tokens_used=self.context.cost.run_tokens,
            quota_used=max(0, quota_used),
            halts=[f"{name}: {halt.value}" for name, halt in run.halts.items()],
        )
        return EnrichmentReport(
            timestamp=started_at,
            preferred_backend=self.config.preferred_backend.value,
            summary=summary,
            metrics=run.metrics,
            details=details,
        )


async def enrich_records(
    records: Sequence[RecordInput],
    config: EnrichmentConfig | Mapping[str, Any] | None = None,
) -> list[VideoRecord]:
    """
    Enrich records with the application container's backends.

    Parameters
    ----------
    records : Sequence[VideoRecord | Mapping[str, Any]]
        Caller records; left untouched.
    config : EnrichmentConfig | Mapping[str, Any] | None, optional
        Run options, or overrides of the settings-derived defaults
        (snake_case or camelCase keys).

    Returns
    -------
    list[VideoRecord]
        Enriched working copies, in input order.
    """
    from watchlens.container import container

    pipeline = container.create_pipeline(config)
    run = await pipeline.enrich(records)
    return run.records

