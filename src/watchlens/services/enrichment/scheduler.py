"""
Chunked, bounded-concurrency dispatch of identifiers to one backend.

Identifiers are split into chunks of ``batch_size``; each chunk is split
again into backend units of ``backend.max_batch_size`` (50 for the API,
1 for scraping and LLM). Units run under an ``asyncio.Semaphore`` so that
at most ``max_concurrent_requests`` are in flight, and chunks are spaced
by ``inter_batch_delay_ms``. A halt reported by any unit, or a shutdown
request, cancels the units that have not started yet; running units
finish normally.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from watchlens.exceptions import GracefulShutdownException
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import ErrorKind, HaltReason
from watchlens.services.backends.base import (
    BackendBatch,
    EnrichmentBackend,
    error_kind_for,
    halt_reason_for,
)
from watchlens.services.context import EnrichmentContext

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    halt: Optional[HaltReason] = None


def _chunks(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchScheduler:
    """
    Run identifiers through a backend with bounded concurrency.

    Parameters
    ----------
    context : EnrichmentContext
        Shared run state (metrics, shutdown handler).
    max_concurrent_requests : int, optional
        Backend units in flight at once (default: 5).
    batch_size : int, optional
        Identifiers per chunk (default: 10).
    inter_batch_delay_ms : int, optional
        Pause between chunks (default: 0).
    """

    def __init__(
        self,
        context: EnrichmentContext,
        max_concurrent_requests: int = 5,
        batch_size: int = 10,
        inter_batch_delay_ms: int = 0,
    ) -> None:
        if max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.context = context
        self.max_concurrent_requests = max_concurrent_requests
        self.batch_size = batch_size
        self.inter_batch_delay_ms = inter_batch_delay_ms

    async def run(
        self, video_ids: Sequence[str], backend: EnrichmentBackend
    ) -> BackendBatch:
        """
        Enrich identifiers with one backend.

        Parameters
        ----------
        video_ids : Sequence[str]
            Identifiers to enrich.
        backend : EnrichmentBackend
            Backend to dispatch to.

        Returns
        -------
        BackendBatch
            Exactly one result per input identifier, in input order, and
            the first halt observed (if any). Identifiers that were never
            started, or that the backend did not answer, get failure
            results.
        """
        ids = list(video_ids)
        if not ids:
            return BackendBatch()

        state = _RunState()
        by_id: dict[str, EnrichmentResult] = {}
        semaphore = asyncio.Semaphore(self.max_concurrent_requests)
        unit_size = max(1, backend.max_batch_size)
        chunks = _chunks(ids, self.batch_size)

        logger.info(
            "Dispatching %d ids to %s in %d chunks (concurrency %d)",
            len(ids),
            backend.name,
            len(chunks),
            self.max_concurrent_requests,
        )

        for index, chunk in enumerate(chunks):
            if state.halt is None:
                try:
                    self.context.check_shutdown()
                except GracefulShutdownException as e:
                    logger.warning(
                        "%s, not starting remaining %d chunks",
                        e.message,
                        len(chunks) - index,
                    )
                    state.halt = HaltReason.SHUTDOWN
            if state.halt is not None:
                break
            if index and self.inter_batch_delay_ms > 0:
                await asyncio.sleep(self.inter_batch_delay_ms / 1000)

            await asyncio.gather(
                *(
                    self._run_unit(unit, backend, semaphore, state, by_id)
                    for unit in _chunks(chunk, unit_size)
                )
            )

        return BackendBatch(
            results=[self._result_for(video_id, backend, state, by_id) for video_id in ids],
            halt=state.halt,
        )

    async def _run_unit(
        self,
        unit: list[str],
        backend: EnrichmentBackend,
        semaphore: asyncio.Semaphore,
        state: _RunState,
        by_id: dict[str, EnrichmentResult],
    ) -> None:
        async with semaphore:
            if state.halt is not None:
                return
            try:
                batch = await backend.enrich(unit)
            except Exception as e:
                halt = halt_reason_for(e)
                if halt is not None:
                    batch = BackendBatch(halt=halt)
                else:
                    logger.exception("Backend %s failed on %d ids", backend.name, len(unit))
                    batch = BackendBatch(
                        results=[
                            EnrichmentResult.failure(
                                video_id,
                                backend.name,
                                f"{type(e).__name__}: {e}",
                                error_kind_for(e),
                            )
                            for video_id in unit
                        ]
                    )

        for result in batch.results:
            if result.video_id in unit and result.video_id not in by_id:
                by_id[result.video_id] = result
                self.context.metrics.record(result)
        if batch.halt is not None and state.halt is None:
            logger.warning("Backend %s halted: %s", backend.name, batch.halt.value)
            state.halt = batch.halt

    @staticmethod
    def _result_for(
        video_id: str,
        backend: EnrichmentBackend,
        state: _RunState,
        by_id: dict[str, EnrichmentResult],
    ) -> EnrichmentResult:
        result = by_id.get(video_id)
        if result is not None:
            return result
        if state.halt is not None:
            return EnrichmentResult.failure(
                video_id, backend.name, state.halt.value, state.halt.error_kind
            )
        return EnrichmentResult.failure(
            video_id,
            backend.name,
            f"no result returned by {backend.name} backend",
            ErrorKind.TRANSIENT,
        )
