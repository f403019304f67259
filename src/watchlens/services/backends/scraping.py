"""
HTML-scraping enrichment backend.

Fetches each watch page through the shared ``PageFetcher`` and parses it
on the ``WorkerPoolParser``. A 429/403 from YouTube opens the circuit
immediately, as does a run of consecutive failures. While open, the
backend is unavailable and reports a rate-limit halt.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from watchlens.exceptions import RateLimitedError, WatchlensError
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import BackendName, ErrorKind, HaltReason
from watchlens.services.backends.base import BackendBatch, Stopwatch, error_kind_for
from watchlens.services.context import EnrichmentContext
from watchlens.services.http.fetcher import PageFetcher
from watchlens.services.parsing.worker_pool import WorkerPoolParser

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Parameters
    ----------
    threshold : int
        Consecutive failures that open the circuit.
    cooldown_seconds : float
        How long the circuit stays open.
    clock : Callable[[], float] | None, optional
        Monotonic clock (default: ``time.monotonic``).
    """

    def __init__(
        self,
        threshold: int,
        cooldown_seconds: float,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or time.monotonic
        self.consecutive_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        """Check whether requests are currently blocked."""
        if self._opened_at is None:
            return False
        if self._clock() - self._opened_at >= self.cooldown_seconds:
            logger.info("Scraping circuit closed after cooldown")
            self._opened_at = None
            self.consecutive_failures = 0
            return False
        return True

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def trip(self) -> None:
        """Open the circuit immediately."""
        if self._opened_at is None:
            self._opened_at = self._clock()
            logger.warning("Scraping circuit opened, cooling down %.0fs", self.cooldown_seconds)

    def record_failure(self) -> bool:
        """Count a failure; return True if this one opened the circuit."""
        self.consecutive_failures += 1
        if self._opened_at is None and self.consecutive_failures >= self.threshold:
            self._opened_at = self._clock()
            logger.warning(
                "Scraping circuit opened after %d consecutive failures, cooling down %.0fs",
                self.consecutive_failures,
                self.cooldown_seconds,
            )
            return True
        return False


class ScrapingBackend:
    """
    Enrichment backend that scrapes public watch pages.

    Parameters
    ----------
    fetcher : PageFetcher
        Shared page fetcher.
    parser : WorkerPoolParser
        Shared worker pool parser.
    context : EnrichmentContext
        Shared run state.
    circuit_threshold : int, optional
        Consecutive failures before the circuit opens (default: 10).
    circuit_cooldown_seconds : float, optional
        Cooldown once open (default: 300).
    clock : Callable[[], float] | None, optional
        Monotonic clock for the circuit breaker.
    """

    name = BackendName.SCRAPING.value
    max_batch_size = 1

    def __init__(
        self,
        fetcher: PageFetcher,
        parser: WorkerPoolParser,
        context: EnrichmentContext,
        circuit_threshold: int = 10,
        circuit_cooldown_seconds: float = 300,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.fetcher = fetcher
        self.parser = parser
        self.context = context
        self.circuit = CircuitBreaker(circuit_threshold, circuit_cooldown_seconds, clock)

    def is_available(self) -> bool:
        """Check that the circuit is closed."""
        return not self.circuit.is_open

    async def enrich(self, video_ids: Sequence[str]) -> BackendBatch:
        """
        Scrape identifiers one by one until done or halted.

        Parameters
        ----------
        video_ids : Sequence[str]
            Identifiers to scrape (normally one).

        Returns
        -------
        BackendBatch
            Results for the identifiers attempted, and ``RATE_LIMITED``
            when the host throttled us or the circuit opened.
        """
        batch = BackendBatch()
        for video_id in video_ids:
            if self.circuit.is_open:
                batch.halt = HaltReason.RATE_LIMITED
                break
            batch.results.append(await self._scrape_one(video_id))
        if self.circuit.is_open:
            batch.halt = HaltReason.RATE_LIMITED
        return batch

    async def _scrape_one(self, video_id: str) -> EnrichmentResult:
        timer = Stopwatch()
        try:
            html = await self.fetcher.fetch(video_id)
        except RateLimitedError as e:
            logger.warning("Scraping halted: %s", e.message)
            self.circuit.trip()
            return EnrichmentResult.failure(
                video_id, self.name, e.message, ErrorKind.RATE_LIMITED,
                elapsed_seconds=timer.elapsed,
            )
        except WatchlensError as e:
            return self._failed(video_id, e.message, error_kind_for(e), timer)

        data = await self.parser.parse(html, video_id=video_id)
        if data is None or not data.has_data:
            return self._failed(video_id, "no metadata found on watch page", ErrorKind.NO_DATA, timer)

        self.circuit.record_success()
        return EnrichmentResult(
            video_id=video_id,
            success=True,
            data=data,
            provider=self.name,
            elapsed_seconds=timer.elapsed,
        )

    def _failed(
        self, video_id: str, error: str, kind: ErrorKind, timer: Stopwatch
    ) -> EnrichmentResult:
        logger.info("Scraping %s failed: %s", video_id, error)
        self.circuit.record_failure()
        return EnrichmentResult.failure(
            video_id, self.name, error, kind, elapsed_seconds=timer.elapsed
        )

    async def aclose(self) -> None:
        """Nothing to release; the fetcher and parser are shared."""
