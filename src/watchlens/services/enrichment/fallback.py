"""
Fallback cascade across the enrichment backends.

Each identifier moves through ``Selecting -> Attempting(backend) ->
Succeeded | Failed(backend) -> Attempting(next) -> ... -> Exhausted``.
Every backend in the cascade gets one full-batch attempt over the
identifiers still failing; backends that are unavailable or that halted
earlier in the run are skipped, and no backend is tried twice for the
same identifier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.exceptions import ConfigurationError
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import BackendName, ErrorKind, FallbackState, HaltReason
from watchlens.services.backends.base import EnrichmentBackend
from watchlens.services.enrichment.scheduler import BatchScheduler

logger = logging.getLogger(__name__)

# Default cascade for each primary backend.
CASCADE_POLICY: dict[BackendName, tuple[BackendName, ...]] = {
    BackendName.LLM: (BackendName.LLM, BackendName.API, BackendName.SCRAPING),
    BackendName.API: (BackendName.API, BackendName.SCRAPING, BackendName.LLM),
    BackendName.SCRAPING: (BackendName.SCRAPING, BackendName.API, BackendName.LLM),
}

EXHAUSTED_PREFIX = "enrichment failed across all backends"


def cascade_order(config: EnrichmentConfig) -> list[BackendName]:
    """
    Resolve the ordered list of backends for a run.

    Parameters
    ----------
    config : EnrichmentConfig
        Supplies the preferred backend, fallback flag and optional order.

    Returns
    -------
    list[BackendName]
        The preferred backend first, then the fallbacks. Only the
        preferred backend when fallback is disabled.
    """
    primary = config.preferred_backend
    if not config.enable_fallback:
        return [primary]
    order = config.fallback_order or list(CASCADE_POLICY[primary])
    return [primary] + [name for name in order if name != primary]


def exhausted_message(attempts: Sequence[EnrichmentResult]) -> str:
    """
    Build the processing error recorded for an exhausted identifier.

    The message lists each attempt as ``"<backend>: <error>"``, joined
    with semicolons, after the ``EXHAUSTED_PREFIX``.
    """
    if not attempts:
        return f"{EXHAUSTED_PREFIX}: no backend available"
    reasons = "; ".join(f"{a.provider}: {a.error}" for a in attempts)
    return f"{EXHAUSTED_PREFIX}: {reasons}"


@dataclass
class FallbackOutcome:
    """
    Per-identifier results of a cascade.

    Attributes
    ----------
    results : dict[str, EnrichmentResult]
        Final result per identifier: the successful attempt, or the last
        failure for exhausted identifiers.
    attempts : dict[str, list[EnrichmentResult]]
        Every attempt per identifier, in cascade order.
    states : dict[str, FallbackState]
        Terminal state per identifier (``SUCCEEDED`` or ``EXHAUSTED``).
    halts : dict[str, HaltReason]
        Halt signals observed, by backend name.
    """

    results: dict[str, EnrichmentResult] = field(default_factory=dict)
    attempts: dict[str, list[EnrichmentResult]] = field(default_factory=dict)
    states: dict[str, FallbackState] = field(default_factory=dict)
    halts: dict[str, HaltReason] = field(default_factory=dict)

    def attempted_backends(self, video_id: str) -> list[str]:
        """Get the backends tried for an identifier, in order."""
        return [result.provider for result in self.attempts.get(video_id, [])]

    def merge(self, other: FallbackOutcome) -> None:
        """Fold another outcome (for a disjoint set of identifiers) into this one."""
        self.results.update(other.results)
        self.attempts.update(other.attempts)
        self.states.update(other.states)
        for name, halt in other.halts.items():
            self.halts.setdefault(name, halt)


class FallbackOrchestrator:
    """
    Drive identifiers through the backend cascade.

    Parameters
    ----------
    backends : Mapping[str, EnrichmentBackend]
        Configured backends by name; names absent from the mapping are
        treated as not configured.
    scheduler : BatchScheduler
        Dispatches each backend's batch.
    config : EnrichmentConfig
        Supplies the cascade order.

    Attributes
    ----------
    halts : dict[str, HaltReason]
        Halts seen over the orchestrator's lifetime; a halted backend is
        skipped by later calls to ``run``.
    """

    def __init__(
        self,
        backends: Mapping[str, EnrichmentBackend],
        scheduler: BatchScheduler,
        config: EnrichmentConfig,
    ) -> None:
        self.backends = dict(backends)
        self.scheduler = scheduler
        self.config = config
        self.halts: dict[str, HaltReason] = {}

    def cascade(self) -> list[EnrichmentBackend]:
        """Get the configured backends in cascade order."""
        return [
            self.backends[name.value]
            for name in cascade_order(self.config)
            if name.value in self.backends
        ]

    def ensure_runnable(self) -> None:
        """
        Fail fast when the run cannot make progress.

        Raises
        ------
        ConfigurationError
            If no backend in the cascade is available, or the preferred
            backend is unavailable while fallback is disabled.
        """
        primary = self.config.preferred_backend.value
        if not self.config.enable_fallback:
            backend = self.backends.get(primary)
            if backend is None or not backend.is_available():
                raise ConfigurationError(
                    f"Preferred backend '{primary}' is not available and fallback is disabled"
                )
            return
        if not any(backend.is_available() for backend in self.cascade()):
            names = ", ".join(name.value for name in cascade_order(self.config))
            raise ConfigurationError(f"No enrichment backend is available (tried: {names})")

    async def run(self, video_ids: Sequence[str]) -> FallbackOutcome:
        """
        Enrich unique identifiers through the cascade.

        Parameters
        ----------
        video_ids : Sequence[str]
            Unique identifiers to enrich.

        Returns
        -------
        FallbackOutcome
            A final result, attempt trace and terminal state for every
            identifier.
        """
        outcome = FallbackOutcome()
        pending = list(dict.fromkeys(video_ids))
        for video_id in pending:
            outcome.states[video_id] = FallbackState.SELECTING
            outcome.attempts[video_id] = []

        for backend in self.cascade():
            if not pending:
                break
            if backend.name in self.halts:
                logger.info("Skipping %s: halted (%s)", backend.name, self.halts[backend.name].value)
                continue
            if not backend.is_available():
                logger.info("Skipping unavailable backend %s", backend.name)
                continue

            logger.info("Attempting %d ids with %s", len(pending), backend.name)
            for video_id in pending:
                outcome.states[video_id] = FallbackState.ATTEMPTING

            batch = await self.scheduler.run(pending, backend)
            if batch.halt is not None:
                outcome.halts[backend.name] = batch.halt
                self.halts.setdefault(backend.name, batch.halt)

            still_failing: list[str] = []
            for result in batch.results:
                outcome.attempts[result.video_id].append(result)
                outcome.results[result.video_id] = result
                if result.success:
                    outcome.states[result.video_id] = FallbackState.SUCCEEDED
                else:
                    outcome.states[result.video_id] = FallbackState.FAILED
                    still_failing.append(result.video_id)

            if still_failing and len(still_failing) < len(pending):
                logger.info(
                    "%s enriched %d ids, %d still failing",
                    backend.name,
                    len(pending) - len(still_failing),
                    len(still_failing),
                )
            pending = still_failing

            if batch.halt is HaltReason.SHUTDOWN:
                break

        for video_id in pending:
            outcome.states[video_id] = FallbackState.EXHAUSTED
            if video_id not in outcome.results:
                outcome.results[video_id] = EnrichmentResult.failure(
                    video_id,
                    self.config.preferred_backend.value,
                    "no backend available",
                    self._exhausted_kind(),
                )
        if pending:
            logger.warning("%d ids exhausted every backend", len(pending))
        return outcome

    def _exhausted_kind(self) -> ErrorKind:
        if HaltReason.SHUTDOWN in self.halts.values():
            return ErrorKind.SHUTDOWN
        return ErrorKind.TRANSIENT
