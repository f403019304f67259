"""
Explicit shared state passed to every enrichment component.
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Callable, Optional

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.models.metrics import MetricsSnapshot
from watchlens.services.budget import CostTracker, QuotaTracker
from watchlens.services.cache import VideoCache
from watchlens.services.enrichment.shutdown_handler import ShutdownHandler
from watchlens.services.metrics import MetricsRecorder


@dataclass
class EnrichmentContext:
    """
    Mutable state shared by the pipeline, scheduler and backends.

    The cache and the quota/cost trackers are the only state written by
    concurrent workers; each synchronizes internally.

    Attributes
    ----------
    cache : VideoCache
        Payload cache and in-flight registry.
    quota : QuotaTracker
        YouTube Data API unit budget.
    cost : CostTracker
        LLM spend against the per-run ceiling.
    metrics : MetricsRecorder
        Per-backend attempt counters.
    shutdown : ShutdownHandler | None
        Signal handler checked between scheduler chunks.
    """

    cache: VideoCache
    quota: QuotaTracker
    cost: CostTracker
    metrics: MetricsRecorder = field(default_factory=MetricsRecorder)
    shutdown: Optional[ShutdownHandler] = None

    @classmethod
    def create(
        cls,
        config: EnrichmentConfig,
        shutdown: ShutdownHandler | None = None,
        clock: Callable[[], _dt.datetime] | None = None,
    ) -> EnrichmentContext:
        """
        Build a fresh context sized from a run configuration.

        Parameters
        ----------
        config : EnrichmentConfig
            Supplies cache TTL, quota limit and cost limit.
        shutdown : ShutdownHandler | None, optional
            Signal handler to consult between chunks.
        clock : Callable[[], datetime] | None, optional
            UTC clock for the cache and quota tracker.

        Returns
        -------
        EnrichmentContext
            New context with empty cache and full budgets.
        """
        return cls(
            cache=VideoCache(config.cache_ttl_seconds, clock=clock),
            quota=QuotaTracker(config.quota_limit, backend="api", clock=clock),
            cost=CostTracker(config.cost_limit),
            shutdown=shutdown,
        )

    def snapshot(self) -> MetricsSnapshot:
        """Get the read-only metrics snapshot."""
        return self.metrics.snapshot(self.cache, self.cost, self.quota)

    def check_shutdown(self) -> None:
        """
        Raise if a graceful shutdown has been requested.

        Raises
        ------
        GracefulShutdownException
            If the shutdown handler has received a signal.
        """
        if self.shutdown is not None:
            self.shutdown.check_shutdown()
