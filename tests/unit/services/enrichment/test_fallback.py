"""
Tests for the fallback cascade across backends.
"""

from __future__ import annotations

from typing import Callable

import pytest

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.exceptions import ConfigurationError
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import BackendName, ErrorKind, FallbackState, HaltReason
from watchlens.services.context import EnrichmentContext
from watchlens.services.enrichment.fallback import (
    FallbackOrchestrator,
    cascade_order,
    exhausted_message,
)
from watchlens.services.enrichment.scheduler import BatchScheduler
from watchlens.services.enrichment.shutdown_handler import ShutdownHandler

IDS = ["vid00000000", "vid00000001", "vid00000002"]


def _orchestrator(context: EnrichmentContext, *backends, **config) -> FallbackOrchestrator:
    run_config = EnrichmentConfig(inter_batch_delay_ms=0, **config)
    return FallbackOrchestrator(
        {backend.name: backend for backend in backends},
        BatchScheduler(context, max_concurrent_requests=1),
        run_config,
    )


class TestCascadeOrder:
    """Test resolving the backend order."""

    @pytest.mark.parametrize(
        ("primary", "expected"),
        [
            ("llm", [BackendName.LLM, BackendName.API, BackendName.SCRAPING]),
            ("api", [BackendName.API, BackendName.SCRAPING, BackendName.LLM]),
            ("scraping", [BackendName.SCRAPING, BackendName.API, BackendName.LLM]),
        ],
    )
    def test_default_policy(self, primary: str, expected: list[BackendName]) -> None:
        """Test the built-in cascade for each primary backend."""
        assert cascade_order(EnrichmentConfig(preferred_backend=primary)) == expected

    def test_fallback_disabled(self) -> None:
        """Test only the primary backend runs without fallback."""
        config = EnrichmentConfig(preferred_backend="api", enable_fallback=False)
        assert cascade_order(config) == [BackendName.API]

    def test_explicit_order_keeps_primary_first(self) -> None:
        """Test an explicit order is used after the primary backend."""
        config = EnrichmentConfig(preferred_backend="api", fallback_order=["scraping", "api"])
        assert cascade_order(config) == [BackendName.API, BackendName.SCRAPING]


class TestExhaustedMessage:
    """Test the processing error for exhausted identifiers."""

    def test_lists_every_attempt(self) -> None:
        """Test each backend's error appears in cascade order."""
        attempts = [
            EnrichmentResult.failure("abc", "llm", "cost limit reached", ErrorKind.COST_LIMIT),
            EnrichmentResult.failure("abc", "api", "quota exhausted", ErrorKind.QUOTA_EXHAUSTED),
        ]
        assert exhausted_message(attempts) == (
            "enrichment failed across all backends: "
            "llm: cost limit reached; api: quota exhausted"
        )

    def test_no_attempts(self) -> None:
        """Test the message when no backend could run."""
        assert exhausted_message([]).endswith("no backend available")


class TestEnsureRunnable:
    """Test fail-fast configuration checks."""

    def test_passes_with_available_backend(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test a run with one available backend may start."""
        orchestrator = _orchestrator(
            context, make_backend("llm", available=False), make_backend("scraping")
        )
        orchestrator.ensure_runnable()

    def test_no_backend_available(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test a run with nothing available is rejected."""
        orchestrator = _orchestrator(context, make_backend("llm", available=False))
        with pytest.raises(ConfigurationError, match="No enrichment backend is available"):
            orchestrator.ensure_runnable()

    def test_primary_unavailable_without_fallback(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test an unavailable primary is fatal when fallback is disabled."""
        orchestrator = _orchestrator(
            context,
            make_backend("api", available=False),
            make_backend("scraping"),
            preferred_backend="api",
            enable_fallback=False,
        )
        with pytest.raises(ConfigurationError, match="fallback is disabled"):
            orchestrator.ensure_runnable()

    def test_primary_not_configured_without_fallback(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test a missing primary is fatal when fallback is disabled."""
        orchestrator = _orchestrator(
            context, make_backend("scraping"), preferred_backend="api", enable_fallback=False
        )
        with pytest.raises(ConfigurationError):
            orchestrator.ensure_runnable()


class TestRun:
    """Test driving identifiers through the cascade."""

    pytestmark = pytest.mark.asyncio

    async def test_primary_succeeds(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test identifiers the primary enriches never reach a fallback."""
        llm, api = make_backend("llm"), make_backend("api", max_batch_size=50)

        outcome = await _orchestrator(context, llm, api).run(IDS)

        assert all(state is FallbackState.SUCCEEDED for state in outcome.states.values())
        assert api.calls == []
        assert outcome.attempted_backends(IDS[0]) == ["llm"]

    async def test_failures_cascade(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test only failing identifiers move to the next backend."""
        llm = make_backend("llm", failures={IDS[1]: ErrorKind.MALFORMED})
        api = make_backend("api", max_batch_size=50)

        outcome = await _orchestrator(context, llm, api).run(IDS)

        assert api.dispatched_ids == [IDS[1]]
        assert outcome.attempted_backends(IDS[1]) == ["llm", "api"]
        assert outcome.results[IDS[1]].provider == "api"
        assert outcome.states[IDS[1]] is FallbackState.SUCCEEDED

    async def test_exhausted(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test an identifier failing everywhere ends exhausted with its last failure."""
        llm = make_backend("llm", failures={IDS[0]: ErrorKind.MALFORMED})
        api = make_backend("api", failures={IDS[0]: ErrorKind.NOT_FOUND})
        scraping = make_backend("scraping", failures={IDS[0]: ErrorKind.NO_DATA})

        outcome = await _orchestrator(context, llm, api, scraping).run(IDS)

        assert outcome.states[IDS[0]] is FallbackState.EXHAUSTED
        assert outcome.attempted_backends(IDS[0]) == ["llm", "api", "scraping"]
        assert outcome.results[IDS[0]].error_kind == ErrorKind.NO_DATA

    async def test_unavailable_backend_skipped(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test an unavailable backend is passed over."""
        llm = make_backend("llm", available=False)
        api = make_backend("api", max_batch_size=50)

        outcome = await _orchestrator(context, llm, api).run(IDS)

        assert llm.calls == []
        assert outcome.attempted_backends(IDS[0]) == ["api"]

    async def test_halted_backend_skipped_on_later_runs(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test a halt keeps the backend out of the rest of the run."""
        llm = make_backend("llm", halt_after=1)
        api = make_backend("api", max_batch_size=50)
        orchestrator = _orchestrator(context, llm, api)

        first = await orchestrator.run(IDS)
        calls_after_first = len(llm.calls)
        second = await orchestrator.run(["vid00000009"])

        assert first.halts == {"llm": HaltReason.RATE_LIMITED}
        assert first.attempted_backends(IDS[0]) == ["llm"]
        assert first.attempted_backends(IDS[1]) == ["llm", "api"]
        assert len(llm.calls) == calls_after_first
        assert second.attempted_backends("vid00000009") == ["api"]

    async def test_shutdown_stops_cascade(
        self,
        context: EnrichmentContext,
        make_backend: Callable[..., object],
        signalled_shutdown: ShutdownHandler,
    ) -> None:
        """Test a shutdown does not hand identifiers to the next backend."""
        context.shutdown = signalled_shutdown
        llm, api = make_backend("llm"), make_backend("api")

        outcome = await _orchestrator(context, llm, api).run(IDS)

        assert api.calls == []
        assert outcome.halts == {"llm": HaltReason.SHUTDOWN}
        assert all(state is FallbackState.EXHAUSTED for state in outcome.states.values())
        assert outcome.results[IDS[0]].error_kind == ErrorKind.SHUTDOWN

    async def test_nothing_available_at_run_time(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test identifiers exhaust without attempts when no backend can run."""
        outcome = await _orchestrator(context, make_backend("llm", available=False)).run(IDS)

        result = outcome.results[IDS[0]]
        assert result.success is False
        assert result.error == "no backend available"
        assert outcome.attempted_backends(IDS[0]) == []

    async def test_duplicates_collapsed(
        self, context: EnrichmentContext, make_backend: Callable[..., object]
    ) -> None:
        """Test a repeated identifier is dispatched once."""
        api = make_backend("api", max_batch_size=50)

        await _orchestrator(context, api, preferred_backend="api").run([IDS[0], IDS[0]])

        assert api.dispatched_ids == [IDS[0]]
