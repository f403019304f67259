"""
Tests for shared backend helpers.
"""

from __future__ import annotations

import pytest

from watchlens.exceptions import (
    CostLimitExceededError,
    GracefulShutdownException,
    MalformedResponseError,
    QuotaExhaustedError,
    RateLimitedError,
    TransientNetworkError,
    VideoUnavailableError,
)
from watchlens.models.enums import ErrorKind, HaltReason
from watchlens.services.backends.base import (
    BackendBatch,
    Stopwatch,
    error_kind_for,
    halt_reason_for,
)


class TestErrorKindFor:
    """Test mapping exceptions onto the error taxonomy."""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (VideoUnavailableError("gone"), ErrorKind.NOT_FOUND),
            (RateLimitedError("slow down"), ErrorKind.RATE_LIMITED),
            (QuotaExhaustedError(), ErrorKind.QUOTA_EXHAUSTED),
            (CostLimitExceededError(), ErrorKind.COST_LIMIT),
            (GracefulShutdownException(), ErrorKind.SHUTDOWN),
            (MalformedResponseError("bad"), ErrorKind.MALFORMED),
            (TransientNetworkError("reset"), ErrorKind.TRANSIENT),
            (RuntimeError("boom"), ErrorKind.TRANSIENT),
        ],
    )
    def test_mapping(self, error: Exception, kind: ErrorKind) -> None:
        """Test each exception type's error kind."""
        assert error_kind_for(error) == kind


class TestHaltReasonFor:
    """Test which exceptions stop a backend for the rest of the run."""

    @pytest.mark.parametrize(
        ("error", "reason"),
        [
            (QuotaExhaustedError(), HaltReason.QUOTA_EXHAUSTED),
            (RateLimitedError("slow down"), HaltReason.RATE_LIMITED),
            (CostLimitExceededError(), HaltReason.COST_LIMIT),
            (GracefulShutdownException(), HaltReason.SHUTDOWN),
            (MalformedResponseError("bad"), None),
            (RuntimeError("boom"), None),
        ],
    )
    def test_mapping(self, error: Exception, reason: HaltReason | None) -> None:
        """Test each exception type's halt reason."""
        assert halt_reason_for(error) == reason


def test_empty_batch():
    """Test a new batch has no results and no halt."""
    batch = BackendBatch()
    assert batch.results == []
    assert batch.halt is None


def test_stopwatch_elapsed_is_non_negative():
    """Test the stopwatch reports elapsed seconds."""
    assert Stopwatch().elapsed >= 0
