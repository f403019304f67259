"""
Contract shared by the enrichment backends.

Backends are interchangeable and selected by name at runtime. They do not
share a base class; each satisfies the ``EnrichmentBackend`` protocol:

- ``name`` and ``max_batch_size`` (identifiers per ``enrich`` call)
- ``is_available()`` (credentials present, not halted, circuit closed)
- ``async enrich(ids) -> BackendBatch``
- ``async aclose()``

``enrich`` never raises for per-identifier problems. It returns a result
for each identifier it attempted and, when the backend must stop for the
rest of the run, a ``HaltReason``. Identifiers it did not attempt are
simply absent from ``results``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, runtime_checkable

from watchlens.exceptions import (
    CostLimitExceededError,
    GracefulShutdownException,
    MalformedResponseError,
    QuotaExhaustedError,
    RateLimitedError,
    VideoUnavailableError,
)
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import ErrorKind, HaltReason


@dataclass
class BackendBatch:
    """
    Outcome of one ``enrich`` call.

    Attributes
    ----------
    results : list[EnrichmentResult]
        One result per attempted identifier.
    halt : HaltReason | None
        Set when the backend stopped and must not be called again this run.
    """

    results: list[EnrichmentResult] = field(default_factory=list)
    halt: Optional[HaltReason] = None


@runtime_checkable
class EnrichmentBackend(Protocol):
    """Structural type of an enrichment backend."""

    name: str
    max_batch_size: int

    def is_available(self) -> bool:
        """Check whether the backend can take work."""
        ...

    async def enrich(self, video_ids: Sequence[str]) -> BackendBatch:
        """Enrich up to ``max_batch_size`` identifiers."""
        ...

    async def aclose(self) -> None:
        """Release backend resources."""
        ...


def error_kind_for(error: Exception) -> ErrorKind:
    """
    Map an exception onto the per-identifier error taxonomy.

    Parameters
    ----------
    error : Exception
        Error raised while enriching one identifier.

    Returns
    -------
    ErrorKind
        Category recorded on the failed result.
    """
    if isinstance(error, VideoUnavailableError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, RateLimitedError):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, QuotaExhaustedError):
        return ErrorKind.QUOTA_EXHAUSTED
    if isinstance(error, CostLimitExceededError):
        return ErrorKind.COST_LIMIT
    if isinstance(error, GracefulShutdownException):
        return ErrorKind.SHUTDOWN
    if isinstance(error, MalformedResponseError):
        return ErrorKind.MALFORMED
    # Network failures and anything unexpected
    return ErrorKind.TRANSIENT


def halt_reason_for(error: Exception) -> Optional[HaltReason]:
    """
    Map an exception onto the reason a backend must stop, if any.

    Parameters
    ----------
    error : Exception
        Error raised out of a backend call.

    Returns
    -------
    HaltReason | None
        The halt the error implies, or None when only the identifiers in
        flight failed.
    """
    if isinstance(error, QuotaExhaustedError):
        return HaltReason.QUOTA_EXHAUSTED
    if isinstance(error, RateLimitedError):
        return HaltReason.RATE_LIMITED
    if isinstance(error, CostLimitExceededError):
        return HaltReason.COST_LIMIT
    if isinstance(error, GracefulShutdownException):
        return HaltReason.SHUTDOWN
    return None


class Stopwatch:
    """Elapsed wall-clock time since construction."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed(self) -> float:
        """Seconds since the stopwatch started."""
        return time.perf_counter() - self._start
