"""
Enums for watchlens models.

Defines enumeration types used across the enrichment pipeline for
consistent type safety and validation.
"""

from __future__ import annotations

from enum import Enum


class ContentType(str, Enum):
    """Classification of a YouTube upload."""

    VIDEO = "video"
    SHORT = "short"
    LIVESTREAM = "livestream"
    PREMIERE = "premiere"


class BackendName(str, Enum):
    """Names of the interchangeable enrichment backends."""

    LLM = "llm"
    API = "api"
    SCRAPING = "scraping"


class ErrorKind(str, Enum):
    """Categories of per-identifier enrichment failures."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    NO_DATA = "no_data"
    COST_LIMIT = "cost_limit"
    SHUTDOWN = "shutdown"


class HaltReason(str, Enum):
    """Signals that stop a backend for the remainder of a run."""

    QUOTA_EXHAUSTED = "quota exhausted"
    RATE_LIMITED = "rate limited"
    COST_LIMIT = "cost limit reached"
    SHUTDOWN = "shutdown requested"

    @property
    def error_kind(self) -> ErrorKind:
        """Get the error kind recorded for identifiers cut off by this halt."""
        return {
            HaltReason.QUOTA_EXHAUSTED: ErrorKind.QUOTA_EXHAUSTED,
            HaltReason.RATE_LIMITED: ErrorKind.RATE_LIMITED,
            HaltReason.COST_LIMIT: ErrorKind.COST_LIMIT,
            HaltReason.SHUTDOWN: ErrorKind.SHUTDOWN,
        }[self]


class FallbackState(str, Enum):
    """States of a single identifier in the fallback cascade."""

    SELECTING = "selecting"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
