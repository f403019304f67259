"""
Pydantic models for enrichment attempts, quota accounting and caching.

Models
------
EnrichmentResult
    Immutable outcome of one backend attempt for one identifier.
QuotaUsage
    Point-in-time view of a backend's quota period.
CacheEntry
    Cached enrichment payload with insertion time and TTL.
CacheSnapshot
    File representation of a cache, used for persistence between runs.
"""

from __future__ import annotations

import datetime as _dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from watchlens.models.enums import ErrorKind
from watchlens.models.video import ScrapedVideoData


class EnrichmentResult(BaseModel):
    """
    Outcome of a single backend attempt for a single identifier.

    Created once per identifier per attempt and never mutated; a retry or
    a fallback attempt produces a new result.

    Attributes
    ----------
    video_id : str
        Identifier the attempt was made for.
    success : bool
        Whether usable data was obtained.
    data : ScrapedVideoData | None
        Extracted payload on success.
    error : str | None
        Human-readable failure reason.
    error_kind : ErrorKind | None
        Failure category.
    provider : str
        Backend name (``"llm"``, ``"api"``, ``"scraping"``) or ``"cache"``.
    model : str | None
        LLM model used, for the LLM backend.
    cost : Decimal
        Monetary cost of the attempt in USD.
    tokens_used : int
        Tokens (or other resource units) consumed.
    elapsed_seconds : float
        Wall-clock duration of the attempt.
    from_cache : bool
        True when served from the cache without a backend call.
    """

    model_config = ConfigDict(frozen=True)

    video_id: str
    success: bool
    data: Optional[ScrapedVideoData] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    provider: str
    model: Optional[str] = None
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    tokens_used: int = Field(default=0, ge=0)
    elapsed_seconds: float = Field(default=0.0, ge=0)
    from_cache: bool = False

    @model_validator(mode="after")
    def check_outcome(self) -> EnrichmentResult:
        """Ensure successes carry data and failures carry a reason."""
        if self.success and (self.data is None or not self.data.has_data):
            raise ValueError("successful result requires a non-empty data payload")
        if not self.success and not self.error:
            raise ValueError("failed result requires an error description")
        return self

    @classmethod
    def failure(
        cls,
        video_id: str,
        provider: str,
        error: str,
        error_kind: ErrorKind,
        **kwargs: object,
    ) -> EnrichmentResult:
        """
        Build a failed result.

        Parameters
        ----------
        video_id : str
            Identifier that failed.
        provider : str
            Backend name.
        error : str
            Human-readable reason.
        error_kind : ErrorKind
            Failure category.
        **kwargs : object
            Extra fields (cost, tokens_used, elapsed_seconds, model).

        Returns
        -------
        EnrichmentResult
            The failed result.
        """
        return cls(
            video_id=video_id,
            success=False,
            provider=provider,
            error=error,
            error_kind=error_kind,
            **kwargs,  # type: ignore[arg-type]
        )


class QuotaUsage(BaseModel):
    """
    Point-in-time quota accounting for one backend.

    Attributes
    ----------
    backend : str
        Backend name.
    limit : int
        Units available per period.
    used : int
        Units consumed in the current period.
    remaining : int
        Units left in the current period (``limit - used``).
    requests_made : int
        Requests made in the current period.
    reset_at : datetime.datetime
        When the current period ends.
    """

    model_config = ConfigDict(frozen=True)

    backend: str
    limit: int = Field(..., ge=0)
    used: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    requests_made: int = Field(default=0, ge=0)
    reset_at: _dt.datetime

    @model_validator(mode="after")
    def check_balance(self) -> QuotaUsage:
        """Ensure used and remaining add up to the limit."""
        if self.used + self.remaining != self.limit:
            raise ValueError(
                f"used ({self.used}) + remaining ({self.remaining}) "
                f"must equal limit ({self.limit})"
            )
        return self


class CacheEntry(BaseModel):
    """
    Cached enrichment payload for one identifier.

    Attributes
    ----------
    video_id : str
        Cache key.
    data : ScrapedVideoData
        Cached payload.
    inserted_at : datetime.datetime
        Insertion time. Must be timezone-aware (UTC).
    ttl_seconds : int
        Time-to-live in seconds.
    provider : str | None
        Backend that originally produced the payload.
    """

    model_config = ConfigDict(frozen=True)

    video_id: str
    data: ScrapedVideoData
    inserted_at: _dt.datetime
    ttl_seconds: int = Field(..., ge=0)
    provider: Optional[str] = None

    @field_validator("inserted_at")
    @classmethod
    def validate_inserted_at(cls, v: _dt.datetime) -> _dt.datetime:
        """
        Validate that inserted_at is timezone-aware.

        Parameters
        ----------
        v : datetime.datetime
            The datetime to validate.

        Returns
        -------
        datetime.datetime
            The validated timezone-aware datetime.

        Raises
        ------
        ValueError
            If inserted_at is a naive (timezone-unaware) datetime.
        """
        if v.tzinfo is None:
            raise ValueError(
                "inserted_at must be timezone-aware (has tzinfo), "
                "got naive datetime"
            )
        return v

    @property
    def expires_at(self) -> _dt.datetime:
        """Get the instant after which the entry is stale."""
        return self.inserted_at + _dt.timedelta(seconds=self.ttl_seconds)

    def is_valid(self, now: _dt.datetime | None = None) -> bool:
        """
        Check whether this cache entry is still fresh.

        Parameters
        ----------
        now : datetime.datetime | None, optional
            Reference time (default: current UTC time).

        Returns
        -------
        bool
            True if the entry age is less than ``ttl_seconds``.
        """
        now = now or _dt.datetime.now(_dt.timezone.utc)
        return now < self.expires_at


class CacheSnapshot(BaseModel):
    """File representation of a persisted cache."""

    saved_at: _dt.datetime
    entries: list[CacheEntry] = Field(default_factory=list)
