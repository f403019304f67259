"""
Per-run enrichment options.

``EnrichmentConfig`` is the configuration object accepted by the pipeline.
It can be built from application ``Settings`` or directly from a mapping
using either snake_case or camelCase keys (``preferredBackend``,
``enableFallback``, ...).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from watchlens.config.settings import Settings
from watchlens.models.enums import BackendName


class EnrichmentConfig(BaseModel):
    """
    Options controlling a single enrichment run.

    Attributes
    ----------
    preferred_backend : BackendName
        Primary backend tried first (default: llm).
    enable_fallback : bool
        Cascade failed identifiers to the remaining backends.
    max_concurrent_requests : int
        Maximum backend units in flight at once.
    batch_size : int
        Identifiers per scheduler chunk.
    inter_batch_delay_ms : int
        Pause between chunks in milliseconds.
    cost_limit : Decimal
        Ceiling on LLM spend per run, in USD.
    quota_limit : int
        Daily YouTube Data API quota in units.
    cache_ttl_seconds : int
        Lifetime of cached payloads.
    fallback_order : list[BackendName]
        Explicit cascade order; empty uses the policy for the preferred backend.
    short_max_duration_seconds : int
        Uploads this short or shorter are classified as Shorts.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    preferred_backend: BackendName = BackendName.LLM
    enable_fallback: bool = True
    max_concurrent_requests: int = Field(default=5, ge=1)
    batch_size: int = Field(default=10, ge=1)
    inter_batch_delay_ms: int = Field(default=2000, ge=0)
    cost_limit: Decimal = Field(default=Decimal("10"), ge=0)
    quota_limit: int = Field(default=10_000, ge=0)
    cache_ttl_seconds: int = Field(default=7200, ge=0)
    fallback_order: List[BackendName] = Field(default_factory=list)
    short_max_duration_seconds: int = Field(default=60, ge=0)

    @field_validator("cost_limit", mode="before")
    @classmethod
    def float_to_decimal(cls, v: Any) -> Any:
        """Convert floats through their string form to avoid binary noise."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("fallback_order", mode="before")
    @classmethod
    def parse_fallback_order(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [name.strip().lower() for name in v.split(",") if name.strip()]
        return v

    @field_validator("fallback_order")
    @classmethod
    def validate_unique_order(cls, v: list[BackendName]) -> list[BackendName]:
        """Reject cascades that name a backend twice."""
        if len(set(v)) != len(v):
            raise ValueError(f"fallback_order contains duplicates: {[b.value for b in v]}")
        return v

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> EnrichmentConfig:
        """
        Build a config from application settings.

        Parameters
        ----------
        settings : Settings
            Loaded application settings.
        **overrides : Any
            Field values that take precedence over the settings
            (``None`` values are ignored).

        Returns
        -------
        EnrichmentConfig
            The run configuration.
        """
        values: dict[str, Any] = {
            "preferred_backend": settings.preferred_backend,
            "enable_fallback": settings.enable_fallback,
            "max_concurrent_requests": settings.max_concurrent_requests,
            "batch_size": settings.batch_size,
            "inter_batch_delay_ms": settings.inter_batch_delay_ms,
            "cost_limit": settings.llm_cost_limit,
            "quota_limit": settings.youtube_quota_limit,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "fallback_order": settings.fallback_order_list,
            "short_max_duration_seconds": settings.short_max_duration_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)
