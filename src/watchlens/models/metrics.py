"""
Metrics snapshot models.

Read-only views of pipeline counters handed to logging and reporting
collaborators.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class BackendMetrics(BaseModel):
    """Request counters for a single backend."""

    requests: int = Field(default=0, ge=0, description="Attempts dispatched")
    successes: int = Field(default=0, ge=0, description="Successful attempts")
    failures: int = Field(default=0, ge=0, description="Failed attempts")
    total_latency_seconds: float = Field(
        default=0.0, ge=0, description="Summed attempt latency"
    )

    model_config = ConfigDict(frozen=True)


class MetricsSnapshot(BaseModel):
    """Point-in-time pipeline metrics."""

    total_requests: int = Field(..., ge=0, description="Backend attempts made")
    successful_requests: int = Field(..., ge=0, description="Successful attempts")
    failed_requests: int = Field(..., ge=0, description="Failed attempts")
    average_latency_seconds: float = Field(
        ..., ge=0, description="Mean backend attempt latency"
    )
    cache_hits: int = Field(..., ge=0, description="Lookups served from cache")
    cache_misses: int = Field(..., ge=0, description="Lookups not in cache")
    cache_hit_rate: float = Field(
        ..., ge=0, le=1, description="cache_hits / (cache_hits + cache_misses)"
    )
    cumulative_cost: Decimal = Field(
        ..., ge=0, description="LLM spend across all runs (USD)"
    )
    total_tokens: int = Field(default=0, ge=0, description="LLM tokens consumed")
    quota_remaining: Optional[int] = Field(
        default=None, ge=0, description="YouTube API units left in the period"
    )
    by_backend: Dict[str, BackendMetrics] = Field(
        default_factory=dict, description="Counters per backend name"
    )

    model_config = ConfigDict(frozen=True)
