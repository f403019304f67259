"""
Enrichment report models.

Defines Pydantic models for enrichment run reporting, including summary
statistics, detailed per-record outcomes, and pre-run cost estimates.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from watchlens.models.metrics import MetricsSnapshot


class EnrichmentSummary(BaseModel):
    """Summary statistics for an enrichment run."""

    records_processed: int = Field(
        ..., ge=0, description="Total number of records submitted"
    )
    records_enriched: int = Field(
        ..., ge=0, description="Number of records successfully enriched"
    )
    records_failed: int = Field(
        ..., ge=0, description="Number of records left with a processing error"
    )
    unique_videos: int = Field(
        ..., ge=0, description="Number of distinct video identifiers"
    )
    cache_hits: int = Field(
        default=0, ge=0, description="Identifiers served from cache"
    )
    by_backend: Dict[str, int] = Field(
        default_factory=dict, description="Successful identifiers per backend"
    )
    total_cost: Decimal = Field(
        default=Decimal("0"), ge=0, description="LLM spend for this run (USD)"
    )
    tokens_used: int = Field(
        default=0, ge=0, description="LLM tokens consumed in this run"
    )
    quota_used: int = Field(
        default=0, ge=0, description="YouTube API quota units consumed in this run"
    )
    halts: List[str] = Field(
        default_factory=list, description="Backend halt signals seen (backend: reason)"
    )

    model_config = ConfigDict(
        validate_assignment=True,
    )


class EnrichmentDetail(BaseModel):
    """Enrichment outcome for a single record."""

    url: str = Field(..., description="Source URL of the record")
    video_id: Optional[str] = Field(
        default=None, description="Extracted video identifier"
    )
    status: Literal["enriched", "cached", "failed", "skipped"] = Field(
        ..., description="Outcome for this record"
    )
    provider: Optional[str] = Field(
        default=None, description="Backend that produced the data"
    )
    attempted_backends: List[str] = Field(
        default_factory=list, description="Backends tried, in order"
    )
    title: Optional[str] = Field(default=None, description="Resolved title")
    error: Optional[str] = Field(
        default=None, description="Error message if status is 'failed' or 'skipped'"
    )

    model_config = ConfigDict(
        validate_assignment=True,
    )


class EnrichmentReport(BaseModel):
    """Complete enrichment run report."""

    timestamp: datetime = Field(
        ..., description="When the enrichment run was performed (ISO 8601)"
    )
    preferred_backend: str = Field(
        ..., min_length=1, description="Primary backend for the run"
    )
    summary: EnrichmentSummary = Field(
        ..., description="Summary statistics for the run"
    )
    metrics: Optional[MetricsSnapshot] = Field(
        default=None, description="Process-wide metrics at the end of the run"
    )
    details: List[EnrichmentDetail] = Field(
        default_factory=list, description="Per-record outcomes"
    )

    model_config = ConfigDict(
        validate_assignment=True,
    )


class EnrichmentEstimate(BaseModel):
    """Pre-run estimate of API quota and LLM cost."""

    video_count: int = Field(..., ge=0, description="Number of videos to enrich")
    api_calls: int = Field(..., ge=0, description="Batched Data API calls needed")
    api_quota_units: int = Field(..., ge=0, description="Quota units for those calls")
    llm_model: str = Field(..., description="Model the LLM estimate is priced for")
    llm_input_tokens: int = Field(..., ge=0, description="Estimated prompt tokens")
    llm_output_tokens: int = Field(..., ge=0, description="Estimated completion tokens")
    llm_cost: Decimal = Field(..., ge=0, description="Estimated LLM spend (USD)")
    recommended_batch_size: int = Field(..., ge=0, description="Suggested batch size")
    within_cost_limit: bool = Field(..., description="Estimate fits the cost limit")
