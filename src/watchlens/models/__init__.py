"""
Data models for watchlens.

Pydantic models for watch records, enrichment payloads and results,
quota and cache bookkeeping, metrics and run reports.
"""

from __future__ import annotations

from watchlens.models.enrichment import (
    CacheEntry,
    CacheSnapshot,
    EnrichmentResult,
    QuotaUsage,
)
from watchlens.models.enrichment_report import (
    EnrichmentDetail,
    EnrichmentEstimate,
    EnrichmentReport,
    EnrichmentSummary,
)
from watchlens.models.enums import (
    BackendName,
    ContentType,
    ErrorKind,
    FallbackState,
    HaltReason,
)
from watchlens.models.metrics import BackendMetrics, MetricsSnapshot
from watchlens.models.video import ScrapedVideoData, VideoRecord

__all__ = [
    "BackendMetrics",
    "BackendName",
    "CacheEntry",
    "CacheSnapshot",
    "ContentType",
    "EnrichmentDetail",
    "EnrichmentEstimate",
    "EnrichmentReport",
    "EnrichmentResult",
    "EnrichmentSummary",
    "ErrorKind",
    "FallbackState",
    "HaltReason",
    "MetricsSnapshot",
    "QuotaUsage",
    "ScrapedVideoData",
    "VideoRecord",
]
