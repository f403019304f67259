"""
Enrichment orchestration for watchlens.

Modules
-------
scheduler
    Chunked, bounded-concurrency dispatch of identifiers to one backend.
fallback
    Cascade of failed identifiers across backends.
pipeline
    Entry point merging cached and fresh results into watch records.
shutdown_handler
    SIGINT/SIGTERM handling for graceful stops between chunks.
estimate
    Pre-run quota and cost estimates.
"""

from __future__ import annotations

__all__: list[str] = []
