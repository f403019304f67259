"""
Service layer for watchlens.

Identifier extraction, caching, budgets, HTTP pooling, page parsing,
the three enrichment backends, and the enrichment pipeline built on them.
"""

from __future__ import annotations

__all__: list[str] = []
