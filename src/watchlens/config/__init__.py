"""
Configuration management module for watchlens.

Handles application settings, environment variables, and the per-run
enrichment options derived from them.
"""

from __future__ import annotations

__all__: list[str] = []
