"""
CLI interface module for watchlens.

Provides the Typer-based command-line interface for enriching watch
records, extracting video identifiers and estimating run costs.
"""

from __future__ import annotations

__all__: list[str] = []
