"""Command implementations registered on the main watchlens app."""

from __future__ import annotations

__all__: list[str] = []
