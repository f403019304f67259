"""
Outbound HTTP plumbing: per-host connection pools, request pacing,
client identity rotation and watch-page fetching.
"""

from __future__ import annotations

__all__: list[str] = []
