"""
CPU-bound extraction of video metadata from watch pages and LLM replies.

Everything here is pure and picklable so it can run on the worker pool.
"""

from __future__ import annotations

__all__: list[str] = []
