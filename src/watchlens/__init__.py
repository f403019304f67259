"""
watchlens - YouTube watch-history enrichment pipeline.

Takes minimal watch records (a video URL plus whatever the history export
carried) and fills in title, channel, duration, counts, publish date,
category and tags from the YouTube Data API, the public watch page, or an
LLM reading an excerpt of that page.
"""

from __future__ import annotations

__version__ = "0.4.0"
__author__ = "watchlens"
__license__ = "MIT"

__all__ = ["__version__", "__author__", "__license__"]
