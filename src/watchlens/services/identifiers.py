"""
Video identifier extraction from YouTube URLs.

Recognizes the URL shapes found in watch-history exports and shared links:
``watch?v=ID`` (``v`` may be any query parameter), ``youtu.be/ID``,
``/embed/ID``, ``/shorts/ID``, ``/v/ID`` and ``/live/ID``. Scheme and
host are optional, so relative forms such as ``watch?v=abc123`` resolve
too, but a host that is given must be a YouTube one (``youtube.com``,
``youtu.be``, ``youtube-nocookie.com`` or a subdomain of these). Trailing
query and fragment noise is stripped.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

_WATCH_RE = re.compile(r"(?:^|[/.])watch\?(?:[^#]*?&)?v=([^&#/?\s]+)")
_PATH_RE = re.compile(
    r"(?:^|/)(?:youtu\.be|embed|shorts|v|live)/([^&#/?\s]+)"
)
_SHORTS_RE = re.compile(r"(?:^|/)shorts/[^&#/?\s]+")
_YOUTUBE_HOST_RE = re.compile(r"^(?:[\w-]+\.)*(?:youtube\.com|youtube-nocookie\.com|youtu\.be)$")
_HEAD_SPLIT_RE = re.compile(r"[/?#]")
_NETLOC_RE = re.compile(r"^(?:[a-z][a-z0-9+.-]*:)?//", re.IGNORECASE)


def _host(candidate: str) -> str | None:
    """Return the lowercased host of a URL, or None for a relative form."""
    if not _NETLOC_RE.match(candidate):
        head = _HEAD_SPLIT_RE.split(candidate, maxsplit=1)[0]
        if "." not in head or " " in head:
            return None
        candidate = "//" + candidate
    try:
        return urlsplit(candidate).hostname or ""
    except ValueError:
        return ""


def _foreign_host(candidate: str) -> bool:
    host = _host(candidate)
    return host is not None and _YOUTUBE_HOST_RE.match(host) is None


def extract_video_id(url: str | None) -> str | None:
    """
    Extract the canonical video identifier from a URL.

    Parameters
    ----------
    url : str | None
        URL or URL fragment.

    Returns
    -------
    str | None
        The embedded identifier, or None when the URL shape is not
        recognized.

    Examples
    --------
    >>> extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42s")
    'dQw4w9WgXcQ'
    >>> extract_video_id("youtu.be/abc123?si=share")
    'abc123'
    >>> extract_video_id("https://example.com/video/1") is None
    True
    >>> extract_video_id("https://vimeo.com/v/123") is None
    True
    """
    if not url:
        return None

    candidate = url.strip()
    if _foreign_host(candidate):
        return None
    match = _WATCH_RE.search(candidate) or _PATH_RE.search(candidate)
    if match is None:
        return None
    return match.group(1)


def is_shorts_url(url: str | None) -> bool:
    """
    Check whether a URL explicitly points at a YouTube Short.

    Parameters
    ----------
    url : str | None
        Source URL.

    Returns
    -------
    bool
        True for ``/shorts/ID`` URLs.
    """
    if not url:
        return False
    candidate = url.strip()
    return _SHORTS_RE.search(candidate) is not None and not _foreign_host(candidate)
