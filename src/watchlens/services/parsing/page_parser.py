"""
Watch-page parser for extracting video metadata from YouTube HTML.

``parse_watch_page`` is a pure function of the page source so that it can
run on a worker process or inline with identical results. It applies
three strategies in priority order and accepts the first that yields a
usable title/channel pair:

1. Page-state JSON: ``ytInitialPlayerResponse`` (``videoDetails`` and
   ``microformat.playerMicroformatRenderer``) plus ``ytInitialData`` for
   the like count
2. HTML meta tags using BeautifulSoup (Open Graph, ``itemprop``, ``name``)
3. The ``application/ld+json`` ``VideoObject`` block

When no strategy yields the pair, their partial results are merged in
the same priority order and any populated field counts as success.

Functions
---------
parse_watch_page
    Extract ``ScrapedVideoData`` from a watch page.
detect_unavailable
    Recognize pages for missing, private or removed videos.
extract_json_object
    Brace-count a JSON object out of surrounding text.
find_embedded_json
    Locate and decode a ``ytInitial*`` JavaScript assignment.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from bs4 import BeautifulSoup, Tag

from watchlens.models.video import ScrapedVideoData
from watchlens.services.parsing.values import (
    category_name,
    coerce_tags,
    normalize_count,
    parse_duration_text,
    parse_publish_date,
    sanitize_text,
    sanitize_title,
)

logger = logging.getLogger(__name__)

# Regex to locate the START of ytInitialPlayerResponse/ytInitialData JSON.
# Only matches the variable assignment prefix; the JSON body is extracted via
# brace-counting in extract_json_object() to handle nested structures.
# Handles: var ytInitialPlayerResponse = {...};
#          ytInitialPlayerResponse = {...};
#          window["ytInitialPlayerResponse"] = {...};
_STATE_VARIABLE_RES: dict[str, re.Pattern[str]] = {
    name: re.compile(rf'(?:var\s+|window\["|){name}(?:"\])?\s*=\s*')
    for name in ("ytInitialPlayerResponse", "ytInitialData")
}

_LIKE_LABEL_RE = re.compile(r'"label"\s*:\s*"([\d,.]+[KMB]?)\s+likes?"', re.IGNORECASE)
_COMMENT_COUNT_RE = re.compile(
    r'"commentCount"\s*:\s*\{\s*"simpleText"\s*:\s*"([^"]+)"'
)
_CHANNEL_ID_IN_URL_RE = re.compile(r"/channel/(UC[A-Za-z0-9_-]{22})")
_PLAYABILITY_RE = re.compile(
    r'"playabilityStatus"\s*:\s*\{\s*"status"\s*:\s*"([A-Z_]+)"'
)

_MAX_JSON_SCAN_CHARS = 5_000_000

# Playability status values indicating the video cannot be shown.
_UNAVAILABLE_STATUSES: dict[str, str] = {
    "ERROR": "playability_status_error",
    "UNPLAYABLE": "playability_status_unplayable",
}

# Text patterns (case-insensitive) for pages without page-state JSON.
_UNAVAILABLE_TEXT_PATTERNS: list[tuple[str, str]] = [
    ("video unavailable", "text_video_unavailable"),
    ("this video is not available", "text_not_available"),
    ("this video isn't available anymore", "text_not_available"),
    ("this video is private", "text_private"),
    ("this video has been removed", "text_removed"),
]


def extract_json_object(text: str, start: int) -> str | None:
    """
    Extract a balanced JSON object from text starting at the given position.

    Uses brace-counting to handle arbitrarily nested ``{...}`` structures
    that would break a simple non-greedy regex.

    Parameters
    ----------
    text : str
        Raw HTML or script source.
    start : int
        Position of the opening ``{``.

    Returns
    -------
    str | None
        The balanced JSON string, or None if there is no opening brace at
        ``start`` or braces are unbalanced within the first 5MB of text.
    """
    if start >= len(text) or text[start] != "{":
        return None

    depth = 0
    in_string = False
    escape = False
    limit = min(len(text), start + _MAX_JSON_SCAN_CHARS)

    for i in range(start, limit):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def find_embedded_json_text(html: str, name: str) -> str | None:
    """
    Locate the raw JSON text assigned to a page-state variable.

    Parameters
    ----------
    html : str
        Page source.
    name : str
        ``"ytInitialPlayerResponse"`` or ``"ytInitialData"``.

    Returns
    -------
    str | None
        The JSON object source, or None when absent or unbalanced.
    """
    pattern = _STATE_VARIABLE_RES.get(name)
    if pattern is None:
        raise ValueError(f"Unknown page-state variable: {name}")
    match = pattern.search(html)
    if not match:
        return None
    return extract_json_object(html, match.end())


def find_embedded_json(html: str, name: str) -> dict[str, Any] | None:
    """
    Locate and decode a page-state variable.

    Parameters
    ----------
    html : str
        Page source.
    name : str
        ``"ytInitialPlayerResponse"`` or ``"ytInitialData"``.

    Returns
    -------
    dict[str, Any] | None
        Decoded object, or None when absent or malformed.
    """
    json_str = find_embedded_json_text(html, name)
    if not json_str:
        return None
    try:
        data = json.loads(json_str)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Malformed %s JSON", name)
        return None
    return data if isinstance(data, dict) else None


def detect_unavailable(html: str) -> str | None:
    """
    Detect whether a watch page is for an unavailable video.

    Parameters
    ----------
    html : str
        Page source.

    Returns
    -------
    str | None
        A reason identifier (e.g. ``"playability_status_error"``) when the
        page is an unavailable notice, or None for a normal page.
    """
    status_match = _PLAYABILITY_RE.search(html)
    if status_match:
        status = status_match.group(1)
        if status in _UNAVAILABLE_STATUSES and '"videoDetails"' not in html:
            return _UNAVAILABLE_STATUSES[status]
        return None

    # No page-state JSON: rely on visible text, unless the page still has
    # an Open Graph title for the video.
    if 'property="og:title"' in html:
        return None
    html_lower = html.lower()
    for pattern, reason in _UNAVAILABLE_TEXT_PATTERNS:
        if pattern in html_lower:
            return reason
    return None


def parse_watch_page(html: str) -> ScrapedVideoData | None:
    """
    Extract video metadata from a watch page.

    Parameters
    ----------
    html : str
        Raw watch-page HTML.

    Returns
    -------
    ScrapedVideoData | None
        Extracted metadata, or None when no strategy found any field.
    """
    if not html:
        return None

    soup: Optional[BeautifulSoup] = None

    def get_soup() -> BeautifulSoup:
        nonlocal soup
        if soup is None:
            soup = BeautifulSoup(html, "html.parser")
        return soup

    strategies: list[Callable[[], ScrapedVideoData | None]] = [
        lambda: _extract_from_page_state(html),
        lambda: _extract_from_meta_tags(get_soup()),
        lambda: _extract_from_json_ld(get_soup()),
    ]

    partials: list[ScrapedVideoData] = []
    for strategy in strategies:
        result = strategy()
        if result is None:
            continue
        if result.has_title_and_channel:
            return result
        partials.append(result)

    if not partials:
        return None

    merged = partials[0]
    for partial in partials[1:]:
        merged = merged.fill_missing(partial)
    return merged if merged.has_data else None


def _extract_from_page_state(html: str) -> ScrapedVideoData | None:
    """
    Extract metadata from ``ytInitialPlayerResponse`` and ``ytInitialData``.

    Returns None when the player response is absent or has no
    ``videoDetails``.
    """
    player = find_embedded_json(html, "ytInitialPlayerResponse")
    if not player:
        return None

    details = player.get("videoDetails") or {}
    if not details:
        return None

    renderer = (player.get("microformat") or {}).get("playerMicroformatRenderer") or {}
    broadcast = renderer.get("liveBroadcastDetails") or {}

    thumbnails = (details.get("thumbnail") or {}).get("thumbnails") or (
        (renderer.get("thumbnail") or {}).get("thumbnails") or []
    )
    thumbnail_url = thumbnails[-1].get("url") if thumbnails else None

    is_live_content = bool(details.get("isLiveContent") or broadcast)
    is_upcoming = bool(details.get("isUpcoming"))

    like_count: int | None = None
    comment_count: int | None = None
    initial_data = find_embedded_json_text(html, "ytInitialData")
    if initial_data:
        like_match = _LIKE_LABEL_RE.search(initial_data)
        if like_match:
            like_count = normalize_count(like_match.group(1))
        comment_match = _COMMENT_COUNT_RE.search(initial_data)
        if comment_match:
            comment_count = normalize_count(comment_match.group(1))

    return ScrapedVideoData(
        title=sanitize_title(details.get("title")),
        description=sanitize_text(details.get("shortDescription")),
        channel_name=details.get("author") or renderer.get("ownerChannelName"),
        channel_id=details.get("channelId") or renderer.get("externalChannelId"),
        duration_seconds=parse_duration_text(
            details.get("lengthSeconds") or renderer.get("lengthSeconds")
        ),
        view_count=normalize_count(details.get("viewCount") or renderer.get("viewCount")),
        like_count=like_count,
        comment_count=comment_count,
        published_at=parse_publish_date(
            renderer.get("publishDate") or renderer.get("uploadDate")
        ),
        tags=coerce_tags(details.get("keywords")),
        thumbnail_url=thumbnail_url,
        category=category_name(renderer.get("category")),
        is_livestream=is_live_content and not is_upcoming,
        is_premiere=is_upcoming and not is_live_content,
    )


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if isinstance(tag, Tag):
        content = tag.get("content")
        if content:
            return str(content).strip() or None
    return None


def _itemprop_content(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find(attrs={"itemprop": name})
    if isinstance(tag, Tag):
        content = tag.get("content")
        if content:
            return str(content).strip() or None
    return None


def _extract_from_meta_tags(soup: BeautifulSoup) -> ScrapedVideoData | None:
    """
    Extract metadata from Open Graph, ``itemprop`` and ``name`` meta tags.

    Returns None when no usable tag is present.
    """
    title = _meta_content(soup, property="og:title") or _meta_content(soup, name="title")
    description = _meta_content(soup, property="og:description") or _meta_content(
        soup, name="description"
    )

    tags = [
        str(tag_meta.get("content"))
        for tag_meta in soup.find_all("meta", attrs={"property": "og:video:tag"})
        if isinstance(tag_meta, Tag) and tag_meta.get("content")
    ]
    if not tags:
        tags = coerce_tags(_meta_content(soup, name="keywords"))

    # Channel name: <span itemprop="author"><link itemprop="name" content="..."></span>
    channel_name: str | None = None
    author = soup.find(attrs={"itemprop": "author"})
    if isinstance(author, Tag):
        name_link = author.find(attrs={"itemprop": "name"})
        if isinstance(name_link, Tag) and name_link.get("content"):
            channel_name = str(name_link["content"]).strip() or None

    channel_id = _itemprop_content(soup, "channelId")
    if channel_id is None:
        for link in soup.find_all("link", attrs={"itemprop": "url"}):
            if not isinstance(link, Tag):
                continue
            channel_match = _CHANNEL_ID_IN_URL_RE.search(str(link.get("href", "")))
            if channel_match:
                channel_id = channel_match.group(1)
                break

    result = ScrapedVideoData(
        title=sanitize_title(title),
        description=sanitize_text(description),
        channel_name=channel_name,
        channel_id=channel_id,
        duration_seconds=parse_duration_text(_itemprop_content(soup, "duration")),
        view_count=normalize_count(_itemprop_content(soup, "interactionCount")),
        published_at=parse_publish_date(
            _itemprop_content(soup, "datePublished") or _itemprop_content(soup, "uploadDate")
        ),
        tags=tags,
        thumbnail_url=_meta_content(soup, property="og:image"),
        category=category_name(_itemprop_content(soup, "genre")),
    )
    return result if result.has_data else None


def _find_video_object(node: Any) -> dict[str, Any] | None:
    if isinstance(node, list):
        for item in node:
            found = _find_video_object(item)
            if found is not None:
                return found
        return None
    if not isinstance(node, dict):
        return None
    node_type = node.get("@type")
    if node_type == "VideoObject" or (
        isinstance(node_type, list) and "VideoObject" in node_type
    ):
        return node
    if "@graph" in node:
        return _find_video_object(node["@graph"])
    return None


def _interaction_count(statistics: Any, action: str) -> int | None:
    if isinstance(statistics, dict):
        statistics = [statistics]
    if not isinstance(statistics, list):
        return None
    for stat in statistics:
        if not isinstance(stat, dict):
            continue
        interaction_type = stat.get("interactionType")
        if isinstance(interaction_type, dict):
            interaction_type = interaction_type.get("@type")
        if isinstance(interaction_type, str) and interaction_type.endswith(action):
            return normalize_count(stat.get("userInteractionCount"))
    return None


def _extract_from_json_ld(soup: BeautifulSoup) -> ScrapedVideoData | None:
    """
    Extract metadata from the first ``VideoObject`` linked-data block.

    Returns None when no block decodes to a ``VideoObject``.
    """
    video: dict[str, Any] | None = None
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        if not isinstance(script, Tag):
            continue
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except (json.JSONDecodeError, ValueError):
            continue
        video = _find_video_object(payload)
        if video is not None:
            break

    if video is None:
        return None

    author = video.get("author")
    channel_name: str | None = None
    channel_url: str = ""
    if isinstance(author, dict):
        channel_name = author.get("name")
        channel_url = str(author.get("url") or author.get("@id") or "")
    elif isinstance(author, str):
        channel_name = author
    channel_match = _CHANNEL_ID_IN_URL_RE.search(channel_url)

    thumbnail = video.get("thumbnailUrl")
    if isinstance(thumbnail, list):
        thumbnail = thumbnail[0] if thumbnail else None

    publication = video.get("publication")
    if isinstance(publication, dict):
        publication = [publication]
    is_live = any(
        isinstance(p, dict) and p.get("isLiveBroadcast") for p in publication or []
    )

    statistics = video.get("interactionStatistic")
    result = ScrapedVideoData(
        title=sanitize_title(video.get("name")),
        description=sanitize_text(video.get("description")),
        channel_name=channel_name,
        channel_id=channel_match.group(1) if channel_match else None,
        duration_seconds=parse_duration_text(video.get("duration")),
        view_count=_interaction_count(statistics, "WatchAction"),
        like_count=_interaction_count(statistics, "LikeAction"),
        comment_count=normalize_count(video.get("commentCount")),
        published_at=parse_publish_date(video.get("uploadDate") or video.get("datePublished")),
        tags=coerce_tags(video.get("keywords")),
        thumbnail_url=str(thumbnail) if thumbnail else None,
        category=category_name(video.get("genre")),
        is_livestream=True if is_live else None,
    )
    return result if result.has_data else None
