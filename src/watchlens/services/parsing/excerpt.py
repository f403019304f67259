"""
Bounded page excerpts for LLM extraction.

A watch page is typically 1MB or more, most of it player code. The LLM
only needs the parts that carry metadata, so ``build_excerpt`` assembles
the title tag, a whitelist of meta tags, up to three linked-data blocks
and a capped slice of the page-state JSON, and never returns more than
``max_chars`` characters.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import BeautifulSoup, Tag

from watchlens.services.parsing.page_parser import find_embedded_json

logger = logging.getLogger(__name__)

_META_NAMES = ("title", "description", "keywords")
_META_PROPERTIES = (
    "og:title",
    "og:description",
    "og:image",
    "og:url",
    "og:type",
    "og:video:tag",
    "twitter:title",
    "twitter:description",
)
_ITEMPROPS = (
    "name",
    "duration",
    "uploadDate",
    "datePublished",
    "genre",
    "channelId",
    "videoId",
    "interactionCount",
    "isLiveBroadcast",
)
_MAX_LD_JSON_BLOCKS = 3
_DETAIL_KEYS = (
    "videoId",
    "title",
    "lengthSeconds",
    "keywords",
    "channelId",
    "shortDescription",
    "viewCount",
    "author",
    "isLiveContent",
    "isUpcoming",
)
_MICROFORMAT_KEYS = (
    "title",
    "description",
    "lengthSeconds",
    "ownerChannelName",
    "externalChannelId",
    "category",
    "publishDate",
    "uploadDate",
    "viewCount",
    "liveBroadcastDetails",
)
_RENDERER_KEYS = ("videoPrimaryInfoRenderer", "videoSecondaryInfoRenderer")


def _collect_renderers(node: Any, found: dict[str, Any], depth: int = 0) -> None:
    if depth > 12 or len(found) == len(_RENDERER_KEYS):
        return
    if isinstance(node, dict):
        for key, value in node.items():
            if key in _RENDERER_KEYS and key not in found:
                found[key] = value
            else:
                _collect_renderers(value, found, depth + 1)
    elif isinstance(node, list):
        for item in node:
            _collect_renderers(item, found, depth + 1)


def _page_state_summary(html: str) -> dict[str, Any]:
    summary: dict[str, Any] = {}

    player = find_embedded_json(html, "ytInitialPlayerResponse")
    if player:
        details = player.get("videoDetails") or {}
        summary["videoDetails"] = {k: details[k] for k in _DETAIL_KEYS if k in details}
        renderer = (player.get("microformat") or {}).get("playerMicroformatRenderer") or {}
        summary["microformat"] = {k: renderer[k] for k in _MICROFORMAT_KEYS if k in renderer}

    initial_data = find_embedded_json(html, "ytInitialData")
    if initial_data:
        renderers: dict[str, Any] = {}
        _collect_renderers(initial_data, renderers)
        summary.update(renderers)

    return summary


def build_excerpt(
    html: str,
    max_chars: int = 80_000,
    state_json_max_chars: int = 20_000,
) -> str:
    """
    Build a bounded, metadata-dense excerpt of a watch page.

    Parameters
    ----------
    html : str
        Watch-page HTML.
    max_chars : int, optional
        Hard cap on the excerpt length (default: 80000).
    state_json_max_chars : int, optional
        Cap on the page-state JSON slice (default: 20000).

    Returns
    -------
    str
        Sectioned plain-text excerpt, at most ``max_chars`` long.
    """
    soup = BeautifulSoup(html, "html.parser")
    sections: list[str] = []

    title_tag = soup.find("title")
    if isinstance(title_tag, Tag):
        title = title_tag.get_text(strip=True)
        if title:
            sections.append(f"TITLE: {title}")

    meta_lines: list[str] = []
    for meta in soup.find_all("meta"):
        if not isinstance(meta, Tag):
            continue
        content = meta.get("content")
        if not content:
            continue
        key = meta.get("name") or meta.get("property") or meta.get("itemprop")
        if not key:
            continue
        key = str(key)
        if key in _META_NAMES or key in _META_PROPERTIES or (
            meta.get("itemprop") and key in _ITEMPROPS
        ):
            meta_lines.append(f"{key}: {content}")
    for link in soup.find_all("link", attrs={"itemprop": "name"}):
        if isinstance(link, Tag) and link.get("content"):
            meta_lines.append(f"author name: {link['content']}")
    if meta_lines:
        sections.append("META TAGS:\n" + "\n".join(meta_lines))

    ld_blocks: list[str] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        if len(ld_blocks) >= _MAX_LD_JSON_BLOCKS:
            break
        if isinstance(script, Tag):
            text = (script.string or script.get_text() or "").strip()
            if text:
                ld_blocks.append(text[:state_json_max_chars])
    if ld_blocks:
        sections.append("STRUCTURED DATA:\n" + "\n".join(ld_blocks))

    state = _page_state_summary(html)
    if state:
        state_json = json.dumps(state, ensure_ascii=False, separators=(",", ":"))
        sections.append("PAGE STATE JSON:\n" + state_json[:state_json_max_chars])

    excerpt = "\n\n".join(sections)
    if len(excerpt) > max_chars:
        logger.debug("Excerpt truncated from %d to %d chars", len(excerpt), max_chars)
        excerpt = excerpt[:max_chars]
    return excerpt
