"""
Lenient parsing of LLM completions into video metadata.

Models asked for "only a JSON object" still wrap it in code fences, add
prose around it, leave trailing commas, or get cut off at the token limit.
Repairs go through the single entry point ``parse_llm_response``. The
heuristics, in order:

1. Strip a code fence (``````json ... ``````), closed or not.
2. Locate the outermost ``{...}`` object; a missing closing brace keeps
   everything after the opening one.
3. Try ``json.loads``.
4. Otherwise repair and retry: escape raw newlines inside strings, drop
   an incomplete trailing property, strip trailing commas, drop unmatched
   closers and append the missing ``}``/``]`` in nesting order.

Anything still unparseable raises ``MalformedResponseError``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from watchlens.exceptions import MalformedResponseError
from watchlens.models.video import ScrapedVideoData
from watchlens.services.parsing.values import (
    category_name,
    coerce_bool,
    coerce_tags,
    normalize_count,
    parse_duration_text,
    parse_publish_date,
    sanitize_text,
    sanitize_title,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OPEN_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_DANGLING_KEY_RE = re.compile(r'[{,]\s*"[^"]*"\s*$')
_NULL_STRINGS = {"", "null", "none", "n/a", "unknown", "undefined"}
_CLOSERS = {"{": "}", "[": "]"}

# Accepted keys for each payload field, camelCase first.
_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "title": ("title", "name"),
    "description": ("description",),
    "channel_name": ("channelName", "channel_name", "channel", "author", "uploader"),
    "channel_id": ("channelId", "channel_id"),
    "duration": ("duration", "durationSeconds", "duration_seconds", "lengthSeconds"),
    "view_count": ("viewCount", "view_count", "views"),
    "like_count": ("likeCount", "like_count", "likes"),
    "comment_count": ("commentCount", "comment_count", "comments"),
    "published_at": ("publishedAt", "published_at", "publishDate", "uploadDate"),
    "tags": ("tags", "keywords"),
    "thumbnail_url": ("thumbnailUrl", "thumbnail_url", "thumbnail"),
    "category": ("category", "genre"),
    "is_livestream": ("isLivestream", "is_livestream", "isLive"),
    "is_short": ("isShort", "is_short"),
    "is_premiere": ("isPremiere", "is_premiere"),
}


def strip_code_fences(text: str) -> str:
    """Return the body of the first code fence, or the text without a dangling opening fence."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1)
    return _OPEN_FENCE_RE.sub("", text, count=1)


def _scan(text: str) -> tuple[list[tuple[str, int]], bool, list[int], str]:
    """
    Walk JSON-ish text outside of strings.

    Returns the stack of unclosed openers (char, position), whether the
    text ends inside a string, positions of commas outside strings, and
    the text with unmatched closers removed.
    """
    stack: list[tuple[str, int]] = []
    commas: list[int] = []
    out: list[str] = []
    in_string = False
    escape = False
    for ch in text:
        if escape:
            escape = False
            out.append(ch)
            continue
        if in_string:
            if ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            out.append(ch)
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append((ch, len(out)))
        elif ch in ("}", "]"):
            if not stack or _CLOSERS[stack[-1][0]] != ch:
                continue  # unmatched closer
            stack.pop()
        elif ch == ",":
            commas.append(len(out))
        out.append(ch)
    return stack, in_string, commas, "".join(out)


def locate_object(text: str) -> str | None:
    """
    Locate the outermost brace-delimited object.

    Parameters
    ----------
    text : str
        Completion text with fences already stripped.

    Returns
    -------
    str | None
        Text from the first ``{`` to its matching ``}``, or to the end of
        the text when the object is never closed; None without any ``{``.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
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
    return text[start:]


def escape_newlines_in_strings(text: str) -> str:
    """Replace raw line breaks inside JSON strings with ``\\n``."""
    out: list[str] = []
    in_string = False
    escape = False
    for ch in text:
        if escape:
            out.append(ch)
            escape = False
            continue
        if ch == "\\":
            out.append(ch)
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
        elif ch in ("\r", "\n") and in_string:
            out.append("\\n")
            continue
        out.append(ch)
    return "".join(out)


def repair_json(candidate: str) -> str:
    """
    Best-effort repair of a truncated or sloppy JSON object.

    Parameters
    ----------
    candidate : str
        Object text starting at ``{``.

    Returns
    -------
    str
        Repaired text; not guaranteed to be valid JSON.

    Examples
    --------
    >>> repair_json('{"title": "A", "tags": ["x", "y",], "viewCount": 12')
    '{"title": "A", "tags": ["x", "y"], "viewCount": 12}'
    >>> repair_json('{"title": "A", "description": "cut of')
    '{"title": "A"}'
    """
    text = escape_newlines_in_strings(candidate).rstrip()

    stack, in_string, commas, text = _scan(text)
    if in_string or text.endswith(":") or _DANGLING_KEY_RE.search(text):
        # Truncated inside the last property: drop it.
        cut = commas[-1] if commas else None
        if cut is not None and cut > 0:
            text = text[:cut]
        elif in_string:
            text = text + '"'
        stack, in_string, commas, text = _scan(text.rstrip())

    text = _TRAILING_COMMA_RE.sub(r"\1", text).rstrip().rstrip(",")
    stack, _, _, text = _scan(text)
    closers = "".join(_CLOSERS[opener] for opener, _ in reversed(stack))
    return text + closers


def parse_llm_json(text: str) -> dict[str, Any]:
    """
    Extract a JSON object from a completion, repairing it if necessary.

    Parameters
    ----------
    text : str
        Raw completion text.

    Returns
    -------
    dict[str, Any]
        The decoded object.

    Raises
    ------
    MalformedResponseError
        If no object can be located or decoded even after repair.
    """
    if not text or not text.strip():
        raise MalformedResponseError("Empty LLM response")

    candidate = locate_object(strip_code_fences(text))
    if candidate is None:
        raise MalformedResponseError(
            "No JSON object in LLM response", raw_excerpt=text[:200]
        )

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        repaired = repair_json(candidate)
        try:
            payload = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Unparseable JSON in LLM response: {e.msg}",
                raw_excerpt=candidate[:200],
            ) from e
        logger.debug("Repaired LLM JSON (%d -> %d chars)", len(candidate), len(repaired))

    if not isinstance(payload, dict):
        raise MalformedResponseError(
            "LLM response JSON is not an object", raw_excerpt=candidate[:200]
        )
    return payload


def _pick(payload: dict[str, Any], field: str) -> Any:
    for key in _FIELD_KEYS[field]:
        if key in payload:
            value = payload[key]
            if isinstance(value, str) and value.strip().lower() in _NULL_STRINGS:
                return None
            return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value).strip() or None


def payload_to_video_data(payload: dict[str, Any]) -> ScrapedVideoData:
    """
    Coerce a loosely typed JSON object into ``ScrapedVideoData``.

    Accepts camelCase and snake_case keys and human formats for counts,
    durations and dates. Values that cannot be coerced are dropped.

    Parameters
    ----------
    payload : dict[str, Any]
        Decoded LLM object.

    Returns
    -------
    ScrapedVideoData
        Coerced payload (possibly empty).
    """
    return ScrapedVideoData(
        title=sanitize_title(_as_text(_pick(payload, "title"))),
        description=sanitize_text(_as_text(_pick(payload, "description"))),
        channel_name=_as_text(_pick(payload, "channel_name")),
        channel_id=_as_text(_pick(payload, "channel_id")),
        duration_seconds=parse_duration_text(_pick(payload, "duration")),
        view_count=normalize_count(_pick(payload, "view_count")),
        like_count=normalize_count(_pick(payload, "like_count")),
        comment_count=normalize_count(_pick(payload, "comment_count")),
        published_at=parse_publish_date(_pick(payload, "published_at")),
        tags=coerce_tags(_pick(payload, "tags")),
        thumbnail_url=_as_text(_pick(payload, "thumbnail_url")),
        category=category_name(_as_text(_pick(payload, "category"))),
        is_livestream=coerce_bool(_pick(payload, "is_livestream")),
        is_short=coerce_bool(_pick(payload, "is_short")),
        is_premiere=coerce_bool(_pick(payload, "is_premiere")),
    )


def parse_llm_response(text: str) -> ScrapedVideoData:
    """
    Parse an LLM completion into video metadata.

    Parameters
    ----------
    text : str
        Raw completion text.

    Returns
    -------
    ScrapedVideoData
        Payload with at least one populated field.

    Raises
    ------
    MalformedResponseError
        If the completion holds no decodable object or no usable field.
    """
    data = payload_to_video_data(parse_llm_json(text))
    if not data.has_data:
        raise MalformedResponseError(
            "LLM response contained no video fields", raw_excerpt=text[:200]
        )
    return data
