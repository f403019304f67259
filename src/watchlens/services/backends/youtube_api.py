"""
YouTube Data API v3 enrichment backend.

Looks up to 50 identifiers per ``videos.list`` call. Quota is reserved
from the shared ``QuotaTracker`` before every call; a refused reservation
halts the backend without touching the network. A ``quotaExceeded`` or
``dailyLimitExceeded`` response marks the day's quota as spent; a
rate-limit response only halts the backend for the current run.

The synchronous ``googleapiclient`` requests run in worker threads, each
with its own ``httplib2`` connection since those are not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional, Sequence

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import build_http

from watchlens.exceptions import (
    QuotaExhaustedError,
    RateLimitedError,
    TransientNetworkError,
    WatchlensError,
)
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import BackendName, ErrorKind, HaltReason
from watchlens.models.video import ScrapedVideoData
from watchlens.services.backends.base import BackendBatch, Stopwatch
from watchlens.services.cache import TTLCache
from watchlens.services.classification import classify_content_type
from watchlens.services.context import EnrichmentContext
from watchlens.services.http.retry import backoff_delay
from watchlens.services.parsing.values import (
    category_name,
    normalize_count,
    parse_iso8601_duration,
    parse_publish_date,
    sanitize_text,
)

logger = logging.getLogger(__name__)

MAX_IDS_PER_CALL = 50
VIDEO_PARTS = "snippet,contentDetails,statistics,liveStreamingDetails"
QUOTA_ERROR_REASONS = frozenset({"quotaExceeded", "dailyLimitExceeded"})
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})
NOT_FOUND_MESSAGE = "video not found in YouTube API response"
CHANNEL_TITLE_TTL_SECONDS = 86_400
_THUMBNAIL_PREFERENCE = ("maxres", "standard", "high", "medium", "default")


def _error_body(error: HttpError) -> str:
    try:
        return error.content.decode("utf-8") if error.content else ""
    except (UnicodeDecodeError, AttributeError):
        return ""


def is_quota_error(error: HttpError) -> bool:
    """
    Check whether an API error reports the daily quota as used up.

    Parameters
    ----------
    error : HttpError
        Error raised by ``execute()``.

    Returns
    -------
    bool
        True when the error body names a quota reason.
    """
    content = _error_body(error)
    return any(reason in content for reason in QUOTA_ERROR_REASONS)


def is_rate_limit_error(error: HttpError) -> bool:
    """
    Check whether an API error is a short-term throttle.

    Rate limits clear within seconds to minutes and leave the daily quota
    untouched.
    """
    if _http_status(error) == 429:
        return True
    content = _error_body(error)
    return any(reason in content for reason in RATE_LIMIT_REASONS)


def _http_status(error: HttpError) -> int:
    return int(error.resp.status) if getattr(error, "resp", None) else 0


def best_thumbnail(thumbnails: Mapping[str, Any] | None) -> str | None:
    """Pick the largest available thumbnail URL."""
    if not thumbnails:
        return None
    for size in _THUMBNAIL_PREFERENCE:
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return str(url)
    return None


def parse_video_item(
    item: Mapping[str, Any],
    channel_titles: Mapping[str, str] | None = None,
    short_max_duration_seconds: int = 60,
) -> ScrapedVideoData:
    """
    Convert a ``videos.list`` item into the shared payload.

    Parameters
    ----------
    item : Mapping[str, Any]
        One element of the response ``items`` array.
    channel_titles : Mapping[str, str] | None, optional
        Resolved channel titles by channel ID, used when the snippet
        carries none.
    short_max_duration_seconds : int, optional
        Duration threshold for Shorts (default: 60).

    Returns
    -------
    ScrapedVideoData
        Parsed payload.
    """
    snippet = item.get("snippet") or {}
    content = item.get("contentDetails") or {}
    stats = item.get("statistics") or {}
    live = item.get("liveStreamingDetails") or {}

    channel_id = snippet.get("channelId")
    channel_name = snippet.get("channelTitle")
    if not channel_name and channel_id and channel_titles:
        channel_name = channel_titles.get(channel_id)

    broadcast = snippet.get("liveBroadcastContent")
    is_livestream = broadcast in ("live", "upcoming")
    is_premiere = broadcast == "none" and bool(live.get("scheduledStartTime"))
    duration = parse_iso8601_duration(content["duration"]) if content.get("duration") else None

    return ScrapedVideoData(
        title=snippet.get("title"),
        description=sanitize_text(snippet.get("description")),
        channel_name=channel_name,
        channel_id=channel_id,
        duration_seconds=duration,
        view_count=normalize_count(stats.get("viewCount")),
        like_count=normalize_count(stats.get("likeCount")),
        comment_count=normalize_count(stats.get("commentCount")),
        published_at=parse_publish_date(snippet.get("publishedAt")),
        tags=list(snippet.get("tags") or []),
        thumbnail_url=best_thumbnail(snippet.get("thumbnails")),
        category=category_name(snippet.get("categoryId")),
        is_livestream=is_livestream,
        is_premiere=is_premiere,
        content_type=classify_content_type(
            is_livestream=is_livestream,
            is_premiere=is_premiere,
            duration_seconds=duration,
            short_max_duration_seconds=short_max_duration_seconds,
        ),
    )


class YouTubeAPIBackend:
    """
    Enrichment backend backed by the YouTube Data API.

    Parameters
    ----------
    api_key : str
        API key; the backend is unavailable without one.
    context : EnrichmentContext
        Shared run state (quota tracker, metrics).
    quota_cost_per_call : int, optional
        Units reserved per ``videos.list`` call (default: 1).
    channel_lookup_cost : int, optional
        Units reserved per ``channels.list`` call (default: 1).
    resolve_channels : bool, optional
        Look up channel titles missing from the video snippet (default: True).
    retry_attempts : int, optional
        Retries for 5xx and socket errors (default: 3).
    retry_backoff_seconds : float, optional
        Base backoff delay (default: 1.0).
    retry_backoff_max_seconds : float, optional
        Backoff cap (default: 10.0).
    short_max_duration_seconds : int, optional
        Duration threshold for Shorts (default: 60).
    service : Any, optional
        Pre-built API client, mainly for tests (default: built lazily).
    http_factory : Callable[[], Any] | None, optional
        Builds the per-request HTTP connection (default: ``build_http``).
    """

    name = BackendName.API.value
    max_batch_size = MAX_IDS_PER_CALL

    def __init__(
        self,
        api_key: str,
        context: EnrichmentContext,
        quota_cost_per_call: int = 1,
        channel_lookup_cost: int = 1,
        resolve_channels: bool = True,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 10.0,
        short_max_duration_seconds: int = 60,
        service: Any = None,
        http_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.api_key = api_key
        self.context = context
        self.quota_cost_per_call = quota_cost_per_call
        self.channel_lookup_cost = channel_lookup_cost
        self.resolve_channels = resolve_channels
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.retry_backoff_max_seconds = retry_backoff_max_seconds
        self.short_max_duration_seconds = short_max_duration_seconds
        self._service = service
        self._http_factory = http_factory or build_http
        self._channel_titles: TTLCache[str] = TTLCache(CHANNEL_TITLE_TTL_SECONDS)

    @property
    def service(self) -> Any:
        """Get the API client, building it on first use."""
        if self._service is None:
            self._service = build(
                "youtube", "v3", developerKey=self.api_key, cache_discovery=False
            )
        return self._service

    def is_available(self) -> bool:
        """Check for credentials and remaining quota."""
        if not (self.api_key or self._service is not None):
            return False
        return self.context.quota.remaining >= self.quota_cost_per_call

    async def enrich(self, video_ids: Sequence[str]) -> BackendBatch:
        """
        Enrich up to 50 identifiers with one ``videos.list`` call.

        Parameters
        ----------
        video_ids : Sequence[str]
            Identifiers to look up.

        Returns
        -------
        BackendBatch
            One result per identifier, or no results and a halt when the
            call could not be made: ``QUOTA_EXHAUSTED`` for the daily
            quota, ``RATE_LIMITED`` for a per-user or per-second throttle.
        """
        ids = list(video_ids)
        if len(ids) > MAX_IDS_PER_CALL:
            raise ValueError(f"Maximum {MAX_IDS_PER_CALL} video IDs allowed per request")
        if not ids:
            return BackendBatch()

        timer = Stopwatch()
        try:
            self._reserve(self.quota_cost_per_call)
            response = await self._execute(
                lambda: self.service.videos().list(
                    part=VIDEO_PARTS, id=",".join(ids), maxResults=MAX_IDS_PER_CALL
                )
            )
        except QuotaExhaustedError as e:
            return self._halt(HaltReason.QUOTA_EXHAUSTED, e)
        except RateLimitedError as e:
            return self._halt(HaltReason.RATE_LIMITED, e)
        except (HttpError, TransientNetworkError) as e:
            message = (
                f"YouTube API error (HTTP {_http_status(e)})"
                if isinstance(e, HttpError)
                else e.message
            )
            logger.warning("videos.list failed for %d ids: %s", len(ids), message)
            return BackendBatch(
                results=[
                    self._failure(video_id, message, ErrorKind.TRANSIENT, timer.elapsed)
                    for video_id in ids
                ]
            )

        items = {
            item["id"]: item for item in response.get("items", []) if item.get("id")
        }
        halt = await self._resolve_channel_titles(items.values())

        results: list[EnrichmentResult] = []
        titles = self._known_titles(items.values())
        for video_id in ids:
            item = items.get(video_id)
            if item is None:
                results.append(
                    self._failure(video_id, NOT_FOUND_MESSAGE, ErrorKind.NOT_FOUND, timer.elapsed)
                )
                continue
            data = parse_video_item(item, titles, self.short_max_duration_seconds)
            if not data.has_data:
                results.append(
                    self._failure(
                        video_id, "no metadata in API response", ErrorKind.NO_DATA, timer.elapsed
                    )
                )
                continue
            results.append(
                EnrichmentResult(
                    video_id=video_id,
                    success=True,
                    data=data,
                    provider=self.name,
                    tokens_used=0,
                    elapsed_seconds=timer.elapsed,
                )
            )

        logger.info(
            "videos.list returned %d of %d ids (%d quota units left)",
            len(items),
            len(ids),
            self.context.quota.remaining,
        )
        return BackendBatch(results=results, halt=halt)

    async def _execute(self, make_request: Callable[[], Any]) -> dict[str, Any]:
        """Run a request in a worker thread, retrying 5xx and socket errors."""
        retries_remaining = self.retry_attempts
        while True:
            attempt = self.retry_attempts - retries_remaining
            request = make_request()
            try:
                return dict(
                    await asyncio.to_thread(request.execute, http=self._http_factory())
                )
            except HttpError as e:
                if is_quota_error(e):
                    logger.error("YouTube API quota exceeded (HTTP %d)", _http_status(e))
                    self.context.quota.exhaust()
                    raise QuotaExhaustedError(
                        "YouTube API daily quota exceeded", backend=self.name
                    ) from e
                if is_rate_limit_error(e):
                    raise RateLimitedError(
                        f"YouTube API rate limited (HTTP {_http_status(e)})",
                        status_code=_http_status(e),
                    ) from e
                if _http_status(e) < 500 or retries_remaining <= 0:
                    raise
                reason = f"HTTP {_http_status(e)}"
            except OSError as e:
                if retries_remaining <= 0:
                    raise TransientNetworkError(
                        f"YouTube API request failed: {type(e).__name__}",
                        original_error=e,
                        retry_count=attempt,
                    ) from e
                reason = type(e).__name__

            delay = backoff_delay(attempt, self.retry_backoff_seconds, self.retry_backoff_max_seconds)
            logger.warning(
                "YouTube API attempt %d/%d failed (%s), retrying in %.0fs",
                attempt + 1,
                self.retry_attempts + 1,
                reason,
                delay,
            )
            retries_remaining -= 1
            await asyncio.sleep(delay)

    async def _resolve_channel_titles(
        self, items: Any
    ) -> Optional[HaltReason]:
        """Fill the channel-title cache for channels the snippets leave unnamed."""
        missing: list[str] = []
        for item in items:
            snippet = item.get("snippet") or {}
            channel_id = snippet.get("channelId")
            if not channel_id:
                continue
            if snippet.get("channelTitle"):
                self._channel_titles.set(channel_id, snippet["channelTitle"])
            elif self._channel_titles.get(channel_id) is None and channel_id not in missing:
                missing.append(channel_id)

        if not missing or not self.resolve_channels:
            return None
        if not self.context.quota.try_consume(self.channel_lookup_cost):
            logger.info("Skipping channel lookup for %d channels: quota too low", len(missing))
            return None

        try:
            response = await self._execute(
                lambda: self.service.channels().list(
                    part="snippet",
                    id=",".join(missing[:MAX_IDS_PER_CALL]),
                    maxResults=MAX_IDS_PER_CALL,
                )
            )
        except QuotaExhaustedError:
            return HaltReason.QUOTA_EXHAUSTED
        except RateLimitedError as e:
            logger.warning("channels.list throttled, keeping titles unresolved: %s", e.message)
            return HaltReason.RATE_LIMITED
        except (HttpError, TransientNetworkError) as e:
            logger.warning("channels.list failed, keeping titles unresolved: %s", e)
            return None

        for channel in response.get("items", []):
            title = (channel.get("snippet") or {}).get("title")
            if channel.get("id") and title:
                self._channel_titles.set(channel["id"], title)
        return None

    def _known_titles(self, items: Any) -> dict[str, str]:
        titles: dict[str, str] = {}
        for item in items:
            channel_id = (item.get("snippet") or {}).get("channelId")
            if channel_id:
                title = self._channel_titles.get(channel_id)
                if title:
                    titles[channel_id] = title
        return titles

    def _reserve(self, units: int) -> None:
        """
        Take quota for one call.

        Raises
        ------
        QuotaExhaustedError
            If the units do not fit in what is left of the daily quota.
        """
        if not self.context.quota.try_consume(units):
            raise QuotaExhaustedError(
                f"need {units} quota units",
                backend=self.name,
                remaining=self.context.quota.remaining,
            )

    def _halt(self, reason: HaltReason, error: WatchlensError) -> BackendBatch:
        logger.warning("API backend halted: %s (%s)", reason.value, error.message)
        return BackendBatch(halt=reason)

    def _failure(
        self, video_id: str, error: str, kind: ErrorKind, elapsed: float
    ) -> EnrichmentResult:
        return EnrichmentResult.failure(
            video_id, self.name, error, kind, elapsed_seconds=elapsed
        )

    async def aclose(self) -> None:
        """Close the API client's HTTP connection."""
        if self._service is not None:
            close = getattr(self._service, "close", None)
            if callable(close):
                close()
