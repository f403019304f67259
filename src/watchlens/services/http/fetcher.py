"""
Watch-page fetcher shared by the scraping and LLM backends.

Fetches ``https://www.youtube.com/watch?v={id}`` through the per-host
connection pool, rotating browser identities and spacing requests with a
``RateLimiter``. Timeouts, connection failures and 5xx responses are
retried with exponential backoff. Rate limits, missing videos and stub
pages are mapped onto the error taxonomy without retrying.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Optional, Sequence

import httpx

from watchlens.exceptions import (
    MalformedResponseError,
    RateLimitedError,
    TransientNetworkError,
    VideoUnavailableError,
)
from watchlens.services.http.pool import ConnectionPoolManager
from watchlens.services.http.rate_limiter import RateLimiter
from watchlens.services.http.retry import TRANSIENT_HTTPX_ERRORS, backoff_delay
from watchlens.services.parsing.page_parser import detect_unavailable

logger = logging.getLogger(__name__)

YOUTUBE_HOST = "www.youtube.com"

# Pages shorter than this are consent interstitials or error stubs.
MIN_PAGE_LENGTH = 1000

DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

_RATE_LIMIT_STATUSES = frozenset({403, 429})
_NOT_FOUND_STATUSES = frozenset({404, 410})


def watch_url(video_id: str) -> str:
    """Build the canonical watch-page URL for an identifier."""
    return f"https://{YOUTUBE_HOST}/watch?v={video_id}"


class ClientIdentityRotator:
    """
    Round-robin over browser user agents.

    Parameters
    ----------
    user_agents : Sequence[str]
        Non-empty list of User-Agent strings.
    """

    def __init__(self, user_agents: Sequence[str]) -> None:
        if not user_agents:
            raise ValueError("At least one user agent is required")
        self._cycle = itertools.cycle(list(user_agents))
        self._lock = threading.Lock()

    def next_headers(self) -> dict[str, str]:
        """Get request headers carrying the next identity."""
        with self._lock:
            user_agent = next(self._cycle)
        return {**DEFAULT_HEADERS, "User-Agent": user_agent}


class PageFetcher:
    """
    Fetch watch pages with identity rotation, pacing and retries.

    Parameters
    ----------
    pools : ConnectionPoolManager
        Source of the per-host client.
    rotator : ClientIdentityRotator
        Supplies the User-Agent for each request.
    rate_limiter : RateLimiter | None, optional
        Minimum spacing between requests (default: no spacing).
    retry_attempts : int, optional
        Retries after the first attempt for transient failures (default: 3).
    retry_backoff_seconds : float, optional
        Base backoff delay (default: 1.0).
    retry_backoff_max_seconds : float, optional
        Backoff cap (default: 10.0).
    """

    def __init__(
        self,
        pools: ConnectionPoolManager,
        rotator: ClientIdentityRotator,
        rate_limiter: Optional[RateLimiter] = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 10.0,
    ) -> None:
        self.pools = pools
        self.rotator = rotator
        self.rate_limiter = rate_limiter or RateLimiter(0.0)
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.retry_backoff_max_seconds = retry_backoff_max_seconds

    async def fetch(self, video_id: str) -> str:
        """
        Fetch the watch page for a video.

        Parameters
        ----------
        video_id : str
            Video identifier.

        Returns
        -------
        str
            Page HTML.

        Raises
        ------
        RateLimitedError
            On HTTP 429 or 403.
        VideoUnavailableError
            On HTTP 404/410, or when the page is an unavailable notice.
        MalformedResponseError
            When the page is too short to be a watch page.
        TransientNetworkError
            On timeouts, connection errors, 5xx or other unexpected status
            codes once all retries are used.
        """
        client = self.pools.get_client(YOUTUBE_HOST)
        retries_remaining = self.retry_attempts

        while True:
            await self.rate_limiter.acquire()
            attempt = self.retry_attempts - retries_remaining
            try:
                response = await client.get(
                    "/watch",
                    params={"v": video_id},
                    headers=self.rotator.next_headers(),
                )
            except TRANSIENT_HTTPX_ERRORS as e:
                if retries_remaining <= 0:
                    raise TransientNetworkError(
                        f"Fetching {video_id} failed after {attempt + 1} attempts: "
                        f"{type(e).__name__}",
                        original_error=e,
                        retry_count=attempt,
                    ) from e
                await self._back_off(video_id, attempt, type(e).__name__)
                retries_remaining -= 1
                continue

            status = response.status_code
            if status == 200:
                return self._check_page(video_id, response.text)

            if status in _RATE_LIMIT_STATUSES:
                raise RateLimitedError(
                    f"YouTube returned HTTP {status} for {video_id}", status_code=status
                )

            if status in _NOT_FOUND_STATUSES:
                raise VideoUnavailableError(
                    f"Video {video_id} not found (HTTP {status})",
                    video_id=video_id,
                    reason=f"http_{status}",
                )

            # 5xx and any other unexpected status
            if retries_remaining <= 0:
                raise TransientNetworkError(
                    f"YouTube returned HTTP {status} for {video_id} after "
                    f"{attempt + 1} attempts",
                    retry_count=attempt,
                    status_code=status,
                )
            await self._back_off(video_id, attempt, f"HTTP {status}")
            retries_remaining -= 1

    async def _back_off(self, video_id: str, attempt: int, reason: str) -> None:
        delay = backoff_delay(attempt, self.retry_backoff_seconds, self.retry_backoff_max_seconds)
        logger.warning(
            "Fetch attempt %d/%d for %s failed (%s), retrying in %.1fs",
            attempt + 1,
            self.retry_attempts + 1,
            video_id,
            reason,
            delay,
        )
        await asyncio.sleep(delay)

    @staticmethod
    def _check_page(video_id: str, html: str) -> str:
        if len(html) < MIN_PAGE_LENGTH:
            raise MalformedResponseError(
                f"Page for {video_id} is too short ({len(html)} chars)",
                video_id=video_id,
                raw_excerpt=html[:200],
            )
        reason = detect_unavailable(html)
        if reason is not None:
            raise VideoUnavailableError(
                f"Video {video_id} is unavailable ({reason})",
                video_id=video_id,
                reason=reason,
            )
        return html
