"""
Content-type classification for enriched videos.
"""

from __future__ import annotations

from watchlens.models.enums import ContentType
from watchlens.models.video import ScrapedVideoData
from watchlens.services.identifiers import is_shorts_url

DEFAULT_SHORT_MAX_DURATION_SECONDS = 60


def classify_content_type(
    source_url: str | None = None,
    is_livestream: bool | None = None,
    is_premiere: bool | None = None,
    is_short: bool | None = None,
    duration_seconds: int | None = None,
    short_max_duration_seconds: int = DEFAULT_SHORT_MAX_DURATION_SECONDS,
) -> ContentType:
    """
    Classify an upload, first matching rule wins.

    1. The source URL is a ``/shorts/`` URL, or a backend flagged a Short.
    2. Live or upcoming stream.
    3. Scheduled premiere.
    4. Duration at or under ``short_max_duration_seconds``.
    5. Standard video.

    Parameters
    ----------
    source_url : str | None, optional
        URL the record was watched from.
    is_livestream : bool | None, optional
        Live/upcoming broadcast flag.
    is_premiere : bool | None, optional
        Premiere flag.
    is_short : bool | None, optional
        Explicit Short flag from a backend.
    duration_seconds : int | None, optional
        Duration in seconds.
    short_max_duration_seconds : int, optional
        Duration threshold for Shorts (default: 60).

    Returns
    -------
    ContentType
        The classification.

    Examples
    --------
    >>> classify_content_type("https://youtube.com/shorts/abc", is_livestream=True)
    <ContentType.SHORT: 'short'>
    >>> classify_content_type(duration_seconds=45)
    <ContentType.SHORT: 'short'>
    >>> classify_content_type(duration_seconds=0, is_livestream=True)
    <ContentType.LIVESTREAM: 'livestream'>
    """
    if (source_url and is_shorts_url(source_url)) or is_short:
        return ContentType.SHORT
    if is_livestream:
        return ContentType.LIVESTREAM
    if is_premiere:
        return ContentType.PREMIERE
    # Duration 0 is what the API reports for some streams; not a Short.
    if duration_seconds is not None and 0 < duration_seconds <= short_max_duration_seconds:
        return ContentType.SHORT
    return ContentType.VIDEO


def classify_video_data(
    data: ScrapedVideoData,
    source_url: str | None = None,
    short_max_duration_seconds: int = DEFAULT_SHORT_MAX_DURATION_SECONDS,
) -> ContentType:
    """Classify a payload, optionally with the URL the record came from."""
    return classify_content_type(
        source_url=source_url,
        is_livestream=data.is_livestream,
        is_premiere=data.is_premiere,
        is_short=data.is_short,
        duration_seconds=data.duration_seconds,
        short_max_duration_seconds=short_max_duration_seconds,
    )
