"""
Tests for the watch-page parser.

Covers the three extraction strategies (page-state JSON, meta tags and
linked data), the merge of partial results, unavailable-page detection
and the embedded JSON helpers.
"""

from __future__ import annotations

import datetime as _dt
import json

import pytest

from watchlens.services.parsing.page_parser import (
    detect_unavailable,
    extract_json_object,
    find_embedded_json,
    parse_watch_page,
)

CHANNEL_ID = "UCuAXFkgsw1L7xaCfnd5JJOw"


def _page_state_html() -> str:
    player = {
        "playabilityStatus": {"status": "OK"},
        "videoDetails": {
            "videoId": "dQw4w9WgXcQ",
            "title": "Never Gonna Give You Up",
            "author": "Rick Astley",
            "channelId": CHANNEL_ID,
            "lengthSeconds": "213",
            "viewCount": "1500000000",
            "keywords": ["rick astley", "80s"],
            "shortDescription": "The official video {with braces}",
            "isLiveContent": False,
            "thumbnail": {
                "thumbnails": [
                    {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/default.jpg"},
                    {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"},
                ]
            },
        },
        "microformat": {
            "playerMicroformatRenderer": {"category": "Music", "publishDate": "2009-10-24"}
        },
    }
    initial_data = {
        "contents": {
            "likeButton": {"accessibility": {"label": "16M likes"}},
            "commentCount": {"simpleText": "2.3M"},
        }
    }
    return (
        "<html><head><title>Never Gonna Give You Up - YouTube</title></head><body>"
        f"<script>var ytInitialPlayerResponse = {json.dumps(player)};</script>"
        f'<script>window["ytInitialData"] = {json.dumps(initial_data)};</script>'
        "</body></html>"
    )


META_HTML = f"""
<html><head>
<meta property="og:title" content="Never Gonna Give You Up - YouTube">
<meta property="og:description" content="The official video">
<meta property="og:image" content="https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg">
<meta property="og:video:tag" content="rick astley">
<meta property="og:video:tag" content="80s">
<meta itemprop="channelId" content="{CHANNEL_ID}">
<meta itemprop="duration" content="PT3M33S">
<meta itemprop="interactionCount" content="1500000000">
<meta itemprop="datePublished" content="2009-10-24">
<meta itemprop="genre" content="Music">
</head><body>
<span itemprop="author"><link itemprop="name" content="Rick Astley"></span>
</body></html>
"""

JSON_LD_HTML = f"""
<html><head>
<script type="application/ld+json">
{{"@context": "https://schema.org", "@type": "VideoObject",
  "name": "Never Gonna Give You Up",
  "author": {{"@type": "Person", "name": "Rick Astley",
             "url": "https://www.youtube.com/channel/{CHANNEL_ID}"}},
  "duration": "PT3M33S",
  "uploadDate": "2009-10-24",
  "thumbnailUrl": ["https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg"],
  "genre": "Music",
  "interactionStatistic": [
    {{"@type": "InteractionCounter",
      "interactionType": {{"@type": "https://schema.org/WatchAction"}},
      "userInteractionCount": "1500000000"}},
    {{"@type": "InteractionCounter",
      "interactionType": "https://schema.org/LikeAction",
      "userInteractionCount": 16000000}}
  ]}}
</script>
</head><body></body></html>
"""


class TestParseWatchPage:
    """Test metadata extraction strategies."""

    def test_page_state_strategy(self) -> None:
        """Test extraction from the embedded player response."""
        data = parse_watch_page(_page_state_html())

        assert data is not None
        assert data.title == "Never Gonna Give You Up"
        assert data.channel_name == "Rick Astley"
        assert data.channel_id == CHANNEL_ID
        assert data.duration_seconds == 213
        assert data.view_count == 1_500_000_000
        assert data.like_count == 16_000_000
        assert data.comment_count == 2_300_000
        assert data.tags == ["rick astley", "80s"]
        assert data.description == "The official video {with braces}"
        assert data.thumbnail_url.endswith("maxresdefault.jpg")
        assert data.category == "Music"
        assert data.published_at == _dt.datetime(2009, 10, 24, tzinfo=_dt.timezone.utc)
        assert data.is_livestream is False

    def test_upcoming_video_is_premiere(self) -> None:
        """Test that an upcoming non-live upload is flagged as a premiere."""
        player = {
            "videoDetails": {"title": "Launch", "author": "Studio", "isUpcoming": True}
        }
        html = f"<script>var ytInitialPlayerResponse = {json.dumps(player)};</script>"
        data = parse_watch_page(html)
        assert data is not None
        assert data.is_premiere is True
        assert data.is_livestream is False

    def test_meta_tag_strategy(self) -> None:
        """Test extraction from Open Graph and itemprop tags."""
        data = parse_watch_page(META_HTML)

        assert data is not None
        assert data.title == "Never Gonna Give You Up"
        assert data.channel_name == "Rick Astley"
        assert data.channel_id == CHANNEL_ID
        assert data.duration_seconds == 213
        assert data.view_count == 1_500_000_000
        assert data.tags == ["rick astley", "80s"]
        assert data.category == "Music"
        assert data.thumbnail_url == "https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg"

    def test_json_ld_strategy(self) -> None:
        """Test extraction from a linked-data VideoObject."""
        data = parse_watch_page(JSON_LD_HTML)

        assert data is not None
        assert data.title == "Never Gonna Give You Up"
        assert data.channel_name == "Rick Astley"
        assert data.channel_id == CHANNEL_ID
        assert data.duration_seconds == 213
        assert data.view_count == 1_500_000_000
        assert data.like_count == 16_000_000
        assert data.category == "Music"

    def test_partials_are_merged(self) -> None:
        """Test that partial strategies combine in priority order."""
        html = """
        <html><head>
        <meta property="og:title" content="Meta Title">
        <script type="application/ld+json">
        {"@type": "VideoObject", "author": {"name": "Chan"}}
        </script>
        </head></html>
        """
        data = parse_watch_page(html)
        assert data is not None
        assert data.title == "Meta Title"
        assert data.channel_name == "Chan"

    def test_first_complete_strategy_wins(self) -> None:
        """Test that page state takes priority over meta tags."""
        html = _page_state_html().replace(
            "<head>", '<head><meta property="og:title" content="Other Title">'
        )
        data = parse_watch_page(html)
        assert data is not None
        assert data.title == "Never Gonna Give You Up"

    @pytest.mark.parametrize("html", ["", "<html><body><p>nothing</p></body></html>"])
    def test_no_metadata(self, html: str) -> None:
        """Test that pages without metadata yield None."""
        assert parse_watch_page(html) is None

    def test_invalid_channel_id_is_dropped(self) -> None:
        """Test that malformed channel IDs are not kept."""
        player = {"videoDetails": {"title": "T", "author": "A", "channelId": "bogus"}}
        html = f"<script>var ytInitialPlayerResponse = {json.dumps(player)};</script>"
        data = parse_watch_page(html)
        assert data is not None
        assert data.channel_id is None


class TestDetectUnavailable:
    """Test unavailable-page detection."""

    def test_error_status_without_details(self) -> None:
        """Test an error playability status."""
        html = 'ytInitialPlayerResponse = {"playabilityStatus": {"status": "ERROR"}};'
        assert detect_unavailable(html) == "playability_status_error"

    def test_unplayable_status(self) -> None:
        """Test an unplayable status."""
        html = '{"playabilityStatus":{"status":"UNPLAYABLE"}}'
        assert detect_unavailable(html) == "playability_status_unplayable"

    def test_error_status_with_details_is_available(self) -> None:
        """Test that pages with video details are not treated as unavailable."""
        html = '{"playabilityStatus":{"status":"ERROR"},"videoDetails":{"title":"T"}}'
        assert detect_unavailable(html) is None

    def test_ok_status(self) -> None:
        """Test a playable page."""
        html = _page_state_html() + "Video unavailable"
        assert detect_unavailable(html) is None

    @pytest.mark.parametrize(
        ("text", "reason"),
        [
            ("Video unavailable", "text_video_unavailable"),
            ("This video is private.", "text_private"),
            ("This video has been removed by the uploader", "text_removed"),
        ],
    )
    def test_text_patterns(self, text: str, reason: str) -> None:
        """Test notices on pages without page-state JSON."""
        assert detect_unavailable(f"<html><body>{text}</body></html>") == reason

    def test_og_title_overrides_text(self) -> None:
        """Test that a page with an og:title is considered available."""
        html = '<meta property="og:title" content="Video unavailable? Not really">'
        assert detect_unavailable(html) is None


class TestEmbeddedJson:
    """Test the page-state JSON helpers."""

    def test_extract_nested_object(self) -> None:
        """Test brace counting with braces inside strings."""
        text = 'x = {"a": {"b": "}"}, "c": "\\"{"} trailing'
        assert extract_json_object(text, text.index("{")) == '{"a": {"b": "}"}, "c": "\\"{"}'

    def test_extract_requires_opening_brace(self) -> None:
        """Test that a non-brace start returns None."""
        assert extract_json_object("abc", 0) is None
        assert extract_json_object("abc", 10) is None

    def test_extract_unbalanced(self) -> None:
        """Test that unbalanced objects return None."""
        assert extract_json_object('{"a": {"b": 1}', 0) is None

    def test_find_window_assignment(self) -> None:
        """Test the window-property assignment form."""
        html = '<script>window["ytInitialData"] = {"k": [1, 2]};</script>'
        assert find_embedded_json(html, "ytInitialData") == {"k": [1, 2]}

    def test_find_malformed_json(self) -> None:
        """Test that undecodable objects return None."""
        html = "var ytInitialData = {k: nope};"
        assert find_embedded_json(html, "ytInitialData") is None

    def test_find_missing_variable(self) -> None:
        """Test that absent variables return None."""
        assert find_embedded_json("<html></html>", "ytInitialPlayerResponse") is None

    def test_find_unknown_variable(self) -> None:
        """Test that unknown variable names are rejected."""
        with pytest.raises(ValueError):
            find_embedded_json("", "ytSomethingElse")
