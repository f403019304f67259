"""
Pydantic models for video records and the shared enrichment payload.

Models
------
ScrapedVideoData
    Metadata extracted for one video by any backend. Every field is optional.
VideoRecord
    A caller-owned watch record that the pipeline enriches.
"""

from __future__ import annotations

import datetime as _dt
import re
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from watchlens.models.enums import ContentType

_CHANNEL_ID_RE = re.compile(r"^UC[A-Za-z0-9_-]{22}$")

# Payload fields copied onto a VideoRecord when enrichment succeeds.
METADATA_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "channel_name",
    "channel_id",
    "duration_seconds",
    "view_count",
    "like_count",
    "comment_count",
    "published_at",
    "tags",
    "thumbnail_url",
    "category",
    "content_type",
)


class ScrapedVideoData(BaseModel):
    """
    Metadata extracted for a single video.

    Shared payload shape for the API, scraping and LLM backends. All
    fields are optional; a payload with no populated metadata field is
    treated as a failed extraction.

    Attributes
    ----------
    title : str | None
        Video title.
    description : str | None
        Video description.
    channel_name : str | None
        Display name of the uploading channel.
    channel_id : str | None
        Channel ID. Values not matching ``UC[A-Za-z0-9_-]{22}`` are dropped.
    duration_seconds : int | None
        Duration in seconds.
    view_count : int | None
        View count. Must be >= 0.
    like_count : int | None
        Like count. Must be >= 0.
    comment_count : int | None
        Comment count. Must be >= 0.
    published_at : datetime.datetime | None
        Publish timestamp.
    tags : list[str]
        Video tags/keywords.
    thumbnail_url : str | None
        Largest available thumbnail URL.
    category : str | None
        Category display name (e.g. ``"Music"``).
    is_livestream : bool | None
        True for live or upcoming broadcasts.
    is_short : bool | None
        True when the source identified the upload as a Short.
    is_premiere : bool | None
        True for scheduled premieres.
    content_type : ContentType | None
        Classification derived from the flags and duration.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    channel_name: Optional[str] = None
    channel_id: Optional[str] = None
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    view_count: Optional[int] = Field(default=None, ge=0)
    like_count: Optional[int] = Field(default=None, ge=0)
    comment_count: Optional[int] = Field(default=None, ge=0)
    published_at: Optional[_dt.datetime] = None
    tags: list[str] = Field(default_factory=list)
    thumbnail_url: Optional[str] = None
    category: Optional[str] = None
    is_livestream: Optional[bool] = None
    is_short: Optional[bool] = None
    is_premiere: Optional[bool] = None
    content_type: Optional[ContentType] = None

    @field_validator("channel_id", mode="before")
    @classmethod
    def drop_invalid_channel_id(cls, v: Any) -> str | None:
        """
        Discard channel IDs that do not match the YouTube format.

        Parameters
        ----------
        v : Any
            Raw channel ID value.

        Returns
        -------
        str | None
            The channel ID, or None when absent or malformed.
        """
        if v is None or not isinstance(v, str):
            return None
        v = v.strip()
        return v if _CHANNEL_ID_RE.match(v) else None

    @field_validator("title", "description", "channel_name", "category", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat empty or whitespace-only strings as missing."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def populated_fields(self) -> list[str]:
        """
        List of metadata field names that carry a value.

        Returns
        -------
        list[str]
            Names of non-None fields; ``tags`` only when non-empty.
        """
        fields: list[str] = []
        for name in METADATA_FIELDS:
            if name == "content_type":
                continue
            value = getattr(self, name)
            if name == "tags":
                if value:
                    fields.append(name)
            elif value is not None:
                fields.append(name)
        return fields

    @property
    def has_data(self) -> bool:
        """Check if at least one metadata field has been extracted."""
        return bool(self.populated_fields)

    @property
    def has_title_and_channel(self) -> bool:
        """Check if both a title and a channel reference are present."""
        return bool(self.title) and bool(self.channel_name or self.channel_id)

    def fill_missing(self, other: ScrapedVideoData) -> ScrapedVideoData:
        """
        Return a copy with missing fields taken from another payload.

        Parameters
        ----------
        other : ScrapedVideoData
            Lower-priority payload supplying values for gaps.

        Returns
        -------
        ScrapedVideoData
            New payload; fields already set on ``self`` are kept.
        """
        update: dict[str, Any] = {}
        for name in type(self).model_fields:
            mine = getattr(self, name)
            theirs = getattr(other, name)
            if (mine is None or mine == []) and theirs not in (None, []):
                update[name] = theirs
        return self.model_copy(update=update, deep=True)


class VideoRecord(BaseModel):
    """
    A watch-history record to be enriched.

    Owned by the caller. The pipeline enriches a deep copy and returns it;
    unknown caller fields (e.g. ``watchedAt``) are preserved. Accepts both
    snake_case and camelCase keys.

    Attributes
    ----------
    url : str
        Source URL of the watched video.
    video_id : str | None
        Canonical identifier, or None when it cannot be parsed from ``url``.
    enriched : bool
        True once metadata has been merged from a backend or the cache.
    processing_errors : list[str]
        Human-readable errors recorded while enriching this record.
    enrichment_source : str | None
        Name of the backend that supplied the data.
    enrichment_cost : Decimal
        LLM spend attributed to this record.
    tokens_used : int
        LLM tokens attributed to this record.
    attempted_backends : list[str]
        Backends tried for this record, in order.
    """

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    url: str
    video_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    channel_name: Optional[str] = None
    channel_id: Optional[str] = None
    duration_seconds: Optional[int] = None
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    published_at: Optional[_dt.datetime] = None
    tags: list[str] = Field(default_factory=list)
    thumbnail_url: Optional[str] = None
    category: Optional[str] = None
    content_type: Optional[ContentType] = None
    enriched: bool = False
    processing_errors: list[str] = Field(default_factory=list)
    enrichment_source: Optional[str] = None
    enrichment_cost: Decimal = Decimal("0")
    tokens_used: int = 0
    attempted_backends: list[str] = Field(default_factory=list)

    def apply(self, data: ScrapedVideoData) -> None:
        """
        Merge populated payload fields into this record in place.

        Parameters
        ----------
        data : ScrapedVideoData
            Enrichment payload; None values and empty tag lists are skipped.
        """
        for name in METADATA_FIELDS:
            value = getattr(data, name)
            if value is None or (name == "tags" and not value):
                continue
            setattr(self, name, list(value) if name == "tags" else value)
