"""
Time-bounded caching and in-flight deduplication for enrichment payloads.

The ``VideoCache`` is the process-wide shared state of the pipeline: it
remembers payloads for ``ttl`` seconds and tracks which identifiers are
currently being processed, so that the same identifier is never
dispatched to two concurrent backend calls. Every read-modify-write
sequence runs under one ``threading.Lock``.

Classes
-------
TTLCache
    Generic key/value store with lazy expiry.
VideoCache
    ``TTLCache`` of ``ScrapedVideoData`` plus in-flight registry, stats and
    optional JSON persistence.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generic, Iterable, Optional, TypeVar

from pydantic import ValidationError

from watchlens.models.enrichment import CacheEntry, CacheSnapshot
from watchlens.models.video import ScrapedVideoData

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], _dt.datetime]


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass
class _Slot(Generic[V]):
    value: V
    inserted_at: _dt.datetime
    ttl_seconds: int
    provider: Optional[str] = None

    def is_fresh(self, now: _dt.datetime) -> bool:
        return now < self.inserted_at + _dt.timedelta(seconds=self.ttl_seconds)


class TTLCache(Generic[V]):
    """
    Thread-safe key/value store whose entries expire after a TTL.

    Expiry is lazy: a stale entry is dropped when it is next looked up.

    Parameters
    ----------
    default_ttl_seconds : int
        TTL applied when ``set`` is called without one.
    clock : Callable[[], datetime] | None, optional
        Source of the current UTC time (default: ``datetime.now(utc)``).
    """

    def __init__(self, default_ttl_seconds: int, clock: Clock | None = None) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock: Clock = clock or _utcnow
        self._slots: dict[str, _Slot[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            slot = self._fresh_slot(key)
            return slot.value if slot is not None else None

    def set(self, key: str, value: V, ttl_seconds: int | None = None) -> None:
        """Store a value, replacing any existing entry."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._slots[key] = _Slot(value, self._clock(), ttl)

    def delete(self, key: str) -> None:
        """Remove an entry if present."""
        with self._lock:
            self._slots.pop(key, None)

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._slots.clear()

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for slot in self._slots.values() if slot.is_fresh(now))

    def _fresh_slot(self, key: str) -> _Slot[V] | None:
        # Caller holds self._lock.
        slot = self._slots.get(key)
        if slot is None:
            return None
        if not slot.is_fresh(self._clock()):
            del self._slots[key]
            return None
        return slot


class VideoCache(TTLCache[ScrapedVideoData]):
    """
    Payload cache and in-flight registry shared by concurrent enrichment runs.

    Parameters
    ----------
    default_ttl_seconds : int
        TTL for entries stored without an explicit one.
    clock : Callable[[], datetime] | None, optional
        Source of the current UTC time.

    Examples
    --------
    >>> cache = VideoCache(default_ttl_seconds=7200)
    >>> new_ids = cache.mark_in_flight(["abc123", "abc123", "xyz999"])
    >>> new_ids
    ['abc123', 'xyz999']
    >>> cache.mark_in_flight(["abc123"])
    []
    >>> cache.clear_in_flight(new_ids)
    """

    def __init__(self, default_ttl_seconds: int, clock: Clock | None = None) -> None:
        super().__init__(default_ttl_seconds, clock)
        self._in_flight: dict[str, asyncio.Event] = {}
        self._hits = 0
        self._misses = 0

    def lookup(self, video_id: str) -> CacheEntry | None:
        """
        Look up a cached payload, counting the hit or miss.

        Parameters
        ----------
        video_id : str
            Identifier to look up.

        Returns
        -------
        CacheEntry | None
            A copy of the entry, or None when absent or expired.
        """
        with self._lock:
            slot = self._fresh_slot(video_id)
            if slot is None:
                self._misses += 1
                return None
            self._hits += 1
            return CacheEntry(
                video_id=video_id,
                data=slot.value.model_copy(deep=True),
                inserted_at=slot.inserted_at,
                ttl_seconds=slot.ttl_seconds,
                provider=slot.provider,
            )

    def store(
        self,
        video_id: str,
        data: ScrapedVideoData,
        ttl_seconds: int | None = None,
        provider: str | None = None,
    ) -> None:
        """
        Cache a payload for an identifier.

        Parameters
        ----------
        video_id : str
            Identifier key.
        data : ScrapedVideoData
            Payload to cache; a deep copy is stored.
        ttl_seconds : int | None, optional
            Entry TTL (default: the cache's default TTL).
        provider : str | None, optional
            Backend that produced the payload.
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._slots[video_id] = _Slot(
                data.model_copy(deep=True), self._clock(), ttl, provider
            )

    def mark_in_flight(self, video_ids: Iterable[str]) -> list[str]:
        """
        Claim identifiers for processing.

        In a single locked step, filters out identifiers that are cached or
        already in flight and registers the rest as in flight.

        Parameters
        ----------
        video_ids : Iterable[str]
            Candidate identifiers; duplicates are collapsed.

        Returns
        -------
        list[str]
            Newly claimed identifiers in first-seen order. The caller must
            pass them to ``clear_in_flight`` when processing finishes.
        """
        claimed: list[str] = []
        with self._lock:
            for video_id in dict.fromkeys(video_ids):
                if video_id in self._in_flight:
                    continue
                if self._fresh_slot(video_id) is not None:
                    continue
                self._in_flight[video_id] = asyncio.Event()
                claimed.append(video_id)
        return claimed

    def clear_in_flight(self, video_ids: Iterable[str]) -> None:
        """
        Release claimed identifiers and wake callers waiting on them.

        Must be called from the event loop thread that awaits ``wait_for``.

        Parameters
        ----------
        video_ids : Iterable[str]
            Identifiers previously returned by ``mark_in_flight``.
        """
        with self._lock:
            events = [
                self._in_flight.pop(video_id)
                for video_id in video_ids
                if video_id in self._in_flight
            ]
        for event in events:
            event.set()

    async def wait_for(self, video_ids: Iterable[str]) -> None:
        """
        Wait until the given identifiers are no longer in flight.

        Parameters
        ----------
        video_ids : Iterable[str]
            Identifiers claimed by some other caller.
        """
        with self._lock:
            events = [
                self._in_flight[video_id]
                for video_id in set(video_ids)
                if video_id in self._in_flight
            ]
        if events:
            await asyncio.gather(*(event.wait() for event in events))

    def flush(self) -> None:
        """Drop all cached entries and reset hit/miss counters."""
        with self._lock:
            self._slots.clear()
            self._hits = 0
            self._misses = 0
        logger.debug("Video cache flushed")

    def stats(self) -> dict[str, int]:
        """
        Get cache counters.

        Returns
        -------
        dict[str, int]
            ``hits``, ``misses``, ``size`` (fresh entries) and ``in_flight``.
        """
        with self._lock:
            now = self._clock()
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": sum(1 for s in self._slots.values() if s.is_fresh(now)),
                "in_flight": len(self._in_flight),
            }

    def save(self, path: Path) -> int:
        """
        Persist fresh entries to a JSON file.

        Parameters
        ----------
        path : Path
            Destination file; parent directories are created.

        Returns
        -------
        int
            Number of entries written.
        """
        with self._lock:
            now = self._clock()
            entries = [
                CacheEntry(
                    video_id=video_id,
                    data=slot.value,
                    inserted_at=slot.inserted_at,
                    ttl_seconds=slot.ttl_seconds,
                    provider=slot.provider,
                )
                for video_id, slot in self._slots.items()
                if slot.is_fresh(now)
            ]
        snapshot = CacheSnapshot(saved_at=now, entries=entries)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(snapshot.model_dump_json())
        logger.info("Saved %d cache entries to %s", len(entries), path)
        return len(entries)

    def load(self, path: Path) -> int:
        """
        Load entries persisted by ``save``, skipping expired ones.

        A missing or corrupted file loads nothing.

        Parameters
        ----------
        path : Path
            Source file.

        Returns
        -------
        int
            Number of entries loaded.
        """
        if not path.exists():
            return 0

        try:
            snapshot = CacheSnapshot.model_validate_json(path.read_text())
        except (ValidationError, ValueError, OSError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", path, e)
            return 0

        loaded = 0
        with self._lock:
            now = self._clock()
            for entry in snapshot.entries:
                if not entry.is_valid(now):
                    continue
                self._slots[entry.video_id] = _Slot(
                    entry.data, entry.inserted_at, entry.ttl_seconds, entry.provider
                )
                loaded += 1
        logger.info("Loaded %d cache entries from %s", loaded, path)
        return loaded
