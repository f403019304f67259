"""
Worker pool for CPU-bound page parsing.

Parsing a watch page (brace-counting megabytes of page-state JSON and
walking the DOM) would stall the event loop, so ``WorkerPoolParser``
hands it to a bounded ``concurrent.futures`` executor. The same pure
function runs synchronously on the calling thread when the pool cannot
be created, breaks, or fails on an individual payload.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from typing import Any, Callable, Optional, TypeVar

from watchlens.models.video import ScrapedVideoData
from watchlens.services.parsing.page_parser import parse_watch_page

logger = logging.getLogger(__name__)

T = TypeVar("T")

ExecutorFactory = Callable[[int], Executor]


class WorkerPoolParser:
    """
    Parse pages on a bounded worker pool with inline fallback.

    Parameters
    ----------
    mode : str, optional
        ``"process"`` (default), ``"thread"`` or ``"inline"`` (no pool).
    max_workers : int | None, optional
        Pool size (default: ``os.cpu_count()``).
    executor_factory : Callable[[int], Executor] | None, optional
        Builds the executor for a worker count; overrides ``mode``.

    Examples
    --------
    >>> parser = WorkerPoolParser(mode="thread", max_workers=4)
    >>> data = await parser.parse(html, video_id="dQw4w9WgXcQ")
    >>> parser.shutdown()
    """

    def __init__(
        self,
        mode: str = "process",
        max_workers: int | None = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ) -> None:
        if mode not in ("process", "thread", "inline"):
            raise ValueError(f"Invalid parser mode: {mode}")
        self.mode = mode
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor_factory = executor_factory
        self._executor: Optional[Executor] = None
        self._pool_disabled = mode == "inline" and executor_factory is None

    def _get_executor(self) -> Executor | None:
        if self._pool_disabled:
            return None
        if self._executor is None:
            try:
                if self._executor_factory is not None:
                    self._executor = self._executor_factory(self.max_workers)
                elif self.mode == "process":
                    self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
                else:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix="watchlens-parse"
                    )
            except (OSError, NotImplementedError, ValueError) as e:
                logger.warning(
                    "Worker pool unavailable (%s: %s), parsing inline",
                    type(e).__name__,
                    e,
                )
                self._pool_disabled = True
                return None
            logger.debug("Started %s worker pool with %d workers", self.mode, self.max_workers)
        return self._executor

    async def run(self, func: Callable[..., T], *args: Any) -> T:
        """
        Run a pure function on the pool, falling back to the calling thread.

        Parameters
        ----------
        func : Callable[..., T]
            Picklable top-level function.
        *args : Any
            Picklable arguments.

        Returns
        -------
        T
            The function's return value from whichever path ran it.
        """
        executor = self._get_executor()
        if executor is not None:
            loop = asyncio.get_running_loop()
            try:
                return await loop.run_in_executor(executor, functools.partial(func, *args))
            except BrokenProcessPool as e:
                logger.warning("Worker pool broke (%s), parsing inline from now on", e)
                self._discard_executor()
            except Exception as e:
                logger.warning(
                    "Worker failed running %s (%s: %s), retrying inline",
                    getattr(func, "__name__", repr(func)),
                    type(e).__name__,
                    e,
                )
        return func(*args)

    async def parse(self, raw_html: str, video_id: str | None = None) -> ScrapedVideoData | None:
        """
        Parse a watch page into video metadata.

        Every input yields a payload or None; the reason for None is logged.

        Parameters
        ----------
        raw_html : str
            Watch-page HTML.
        video_id : str | None, optional
            Identifier used in log messages.

        Returns
        -------
        ScrapedVideoData | None
            Extracted metadata, or None when nothing usable was found.
        """
        label = video_id or "<unknown>"
        try:
            result = await self.run(parse_watch_page, raw_html)
        except Exception as e:
            logger.warning("Parsing page for %s failed: %s: %s", label, type(e).__name__, e)
            return None
        if result is None:
            logger.info("No metadata extracted for %s: no strategy matched", label)
        return result

    def _discard_executor(self) -> None:
        executor, self._executor = self._executor, None
        self._pool_disabled = True
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def shutdown(self, wait: bool = True) -> None:
        """Release the pool. Later calls start a new one unless the pool was disabled."""
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
