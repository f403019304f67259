"""
Graceful shutdown handler for enrichment runs.

Installs handlers for SIGINT (Ctrl+C) and SIGTERM. A received signal does
not interrupt requests that are already in flight; the batch scheduler
checks the handler between chunks and reports the unstarted identifiers
as failed with the shutdown reason, so a partial result can still be
written.
"""

from __future__ import annotations

import logging
import signal
import threading
from types import FrameType
from typing import Any, Callable, Optional, Union

from watchlens.exceptions import GracefulShutdownException

# Type for signal handlers as returned by signal.getsignal()
SignalHandlerType = Union[Callable[[int, Optional[FrameType]], Any], int, None]

logger = logging.getLogger(__name__)


class ShutdownHandler:
    """
    Handler for graceful shutdown of enrichment runs.

    Attributes
    ----------
    shutdown_requested : bool
        True if a shutdown signal has been received.
    signal_received : str | None
        The name of the signal received (e.g., "SIGINT", "SIGTERM").

    Examples
    --------
    >>> handler = ShutdownHandler()
    >>> handler.install()
    >>> try:
    ...     run = await pipeline.enrich(records)
    ... finally:
    ...     handler.uninstall()
    """

    # Class-level singleton for signal handling
    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    _initialized: bool
    _shutdown_requested: bool
    _signal_received: Optional[str]
    _original_sigint: SignalHandlerType
    _original_sigterm: SignalHandlerType
    _installed: bool

    def __new__(cls) -> "ShutdownHandler":
        """Ensure singleton instance for signal handling."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self) -> None:
        """Initialize ShutdownHandler."""
        if self._initialized:
            return

        self._shutdown_requested = False
        self._signal_received = None
        self._original_sigint = None
        self._original_sigterm = None
        self._installed = False
        self._initialized = True

    @property
    def shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    @property
    def signal_received(self) -> str | None:
        """Get the name of the signal that triggered shutdown."""
        return self._signal_received

    def install(self) -> None:
        """Install signal handlers for SIGINT and SIGTERM, saving the originals."""
        if self._installed:
            return

        self._original_sigint = signal.getsignal(signal.SIGINT)
        self._original_sigterm = signal.getsignal(signal.SIGTERM)

        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

        self._installed = True
        logger.debug("Shutdown handlers installed for SIGINT and SIGTERM")

    def uninstall(self) -> None:
        """Restore the original signal handlers and clear shutdown state."""
        if not self._installed:
            return

        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)

        self._installed = False
        self.reset()
        logger.debug("Shutdown handlers uninstalled, original handlers restored")

    def request_shutdown(self, signal_name: str = "SIGINT") -> None:
        """
        Flag a shutdown without a real signal.

        Parameters
        ----------
        signal_name : str, optional
            Name recorded as the trigger (default: "SIGINT").
        """
        self._signal_received = signal_name
        self._shutdown_requested = True
        logger.warning(
            "Received %s - finishing in-flight requests, skipping unstarted work",
            signal_name,
        )

    def _handle_signal(self, signum: int, frame: object) -> None:
        self.request_shutdown(signal.Signals(signum).name)

    def check_shutdown(self) -> None:
        """
        Raise if shutdown has been requested.

        Raises
        ------
        GracefulShutdownException
            If a shutdown signal has been received.
        """
        if self.shutdown_requested:
            signal_name = self.signal_received or "SIGINT"
            raise GracefulShutdownException(
                message=f"Graceful shutdown requested via {signal_name}",
                signal_received=signal_name,
            )

    def reset(self) -> None:
        """Reset shutdown state so the handler can be reused for another run."""
        self._shutdown_requested = False
        self._signal_received = None
        logger.debug("Shutdown handler state reset")


def get_shutdown_handler() -> ShutdownHandler:
    """
    Get the process-wide shutdown handler.

    Returns
    -------
    ShutdownHandler
        The singleton handler.
    """
    return ShutdownHandler()
