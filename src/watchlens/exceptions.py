"""
Custom exceptions for the watchlens application.

This module defines domain-specific exceptions raised by the enrichment
backends and the pipeline, following the error taxonomy the pipeline
recovers from: transient network failures, rate limits and exhausted
quota, malformed responses, unavailable videos, cost ceilings, and fatal
configuration problems.
"""

from __future__ import annotations


class WatchlensError(Exception):
    """Base exception for all watchlens errors."""

    def __init__(self, message: str) -> None:
        """
        Initialize WatchlensError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(WatchlensError):
    """
    Exception raised when the pipeline cannot run with its configuration.

    Raised before any work begins, e.g. when no backend is configured or
    available, or when the preferred backend is unavailable and fallback
    is disabled.

    Attributes
    ----------
    message : str
        Human-readable error message.
    backends : list[str]
        Backend names that were considered.

    Examples
    --------
    >>> try:
    ...     await pipeline.enrich(records)
    ... except ConfigurationError as e:
    ...     print(f"Cannot enrich: {e.message}")
    ...     raise typer.Exit(3)
    """

    def __init__(
        self,
        message: str = "No enrichment backend is available",
        backends: list[str] | None = None,
    ) -> None:
        """
        Initialize ConfigurationError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message
            (default: "No enrichment backend is available").
        backends : list[str] | None, optional
            Backend names that were considered (default: None).
        """
        self.backends: list[str] = list(backends or [])
        super().__init__(message)


class TransientNetworkError(WatchlensError):
    """
    Exception raised for retryable network failures.

    Wraps timeouts, refused connections, pool exhaustion and 5xx responses.
    Backends retry these with exponential backoff before reporting the
    identifier as failed.

    Attributes
    ----------
    message : str
        Human-readable error message.
    original_error : Exception | None
        The original exception that caused this error.
    retry_count : int
        Number of retry attempts made before raising this exception.
    status_code : int | None
        HTTP status code when the failure was an error response.
    """

    def __init__(
        self,
        message: str = "Network error occurred",
        original_error: Exception | None = None,
        retry_count: int = 0,
        status_code: int | None = None,
    ) -> None:
        """
        Initialize TransientNetworkError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Network error occurred").
        original_error : Exception | None, optional
            The original exception that caused this error (default: None).
        retry_count : int, optional
            Number of retry attempts made (default: 0).
        status_code : int | None, optional
            HTTP status code, if any (default: None).
        """
        self.original_error = original_error
        self.retry_count = retry_count
        self.status_code = status_code
        super().__init__(message)


class RateLimitedError(WatchlensError):
    """
    Exception raised when a remote host throttles or blocks requests.

    A rate limit stops further calls to the backend for the remainder of
    the run; the fallback orchestrator moves the affected identifiers to
    the next backend.

    Attributes
    ----------
    message : str
        Human-readable error message.
    status_code : int | None
        HTTP status code that signalled the limit (usually 429 or 403).
    """

    def __init__(
        self,
        message: str = "Rate limited by remote host",
        status_code: int | None = None,
    ) -> None:
        """
        Initialize RateLimitedError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Rate limited by remote host").
        status_code : int | None, optional
            HTTP status code (default: None).
        """
        self.status_code = status_code
        super().__init__(message)


class QuotaExhaustedError(WatchlensError):
    """
    Exception raised when the YouTube Data API quota is used up.

    Attributes
    ----------
    message : str
        Human-readable error message.
    backend : str
        Name of the backend whose quota is exhausted.
    remaining : int
        Units still available when the request was refused.
    """

    def __init__(
        self,
        message: str = "quota exhausted",
        backend: str = "api",
        remaining: int = 0,
    ) -> None:
        """
        Initialize QuotaExhaustedError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "quota exhausted").
        backend : str, optional
            Backend name (default: "api").
        remaining : int, optional
            Units still available (default: 0).
        """
        self.backend = backend
        self.remaining = remaining
        super().__init__(message)


class MalformedResponseError(WatchlensError):
    """
    Exception raised when a response cannot be parsed into video data.

    Treated as a failure of a single identifier, never of the whole
    backend.

    Attributes
    ----------
    message : str
        Human-readable error message.
    video_id : str | None
        Identifier whose response was malformed.
    raw_excerpt : str | None
        Leading part of the offending payload, for logging.
    """

    def __init__(
        self,
        message: str = "Malformed response",
        video_id: str | None = None,
        raw_excerpt: str | None = None,
    ) -> None:
        """
        Initialize MalformedResponseError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Malformed response").
        video_id : str | None, optional
            Identifier whose response was malformed (default: None).
        raw_excerpt : str | None, optional
            Leading part of the payload (default: None).
        """
        self.video_id = video_id
        self.raw_excerpt = raw_excerpt
        super().__init__(message)


class VideoUnavailableError(WatchlensError):
    """
    Exception raised when a video page is missing, private or removed.

    Attributes
    ----------
    message : str
        Human-readable error message.
    video_id : str | None
        Identifier of the unavailable video.
    reason : str | None
        Short machine-readable reason (e.g. ``"http_404"``).
    """

    def __init__(
        self,
        message: str = "Video unavailable",
        video_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        """
        Initialize VideoUnavailableError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Video unavailable").
        video_id : str | None, optional
            Identifier of the video (default: None).
        reason : str | None, optional
            Machine-readable reason (default: None).
        """
        self.video_id = video_id
        self.reason = reason
        super().__init__(message)


class CostLimitExceededError(WatchlensError):
    """
    Exception raised when LLM spend reaches the configured ceiling.

    Attributes
    ----------
    message : str
        Human-readable error message.
    total_cost : str
        Accumulated cost at the time of the check, as a decimal string.
    cost_limit : str
        Configured ceiling, as a decimal string.
    """

    def __init__(
        self,
        message: str = "cost limit reached",
        total_cost: str = "0",
        cost_limit: str = "0",
    ) -> None:
        """
        Initialize CostLimitExceededError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "cost limit reached").
        total_cost : str, optional
            Accumulated cost (default: "0").
        cost_limit : str, optional
            Configured ceiling (default: "0").
        """
        self.total_cost = total_cost
        self.cost_limit = cost_limit
        super().__init__(message)


class GracefulShutdownException(WatchlensError):
    """
    Exception raised when graceful shutdown is requested.

    Raised when the application receives SIGINT (Ctrl+C) or SIGTERM.
    In-flight requests complete; unstarted work is reported as failed
    with the shutdown reason.

    Attributes
    ----------
    message : str
        Human-readable error message.
    signal_received : str
        The signal name that triggered shutdown (e.g., "SIGINT", "SIGTERM").
    """

    def __init__(
        self,
        message: str = "Graceful shutdown requested",
        signal_received: str = "SIGINT",
    ) -> None:
        """
        Initialize GracefulShutdownException.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Graceful shutdown requested").
        signal_received : str, optional
            The signal name (default: "SIGINT").
        """
        self.signal_received = signal_received
        super().__init__(message)


# Exit codes for CLI commands
EXIT_CODE_SUCCESS = 0
EXIT_CODE_GENERAL_ERROR = 1
EXIT_CODE_INVALID_ARGS = 2
EXIT_CODE_CONFIGURATION_ERROR = 3
EXIT_CODE_PARTIAL_SUCCESS = 4
EXIT_CODE_INTERRUPTED = 130  # Standard Unix signal interrupt exit code
