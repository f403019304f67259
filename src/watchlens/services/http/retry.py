"""
Retry helpers shared by the HTTP fetcher and the backends.
"""

from __future__ import annotations

import httpx

# httpx exceptions worth retrying. PoolTimeout (pool exhausted past its
# queueing timeout) is a TimeoutException subclass.
TRANSIENT_HTTPX_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.ReadError,
)


def backoff_delay(attempt: int, base_seconds: float, max_seconds: float) -> float:
    """
    Exponential backoff delay for a retry.

    Parameters
    ----------
    attempt : int
        Zero-based index of the failed attempt.
    base_seconds : float
        Delay after the first failure.
    max_seconds : float
        Upper bound on the delay.

    Returns
    -------
    float
        ``min(base_seconds * 2**attempt, max_seconds)``.

    Examples
    --------
    >>> [backoff_delay(n, 1.0, 10.0) for n in range(5)]
    [1.0, 2.0, 4.0, 8.0, 10.0]
    """
    return min(base_seconds * (2**attempt), max_seconds)
