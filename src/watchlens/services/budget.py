"""
Quota and cost accounting for the enrichment backends.

``QuotaTracker`` keeps the YouTube Data API unit budget, which resets
daily at midnight Pacific time. ``CostTracker`` keeps LLM spend against a
per-run ceiling. Both serialize their check-then-update sequences behind a
``threading.Lock`` so that two concurrent callers can never both claim the
last unit of budget.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
from decimal import Decimal
from typing import Callable
from zoneinfo import ZoneInfo

from watchlens.models.enrichment import QuotaUsage

logger = logging.getLogger(__name__)

QUOTA_TIMEZONE = ZoneInfo("America/Los_Angeles")


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def next_quota_reset(now: _dt.datetime, tz: _dt.tzinfo = QUOTA_TIMEZONE) -> _dt.datetime:
    """
    Compute the next quota reset instant.

    Parameters
    ----------
    now : datetime.datetime
        Timezone-aware current time.
    tz : datetime.tzinfo, optional
        Timezone whose midnight starts a new quota day
        (default: America/Los_Angeles).

    Returns
    -------
    datetime.datetime
        The next local midnight, expressed in UTC.
    """
    local = now.astimezone(tz)
    next_day = local.date() + _dt.timedelta(days=1)
    midnight = _dt.datetime.combine(next_day, _dt.time(0, 0), tzinfo=tz)
    return midnight.astimezone(_dt.timezone.utc)


class QuotaTracker:
    """
    Daily unit budget for a quota-limited backend.

    ``used + remaining == limit`` holds at every observation; when the
    reset instant passes, the period restarts with ``used == 0``. There is
    no way to give units back mid-period.

    Parameters
    ----------
    limit : int
        Units available per period.
    backend : str, optional
        Backend name for reporting (default: "api").
    clock : Callable[[], datetime] | None, optional
        Source of the current UTC time.

    Examples
    --------
    >>> quota = QuotaTracker(limit=100)
    >>> quota.try_consume(100)
    True
    >>> quota.try_consume(100)
    False
    """

    def __init__(
        self,
        limit: int,
        backend: str = "api",
        clock: Callable[[], _dt.datetime] | None = None,
    ) -> None:
        self.backend = backend
        self._limit = limit
        self._clock = clock or _utcnow
        self._used = 0
        self._requests = 0
        self._consumed_total = 0
        self._reset_at = next_quota_reset(self._clock())
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        """Units available per period."""
        return self._limit

    @property
    def remaining(self) -> int:
        """Units left in the current period."""
        with self._lock:
            self._roll_period()
            return self._limit - self._used

    @property
    def consumed_total(self) -> int:
        """Units consumed since the tracker was created, across periods."""
        with self._lock:
            return self._consumed_total

    def try_consume(self, units: int) -> bool:
        """
        Atomically reserve units if the budget allows it.

        Parameters
        ----------
        units : int
            Units the upcoming request will cost.

        Returns
        -------
        bool
            True if the units were reserved; False if they would exceed
            the remaining budget (nothing is consumed).
        """
        with self._lock:
            self._roll_period()
            if self._used + units > self._limit:
                logger.info(
                    "Quota for %s exhausted: need %d, %d of %d remaining",
                    self.backend,
                    units,
                    self._limit - self._used,
                    self._limit,
                )
                return False
            self._used += units
            self._consumed_total += units
            self._requests += 1
            return True

    def exhaust(self) -> None:
        """
        Mark the current period as fully used after a server-side quota error.

        Only ``used`` moves; ``consumed_total`` keeps counting units actually
        spent on requests.
        """
        with self._lock:
            self._roll_period()
            self._used = self._limit
        logger.warning(
            "Quota for %s marked exhausted until %s", self.backend, self._reset_at.isoformat()
        )

    def set_limit(self, limit: int) -> None:
        """
        Change the per-period limit.

        ``used`` is capped at the new limit so the balance invariant holds.
        """
        with self._lock:
            self._limit = limit
            self._used = min(self._used, limit)

    def usage(self) -> QuotaUsage:
        """
        Get a snapshot of the current period.

        Returns
        -------
        QuotaUsage
            Frozen view of limit, used, remaining, requests and reset time.
        """
        with self._lock:
            self._roll_period()
            return QuotaUsage(
                backend=self.backend,
                limit=self._limit,
                used=self._used,
                remaining=self._limit - self._used,
                requests_made=self._requests,
                reset_at=self._reset_at,
            )

    def _roll_period(self) -> None:
        # Caller holds self._lock.
        now = self._clock()
        if now >= self._reset_at:
            logger.info("Quota period for %s reset", self.backend)
            self._used = 0
            self._requests = 0
            self._reset_at = next_quota_reset(now)


class CostTracker:
    """
    LLM spend accounting against a per-run ceiling.

    Costs are kept as ``Decimal`` so that accumulated per-item costs hit
    the ceiling exactly (20 x $0.05 == $1.00).

    Concurrent requests reserve their estimated cost with ``try_reserve``
    before starting and ``settle`` the reservation with the actual cost
    afterwards. Reservations count against the ceiling, so callers that
    check at the same time cannot both claim the last slot.

    Parameters
    ----------
    limit : Decimal
        Maximum spend per run in USD.
    """

    def __init__(self, limit: Decimal) -> None:
        self._limit = Decimal(limit)
        self._run_cost = Decimal("0")
        self._total_cost = Decimal("0")
        self._reserved = Decimal("0")
        self._last_item_cost = Decimal("0")
        self._run_tokens = 0
        self._total_tokens = 0
        self._lock = threading.Lock()

    @property
    def limit(self) -> Decimal:
        """Maximum spend per run."""
        return self._limit

    @property
    def run_cost(self) -> Decimal:
        """Spend accumulated in the current run."""
        with self._lock:
            return self._run_cost

    @property
    def total_cost(self) -> Decimal:
        """Spend accumulated over the process lifetime."""
        with self._lock:
            return self._total_cost

    @property
    def run_tokens(self) -> int:
        """Tokens consumed in the current run."""
        with self._lock:
            return self._run_tokens

    @property
    def total_tokens(self) -> int:
        """Tokens consumed over the process lifetime."""
        with self._lock:
            return self._total_tokens

    @property
    def reserved(self) -> Decimal:
        """Spend held by requests still in flight."""
        with self._lock:
            return self._reserved

    @property
    def last_item_cost(self) -> Decimal:
        """Actual cost of the most recently settled request."""
        with self._lock:
            return self._last_item_cost

    def limit_reached(self) -> bool:
        """Check whether run spend has reached the ceiling."""
        with self._lock:
            return self._run_cost >= self._limit

    def try_reserve(self, estimate: Decimal) -> bool:
        """
        Hold budget for a request about to start.

        Parameters
        ----------
        estimate : Decimal
            Expected cost of the request.

        Returns
        -------
        bool
            True if the estimate fits under the ceiling together with the
            spend and the other open reservations; False otherwise
            (nothing is held).
        """
        with self._lock:
            committed = self._run_cost + self._reserved
            if self._run_cost >= self._limit or committed + estimate > self._limit:
                return False
            self._reserved += estimate
            return True

    def settle(self, reserved: Decimal, cost: Decimal, tokens: int = 0) -> Decimal:
        """
        Replace a reservation with the actual cost of the request.

        Parameters
        ----------
        reserved : Decimal
            Amount returned by a successful ``try_reserve``.
        cost : Decimal
            Actual cost in USD.
        tokens : int, optional
            Tokens consumed (default: 0).

        Returns
        -------
        Decimal
            Run spend after the addition.
        """
        with self._lock:
            self._reserved = max(Decimal("0"), self._reserved - reserved)
            self._last_item_cost = cost
            return self._add(cost, tokens)

    def release(self, reserved: Decimal) -> None:
        """Drop a reservation whose request never ran."""
        with self._lock:
            self._reserved = max(Decimal("0"), self._reserved - reserved)

    def add(self, cost: Decimal, tokens: int = 0) -> Decimal:
        """
        Record spend for a completed request.

        Parameters
        ----------
        cost : Decimal
            Cost of the request in USD.
        tokens : int, optional
            Tokens consumed (default: 0).

        Returns
        -------
        Decimal
            Run spend after the addition.
        """
        with self._lock:
            return self._add(cost, tokens)

    def _add(self, cost: Decimal, tokens: int) -> Decimal:
        # Caller holds self._lock.
        self._run_cost += cost
        self._total_cost += cost
        self._run_tokens += tokens
        self._total_tokens += tokens
        return self._run_cost

    def start_run(self, limit: Decimal | None = None) -> None:
        """
        Reset run spend, optionally with a new ceiling.

        Parameters
        ----------
        limit : Decimal | None, optional
            New per-run ceiling (default: keep the current one).
        """
        with self._lock:
            if limit is not None:
                self._limit = Decimal(limit)
            self._run_cost = Decimal("0")
            self._run_tokens = 0
            self._reserved = Decimal("0")
