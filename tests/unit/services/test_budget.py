"""
Tests for quota and cost accounting.
"""

from __future__ import annotations

import datetime as _dt
import threading
from decimal import Decimal

import pytest

from watchlens.services.budget import CostTracker, QuotaTracker, next_quota_reset

UTC = _dt.timezone.utc


class MutableClock:
    def __init__(self, now: _dt.datetime) -> None:
        self.now = now

    def __call__(self) -> _dt.datetime:
        return self.now


class TestNextQuotaReset:
    """Test the Pacific-midnight reset instant."""

    def test_summer(self) -> None:
        """Test reset during daylight saving time."""
        now = _dt.datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
        assert next_quota_reset(now) == _dt.datetime(2024, 6, 2, 7, 0, tzinfo=UTC)

    def test_winter(self) -> None:
        """Test reset during standard time."""
        now = _dt.datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
        assert next_quota_reset(now) == _dt.datetime(2024, 1, 16, 8, 0, tzinfo=UTC)

    def test_late_utc_evening_is_same_pacific_day(self) -> None:
        """Test a UTC time that is still the previous day in Pacific time."""
        now = _dt.datetime(2024, 6, 2, 3, 0, tzinfo=UTC)
        assert next_quota_reset(now) == _dt.datetime(2024, 6, 2, 7, 0, tzinfo=UTC)


class TestQuotaTracker:
    """Test quota reservation."""

    def test_try_consume_within_budget(self) -> None:
        """Test that units are reserved while budget remains."""
        quota = QuotaTracker(limit=100)
        assert quota.try_consume(60)
        assert quota.remaining == 40
        assert quota.consumed_total == 60

    def test_try_consume_rejects_overdraw(self) -> None:
        """Test that an over-budget request consumes nothing."""
        quota = QuotaTracker(limit=100)
        assert quota.try_consume(100)
        assert not quota.try_consume(1)
        assert quota.remaining == 0
        assert quota.consumed_total == 100

    def test_balance_invariant(self) -> None:
        """Test that used plus remaining equals the limit."""
        quota = QuotaTracker(limit=50)
        quota.try_consume(7)
        quota.try_consume(8)
        usage = quota.usage()
        assert usage.used + usage.remaining == usage.limit
        assert usage.requests_made == 2

    def test_exhaust(self) -> None:
        """Test marking the period exhausted after a server-side error."""
        quota = QuotaTracker(limit=100)
        quota.try_consume(10)
        quota.exhaust()
        assert quota.remaining == 0
        assert quota.consumed_total == 10
        assert not quota.try_consume(1)

    def test_set_limit_caps_used(self) -> None:
        """Test lowering the limit below what was used."""
        quota = QuotaTracker(limit=100)
        quota.try_consume(10)
        quota.set_limit(5)
        usage = quota.usage()
        assert usage.limit == 5
        assert usage.used == 5
        assert usage.remaining == 0

    def test_period_resets(self) -> None:
        """Test that the budget refills after the reset instant."""
        clock = MutableClock(_dt.datetime(2024, 6, 1, 12, 0, tzinfo=UTC))
        quota = QuotaTracker(limit=100, clock=clock)
        quota.try_consume(100)

        clock.now = _dt.datetime(2024, 6, 2, 7, 0, tzinfo=UTC)
        assert quota.remaining == 100
        assert quota.consumed_total == 100
        assert quota.usage().reset_at == _dt.datetime(2024, 6, 3, 7, 0, tzinfo=UTC)

    def test_concurrent_consumers_never_overdraw(self) -> None:
        """Test that concurrent callers cannot both take the last units."""
        quota = QuotaTracker(limit=100)
        granted: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(50):
                ok = quota.try_consume(1)
                with lock:
                    granted.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert granted.count(True) == 100
        assert quota.remaining == 0


class TestCostTracker:
    """Test LLM spend accounting."""

    def test_limit_reached_exactly(self) -> None:
        """Test that twenty five-cent items reach a one-dollar ceiling."""
        cost = CostTracker(Decimal("1.00"))
        for _ in range(19):
            cost.add(Decimal("0.05"), 100)
        assert not cost.limit_reached()

        cost.add(Decimal("0.05"), 100)
        assert cost.limit_reached()
        assert cost.run_cost == Decimal("1.00")
        assert cost.run_tokens == 2000

    def test_start_run_resets_run_totals(self) -> None:
        """Test that run spend resets while lifetime spend accumulates."""
        cost = CostTracker(Decimal("1"))
        cost.add(Decimal("0.4"), 10)
        cost.start_run()
        cost.add(Decimal("0.1"), 5)

        assert cost.run_cost == Decimal("0.1")
        assert cost.total_cost == Decimal("0.5")
        assert cost.run_tokens == 5
        assert cost.total_tokens == 15

    def test_start_run_with_new_limit(self) -> None:
        """Test changing the ceiling for a run."""
        cost = CostTracker(Decimal("1"))
        cost.start_run(limit=Decimal("2.5"))
        assert cost.limit == Decimal("2.5")

    @pytest.mark.parametrize("limit", [Decimal("0"), 0])
    def test_zero_limit_is_reached_immediately(self, limit: Decimal) -> None:
        """Test that a zero ceiling stops LLM work before it starts."""
        assert CostTracker(limit).limit_reached()

    def test_reservations_count_against_ceiling(self) -> None:
        """Test an open reservation blocks a request that would cross the ceiling."""
        cost = CostTracker(Decimal("0.10"))

        assert cost.try_reserve(Decimal("0.05"))
        assert cost.try_reserve(Decimal("0.05"))
        assert not cost.try_reserve(Decimal("0.05"))
        assert cost.reserved == Decimal("0.10")
        assert cost.run_cost == 0

    def test_settle_replaces_reservation(self) -> None:
        """Test settling moves the actual cost from reserved to spent."""
        cost = CostTracker(Decimal("1"))
        cost.try_reserve(Decimal("0.02"))

        assert cost.settle(Decimal("0.02"), Decimal("0.05"), 1000) == Decimal("0.05")
        assert cost.reserved == 0
        assert cost.run_tokens == 1000
        assert cost.last_item_cost == Decimal("0.05")

    def test_release_returns_budget(self) -> None:
        """Test a released reservation frees its share of the ceiling."""
        cost = CostTracker(Decimal("0.05"))
        cost.try_reserve(Decimal("0.05"))
        cost.release(Decimal("0.05"))

        assert cost.reserved == 0
        assert cost.try_reserve(Decimal("0.05"))

    def test_reserve_refused_once_spent(self) -> None:
        """Test even a zero estimate is refused at the ceiling."""
        cost = CostTracker(Decimal("0.05"))
        cost.add(Decimal("0.05"))
        assert not cost.try_reserve(Decimal("0"))

    def test_start_run_drops_reservations(self) -> None:
        """Test a new run starts with nothing reserved."""
        cost = CostTracker(Decimal("1"))
        cost.try_reserve(Decimal("0.5"))
        cost.start_run()
        assert cost.reserved == 0

    def test_concurrent_reservations_fit_ceiling(self) -> None:
        """Test threads racing for the last slots never over-reserve."""
        cost = CostTracker(Decimal("0.90"))
        granted: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(10):
                ok = cost.try_reserve(Decimal("0.05"))
                with lock:
                    granted.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert granted.count(True) == 18
        assert cost.reserved == Decimal("0.90")
