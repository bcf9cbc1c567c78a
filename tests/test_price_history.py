"""Tests for PriceHistory: window, cap, z-score, trend, stats."""

from __future__ import annotations

import pytest

from polyarb.market.price_history import PriceHistory


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def history(clock) -> PriceHistory:
    return PriceHistory(clock=clock)


class TestRecord:
    def test_identical_records_count_twice(self, history):
        history.record("T", 0.5)
        history.record("T", 0.5)
        assert history.stats("T").count == 2

    def test_size_capped_keeps_most_recent(self, history, clock):
        for i in range(70):
            clock.now += 1
            history.record("T", i / 100)
        samples = history.get_history("T")
        assert len(samples) == 60
        assert samples[0].price == 0.10
        assert samples[-1].price == 0.69

    def test_expired_samples_purged_on_record(self, history, clock):
        history.record("T", 0.1)
        clock.now += 31 * 60
        history.record("T", 0.2)
        assert [s.price for s in history.get_history("T")] == [0.2]

    def test_tokens_without_recent_samples_forgotten(self, history, clock):
        history.record("OLD", 0.1)
        clock.now += 10 * 60
        history.record("KEPT", 0.3)
        clock.now += 25 * 60
        history.record("NEW", 0.2)
        assert history.get_history("OLD") == []
        assert "OLD" not in history._history
        assert [s.price for s in history.get_history("KEPT")] == [0.3]
        assert [s.price for s in history.get_history("NEW")] == [0.2]

    def test_unknown_token(self, history):
        assert history.get_history("nope") == []
        assert history.mean("nope") is None


class TestZScore:
    def test_none_below_ten_samples(self, history):
        for _ in range(9):
            history.record("T", 0.5)
        assert history.z_score("T", 0.9) is None
        assert not history.is_significant_deviation("T", 0.9)

    def test_zero_for_flat_series(self, history):
        for _ in range(10):
            history.record("T", 0.5)
        assert history.z_score("T", 0.99) == 0.0

    def test_outlier_is_significant(self, history):
        for i in range(14):
            history.record("T", 0.50 + (0.01 if i % 2 else -0.01))
        history.record("T", 0.70)
        z = history.z_score("T", 0.70)
        assert z is not None and z >= 2.0
        assert history.is_significant_deviation("T", 0.70)

    def test_population_std(self, history):
        for price in [0.4, 0.6] * 5:
            history.record("T", price)
        # mean 0.5, population std 0.1
        assert history.z_score("T", 0.7) == pytest.approx(2.0)


class TestTrend:
    def test_flat_with_few_samples(self, history):
        for p in (0.1, 0.5, 0.9, 0.95):
            history.record("T", p)
        assert history.trend("T") == 0

    def test_rising(self, history):
        for p in (0.40, 0.41, 0.45, 0.50, 0.52):
            history.record("T", p)
        assert history.trend("T") == 1

    def test_falling(self, history):
        for p in (0.60, 0.58, 0.55, 0.50, 0.48):
            history.record("T", p)
        assert history.trend("T") == -1

    def test_deadband(self, history):
        for p in (0.50, 0.50, 0.51, 0.51, 0.51):
            history.record("T", p)
        assert history.trend("T") == 0


class TestStats:
    def test_empty(self, history):
        stats = history.stats("T")
        assert stats.count == 0
        assert stats.mean is None and stats.min is None
        assert stats.max is None and stats.std_dev is None

    def test_values(self, history):
        for p in (0.2, 0.4, 0.6):
            history.record("T", p)
        stats = history.stats("T")
        assert stats.count == 3
        assert stats.mean == pytest.approx(0.4)
        assert stats.min == 0.2
        assert stats.max == 0.6
