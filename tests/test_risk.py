"""Tests for RiskManager: ordered checks, stats, emergency stop, positions."""

from __future__ import annotations

import pytest

from conftest import make_opportunity
from polyarb.models.opportunity import RiskLevel
from polyarb.models.trading import Balance
from polyarb.risk.manager import DAY_SECS, RiskManager


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def risk(clock) -> RiskManager:
    return RiskManager(
        max_position_size=100.0,
        min_position_size=10.0,
        daily_max_loss=50.0,
        max_concurrent_positions=2,
        clock=clock,
    )


class TestEvaluateOpportunity:
    def test_signal_only_rejected_first(self, rich_balance):
        rm = RiskManager(enable_risk_management=False)
        decision = rm.evaluate_opportunity(make_opportunity(trades=[]), rich_balance)
        assert not decision.approved
        assert "signal only" in decision.reason

    def test_disabled_approves_full_size(self):
        rm = RiskManager(enable_risk_management=False)
        decision = rm.evaluate_opportunity(
            make_opportunity(capital=5000.0, risk=RiskLevel.HIGH, pct=0.1),
            Balance(usdc=0.0, matic=0.0),
        )
        assert decision.approved
        assert decision.adjusted_size == 5000.0

    def test_daily_loss_fires_before_balance(self, risk):
        risk.record_trade(-50.0, True)
        decision = risk.evaluate_opportunity(
            make_opportunity(capital=20.0), Balance(usdc=1.0, matic=0.0),
        )
        assert not decision.approved
        assert decision.reason.startswith("Daily loss limit reached")

    def test_insufficient_balance(self, risk):
        decision = risk.evaluate_opportunity(
            make_opportunity(capital=20.0), Balance(usdc=19.99, matic=0.0),
        )
        assert not decision.approved
        assert decision.reason.startswith("Insufficient balance")

    def test_oversized_capped_not_rejected(self, risk, rich_balance):
        decision = risk.evaluate_opportunity(
            make_opportunity(capital=250.0, risk=RiskLevel.HIGH, pct=1.0), rich_balance,
        )
        assert decision.approved
        assert decision.adjusted_size == 100.0

    def test_too_small(self, risk, rich_balance):
        decision = risk.evaluate_opportunity(make_opportunity(capital=0.95), rich_balance)
        assert not decision.approved
        assert decision.reason.startswith("Position too small")

    def test_concurrency_cap(self, risk, rich_balance):
        risk.add_position("M1", "T1", 1, 0.5)
        risk.add_position("M2", "T2", 1, 0.5)
        decision = risk.evaluate_opportunity(make_opportunity(), rich_balance)
        assert not decision.approved
        assert decision.reason.startswith("Max concurrent positions")

    def test_high_risk_needs_five_percent(self, risk, rich_balance):
        low = risk.evaluate_opportunity(
            make_opportunity(risk=RiskLevel.HIGH, pct=4.99), rich_balance,
        )
        assert not low.approved
        assert low.reason.startswith("High risk with low profit")

        ok = risk.evaluate_opportunity(
            make_opportunity(risk=RiskLevel.HIGH, pct=5.0), rich_balance,
        )
        assert ok.approved

    def test_approved_at_full_size(self, risk, rich_balance):
        decision = risk.evaluate_opportunity(make_opportunity(capital=20.0), rich_balance)
        assert decision.approved
        assert decision.reason is None
        assert decision.adjusted_size == 20.0

    def test_large_position_only_warns(self, risk, caplog):
        decision = risk.evaluate_opportunity(
            make_opportunity(capital=50.0), Balance(usdc=100.0, matic=0.0),
        )
        assert decision.approved
        assert "Large position" in caplog.text


class TestRecordTrade:
    def test_success_profit(self, risk):
        risk.record_trade(2.0, True)
        stats = risk.stats
        assert stats.total_trades == 1
        assert stats.successful_trades == 1
        assert stats.total_profit == 2.0
        assert stats.largest_profit == 2.0
        assert stats.net_profit == 2.0
        assert stats.win_rate == 100.0
        assert stats.average_profit == 2.0
        assert risk.daily_pnl == 2.0

    def test_success_loss(self, risk):
        risk.record_trade(3.0, True)
        risk.record_trade(-1.0, True)
        stats = risk.stats
        assert stats.total_loss == 1.0
        assert stats.largest_loss == 1.0
        assert stats.net_profit == 2.0
        assert stats.average_profit == 1.0
        assert risk.daily_pnl == 2.0

    def test_failure_only_counts(self, risk):
        risk.record_trade(5.0, False)
        stats = risk.stats
        # a failure is still an attempt: total_trades feeds win_rate
        assert stats.total_trades == 1
        assert stats.failed_trades == 1
        assert stats.successful_trades == 0
        assert stats.total_profit == 0.0
        assert stats.net_profit == 0.0
        assert stats.win_rate == 0.0
        assert risk.daily_pnl == 0.0

        risk.record_trade(1.0, True)
        stats = risk.stats
        assert (stats.total_trades, stats.successful_trades, stats.failed_trades) == (2, 1, 1)
        assert stats.win_rate == 50.0

    def test_stats_is_a_copy(self, risk):
        risk.stats.total_trades = 99
        assert risk.stats.total_trades == 0


class TestEmergencyStopAndReset:
    def test_emergency_stop_at_80_percent(self, risk):
        risk.record_trade(-30.0, True)
        assert not risk.should_emergency_stop()
        risk.record_trade(-10.0, True)
        assert risk.should_emergency_stop()

    def test_reset_only_after_24h(self, risk, clock):
        risk.record_trade(-45.0, True)
        clock.now += DAY_SECS - 1
        assert not risk.reset_daily_stats()
        assert risk.daily_pnl == -45.0

        clock.now += 1
        assert risk.reset_daily_stats()
        assert risk.daily_pnl == 0.0
        assert risk.stats.total_loss == 45.0
        assert not risk.should_emergency_stop()


class TestPositions:
    def test_add_update_remove(self, risk):
        pos = risk.add_position("M", "T", 2, 0.40)
        assert pos.unrealized_pnl == 0.0
        assert risk.total_exposure == pytest.approx(0.80)

        risk.update_position_price("T", 0.50)
        assert risk.get_positions()[0].unrealized_pnl == pytest.approx(0.20)

        assert risk.remove_position("M", "T") is pos
        assert risk.get_positions() == []
        assert risk.remove_position("M", "T") is None

    def test_add_averages_into_existing(self, risk):
        risk.add_position("M", "T", 1, 0.40)
        pos = risk.add_position("M", "T", 1, 0.60)
        assert len(risk.get_positions()) == 1
        assert pos.amount == 2
        assert pos.average_price == pytest.approx(0.50)

    def test_close_positions_not_in(self, risk):
        risk.add_position("M1", "T1", 1, 0.5)
        risk.add_position("M2", "T2", 1, 0.5)
        closed = risk.close_positions_not_in(["M2"])
        assert [p.market_id for p in closed] == ["M1"]
        assert [p.market_id for p in risk.get_positions()] == ["M2"]

    def test_risk_summary(self, risk):
        risk.record_trade(1.5, True)
        risk.add_position("M", "T", 1, 0.5)
        summary = risk.risk_summary(Balance(usdc=123.456, matic=0.0))
        assert summary["total_trades"] == 1
        assert summary["open_positions"] == 1
        assert summary["emergency_threshold"] == 40.0
        assert summary["balance_usdc"] == 123.46
