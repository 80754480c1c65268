"""Tests for daily risk limits and the extreme-stop circuit breaker."""

import logging
from unittest.mock import MagicMock

import pytest

from tradebot.schemas.trade import CloseReason, TradeSide
from tradebot.services.notifier import CRITICAL
from tradebot.services.risk_guard import ExtremeStopMonitor, RiskGuard

from tests.conftest import make_strategy


def _closed_trade(ledger, clock, exit_price: float, entry: float = 100.0, qty: float = 1.0):
    trade = ledger.add_trade({
        "symbol": "BTCUSDT", "strategy_id": "s1", "side": TradeSide.LONG,
        "entry_price": entry, "entry_time": clock(), "quantity": qty,
    })
    return ledger.close_trade(trade.id, exit_price, CloseReason.MANUAL)


def _controller(running: bool = True) -> MagicMock:
    controller = MagicMock()
    controller.is_running = running
    controller.stop.return_value = running
    return controller


# ---------------------------------------------------------------------------
# Daily limits
# ---------------------------------------------------------------------------

class TestRiskGuard:
    def test_no_strategies_never_stops(self, ledger):
        assert not RiskGuard(ledger).should_stop_trading([])

    def test_uses_most_restrictive_daily_loss(self, ledger, clock):
        # initial balance 100: a 3% limit means a loss above 3.0 stops trading
        _closed_trade(ledger, clock, exit_price=96.5)
        strategies = [
            make_strategy(id="a", max_daily_loss=10.0),
            make_strategy(id="b", max_daily_loss=3.0, is_active=False),
        ]
        decision = RiskGuard(ledger).should_stop_trading(strategies)
        assert decision
        assert decision.reason == "daily_loss"

    def test_loss_at_limit_does_not_stop(self, ledger, clock):
        _closed_trade(ledger, clock, exit_price=97.0)
        decision = RiskGuard(ledger).should_stop_trading([make_strategy(max_daily_loss=3.0)])
        assert not decision

    def test_absolute_profit_also_counts(self, ledger, clock):
        _closed_trade(ledger, clock, exit_price=110.0)
        decision = RiskGuard(ledger).should_stop_trading([make_strategy(max_daily_loss=5.0)])
        assert decision.reason == "daily_loss"

    def test_max_trades_per_day(self, ledger, clock):
        for _ in range(2):
            _closed_trade(ledger, clock, exit_price=100.5)
        strategies = [make_strategy(id="a", max_trades_per_day=5), make_strategy(id="b", max_trades_per_day=2)]
        decision = RiskGuard(ledger).should_stop_trading(strategies)
        assert decision.reason == "max_trades"

    def test_yesterdays_trades_do_not_count(self, ledger, clock):
        _closed_trade(ledger, clock, exit_price=50.0)
        clock.advance(hours=24)
        assert not RiskGuard(ledger).should_stop_trading([make_strategy(max_daily_loss=1.0)])


# ---------------------------------------------------------------------------
# Extreme stop
# ---------------------------------------------------------------------------

class TestExtremeStop:
    def test_three_stop_losses_within_window_trip(self, ledger, clock, caplog):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        controller = _controller()
        alerts = []
        monitor.bind(controller, on_alert=alerts.append)

        assert monitor.record_stop_loss("BTCUSDT", "t1") is None
        clock.advance(minutes=14)
        assert monitor.record_stop_loss("ETHUSDT", "t2") is None
        clock.advance(minutes=15)
        with caplog.at_level(logging.CRITICAL):
            alert = monitor.record_stop_loss("BNBUSDT", "t3")

        assert alert is not None
        assert alert.severity == CRITICAL
        assert alerts == [alert]
        controller.stop.assert_called_once()
        assert monitor.tripped
        assert monitor.last_trigger["reason"] == "STOP_LOSS_LIMIT"
        assert "EXTREME STOP TRIGGERED" in caplog.text

    def test_stop_losses_outside_window_are_pruned(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        monitor.bind(_controller())
        monitor.record_stop_loss("BTCUSDT", "t1")
        clock.advance(minutes=20)
        monitor.record_stop_loss("BTCUSDT", "t2")
        clock.advance(minutes=11)
        assert monitor.record_stop_loss("BTCUSDT", "t3") is None
        assert not monitor.tripped
        assert monitor.get_status()["recent_stop_losses"] == 2

    def test_trip_does_not_stop_a_stopped_controller(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, max_stop_losses=1, clock=clock)
        controller = _controller(running=False)
        monitor.bind(controller)
        monitor.record_stop_loss("BTCUSDT", "t1")
        controller.stop.assert_not_called()
        assert monitor.tripped

    def test_portfolio_loss_against_old_peak(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        controller = _controller()
        monitor.bind(controller)

        assert monitor.check() is None  # snapshot at 100
        clock.advance(hours=4)
        _closed_trade(ledger, clock, exit_price=89.0)  # equity 89
        alert = monitor.check()

        assert alert is not None
        assert monitor.last_trigger["reason"] == "PORTFOLIO_LOSS"
        assert monitor.last_trigger["loss_percentage"] == pytest.approx(11.0)
        controller.stop.assert_called_once()

    def test_recent_drop_without_old_snapshot_does_not_trip(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        monitor.bind(_controller())
        monitor.check()
        clock.advance(hours=1)
        _closed_trade(ledger, clock, exit_price=80.0)
        assert monitor.check() is None
        assert not monitor.tripped

    def test_snapshots_pruned_but_reference_kept(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        controller = _controller()
        monitor.bind(controller)
        for _ in range(6):
            monitor.check()
            clock.advance(hours=1)
        # 4h window plus one monitoring interval: snapshots from 1h..5h
        assert len(monitor.portfolio_snapshots) == 5

        _closed_trade(ledger, clock, exit_price=88.0)
        assert monitor.check() is not None
        assert monitor.last_trigger["loss_percentage"] == pytest.approx(12.0)
        assert len(monitor.portfolio_snapshots) == 5

    def test_slow_decline_does_not_trip(self, ledger, clock):
        # 0.1 lost every hour: about 0.4% over any 4h window, 12% in total
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        controller = _controller()
        monitor.bind(controller)
        for _ in range(120):
            assert monitor.check() is None
            clock.advance(hours=1)
            _closed_trade(ledger, clock, exit_price=99.9)

        assert monitor.check() is None
        assert not monitor.tripped
        assert ledger.current_equity() == pytest.approx(88.0)
        assert monitor.get_status()["portfolio_loss_4h"] < 1.0
        assert len(monitor.portfolio_snapshots) <= 5
        controller.stop.assert_not_called()

    def test_one_alert_per_stop_loss_trip(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        controller = _controller()
        alerts = []
        monitor.bind(controller, on_alert=alerts.append)

        for i in range(3):
            monitor.record_stop_loss("BTCUSDT", f"t{i}")
        for _ in range(5):
            clock.advance(minutes=1)
            assert monitor.check() is None
        assert monitor.record_stop_loss("ETHUSDT", "t4") is None

        assert len(alerts) == 1
        assert monitor.last_trigger["stop_loss_count"] == 3
        controller.stop.assert_called_once()

    def test_one_alert_per_portfolio_trip(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, clock=clock)
        alerts = []
        monitor.bind(_controller(), on_alert=alerts.append)

        monitor.check()
        clock.advance(hours=4)
        _closed_trade(ledger, clock, exit_price=85.0)
        for _ in range(5):
            monitor.check()
            clock.advance(minutes=1)

        assert len(alerts) == 1

    def test_reset_rearms_trigger(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, max_stop_losses=1, clock=clock)
        alerts = []
        monitor.bind(_controller(), on_alert=alerts.append)
        monitor.record_stop_loss("BTCUSDT", "t1")
        monitor.reset()
        clock.advance(minutes=1)
        assert monitor.record_stop_loss("BTCUSDT", "t2") is not None
        assert len(alerts) == 2

    def test_reset_clears_latch(self, ledger, clock):
        monitor = ExtremeStopMonitor(ledger, max_stop_losses=1, clock=clock)
        monitor.bind(_controller())
        monitor.record_stop_loss("BTCUSDT", "t1")
        assert monitor.tripped
        monitor.reset()
        status = monitor.get_status()
        assert status["tripped"] is False
        assert status["recent_stop_losses"] == 0
        assert status["last_trigger"] is None

    def test_start_and_stop_monitoring_manage_job(self, ledger, clock):
        scheduler = MagicMock()
        monitor = ExtremeStopMonitor(ledger, interval_seconds=30, clock=clock)
        monitor.start_monitoring(scheduler)
        monitor.start_monitoring(scheduler)
        scheduler.add_job.assert_called_once()
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == ExtremeStopMonitor.JOB_ID
        assert kwargs["max_instances"] == 1
        assert monitor.get_status()["is_monitoring"] is True

        monitor.stop_monitoring()
        scheduler.remove_job.assert_called_once_with(ExtremeStopMonitor.JOB_ID)
        assert monitor.get_status()["is_monitoring"] is False
