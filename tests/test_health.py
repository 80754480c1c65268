"""Tests for the health checker and alert notifiers."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradebot.errors import ExchangeUnavailableError
from tradebot.services.exchange_client import AccountInfo, Balance, OrderResult
from tradebot.services.health import HealthChecker
from tradebot.services.notifier import (
    Alert,
    CRITICAL,
    INFO,
    FanoutNotifier,
    MemoryNotifier,
    Notifier,
    dispatch_alerts,
)
from tradebot.services.storage import MemoryStorage
from tradebot.services.strategy_store import StrategyStore

from tests.conftest import make_exchange


@pytest.fixture
def strategies():
    return StrategyStore(MemoryStorage())


# ---------------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------------

class TestHealthChecker:
    @pytest.mark.asyncio
    async def test_all_checks_pass(self, settings, strategies):
        report = await HealthChecker(make_exchange(), strategies, settings).run()
        assert report.overall == "healthy"
        assert all(report.checks.values())
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_missing_keys_skip_account_checks(self, settings, strategies):
        exchange = make_exchange()
        exchange.is_configured.return_value = False
        report = await HealthChecker(exchange, strategies, settings).run()

        assert report.checks["api_keys_valid"] is False
        assert report.checks["account_access"] is False
        assert report.checks["trading_permissions"] is False
        assert report.overall == "critical"
        exchange.get_account_info.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreachable_exchange(self, settings, strategies):
        exchange = make_exchange()
        exchange.get_server_time = AsyncMock(side_effect=ExchangeUnavailableError("down"))
        report = await HealthChecker(exchange, strategies, settings).run()
        assert report.checks["api_connection"] is False
        assert "Cannot reach the exchange API" in report.errors
        assert report.overall == "warning"

    @pytest.mark.asyncio
    async def test_low_balance_and_no_trade_permission(self, settings, strategies):
        exchange = make_exchange()
        exchange.get_account_info = AsyncMock(
            return_value=AccountInfo(balances=[Balance(asset="USDT", free=2.0)], can_trade=False)
        )
        exchange.place_test_order = AsyncMock(return_value=OrderResult(success=False, error="denied"))
        report = await HealthChecker(exchange, strategies, settings).run()

        assert report.checks["account_access"] is True
        assert report.checks["trading_permissions"] is False
        assert "Trading is not allowed on this account" in report.errors
        assert any("Low USDT balance" in w for w in report.warnings)

    @pytest.mark.asyncio
    async def test_configuration_checks(self, settings, strategies):
        settings.enable_real_trading = True
        settings.max_trade_amount = 5.0
        strategies.set_active("rsi-ema-cross", False)
        report = await HealthChecker(make_exchange(), strategies, settings).run()

        assert report.checks["config_valid"] is False
        assert any("testnet" in w for w in report.warnings)
        assert "No active trading strategies" in report.warnings
        assert report.to_dict()["overall"] == "warning"

    @pytest.mark.asyncio
    async def test_no_strategies(self, settings):
        store = StrategyStore(MemoryStorage())
        store.delete("rsi-ema-cross")
        report = await HealthChecker(make_exchange(), store, settings).run()
        assert report.checks["strategies_loaded"] is False
        assert "No trading strategies configured" in report.errors


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------

def test_memory_notifier_keeps_newest():
    notifier = MemoryNotifier(max_alerts=2)
    for i in range(3):
        notifier.notify(INFO, f"alert {i}")
    assert [a.title for a in notifier.alerts] == ["alert 1", "alert 2"]


def test_fanout_isolates_failures(caplog):
    broken = MagicMock()
    broken.notify.side_effect = RuntimeError("telegram down")
    memory = MemoryNotifier()

    with caplog.at_level(logging.WARNING):
        FanoutNotifier(broken, memory).notify(CRITICAL, "Extreme stop", "3 stop losses")

    assert memory.alerts[0].title == "Extreme stop"
    assert "telegram down" in caplog.text


def test_dispatch_logs_without_notifier(caplog):
    with caplog.at_level(logging.INFO):
        dispatch_alerts(None, [Alert(severity=CRITICAL, title="Extreme stop", detail="halted")])
    assert "Extreme stop: halted" in caplog.text
    assert caplog.records[-1].levelno == logging.CRITICAL


def test_notifier_requires_notify():
    class Silent(Notifier):
        pass

    with pytest.raises(TypeError):
        Silent()
