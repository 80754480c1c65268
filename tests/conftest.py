"""Shared fixtures: a controllable clock, in-memory storage and settings."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradebot.config import Settings
from tradebot.schemas.strategy import StrategySettings
from tradebot.services.exchange_client import AccountInfo, Balance, OrderResult
from tradebot.services.ledger import Ledger
from tradebot.services.storage import MemoryStorage

# 2024-03-15 12:00:00 UTC
NOON_MS = int(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = NOON_MS):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0, hours: float = 0):
        self.now += int((seconds + minutes * 60 + hours * 3600) * 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def ledger(storage, clock) -> Ledger:
    return Ledger(storage, initial_balance=100.0, clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        api_key="key",
        api_secret="secret",
        testnet=True,
        enable_real_trading=False,
        min_trade_amount=10.0,
        max_trade_amount=0.0,
        min_api_call_interval_ms=0,
        telegram_bot_token="",
    )


def make_strategy(**overrides) -> StrategySettings:
    data = {
        "id": "rsi-ema-cross",
        "name": "RSI + EMA Cross",
        "is_active": True,
        "symbols": ["BTCUSDT"],
        "timeframes": ["15m"],
        "stop_loss": 2.0,
        "take_profit": 4.0,
        "risk_per_trade": 1.0,
        "max_daily_loss": 5.0,
        "max_trades_per_day": 10,
    }
    data.update(overrides)
    return StrategySettings.model_validate(data)


def make_exchange(balance: float = 1000.0, order_ok: bool = True) -> MagicMock:
    """Exchange client stand-in with async methods mocked."""
    exchange = MagicMock()
    exchange.is_configured.return_value = True
    exchange.is_streaming = False
    exchange.test_connection = AsyncMock(return_value=True)
    exchange.get_server_time = AsyncMock(return_value=NOON_MS)
    exchange.get_account_info = AsyncMock(
        return_value=AccountInfo(balances=[Balance(asset="USDT", free=balance)], can_trade=True)
    )
    order = OrderResult(success=order_ok, order_id="order-1" if order_ok else None,
                        error=None if order_ok else "rejected", test=True)
    exchange.place_test_order = AsyncMock(return_value=order)
    exchange.place_order = AsyncMock(return_value=OrderResult(success=True, order_id="live-1"))
    exchange.close = AsyncMock()
    return exchange
