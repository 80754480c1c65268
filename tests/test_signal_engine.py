"""Tests for signal rules, confidence scoring and the generator."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pandas as pd
import pytest

from tradebot.schemas.trade import TradeSide
from tradebot.services.market_data import parse_candles
from tradebot.services.signal_engine import (
    IndicatorSnapshot,
    SignalGenerator,
    compute_confidence,
    evaluate_signal,
    is_long_signal,
    is_short_signal,
    min_candles_required,
    price_levels,
)

from tests.conftest import make_strategy


def _long_snapshot(**overrides) -> IndicatorSnapshot:
    data = dict(
        rsi_prev=24.0, rsi_last=28.0,
        ema_short_prev=99.0, ema_short_last=100.2,
        ema_long_prev=100.0, ema_long_last=100.0,
        close_last=101.0,
        volume_last=200.0, volume_avg=100.0,
    )
    data.update(overrides)
    return IndicatorSnapshot(**data)


def _short_snapshot(**overrides) -> IndicatorSnapshot:
    data = dict(
        rsi_prev=76.0, rsi_last=72.0,
        ema_short_prev=101.0, ema_short_last=99.8,
        ema_long_prev=100.0, ema_long_last=100.0,
        close_last=99.0,
        volume_last=200.0, volume_avg=100.0,
    )
    data.update(overrides)
    return IndicatorSnapshot(**data)


def _candles(n: int, close: float = 100.0) -> pd.DataFrame:
    start = 1_700_000_000_000
    rows = [[start + i * 60_000, close, close, close, close, 10.0] for i in range(n)]
    return parse_candles(rows)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class TestRules:
    def test_long_signal(self):
        strategy = make_strategy()
        assert is_long_signal(_long_snapshot(), strategy)
        assert not is_short_signal(_long_snapshot(), strategy)

    def test_short_signal(self):
        strategy = make_strategy()
        assert is_short_signal(_short_snapshot(), strategy)
        assert not is_long_signal(_short_snapshot(), strategy)

    def test_long_requires_rsi_turning_up(self):
        assert not is_long_signal(_long_snapshot(rsi_last=23.0), make_strategy())

    def test_long_requires_ema_cross(self):
        assert not is_long_signal(_long_snapshot(ema_short_prev=100.5), make_strategy())

    def test_long_requires_close_above_short_ema(self):
        assert not is_long_signal(_long_snapshot(close_last=100.0), make_strategy())

    def test_volume_filter(self):
        strategy = make_strategy()
        weak_volume = _long_snapshot(volume_last=140.0)
        assert not is_long_signal(weak_volume, strategy)

        no_filter = make_strategy(indicators={"use_volume": False})
        assert is_long_signal(weak_volume, no_filter)


# ---------------------------------------------------------------------------
# Confidence and levels
# ---------------------------------------------------------------------------

class TestConfidence:
    def test_long_confidence_components(self):
        # 50 + (30 - 24)/2 + (0.2/100)*1000 + min(15, (2 - 1)*10) = 50 + 3 + 2 + 10
        assert compute_confidence(_long_snapshot(), TradeSide.LONG, make_strategy()) == 65

    def test_volume_bonus_capped(self):
        snap = _long_snapshot(volume_last=1000.0)
        assert compute_confidence(snap, TradeSide.LONG, make_strategy()) == 70

    def test_confidence_clamped(self):
        snap = _long_snapshot(ema_short_last=110.0)
        assert compute_confidence(snap, TradeSide.LONG, make_strategy()) == 99

    def test_no_volume_bonus_when_filter_off(self):
        strategy = make_strategy(indicators={"use_volume": False})
        assert compute_confidence(_long_snapshot(), TradeSide.LONG, strategy) == 55

    def test_short_confidence(self):
        # 50 + (76 - 70)/2 + (0.2/100)*1000 + 10
        assert compute_confidence(_short_snapshot(), TradeSide.SHORT, make_strategy()) == 65

    def test_price_levels(self):
        strategy = make_strategy(stop_loss=2.0, take_profit=4.0)
        assert price_levels(100.0, TradeSide.LONG, strategy) == pytest.approx((98.0, 104.0))
        assert price_levels(100.0, TradeSide.SHORT, strategy) == pytest.approx((102.0, 96.0))


# ---------------------------------------------------------------------------
# evaluate_signal / SignalGenerator
# ---------------------------------------------------------------------------

class TestEvaluate:
    def test_insufficient_candles(self):
        strategy = make_strategy()
        candles = _candles(min_candles_required(strategy) - 1)
        assert evaluate_signal(candles, strategy, "BTCUSDT", "15m") is None

    def test_flat_market_has_no_signal(self):
        strategy = make_strategy()
        assert evaluate_signal(_candles(100), strategy, "BTCUSDT", "15m") is None

    def test_signal_built_from_snapshot(self):
        strategy = make_strategy(id="s1")
        with patch("tradebot.services.signal_engine.compute_snapshot", return_value=_long_snapshot()):
            signal = evaluate_signal(_candles(100), strategy, "BTCUSDT", "1h", timestamp=123)

        assert signal.side == TradeSide.LONG
        assert signal.entry_price == 101.0
        assert signal.stop_loss == pytest.approx(101.0 * 0.98)
        assert signal.take_profit == pytest.approx(101.0 * 1.04)
        assert signal.confidence == 65
        assert signal.strategy_id == "s1"
        assert signal.timeframe == "1h"
        assert signal.timestamp == 123
        assert signal.to_dict()["side"] == "LONG"


@pytest.mark.asyncio
async def test_generator_fetches_lookback(caplog):
    market_data = MagicMock()
    market_data.get_candles = AsyncMock(return_value=_candles(10))
    generator = SignalGenerator(market_data, lookback_periods=100)

    with caplog.at_level(logging.DEBUG):
        signal = await generator.generate("BTCUSDT", "15m", make_strategy())

    assert signal is None
    market_data.get_candles.assert_awaited_once_with("BTCUSDT", "15m", 100)
    assert "Not enough data" in caplog.text


def test_parse_candles_sorts_and_dedupes():
    rows = [
        [2000, 1, 2, 0.5, 1.5, 10],
        [1000, 1, 2, 0.5, 1.0, 10],
        [2000, 1, 2, 0.5, 1.7, 12],
    ]
    df = parse_candles(rows)
    assert list(df["close"]) == [1.0, 1.7]
    assert df.index.is_monotonic_increasing
