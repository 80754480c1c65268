"""Signal generation for the RSI + EMA cross strategy.

``evaluate_signal`` is pure computation over a candle frame: no I/O, no ledger
access, no orders. ``SignalGenerator`` adds the market data fetch around it.
"""

import logging
import math
from dataclasses import dataclass, asdict

import numpy as np
import pandas as pd

from tradebot.schemas.strategy import StrategySettings
from tradebot.schemas.trade import TradeSide
from tradebot.services import indicators
from tradebot.services.market_data import MarketData
from tradebot.utils.clock import now_ms

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 50.0
MAX_VOLUME_BONUS = 15.0
VOLUME_LOOKBACK = 5
EXTRA_CANDLES = 10  # required on top of the long EMA period


# ---------------------------------------------------------------------------
# Signal result types
# ---------------------------------------------------------------------------

@dataclass
class Signal:
    """A trade proposal that has not been executed yet."""
    symbol: str
    timeframe: str
    side: TradeSide
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: int  # 1-99
    strategy_id: str
    timestamp: int  # ms epoch

    def to_dict(self) -> dict:
        data = asdict(self)
        data["side"] = self.side.value
        return data


@dataclass
class IndicatorSnapshot:
    """Indicator values at the two most recent candles."""
    rsi_prev: float
    rsi_last: float
    ema_short_prev: float
    ema_short_last: float
    ema_long_prev: float
    ema_long_last: float
    close_last: float
    volume_last: float
    volume_avg: float


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------

def min_candles_required(strategy: StrategySettings) -> int:
    return strategy.indicators.ema_long_period + EXTRA_CANDLES


def compute_snapshot(closes: np.ndarray, volumes: np.ndarray, strategy: StrategySettings) -> IndicatorSnapshot:
    params = strategy.indicators
    rsi = indicators.rsi(closes, params.rsi_period)
    ema_short = indicators.ema(closes, params.ema_short_period)
    ema_long = indicators.ema(closes, params.ema_long_period)

    last = len(closes) - 1
    prev = last - 1
    return IndicatorSnapshot(
        rsi_prev=float(rsi[prev]),
        rsi_last=float(rsi[last]),
        ema_short_prev=float(ema_short[prev]),
        ema_short_last=float(ema_short[last]),
        ema_long_prev=float(ema_long[prev]),
        ema_long_last=float(ema_long[last]),
        close_last=float(closes[last]),
        volume_last=float(volumes[last]),
        volume_avg=indicators.average_volume(volumes, VOLUME_LOOKBACK),
    )


def _volume_ok(snap: IndicatorSnapshot, strategy: StrategySettings) -> bool:
    params = strategy.indicators
    if not params.use_volume:
        return True
    return snap.volume_last > snap.volume_avg * params.volume_threshold


def is_long_signal(snap: IndicatorSnapshot, strategy: StrategySettings) -> bool:
    params = strategy.indicators
    return (
        snap.rsi_prev < params.rsi_oversold and snap.rsi_last > snap.rsi_prev
        and snap.ema_short_prev < snap.ema_long_prev and snap.ema_short_last > snap.ema_long_last
        and snap.close_last > snap.ema_short_last
        and _volume_ok(snap, strategy)
    )


def is_short_signal(snap: IndicatorSnapshot, strategy: StrategySettings) -> bool:
    params = strategy.indicators
    return (
        snap.rsi_prev > params.rsi_overbought and snap.rsi_last < snap.rsi_prev
        and snap.ema_short_prev > snap.ema_long_prev and snap.ema_short_last < snap.ema_long_last
        and snap.close_last < snap.ema_short_last
        and _volume_ok(snap, strategy)
    )


def compute_confidence(snap: IndicatorSnapshot, side: TradeSide, strategy: StrategySettings) -> int:
    """Score 1-99: base 50, plus RSI extremity, EMA separation and volume surge."""
    params = strategy.indicators
    confidence = BASE_CONFIDENCE

    if side == TradeSide.LONG:
        confidence += (params.rsi_oversold - snap.rsi_prev) / 2
        confidence += (snap.ema_short_last - snap.ema_long_last) / snap.ema_long_last * 1000
    else:
        confidence += (snap.rsi_prev - params.rsi_overbought) / 2
        confidence += (snap.ema_long_last - snap.ema_short_last) / snap.ema_long_last * 1000

    if params.use_volume and snap.volume_avg > 0:
        volume_ratio = snap.volume_last / snap.volume_avg
        confidence += min(MAX_VOLUME_BONUS, (volume_ratio - 1) * 10)

    # round half up
    return int(min(99, max(1, math.floor(confidence + 0.5))))


def price_levels(entry_price: float, side: TradeSide, strategy: StrategySettings) -> tuple[float, float]:
    """(stop_loss, take_profit) prices for an entry."""
    sl = strategy.stop_loss / 100
    tp = strategy.take_profit / 100
    if side == TradeSide.LONG:
        return entry_price * (1 - sl), entry_price * (1 + tp)
    return entry_price * (1 + sl), entry_price * (1 - tp)


def evaluate_signal(
    candles: pd.DataFrame,
    strategy: StrategySettings,
    symbol: str,
    timeframe: str,
    timestamp: int | None = None,
) -> Signal | None:
    """Evaluate entry rules at the latest candle.

    Returns None when there is not enough history or no rule fires.
    """
    if candles is None or len(candles) < min_candles_required(strategy):
        return None

    closes = candles["close"].to_numpy(dtype=float)
    volumes = candles["volume"].to_numpy(dtype=float)
    snap = compute_snapshot(closes, volumes, strategy)

    if is_long_signal(snap, strategy):
        side = TradeSide.LONG
    elif is_short_signal(snap, strategy):
        side = TradeSide.SHORT
    else:
        return None

    stop_loss, take_profit = price_levels(snap.close_last, side, strategy)
    return Signal(
        symbol=symbol,
        timeframe=timeframe,
        side=side,
        entry_price=snap.close_last,
        stop_loss=stop_loss,
        take_profit=take_profit,
        confidence=compute_confidence(snap, side, strategy),
        strategy_id=strategy.id,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class SignalGenerator:
    def __init__(self, market_data: MarketData, lookback_periods: int = 100):
        self.market_data = market_data
        self.lookback_periods = lookback_periods

    async def generate(self, symbol: str, timeframe: str, strategy: StrategySettings) -> Signal | None:
        """Fetch candles for (symbol, timeframe) and evaluate the strategy on them."""
        limit = max(self.lookback_periods, min_candles_required(strategy))
        candles = await self.market_data.get_candles(symbol, timeframe, limit)

        if len(candles) < min_candles_required(strategy):
            logger.debug(
                f"[{symbol}] Not enough data on {timeframe}: "
                f"{len(candles)} < {min_candles_required(strategy)} candles"
            )
            return None

        signal = evaluate_signal(candles, strategy, symbol, timeframe)
        if signal is not None:
            logger.info(
                f"[{strategy.id}] Signal detected: {signal.side.value} {symbol} {timeframe} "
                f"confidence={signal.confidence}"
            )
        return signal
