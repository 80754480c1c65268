"""Technical indicators over closing-price series.

All functions are pure computation: they take a sequence, return a new numpy
array of the same length, and keep no state between calls.
"""

from typing import Sequence

import numpy as np

NEUTRAL_RSI = 50.0
RSI_EPSILON = 0.001  # substituted for a zero average loss


def _as_array(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    rs = avg_gain / (avg_loss if avg_loss != 0 else RSI_EPSILON)
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(closes: Sequence[float] | np.ndarray, period: int = 14) -> np.ndarray:
    """Wilder-smoothed RSI.

    Indices before ``period`` (or every index, when the series is no longer than
    ``period``) hold the neutral value 50. Index ``period`` is seeded from the
    simple averages of the first ``period`` deltas; later values use Wilder's
    smoothing ``avg = (avg * (period - 1) + x) / period``.
    """
    if period < 1:
        raise ValueError("period must be >= 1")

    values = _as_array(closes)
    n = len(values)
    out = np.full(n, NEUTRAL_RSI)
    if n <= period:
        return out

    deltas = np.diff(values)
    gains = np.maximum(deltas, 0.0)
    losses = np.maximum(-deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    out[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, n):
        # deltas[i - 1] is the change from close[i - 1] to close[i]
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        out[i] = _rsi_value(avg_gain, avg_loss)

    return out


def ema(closes: Sequence[float] | np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with an SMA.

    Index ``period - 1`` holds the simple average of the first ``period`` values.
    Earlier indices are NaN and must not be read.
    """
    if period < 1:
        raise ValueError("period must be >= 1")

    values = _as_array(closes)
    n = len(values)
    out = np.full(n, np.nan)
    if n < period:
        return out

    multiplier = 2.0 / (period + 1)
    out[period - 1] = float(np.mean(values[:period]))
    for i in range(period, n):
        out[i] = (values[i] - out[i - 1]) * multiplier + out[i - 1]
    return out


def average_volume(volumes: Sequence[float] | np.ndarray, lookback: int = 5) -> float:
    """Mean of the ``lookback`` volumes preceding the last one."""
    values = _as_array(volumes)
    window = values[-(lookback + 1):-1]
    if len(window) == 0:
        return 0.0
    return float(np.mean(window))
