"""Market data fetching.

Candles, tickers and server time come from the exchange client; this module
turns the raw OHLCV rows into pandas frames for the signal engine.
"""

import logging

import pandas as pd

from tradebot.services.exchange_client import ExchangeClient

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


class MarketData:
    """Read-only market view used by the signal generator and exit monitor."""

    def __init__(self, client: ExchangeClient):
        self.client = client

    async def get_candles(self, symbol: str, timeframe: str, limit: int = 100) -> pd.DataFrame:
        """Fetch OHLCV candles.

        Args:
            symbol: Exchange symbol (e.g. "BTCUSDT" or "BTC/USDT").
            timeframe: Candle interval (e.g. "15m", "1h").
            limit: Number of candles to fetch.

        Returns:
            DataFrame with open/high/low/close/volume columns and a UTC datetime
            index, oldest first. Empty when the exchange returned nothing.
        """
        rows = await self.client.get_candles(symbol, timeframe, limit)
        return parse_candles(rows)

    async def get_ticker(self, symbol: str) -> float | None:
        return await self.client.get_ticker(symbol)

    async def get_server_time(self) -> int:
        return await self.client.get_server_time()


def parse_candles(rows: list[list[float]]) -> pd.DataFrame:
    """Parse ccxt OHLCV rows into a DataFrame.

    Each row: [timestamp_ms, open, high, low, close, volume].
    """
    if not rows:
        return pd.DataFrame(columns=OHLCV_COLUMNS, dtype=float)

    df = pd.DataFrame(rows, columns=["t", *OHLCV_COLUMNS])
    df["t"] = pd.to_datetime(df["t"], unit="ms", utc=True)
    for col in OHLCV_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.set_index("t")
    df = df[~df.index.duplicated(keep="last")].sort_index()
    return df.dropna(subset=["close"])
