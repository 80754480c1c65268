"""Exchange client wrapper for market data, account info and order placement.

Wraps the ccxt async API. Every request goes through ``retry_async`` so network
hiccups are retried with backoff, while authentication failures surface at once
as ``ExchangeAuthError``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import ccxt.async_support as ccxt

from tradebot.errors import ConfigurationError, ExchangeAuthError, ExchangeError
from tradebot.services.retry import retry_async

logger = logging.getLogger(__name__)

KNOWN_QUOTES = ("USDT", "USDC", "FDUSD", "BUSD", "BTC", "ETH", "BNB", "EUR")
STREAM_PRICE_MAX_AGE_SECONDS = 5.0


def to_ccxt_symbol(symbol: str) -> str:
    """Convert ``BTCUSDT`` to ccxt's unified ``BTC/USDT``. Unified symbols pass through."""
    symbol = symbol.strip().upper()
    if "/" in symbol:
        return symbol
    for quote in KNOWN_QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return f"{symbol[:-len(quote)]}/{quote}"
    return symbol


@dataclass
class OrderResult:
    success: bool
    order_id: str | None = None
    error: str | None = None
    filled_price: float | None = None
    filled_amount: float | None = None
    order_status: str | None = None
    raw_response: str | None = None
    test: bool = False


@dataclass
class Balance:
    asset: str
    free: float
    locked: float = 0.0


@dataclass
class AccountInfo:
    balances: list[Balance] = field(default_factory=list)
    can_trade: bool = True

    def free_balance(self, asset: str) -> float | None:
        for balance in self.balances:
            if balance.asset == asset:
                return balance.free
        return None


class ExchangeClient:
    """Wrapper around a ccxt exchange for trading operations."""

    def __init__(
        self,
        exchange_id: str = "binance",
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = True,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ):
        self.exchange_id = exchange_id
        self.api_key = api_key
        self.api_secret = api_secret
        self.testnet = testnet
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._client = None
        self._price_cache: dict[str, tuple[float, float]] = {}  # symbol -> (price, monotonic ts)
        self._stream_task: asyncio.Task | None = None

    def _exchange_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "enableRateLimit": True,
            "timeout": int(self.timeout * 1000),
            "options": {"defaultType": "spot"},
        }
        if self.is_configured():
            config["apiKey"] = self.api_key
            config["secret"] = self.api_secret
        return config

    def _ensure_client(self):
        """Lazily create the ccxt client."""
        if self._client is not None:
            return self._client

        exchange_cls = getattr(ccxt, self.exchange_id, None)
        if exchange_cls is None:
            raise ConfigurationError(f"Unknown exchange id: {self.exchange_id}")

        self._client = exchange_cls(self._exchange_config())
        if self.testnet:
            self._client.set_sandbox_mode(True)
        logger.info(f"{self.exchange_id} client initialized (testnet={self.testnet})")
        return self._client

    async def _call(self, description: str, method: str, *args, **kwargs):
        client = self._ensure_client()
        try:
            return await retry_async(
                getattr(client, method),
                *args,
                attempts=self.max_retries,
                delay=self.retry_delay,
                timeout=self.timeout,
                retry_on=(ccxt.NetworkError,),
                description=description,
                **kwargs,
            )
        except ccxt.AuthenticationError as e:
            logger.error(f"{description}: authentication rejected: {e}")
            raise ExchangeAuthError(f"{description}: authentication rejected") from e
        except ccxt.ExchangeError as e:
            raise ExchangeError(f"{description}: {e}") from e

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def test_connection(self) -> bool:
        """Probe connectivity (and credentials, when configured)."""
        try:
            await self.get_server_time()
            if self.is_configured():
                await self.get_account_info()
            return True
        except ExchangeError as e:
            logger.error(f"Connection test failed: {e}")
            return False

    async def get_server_time(self) -> int:
        return int(await self._call("fetch_time", "fetch_time"))

    async def get_candles(self, symbol: str, timeframe: str, limit: int = 100) -> list[list[float]]:
        """Raw OHLCV rows: [timestamp_ms, open, high, low, close, volume]."""
        return await self._call(
            f"fetch_ohlcv {symbol} {timeframe}",
            "fetch_ohlcv",
            to_ccxt_symbol(symbol),
            timeframe,
            limit=limit,
        )

    async def get_ticker(self, symbol: str) -> float | None:
        """Last traded price, from the live stream when it is fresh."""
        unified = to_ccxt_symbol(symbol)
        cached = self._price_cache.get(unified)
        if cached and time.monotonic() - cached[1] <= STREAM_PRICE_MAX_AGE_SECONDS:
            return cached[0]

        ticker = await self._call(f"fetch_ticker {symbol}", "fetch_ticker", unified)
        price = ticker.get("last") or ticker.get("close")
        return float(price) if price is not None else None

    async def get_account_info(self) -> AccountInfo:
        if not self.is_configured():
            raise ConfigurationError("API keys are not configured")

        raw = await self._call("fetch_balance", "fetch_balance")
        free = raw.get("free", {}) or {}
        used = raw.get("used", {}) or {}
        balances = [
            Balance(asset=asset, free=float(amount or 0), locked=float(used.get(asset) or 0))
            for asset, amount in free.items()
        ]
        info = raw.get("info", {}) or {}
        can_trade = bool(info.get("canTrade", True)) if isinstance(info, dict) else True
        return AccountInfo(balances=balances, can_trade=can_trade)

    async def place_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        quantity: float,
        price: float | None = None,
    ) -> OrderResult:
        """Place a real order. Returns a failed OrderResult when the exchange rejects it."""
        return await self._submit(symbol, side, order_type, quantity, price, test=False)

    async def place_test_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        quantity: float,
        price: float | None = None,
    ) -> OrderResult:
        """Validate an order against the exchange without risking funds."""
        return await self._submit(symbol, side, order_type, quantity, price, test=True)

    async def _submit(
        self,
        symbol: str,
        side: str,
        order_type: str,
        quantity: float,
        price: float | None,
        test: bool,
    ) -> OrderResult:
        if not self.is_configured():
            raise ConfigurationError("API keys are not configured")

        unified = to_ccxt_symbol(symbol)
        mode = "TEST" if test else "LIVE"
        logger.info(
            f"{mode} {order_type.upper()} order: {side.upper()} {quantity} {unified}"
            + (f" @ {price}" if price is not None else "")
        )

        params = {"test": True} if test else {}
        try:
            order = await self._call(
                f"create_order {unified}",
                "create_order",
                unified,
                order_type.lower(),
                side.lower(),
                quantity,
                price,
                params,
            )
        except ExchangeAuthError:
            raise
        except ExchangeError as e:
            logger.error(f"Order rejected: {e}")
            return OrderResult(success=False, error=str(e), test=test)

        order = order or {}
        order_id = order.get("id") or f"test-{int(time.time() * 1000)}"
        filled_price = order.get("average") or order.get("price")
        filled_amount = order.get("filled")
        logger.info(f"Order placed: {order_id} ({mode.lower()})")
        return OrderResult(
            success=True,
            order_id=str(order_id),
            filled_price=float(filled_price) if filled_price is not None else None,
            filled_amount=float(filled_amount) if filled_amount is not None else None,
            order_status=str(order.get("status") or ("TEST" if test else "")),
            raw_response=str(order.get("info")) if order.get("info") else None,
            test=test,
        )

    # ------------------------------------------------------------------
    # Live price stream
    # ------------------------------------------------------------------

    def start_price_stream(self, symbols: list[str]):
        """Keep a price cache warm from the exchange's websocket ticker feed."""
        if self._stream_task is not None and not self._stream_task.done():
            return
        unified = sorted({to_ccxt_symbol(s) for s in symbols})
        if not unified:
            return
        self._stream_task = asyncio.get_running_loop().create_task(self._stream_loop(unified))
        logger.info(f"Price stream started for {len(unified)} symbols")

    def stop_price_stream(self):
        """Cancel the stream task. Safe to call when no stream is running."""
        if self._stream_task is not None:
            self._stream_task.cancel()
            self._stream_task = None
            self._price_cache.clear()
            logger.info("Price stream stopped")

    @property
    def is_streaming(self) -> bool:
        return self._stream_task is not None and not self._stream_task.done()

    async def _stream_loop(self, symbols: list[str]):
        import ccxt.pro as ccxtpro

        stream_client = getattr(ccxtpro, self.exchange_id)(self._exchange_config())
        if self.testnet:
            stream_client.set_sandbox_mode(True)

        retry_delay = 1
        try:
            while True:
                try:
                    tickers = await stream_client.watch_tickers(symbols)
                    retry_delay = 1
                    now = time.monotonic()
                    for sym, ticker in tickers.items():
                        price = ticker.get("last")
                        if price is not None:
                            self._price_cache[sym] = (float(price), now)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Price stream error: {e}; reconnecting in {retry_delay}s")
                    await asyncio.sleep(retry_delay)
                    retry_delay = min(retry_delay * 2, 30)
        finally:
            await stream_client.close()

    async def close(self):
        """Stop the stream and close the ccxt client."""
        self.stop_price_stream()
        if self._client is not None:
            try:
                await self._client.close()
            except Exception as e:
                logger.warning(f"Error closing exchange client: {e}")
        self._client = None
