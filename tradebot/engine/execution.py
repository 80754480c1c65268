"""Order execution and exit monitoring.

``ExecutionEngine`` turns a signal into a sized market order and records the
resulting OPEN trade. ``ExitMonitor`` is the sweep that closes trades whose
stop or target was crossed, ratchets trailing stops and reports stop-loss
exits to the extreme-stop monitor.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from tradebot.config import Settings
from tradebot.errors import ExchangeError, ExecutionError, StrategyNotFoundError, TradeClosedError
from tradebot.schemas.strategy import StrategySettings
from tradebot.schemas.trade import CloseReason, Trade, TradeCreate, TradeSide
from tradebot.services.exchange_client import ExchangeClient
from tradebot.services.ledger import Ledger
from tradebot.services.market_data import MarketData
from tradebot.services.notifier import Alert, INFO, WARNING
from tradebot.services.risk_guard import ExtremeStopMonitor
from tradebot.services.signal_engine import Signal, price_levels
from tradebot.services.strategy_store import StrategyStore
from tradebot.utils.clock import now_ms

logger = logging.getLogger(__name__)

QUANTITY_DECIMALS = 6


@dataclass
class ExecutionResult:
    trade: Trade
    notional: float
    alert: Alert


def position_size(balance: float, risk_per_trade: float, price: float, min_amount: float, max_amount: float = 0.0) -> tuple[float, float]:
    """Size a position as a share of the free balance.

    Returns (notional, quantity). Raises ``ExecutionError`` when the size
    falls outside the allowed range. ``max_amount`` of 0 means uncapped.
    """
    if balance <= 0:
        raise ExecutionError(f"Insufficient balance: {balance}")
    if not 0 < risk_per_trade <= 100:
        raise ExecutionError(f"risk_per_trade must be in (0, 100], got {risk_per_trade}")
    if price <= 0:
        raise ExecutionError(f"Invalid price: {price}")

    notional = balance * risk_per_trade / 100
    if max_amount > 0 and notional > max_amount:
        notional = max_amount
    if notional < min_amount:
        raise ExecutionError(f"Trade amount {notional:.2f} is below the minimum {min_amount:.2f}")
    if notional > balance:
        raise ExecutionError(f"Trade amount {notional:.2f} exceeds the available balance {balance:.2f}")

    quantity = round(notional / price, QUANTITY_DECIMALS)
    if quantity <= 0:
        raise ExecutionError(f"Quantity rounds to zero for amount {notional:.2f} at {price}")
    return notional, quantity


class ExecutionEngine:
    def __init__(
        self,
        market_data: MarketData,
        exchange: ExchangeClient,
        ledger: Ledger,
        settings: Settings,
    ):
        self.market_data = market_data
        self.exchange = exchange
        self.ledger = ledger
        self.settings = settings

    async def execute(
        self,
        signal: Signal,
        strategy: StrategySettings,
        should_continue: Callable[[], bool] | None = None,
    ) -> ExecutionResult | None:
        """Size, submit and record one trade for ``signal``.

        Returns None when ``should_continue`` turns false before submission.
        Raises ``ExecutionError`` when the trade cannot be placed.
        """
        symbol = signal.symbol

        price = await self.market_data.get_ticker(symbol)
        if price is None or price <= 0:
            raise ExecutionError(f"[{symbol}] Invalid current price: {price}")

        account = await self.exchange.get_account_info()
        quote = self.settings.quote_asset
        balance = account.free_balance(quote)
        if balance is None:
            raise ExecutionError(f"[{symbol}] No {quote} balance found")

        notional, quantity = position_size(
            balance,
            strategy.risk_per_trade,
            price,
            self.settings.min_trade_amount,
            self.settings.max_trade_amount,
        )

        if should_continue is not None and not should_continue():
            logger.info(f"[{symbol}] Bot stopped before order submission, discarding signal")
            return None

        order_side = "BUY" if signal.side == TradeSide.LONG else "SELL"
        if self.settings.enable_real_trading:
            result = await self.exchange.place_order(symbol, order_side, "MARKET", quantity)
        else:
            result = await self.exchange.place_test_order(symbol, order_side, "MARKET", quantity)

        if not result.success:
            raise ExecutionError(f"[{symbol}] Order failed: {result.error}")

        stop_loss, take_profit = price_levels(price, signal.side, strategy)
        trade = self.ledger.add_trade(TradeCreate(
            symbol=symbol,
            strategy_id=strategy.id,
            side=signal.side,
            entry_price=price,
            entry_time=now_ms(),
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            notes=(
                f"Signal confidence: {signal.confidence}%, Timeframe: {signal.timeframe}, "
                f"Balance: {balance:.2f} {quote}"
            ),
            order_id=result.order_id,
        ))

        mode = "test" if result.test else "live"
        logger.info(
            f"[{symbol}] Opened {signal.side.value} {quantity} @ {price} "
            f"(amount={notional:.2f} {quote}, {mode})"
        )
        alert = Alert(
            severity=INFO,
            title=f"Trade opened: {signal.side.value} {symbol}",
            detail=f"{quantity} @ {price:.2f} ({notional:.2f} {quote}, {mode} order)",
        )
        return ExecutionResult(trade=trade, notional=notional, alert=alert)


# ---------------------------------------------------------------------------
# Exit monitoring
# ---------------------------------------------------------------------------

def exit_reason(trade: Trade, price: float) -> CloseReason | None:
    """Which exit, if any, ``price`` triggers for ``trade``. Stop loss wins ties."""
    if trade.side == TradeSide.LONG:
        if trade.stop_loss is not None and price <= trade.stop_loss:
            return CloseReason.STOP_LOSS
        if trade.take_profit is not None and price >= trade.take_profit:
            return CloseReason.TAKE_PROFIT
    else:
        if trade.stop_loss is not None and price >= trade.stop_loss:
            return CloseReason.STOP_LOSS
        if trade.take_profit is not None and price <= trade.take_profit:
            return CloseReason.TAKE_PROFIT
    return None


def trailed_stop(trade: Trade, price: float, distance_pct: float) -> float | None:
    """New stop for a trailing stop, or None when the stored stop is already tighter."""
    if trade.side == TradeSide.LONG:
        candidate = price * (1 - distance_pct / 100)
        if trade.stop_loss is None or candidate > trade.stop_loss:
            return candidate
    else:
        candidate = price * (1 + distance_pct / 100)
        if trade.stop_loss is None or candidate < trade.stop_loss:
            return candidate
    return None


class ExitMonitor:
    JOB_ID = "exit_monitor"

    def __init__(
        self,
        ledger: Ledger,
        market_data: MarketData,
        strategies: StrategyStore,
        extreme_stop: ExtremeStopMonitor | None = None,
    ):
        self.ledger = ledger
        self.market_data = market_data
        self.strategies = strategies
        self.extreme_stop = extreme_stop
        self.alerts: list[Alert] = []

    async def _prices(self, symbols: list[str]) -> dict[str, float]:
        prices = {}
        for symbol in dict.fromkeys(symbols):
            try:
                price = await self.market_data.get_ticker(symbol)
            except ExchangeError as e:
                logger.warning(f"[{symbol}] Could not fetch price for exit check: {e}")
                continue
            if price is not None and price > 0:
                prices[symbol] = price
        return prices

    def _strategy(self, strategy_id: str) -> StrategySettings | None:
        try:
            return self.strategies.get(strategy_id)
        except StrategyNotFoundError:
            return None

    async def sweep(self) -> list[Trade]:
        """Check every open trade once. Returns the trades closed by this sweep."""
        open_trades = self.ledger.get_open_trades()
        if not open_trades:
            return []

        prices = await self._prices([t.symbol for t in open_trades])
        closed = []
        for trade in open_trades:
            price = prices.get(trade.symbol)
            if price is None:
                continue

            reason = exit_reason(trade, price)
            if reason is not None:
                try:
                    closed_trade = self.ledger.close_trade(trade.id, price, reason)
                except TradeClosedError:
                    # closed elsewhere since the snapshot was read
                    continue
                closed.append(closed_trade)
                self._on_closed(closed_trade)
                continue

            strategy = self._strategy(trade.strategy_id)
            if strategy is not None and strategy.trailing_stop:
                new_stop = trailed_stop(trade, price, strategy.trailing_stop_distance)
                if new_stop is not None:
                    try:
                        self.ledger.update_trade(trade.id, {"stop_loss": new_stop})
                    except TradeClosedError:
                        continue
                    logger.debug(f"[{trade.symbol}] Trailing stop for {trade.id} moved to {new_stop:.4f}")

        return closed

    def _on_closed(self, trade: Trade):
        severity = WARNING if trade.close_reason == CloseReason.STOP_LOSS else INFO
        self.alerts.append(Alert(
            severity=severity,
            title=f"Trade closed ({trade.close_reason.value}): {trade.side.value} {trade.symbol}",
            detail=f"Exit @ {trade.exit_price:.2f}, PnL {trade.pnl:.2f} ({trade.pnl_percentage:.2f}%)",
        ))
        # a trailed stop closing in profit is not a losing stop-out
        losing_stop = trade.close_reason == CloseReason.STOP_LOSS and (trade.pnl or 0.0) < 0
        if losing_stop and self.extreme_stop is not None:
            self.extreme_stop.record_stop_loss(trade.symbol, trade.id)

    def drain_alerts(self) -> list[Alert]:
        alerts, self.alerts = self.alerts, []
        return alerts

    async def close_manually(self, trade_id: str, reason: CloseReason = CloseReason.MANUAL) -> Trade:
        """Close an open trade at the current ticker price."""
        trade = self.ledger.get_trade(trade_id)
        if not trade.is_open:
            raise TradeClosedError(trade_id)
        price = await self.market_data.get_ticker(trade.symbol)
        if price is None or price <= 0:
            raise ExecutionError(f"[{trade.symbol}] Invalid current price: {price}")
        closed = self.ledger.close_trade(trade_id, price, reason)
        self._on_closed(closed)
        return closed
