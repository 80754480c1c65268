"""Trade and equity ledger.

Single source of truth for trades and the equity curve. Every read and write
goes through a ``Ledger`` instance; the backing store is the injected
``Storage``. Writes are read-modify-write on one trade record at a time and are
serialized by a re-entrant lock, so an exit sweep can run interleaved with new
trade creation without losing updates.
"""

import logging
import secrets
import string
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError

from tradebot.errors import LedgerError, TradeClosedError, TradeNotFoundError
from tradebot.schemas.trade import (
    CloseReason,
    DailyPerformance,
    EquityPoint,
    StrategyPerformance,
    Trade,
    TradeCreate,
    TradeSide,
    TradeStatus,
)
from tradebot.services.storage import Storage
from tradebot.utils.clock import ms_to_date, now_ms
from tradebot.utils.constants import EQUITY_KEY, EQUITY_WINDOWS_SECONDS, TRADES_KEY

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def compute_pnl(side: TradeSide, entry_price: float, exit_price: float, quantity: float) -> tuple[float, float]:
    """Realized PnL in quote currency and as a percentage of the entry notional."""
    direction = 1 if side == TradeSide.LONG else -1
    pnl = direction * (exit_price - entry_price) * quantity
    notional = entry_price * quantity
    pnl_pct = pnl / notional * 100 if notional > 0 else 0.0
    return pnl, pnl_pct


class Ledger:
    def __init__(
        self,
        storage: Storage,
        initial_balance: float = 100.0,
        clock: Callable[[], int] = now_ms,
    ):
        self.storage = storage
        self.initial_balance = initial_balance
        self.clock = clock
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_trades(self) -> list[Trade]:
        history = self.storage.load(TRADES_KEY) or {}
        trades = []
        for raw in history.get("trades", []):
            try:
                trades.append(Trade.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed trade record {raw.get('id')}: {e}")
        return trades

    def _save_trades(self, trades: list[Trade]):
        self.storage.save(
            TRADES_KEY,
            {"trades": [t.model_dump(mode="json") for t in trades], "last_updated": self.clock()},
        )

    def _load_equity(self) -> list[EquityPoint]:
        history = self.storage.load(EQUITY_KEY)
        if history and history.get("data"):
            return [EquityPoint.model_validate(p) for p in history["data"]]

        points = [EquityPoint(timestamp=self.clock(), value=self.initial_balance)]
        self._save_equity(points)
        return points

    def _save_equity(self, points: list[EquityPoint]):
        self.storage.save(
            EQUITY_KEY,
            {"data": [p.model_dump() for p in points], "last_updated": self.clock()},
        )

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def _new_trade_id(self) -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
        return f"trade_{self.clock()}_{suffix}"

    def add_trade(self, data: TradeCreate | dict[str, Any]) -> Trade:
        """Append a new trade, persist it and refresh the equity curve."""
        if isinstance(data, dict):
            data = TradeCreate.model_validate(data)

        with self._lock:
            trades = self._load_trades()
            trade = Trade(id=self._new_trade_id(), **data.model_dump())
            trades.append(trade)
            self._save_trades(trades)
            self.update_equity(trades)

        logger.info(
            f"[{trade.symbol}] Trade {trade.id} recorded: {trade.side.value} "
            f"{trade.quantity} @ {trade.entry_price} ({trade.status.value})"
        )
        return trade

    def update_trade(self, trade_id: str, updates: dict[str, Any]) -> Trade:
        """Merge ``updates`` into one trade.

        A CLOSED trade is immutable: updating it raises ``TradeClosedError``.
        """
        updates = {k: v for k, v in updates.items() if k != "id"}

        with self._lock:
            trades = self._load_trades()
            index = next((i for i, t in enumerate(trades) if t.id == trade_id), None)
            if index is None:
                raise TradeNotFoundError(trade_id)

            current = trades[index]
            if current.status == TradeStatus.CLOSED:
                raise TradeClosedError(trade_id)

            merged = {**current.model_dump(), **updates}
            try:
                updated = Trade.model_validate(merged)
            except ValidationError as e:
                raise LedgerError(f"Invalid update for trade {trade_id}: {e}") from e

            trades[index] = updated
            self._save_trades(trades)
            self.update_equity(trades)

        return updated

    def close_trade(
        self,
        trade_id: str,
        exit_price: float,
        reason: CloseReason,
        exit_time: int | None = None,
    ) -> Trade:
        """Transition an OPEN trade to CLOSED at ``exit_price``."""
        with self._lock:
            trade = self.get_trade(trade_id)
            if trade.status == TradeStatus.CLOSED:
                raise TradeClosedError(trade_id)

            pnl, pnl_pct = compute_pnl(trade.side, trade.entry_price, exit_price, trade.quantity)
            closed = self.update_trade(
                trade_id,
                {
                    "status": TradeStatus.CLOSED,
                    "exit_price": exit_price,
                    "exit_time": exit_time if exit_time is not None else self.clock(),
                    "pnl": pnl,
                    "pnl_percentage": pnl_pct,
                    "close_reason": reason,
                },
            )

        logger.info(
            f"[{closed.symbol}] Trade {trade_id} closed ({reason.value}): "
            f"PnL={pnl:.2f} ({pnl_pct:.2f}%)"
        )
        return closed

    def get_trade(self, trade_id: str) -> Trade:
        for trade in self._load_trades():
            if trade.id == trade_id:
                return trade
        raise TradeNotFoundError(trade_id)

    def get_all_trades(self) -> list[Trade]:
        return self._load_trades()

    def get_open_trades(self) -> list[Trade]:
        return [t for t in self._load_trades() if t.status == TradeStatus.OPEN]

    def get_recent_trades(
        self,
        limit: int = 20,
        symbol: str | None = None,
        strategy_id: str | None = None,
    ) -> list[Trade]:
        trades = [
            t for t in self._load_trades()
            if (not symbol or t.symbol == symbol) and (not strategy_id or t.strategy_id == strategy_id)
        ]
        trades.sort(key=lambda t: t.entry_time, reverse=True)
        return trades[:limit]

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    def calculate_performance(self, strategy_id: str | None = None) -> list[StrategyPerformance]:
        """Per-strategy aggregates.

        ``total_trades`` counts every trade of the strategy; the win/loss tallies,
        profit, win rate and streaks only look at CLOSED trades, scanned in
        chronological order of exit.
        """
        trades = self._load_trades()
        if strategy_id:
            trades = [t for t in trades if t.strategy_id == strategy_id]

        stats: dict[str, StrategyPerformance] = {}
        for trade in trades:
            perf = stats.setdefault(trade.strategy_id, StrategyPerformance(strategy_id=trade.strategy_id))
            perf.total_trades += 1

        completed = [t for t in trades if t.status == TradeStatus.CLOSED and t.pnl is not None]
        completed.sort(key=lambda t: t.exit_time or t.entry_time)

        for trade in completed:
            perf = stats[trade.strategy_id]
            if trade.pnl > 0:
                perf.winning_trades += 1
                perf.consecutive_wins = perf.consecutive_wins + 1 if perf.last_trade_result == "WIN" else 1
                perf.consecutive_losses = 0
                perf.last_trade_result = "WIN"
            elif trade.pnl < 0:
                perf.losing_trades += 1
                perf.consecutive_losses = perf.consecutive_losses + 1 if perf.last_trade_result == "LOSS" else 1
                perf.consecutive_wins = 0
                perf.last_trade_result = "LOSS"
            else:
                perf.break_even_trades += 1
                perf.consecutive_wins = 0
                perf.consecutive_losses = 0
                perf.last_trade_result = "BREAK_EVEN"
            perf.total_profit += trade.pnl

        for perf in stats.values():
            done = perf.winning_trades + perf.losing_trades + perf.break_even_trades
            perf.win_rate = perf.winning_trades / done if done else 0.0
            perf.average_profit_per_trade = perf.total_profit / done if done else 0.0

        return list(stats.values())

    def get_daily_performance(self, days: int = 7) -> list[DailyPerformance]:
        """One bucket per UTC day for the trailing ``days`` days, oldest first.

        The win rate is a running average updated per trade: a win moves it to
        ``(rate * (n - 1) + 1) / n``, a loss to ``rate * (n - 1) / n`` and a
        break-even trade leaves it untouched.
        """
        today = datetime.fromtimestamp(self.clock() / 1000, tz=timezone.utc).date()
        buckets: dict[str, DailyPerformance] = {}
        for i in range(days):
            date_str = (today - timedelta(days=i)).isoformat()
            buckets[date_str] = DailyPerformance(date=date_str)

        for trade in self._load_trades():
            if trade.status != TradeStatus.CLOSED or trade.pnl is None:
                continue
            bucket = buckets.get(ms_to_date(trade.exit_time or trade.entry_time))
            if bucket is None:
                continue

            bucket.trades += 1
            bucket.profit += trade.pnl
            n = bucket.trades
            if trade.pnl > 0:
                bucket.win_rate = (bucket.win_rate * (n - 1) + 1) / n
            elif trade.pnl < 0:
                bucket.win_rate = bucket.win_rate * (n - 1) / n

        return sorted(buckets.values(), key=lambda b: b.date)

    def get_today_performance(self) -> DailyPerformance:
        return self.get_daily_performance(1)[0]

    # ------------------------------------------------------------------
    # Equity
    # ------------------------------------------------------------------

    def realized_pnl(self, trades: list[Trade] | None = None) -> float:
        trades = trades if trades is not None else self._load_trades()
        return sum(t.pnl for t in trades if t.status == TradeStatus.CLOSED and t.pnl is not None)

    def current_equity(self) -> float:
        return self.initial_balance + self.realized_pnl()

    def update_equity(self, trades: list[Trade] | None = None) -> EquityPoint | None:
        """Append an equity point when the realized equity changed. Returns the new point."""
        with self._lock:
            value = self.initial_balance + self.realized_pnl(trades)
            points = self._load_equity()
            if points and points[-1].value == value:
                return None
            point = EquityPoint(timestamp=self.clock(), value=value)
            points.append(point)
            self._save_equity(points)
        logger.debug(f"Equity updated: {value:.2f}")
        return point

    def get_equity_history(self) -> list[EquityPoint]:
        return self._load_equity()

    def get_equity_data(self, timeframe: str = "daily") -> list[EquityPoint]:
        points = self._load_equity()
        if len(points) <= 2:
            return points

        window = EQUITY_WINDOWS_SECONDS.get(timeframe, EQUITY_WINDOWS_SECONDS["daily"])
        start = self.clock() - window * 1000
        filtered = [p for p in points if p.timestamp >= start]
        if not filtered:
            return [points[-1]]
        return filtered

    def clear_all_data(self):
        """Drop every trade and reset equity to the initial balance. Irreversible."""
        with self._lock:
            self._save_trades([])
            self._save_equity([EquityPoint(timestamp=self.clock(), value=self.initial_balance)])
        logger.warning("All trade and equity data cleared")
