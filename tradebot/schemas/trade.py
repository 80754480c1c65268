"""Pydantic schemas for trades, equity points and performance aggregates."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class TradeSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CANCELED = "CANCELED"


class CloseReason(str, Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    MANUAL = "MANUAL"
    SYSTEM = "SYSTEM"


class _TradeFields(BaseModel):
    symbol: str = Field(min_length=1)
    strategy_id: str = Field(min_length=1)
    side: TradeSide
    entry_price: float = Field(gt=0)
    entry_time: int  # ms epoch
    quantity: float = Field(gt=0)
    stop_loss: float | None = None
    take_profit: float | None = None
    status: TradeStatus = TradeStatus.OPEN
    notes: str | None = None
    order_id: str | None = None


class TradeCreate(_TradeFields):
    """New trade payload. Stop and target sit on the loss/profit side of entry."""

    @model_validator(mode="after")
    def _validate_levels(self):
        if self.side == TradeSide.LONG:
            if self.stop_loss is not None and self.stop_loss >= self.entry_price:
                raise ValueError("stop_loss must be below entry_price for LONG")
            if self.take_profit is not None and self.take_profit <= self.entry_price:
                raise ValueError("take_profit must be above entry_price for LONG")
        else:
            if self.stop_loss is not None and self.stop_loss <= self.entry_price:
                raise ValueError("stop_loss must be above entry_price for SHORT")
            if self.take_profit is not None and self.take_profit >= self.entry_price:
                raise ValueError("take_profit must be below entry_price for SHORT")
        return self


class Trade(_TradeFields):
    id: str
    exit_price: float | None = None
    exit_time: int | None = None
    pnl: float | None = None
    pnl_percentage: float | None = None
    close_reason: CloseReason | None = None

    @model_validator(mode="after")
    def _validate_closed_fields(self):
        closed = self.status == TradeStatus.CLOSED
        present = [self.exit_price is not None, self.exit_time is not None, self.pnl is not None]
        if closed and not all(present):
            raise ValueError("closed trade requires exit_price, exit_time and pnl")
        if not closed and any(present):
            raise ValueError("exit_price, exit_time and pnl are only set on closed trades")
        return self

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN


class EquityPoint(BaseModel):
    timestamp: int  # ms epoch
    value: float


class StrategyPerformance(BaseModel):
    strategy_id: str
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    break_even_trades: int = 0
    total_profit: float = 0.0
    average_profit_per_trade: float = 0.0
    win_rate: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    last_trade_result: str | None = None  # "WIN", "LOSS", "BREAK_EVEN"


class DailyPerformance(BaseModel):
    date: str  # YYYY-MM-DD (UTC)
    trades: int = 0
    profit: float = 0.0
    win_rate: float = 0.0
