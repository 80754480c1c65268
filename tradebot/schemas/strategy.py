"""Pydantic schemas for strategy settings."""

from pydantic import BaseModel, Field, field_validator, model_validator

from tradebot.utils.constants import VALID_INTERVALS


class IndicatorSettings(BaseModel):
    rsi_period: int = Field(default=14, ge=2)
    rsi_overbought: float = Field(default=70.0, ge=0, le=100)
    rsi_oversold: float = Field(default=30.0, ge=0, le=100)
    ema_short_period: int = Field(default=9, ge=1)
    ema_long_period: int = Field(default=21, ge=2)
    use_volume: bool = True
    volume_threshold: float = Field(default=1.5, gt=0)

    @model_validator(mode="after")
    def _validate_relationships(self):
        if self.rsi_oversold >= self.rsi_overbought:
            raise ValueError("rsi_oversold must be less than rsi_overbought")
        if self.ema_short_period >= self.ema_long_period:
            raise ValueError("ema_short_period must be less than ema_long_period")
        return self


class StrategySettings(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=120)
    description: str = ""
    is_active: bool = False
    symbols: list[str]
    timeframes: list[str]
    stop_loss: float = Field(gt=0, lt=100)  # % below/above entry
    take_profit: float = Field(gt=0)
    trailing_stop: bool = False
    trailing_take_profit: bool = False
    trailing_stop_distance: float = Field(default=1.0, gt=0, lt=100)
    risk_per_trade: float = Field(gt=0, le=100)  # % of available balance
    max_daily_loss: float = Field(default=5.0, gt=0, le=100)
    max_trades_per_day: int = Field(default=10, ge=1)
    indicators: IndicatorSettings = Field(default_factory=IndicatorSettings)

    # Performance summary, written back from the ledger
    total_trades: int = 0
    win_rate: float = 0.0
    total_profit: float = 0.0

    @field_validator("id", "name")
    @classmethod
    def _trim_required_text(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, value: list[str]) -> list[str]:
        symbols = []
        for symbol in value:
            text = symbol.strip().upper()
            if not text:
                raise ValueError("symbols must not contain empty entries")
            if text not in symbols:
                symbols.append(text)
        return symbols

    @field_validator("timeframes")
    @classmethod
    def _validate_timeframes(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one timeframe is required")
        for tf in value:
            if tf not in VALID_INTERVALS:
                allowed = ", ".join(VALID_INTERVALS)
                raise ValueError(f"timeframe {tf!r} must be one of: {allowed}")
        return value


class StrategyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = None
    is_active: bool | None = None
    symbols: list[str] | None = None
    timeframes: list[str] | None = None
    stop_loss: float | None = Field(default=None, gt=0, lt=100)
    take_profit: float | None = Field(default=None, gt=0)
    trailing_stop: bool | None = None
    trailing_take_profit: bool | None = None
    trailing_stop_distance: float | None = Field(default=None, gt=0, lt=100)
    risk_per_trade: float | None = Field(default=None, gt=0, le=100)
    max_daily_loss: float | None = Field(default=None, gt=0, le=100)
    max_trades_per_day: int | None = Field(default=None, ge=1)
    indicators: IndicatorSettings | None = None
