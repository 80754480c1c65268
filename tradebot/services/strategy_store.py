"""Strategy settings CRUD over the key-value store.

All strategies live under one storage key as a list of JSON documents. Every
write validates the full ``StrategySettings`` so partial updates cannot bypass
cross-field rules.
"""

import json
import logging
import threading
from typing import Any

from pydantic import ValidationError

from tradebot.errors import (
    InvalidStrategyError,
    StrategyExistsError,
    StrategyNotFoundError,
)
from tradebot.schemas.strategy import IndicatorSettings, StrategySettings, StrategyUpdate
from tradebot.schemas.trade import StrategyPerformance
from tradebot.services.storage import Storage
from tradebot.utils.constants import STRATEGIES_KEY

logger = logging.getLogger(__name__)


def default_strategy() -> StrategySettings:
    return StrategySettings(
        id="rsi-ema-cross",
        name="RSI + EMA Cross",
        description="RSI reversal out of oversold/overbought confirmed by a short/long EMA cross",
        is_active=True,
        symbols=["BTCUSDT", "ETHUSDT", "BNBUSDT"],
        timeframes=["15m", "1h"],
        stop_loss=2.0,
        take_profit=4.0,
        trailing_stop=True,
        trailing_take_profit=False,
        trailing_stop_distance=1.0,
        risk_per_trade=1.0,
        max_daily_loss=5.0,
        max_trades_per_day=10,
        indicators=IndicatorSettings(),
    )


def _validation_message(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'strategy'}: {err['msg']}" for err in e.errors()
    )


class StrategyStore:
    def __init__(self, storage: Storage):
        self.storage = storage
        self._lock = threading.RLock()
        self._strategies: list[StrategySettings] = self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> list[StrategySettings]:
        raw = self.storage.load(STRATEGIES_KEY)
        if not raw:
            strategies = [default_strategy()]
            self._save(strategies)
            logger.info("No strategies stored, seeded the default strategy")
            return strategies

        strategies = []
        for item in raw:
            try:
                strategies.append(StrategySettings.model_validate(item))
            except ValidationError as e:
                item_id = item.get("id") if isinstance(item, dict) else None
                logger.warning(f"Skipping invalid strategy {item_id}: {_validation_message(e)}")
        logger.info(f"Loaded {len(strategies)} strategies")
        return strategies

    def _save(self, strategies: list[StrategySettings]):
        self.storage.save(STRATEGIES_KEY, [s.model_dump(mode="json") for s in strategies])

    def _index(self, strategy_id: str) -> int:
        for i, strategy in enumerate(self._strategies):
            if strategy.id == strategy_id:
                return i
        raise StrategyNotFoundError(strategy_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all(self) -> list[StrategySettings]:
        with self._lock:
            return list(self._strategies)

    def get(self, strategy_id: str) -> StrategySettings:
        with self._lock:
            return self._strategies[self._index(strategy_id)]

    def get_active(self) -> list[StrategySettings]:
        with self._lock:
            return [s for s in self._strategies if s.is_active]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, data: StrategySettings | dict[str, Any]) -> StrategySettings:
        strategy = self._validate(data)
        with self._lock:
            if any(s.id == strategy.id for s in self._strategies):
                raise StrategyExistsError(strategy.id)
            self._strategies.append(strategy)
            self._save(self._strategies)
        logger.info(f"[{strategy.id}] Strategy added")
        return strategy

    def update(self, strategy_id: str, updates: StrategyUpdate | dict[str, Any]) -> StrategySettings:
        """Apply a partial update and validate the merged strategy."""
        if isinstance(updates, StrategyUpdate):
            changes = updates.model_dump(exclude_unset=True)
        else:
            changes = {k: v for k, v in updates.items() if k != "id"}

        with self._lock:
            index = self._index(strategy_id)
            merged = {**self._strategies[index].model_dump(), **changes}
            strategy = self._validate(merged)
            self._strategies[index] = strategy
            self._save(self._strategies)
        logger.info(f"[{strategy_id}] Strategy updated: {', '.join(changes) or 'no changes'}")
        return strategy

    def delete(self, strategy_id: str):
        with self._lock:
            index = self._index(strategy_id)
            del self._strategies[index]
            self._save(self._strategies)
        logger.info(f"[{strategy_id}] Strategy deleted")

    def set_active(self, strategy_id: str, is_active: bool) -> StrategySettings:
        return self.update(strategy_id, {"is_active": is_active})

    def record_performance(self, performance: list[StrategyPerformance]):
        """Write the ledger's per-strategy totals back onto the stored strategies."""
        by_id = {p.strategy_id: p for p in performance}
        with self._lock:
            changed = False
            for i, strategy in enumerate(self._strategies):
                perf = by_id.get(strategy.id)
                if perf is None:
                    continue
                self._strategies[i] = strategy.model_copy(update={
                    "total_trades": perf.total_trades,
                    "win_rate": perf.win_rate,
                    "total_profit": perf.total_profit,
                })
                changed = True
            if changed:
                self._save(self._strategies)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_json(self, strategy_id: str | None = None) -> str:
        if strategy_id:
            return self.get(strategy_id).model_dump_json(indent=2)
        return json.dumps([s.model_dump(mode="json") for s in self.get_all()], indent=2)

    def import_json(self, payload: str, overwrite: bool = False) -> list[StrategySettings]:
        """Import one strategy object or a list of them.

        Existing ids raise ``StrategyExistsError`` unless ``overwrite`` is set.
        Nothing is written when any entry is invalid.
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidStrategyError(f"Invalid JSON: {e}") from e

        items = data if isinstance(data, list) else [data]
        strategies = [self._validate(item) for item in items]

        with self._lock:
            existing = {s.id: i for i, s in enumerate(self._strategies)}
            for strategy in strategies:
                if strategy.id in existing and not overwrite:
                    raise StrategyExistsError(strategy.id)
            for strategy in strategies:
                if strategy.id in existing:
                    self._strategies[existing[strategy.id]] = strategy
                else:
                    existing[strategy.id] = len(self._strategies)
                    self._strategies.append(strategy)
            self._save(self._strategies)

        logger.info(f"Imported {len(strategies)} strategies")
        return strategies

    @staticmethod
    def _validate(data: StrategySettings | dict[str, Any]) -> StrategySettings:
        if isinstance(data, StrategySettings):
            data = data.model_dump()
        if not isinstance(data, dict):
            raise InvalidStrategyError("Strategy must be a JSON object")
        try:
            return StrategySettings.model_validate(data)
        except ValidationError as e:
            raise InvalidStrategyError(f"Invalid strategy: {_validation_message(e)}") from e
