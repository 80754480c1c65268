"""Risk limits: daily caps and the extreme-stop circuit breaker.

``RiskGuard`` decides whether an analysis cycle may trade today.
``ExtremeStopMonitor`` watches stop-loss clustering and portfolio drawdown on
its own timer and halts the bot when either threshold is crossed. Once tripped
it stays tripped until a human calls ``reset()`` and restarts the bot.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from tradebot.schemas.strategy import StrategySettings
from tradebot.services.ledger import Ledger
from tradebot.services.notifier import Alert, CRITICAL
from tradebot.utils.clock import now_ms
from tradebot.utils.constants import PORTFOLIO_WINDOW_SECONDS, STOP_LOSS_WINDOW_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class RiskDecision:
    stop: bool
    reason: str | None = None  # "daily_loss", "max_trades"
    detail: str = ""

    def __bool__(self) -> bool:
        return self.stop


class RiskGuard:
    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def should_stop_trading(self, strategies: list[StrategySettings]) -> RiskDecision:
        """Check today's results against the most restrictive limits.

        Limits are taken across all loaded strategies, active or not.
        """
        if not strategies:
            return RiskDecision(stop=False)

        max_daily_loss = min(s.max_daily_loss for s in strategies)
        max_trades = min(s.max_trades_per_day for s in strategies)
        today = self.ledger.get_today_performance()

        loss_limit = self.ledger.initial_balance * max_daily_loss / 100
        if abs(today.profit) > loss_limit:
            detail = f"profit={today.profit:.2f}, limit={loss_limit:.2f}"
            logger.info(f"Daily loss limit reached: {detail}")
            return RiskDecision(stop=True, reason="daily_loss", detail=detail)

        if today.trades >= max_trades:
            detail = f"trades={today.trades}, max={max_trades}"
            logger.info(f"Max trades per day reached: {detail}")
            return RiskDecision(stop=True, reason="max_trades", detail=detail)

        return RiskDecision(stop=False)


# ---------------------------------------------------------------------------
# Extreme stop
# ---------------------------------------------------------------------------

@dataclass
class StopLossEvent:
    timestamp: int
    symbol: str
    trade_id: str


@dataclass
class PortfolioSnapshot:
    timestamp: int
    total_value: float


class Stoppable(Protocol):
    @property
    def is_running(self) -> bool: ...

    def stop(self) -> bool: ...


class ExtremeStopMonitor:
    """Circuit breaker on stop-loss clustering and 4h portfolio drawdown."""

    JOB_ID = "extreme_stop"

    def __init__(
        self,
        ledger: Ledger,
        max_stop_losses: int = 3,
        max_portfolio_loss_pct: float = 10.0,
        interval_seconds: int = 60,
        clock: Callable[[], int] = now_ms,
    ):
        self.ledger = ledger
        self.max_stop_losses = max_stop_losses
        self.max_portfolio_loss_pct = max_portfolio_loss_pct
        self.interval_seconds = interval_seconds
        self.clock = clock

        self.controller: Stoppable | None = None
        self.on_alert: Callable[[Alert], None] | None = None
        self.scheduler = None

        self.stop_loss_events: list[StopLossEvent] = []
        self.portfolio_snapshots: list[PortfolioSnapshot] = []
        self.is_monitoring = False
        self.tripped = False
        self.last_trigger: dict | None = None

    def bind(self, controller: Stoppable, on_alert: Callable[[Alert], None] | None = None):
        """Attach the bot controller to halt and the alert sink."""
        self.controller = controller
        self.on_alert = on_alert

    # -- timer ------------------------------------------------------------

    def start_monitoring(self, scheduler):
        """Register the periodic check on ``scheduler`` and take a first snapshot."""
        from apscheduler.triggers.interval import IntervalTrigger

        if self.is_monitoring:
            return
        self.scheduler = scheduler
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            name="Extreme stop monitor",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.is_monitoring = True
        self.take_snapshot()
        logger.info(f"Extreme stop monitoring started (every {self.interval_seconds}s)")

    def stop_monitoring(self):
        if not self.is_monitoring:
            return
        if self.scheduler is not None and self.scheduler.get_job(self.JOB_ID):
            self.scheduler.remove_job(self.JOB_ID)
        self.is_monitoring = False
        logger.info("Extreme stop monitoring stopped")

    # -- events -----------------------------------------------------------

    def record_stop_loss(self, symbol: str, trade_id: str) -> Alert | None:
        now = self.clock()
        self.stop_loss_events.append(StopLossEvent(timestamp=now, symbol=symbol, trade_id=trade_id))
        self._prune_stop_losses(now)
        logger.info(
            f"[{symbol}] Stop loss recorded for {trade_id} "
            f"({len(self.stop_loss_events)} in last 30 min)"
        )
        if self.tripped:
            return None
        return self._check_stop_loss_limit(now)

    def take_snapshot(self) -> PortfolioSnapshot:
        snapshot = PortfolioSnapshot(timestamp=self.clock(), total_value=self.ledger.current_equity())
        self.portfolio_snapshots.append(snapshot)
        logger.debug(
            f"Portfolio snapshot: {snapshot.total_value:.2f} ({len(self.portfolio_snapshots)} held)"
        )
        return snapshot

    async def tick(self) -> Alert | None:
        """Scheduler entry point. Runs on the event loop, not in a worker thread."""
        return self.check()

    def check(self) -> Alert | None:
        """One monitoring tick: snapshot, then both threshold checks.

        While tripped only the buffers are maintained; the trigger fires once per trip.
        """
        self.take_snapshot()
        now = self.clock()
        if self.tripped:
            self._prune_snapshots(now)
            self._prune_stop_losses(now)
            return None
        alert = self._check_portfolio_loss(now)
        self._prune_snapshots(now)
        return alert or self._check_stop_loss_limit(now)

    # -- checks -----------------------------------------------------------

    def _prune_stop_losses(self, now: int):
        cutoff = now - STOP_LOSS_WINDOW_SECONDS * 1000
        self.stop_loss_events = [e for e in self.stop_loss_events if e.timestamp > cutoff]

    def _prune_snapshots(self, now: int):
        """Drop snapshots older than 4h plus one monitoring interval.

        The extra interval keeps the reference point the next tick compares
        against. The peak is always read from real snapshots, never carried over.
        """
        keep_from = now - (PORTFOLIO_WINDOW_SECONDS + self.interval_seconds) * 1000
        self.portfolio_snapshots = [s for s in self.portfolio_snapshots if s.timestamp >= keep_from]

    def portfolio_loss_pct(self, now: int | None = None) -> float:
        """Loss of the latest snapshot vs. the highest snapshot at least 4h old."""
        now = now if now is not None else self.clock()
        if len(self.portfolio_snapshots) < 2:
            return 0.0
        cutoff = now - PORTFOLIO_WINDOW_SECONDS * 1000
        old = [s.total_value for s in self.portfolio_snapshots if s.timestamp <= cutoff]
        if not old:
            return 0.0
        peak = max(old)
        current = self.portfolio_snapshots[-1].total_value
        return (peak - current) / peak * 100 if peak > 0 else 0.0

    def _check_portfolio_loss(self, now: int) -> Alert | None:
        loss = self.portfolio_loss_pct(now)
        if loss >= self.max_portfolio_loss_pct:
            return self._trigger(
                "PORTFOLIO_LOSS",
                f"Portfolio lost {loss:.2f}% within 4 hours (limit {self.max_portfolio_loss_pct}%)",
                {"loss_percentage": round(loss, 2)},
            )
        return None

    def _check_stop_loss_limit(self, now: int) -> Alert | None:
        self._prune_stop_losses(now)
        count = len(self.stop_loss_events)
        if count >= self.max_stop_losses:
            return self._trigger(
                "STOP_LOSS_LIMIT",
                f"{count} stop losses triggered within 30 minutes (limit {self.max_stop_losses})",
                {"stop_loss_count": count},
            )
        return None

    def _trigger(self, reason: str, message: str, details: dict) -> Alert:
        logger.critical(f"EXTREME STOP TRIGGERED: {reason} | {message} | {details}")
        self.tripped = True
        self.last_trigger = {"reason": reason, "message": message, "timestamp": self.clock(), **details}

        if self.controller is not None and self.controller.is_running:
            self.controller.stop()

        alert = Alert(
            severity=CRITICAL,
            title="EXTREME STOP ACTIVATED",
            detail=f"{message}. The bot was stopped automatically.",
        )
        if self.on_alert is not None:
            self.on_alert(alert)
        return alert

    # -- status -----------------------------------------------------------

    def get_status(self) -> dict:
        now = self.clock()
        cutoff = now - STOP_LOSS_WINDOW_SECONDS * 1000
        recent = [e for e in self.stop_loss_events if e.timestamp > cutoff]
        return {
            "is_monitoring": self.is_monitoring,
            "recent_stop_losses": len(recent),
            "max_stop_losses": self.max_stop_losses,
            "portfolio_loss_4h": round(self.portfolio_loss_pct(now), 2),
            "max_portfolio_loss": self.max_portfolio_loss_pct,
            "portfolio_snapshots": len(self.portfolio_snapshots),
            "tripped": self.tripped,
            "last_trigger": self.last_trigger,
        }

    def reset(self):
        """Clear buffers and the tripped latch. The bot still needs a manual start."""
        self.stop_loss_events = []
        self.portfolio_snapshots = []
        self.tripped = False
        self.last_trigger = None
        logger.info("Extreme stop monitor reset")
