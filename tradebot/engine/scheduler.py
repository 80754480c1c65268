"""Bot controller: owns the run/stop lifecycle and the analysis cycle.

The analysis cycle runs as an APScheduler interval job on the shared
``AsyncIOScheduler``. Each cycle walks every (strategy, symbol, timeframe)
combination of the active strategies: generate a signal, filter it by
confidence, execute it. Failures are isolated per combination.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tradebot.config import Settings
from tradebot.errors import ConfigurationError, ExchangeAuthError, TradingError
from tradebot.schemas.trade import Trade
from tradebot.services.exchange_client import ExchangeClient
from tradebot.services.notifier import Alert, CRITICAL, Notifier, dispatch_alerts
from tradebot.services.risk_guard import ExtremeStopMonitor, RiskGuard
from tradebot.services.signal_engine import SignalGenerator
from tradebot.services.strategy_store import StrategyStore
from tradebot.engine.execution import ExecutionEngine
from tradebot.utils.clock import now_ms

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    started_at: int = field(default_factory=now_ms)
    skipped: str | None = None  # "stopped", "overlap", "no_active_strategies", "daily_loss", "max_trades"
    evaluated: int = 0
    signals: int = 0
    trades: list[Trade] = field(default_factory=list)
    errors: int = 0
    discarded: bool = False
    alerts: list[Alert] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "started_at": self.started_at,
            "skipped": self.skipped,
            "evaluated": self.evaluated,
            "signals": self.signals,
            "trades_opened": len(self.trades),
            "errors": self.errors,
            "discarded": self.discarded,
        }


class BotController:
    JOB_ID = "analysis"

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        exchange: ExchangeClient,
        strategies: StrategyStore,
        signal_generator: SignalGenerator,
        execution: ExecutionEngine,
        risk_guard: RiskGuard,
        settings: Settings,
        notifier: Notifier | None = None,
        extreme_stop: ExtremeStopMonitor | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.scheduler = scheduler
        self.exchange = exchange
        self.strategies = strategies
        self.signal_generator = signal_generator
        self.execution = execution
        self.risk_guard = risk_guard
        self.settings = settings
        self.notifier = notifier
        self.extreme_stop = extreme_stop
        self._sleep = sleep
        self._monotonic = monotonic

        self._running = False
        self._cycle_lock = asyncio.Lock()
        self._last_call: float | None = None
        self.last_report: CycleReport | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start the analysis job and run one cycle right away.

        Returns False when already running. Raises ``ConfigurationError`` when
        the exchange is not usable.
        """
        if self._running:
            logger.info("Bot is already running")
            return False

        if not self.exchange.is_configured():
            raise ConfigurationError("API keys are not configured")
        if self.extreme_stop is not None and self.extreme_stop.tripped:
            raise ConfigurationError("Extreme stop is active. Reset it before restarting the bot")
        if not await self.exchange.test_connection():
            raise ConfigurationError("Could not connect to the exchange")

        interval = self.settings.analysis_interval_seconds
        self.scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(seconds=interval),
            id=self.JOB_ID,
            name="Strategy analysis",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._running = True
        logger.info(f"Bot started (analysis every {interval}s)")

        if self.settings.use_price_stream:
            symbols = [s for strategy in self.strategies.get_active() for s in strategy.symbols]
            self.exchange.start_price_stream(symbols)

        await self.run_cycle()
        return True

    def stop(self) -> bool:
        """Stop the analysis job. In-flight cycle results are discarded.

        Returns False (and changes nothing) when the bot is not running.
        """
        if not self._running:
            return False

        self._running = False
        if self.scheduler.get_job(self.JOB_ID):
            self.scheduler.remove_job(self.JOB_ID)
        self.exchange.stop_price_stream()
        logger.info("Bot stopped")
        return True

    def get_status(self) -> dict:
        job = self.scheduler.get_job(self.JOB_ID) if self._running else None
        return {
            "running": self._running,
            "interval_seconds": self.settings.analysis_interval_seconds,
            "next_run": str(job.next_run_time) if job and job.next_run_time else None,
            "real_trading": self.settings.enable_real_trading,
            "price_stream": self.exchange.is_streaming,
            "last_cycle": self.last_report.summary() if self.last_report else None,
        }

    # ------------------------------------------------------------------
    # Analysis cycle
    # ------------------------------------------------------------------

    async def _throttle(self):
        """Keep at least ``min_api_call_interval_ms`` between outbound evaluations."""
        interval = self.settings.min_api_call_interval_ms / 1000
        if self._last_call is not None:
            elapsed = self._monotonic() - self._last_call
            if elapsed < interval:
                await self._sleep(interval - elapsed)
        self._last_call = self._monotonic()

    async def run_cycle(self) -> CycleReport:
        """Run one analysis cycle, skipping if a prior cycle is still in flight."""
        report = CycleReport()
        if not self._running:
            report.skipped = "stopped"
            return report

        if self._cycle_lock.locked():
            logger.warning("Skipping overlapping analysis cycle")
            report.skipped = "overlap"
            return report

        async with self._cycle_lock:
            await self._run_cycle_once(report)

        self.last_report = report
        dispatch_alerts(self.notifier, report.alerts)
        return report

    async def _run_cycle_once(self, report: CycleReport):
        await self._throttle()

        active = self.strategies.get_active()
        if not active:
            logger.info("No active strategies, skipping cycle")
            report.skipped = "no_active_strategies"
            return

        decision = self.risk_guard.should_stop_trading(self.strategies.get_all())
        if decision:
            logger.info(f"Risk limits reached ({decision.reason}: {decision.detail}), skipping cycle")
            report.skipped = decision.reason
            return

        symbols = sorted({s for strategy in active for s in strategy.symbols})
        logger.info(f"Analyzing {len(active)} strategies over {len(symbols)} symbols: {', '.join(symbols)}")

        for strategy in active:
            for symbol in strategy.symbols:
                for timeframe in strategy.timeframes:
                    if not self._running:
                        report.discarded = True
                        logger.info("Bot stopped mid-cycle, discarding remaining work")
                        return
                    await self._throttle()
                    report.evaluated += 1
                    await self._evaluate(report, strategy, symbol, timeframe)

        logger.info(
            f"Cycle done: {report.evaluated} evaluated, {report.signals} signals, "
            f"{len(report.trades)} trades, {report.errors} errors"
        )

    async def _evaluate(self, report: CycleReport, strategy, symbol: str, timeframe: str):
        try:
            signal = await self.signal_generator.generate(symbol, timeframe, strategy)
            if not self._running:
                report.discarded = True
                return
            if signal is None:
                return

            report.signals += 1
            if signal.confidence < self.settings.min_confidence_score:
                logger.info(
                    f"[{symbol}] Signal confidence {signal.confidence} below "
                    f"{self.settings.min_confidence_score}, skipping"
                )
                return

            result = await self.execution.execute(signal, strategy, should_continue=lambda: self._running)
            if result is None:
                report.discarded = True
                return
            report.trades.append(result.trade)
            report.alerts.append(result.alert)
        except (ConfigurationError, ExchangeAuthError) as e:
            report.errors += 1
            logger.error(f"[{strategy.id}] {symbol} {timeframe}: {e}")
            report.alerts.append(Alert(severity=CRITICAL, title="Exchange access error", detail=str(e)))
        except TradingError as e:
            report.errors += 1
            logger.warning(f"[{strategy.id}] {symbol} {timeframe}: {e}")
        except Exception as e:
            report.errors += 1
            logger.exception(f"[{strategy.id}] {symbol} {timeframe}: unexpected error: {e}")


def get_scheduler_status(scheduler: AsyncIOScheduler) -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
