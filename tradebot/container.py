"""Service wiring.

One ``TradingServices`` instance per process, built in the FastAPI lifespan
(or by the CLI) and shared by everything that needs the trading core.
"""

import logging
from dataclasses import dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tradebot.config import Settings
from tradebot.database import create_db_and_tables, make_engine
from tradebot.engine.execution import ExecutionEngine, ExitMonitor
from tradebot.engine.scheduler import BotController
from tradebot.errors import TradingError
from tradebot.services.exchange_client import ExchangeClient
from tradebot.services.health import HealthChecker
from tradebot.services.ledger import Ledger
from tradebot.services.market_data import MarketData
from tradebot.services.notifier import FanoutNotifier, MemoryNotifier, Notifier, dispatch_alerts
from tradebot.services.risk_guard import ExtremeStopMonitor, RiskGuard
from tradebot.services.signal_engine import SignalGenerator
from tradebot.services.storage import SqlStorage, Storage
from tradebot.services.strategy_store import StrategyStore

logger = logging.getLogger(__name__)


@dataclass
class TradingServices:
    settings: Settings
    storage: Storage
    scheduler: AsyncIOScheduler
    exchange: ExchangeClient
    market_data: MarketData
    ledger: Ledger
    strategies: StrategyStore
    risk_guard: RiskGuard
    extreme_stop: ExtremeStopMonitor
    signal_generator: SignalGenerator
    execution: ExecutionEngine
    exit_monitor: ExitMonitor
    controller: BotController
    health: HealthChecker
    alert_log: MemoryNotifier
    notifier: Notifier
    telegram: object | None = None

    def status(self) -> dict:
        today = self.ledger.get_today_performance()
        return {
            "bot": self.controller.get_status(),
            "risk": self.extreme_stop.get_status(),
            "open_trades": len(self.ledger.get_open_trades()),
            "equity": self.ledger.current_equity(),
            "today_trades": today.trades,
            "today_profit": today.profit,
        }

    async def run_exit_sweep(self):
        """Exit monitor job: close crossed trades and refresh strategy totals."""
        try:
            closed = await self.exit_monitor.sweep()
        except TradingError as e:
            logger.warning(f"Exit sweep failed: {e}")
            return
        if closed:
            self.strategies.record_performance(self.ledger.calculate_performance())
        dispatch_alerts(self.notifier, self.exit_monitor.drain_alerts())


def _default_storage(settings: Settings) -> Storage:
    engine = make_engine(settings.database_url)
    create_db_and_tables(engine)
    return SqlStorage(engine)


def build_services(
    settings: Settings,
    storage: Storage | None = None,
    exchange: ExchangeClient | None = None,
    notifier: Notifier | None = None,
    scheduler: AsyncIOScheduler | None = None,
) -> TradingServices:
    """Create every service once and wire them together."""
    storage = storage or _default_storage(settings)
    scheduler = scheduler or AsyncIOScheduler()
    exchange = exchange or ExchangeClient(
        exchange_id=settings.exchange_id,
        api_key=settings.api_key,
        api_secret=settings.api_secret,
        testnet=settings.testnet,
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay_seconds,
        timeout=settings.request_timeout_seconds,
    )

    alert_log = MemoryNotifier()
    telegram = None
    if notifier is None and settings.telegram_bot_token:
        from tradebot.services.telegram_bot import TelegramNotifier
        telegram = TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_ids)
        notifier = telegram
    combined = FanoutNotifier(alert_log, notifier) if notifier is not None else alert_log

    market_data = MarketData(exchange)
    ledger = Ledger(storage, initial_balance=settings.initial_balance)
    strategies = StrategyStore(storage)
    risk_guard = RiskGuard(ledger)
    extreme_stop = ExtremeStopMonitor(
        ledger,
        max_stop_losses=settings.max_stop_losses_30min,
        max_portfolio_loss_pct=settings.max_portfolio_loss_4h,
        interval_seconds=settings.extreme_stop_interval_seconds,
    )
    signal_generator = SignalGenerator(market_data, lookback_periods=settings.lookback_periods)
    execution = ExecutionEngine(market_data, exchange, ledger, settings)
    exit_monitor = ExitMonitor(ledger, market_data, strategies, extreme_stop)
    controller = BotController(
        scheduler=scheduler,
        exchange=exchange,
        strategies=strategies,
        signal_generator=signal_generator,
        execution=execution,
        risk_guard=risk_guard,
        settings=settings,
        notifier=combined,
        extreme_stop=extreme_stop,
    )
    extreme_stop.bind(controller, on_alert=lambda alert: dispatch_alerts(combined, [alert]))
    health = HealthChecker(exchange, strategies, settings)

    services = TradingServices(
        settings=settings,
        storage=storage,
        scheduler=scheduler,
        exchange=exchange,
        market_data=market_data,
        ledger=ledger,
        strategies=strategies,
        risk_guard=risk_guard,
        extreme_stop=extreme_stop,
        signal_generator=signal_generator,
        execution=execution,
        exit_monitor=exit_monitor,
        controller=controller,
        health=health,
        alert_log=alert_log,
        notifier=combined,
        telegram=telegram,
    )
    if telegram is not None:
        telegram.get_status = services.status
        telegram.stop_bot = controller.stop
    return services


def start_background_jobs(services: TradingServices):
    """Start the scheduler with the exit sweep and extreme-stop jobs.

    The analysis job is only added when the bot is started.
    """
    scheduler = services.scheduler
    scheduler.add_job(
        services.run_exit_sweep,
        trigger=IntervalTrigger(seconds=services.settings.exit_monitor_interval_seconds),
        id=ExitMonitor.JOB_ID,
        name="Exit monitor",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    services.extreme_stop.start_monitoring(scheduler)
    if not scheduler.running:
        scheduler.start()
    if services.telegram is not None:
        services.telegram.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


async def shutdown(services: TradingServices):
    """Stop the bot and every background job, then close the exchange client."""
    services.controller.stop()
    services.extreme_stop.stop_monitoring()
    if services.scheduler.running:
        services.scheduler.shutdown(wait=False)
    if services.telegram is not None:
        services.telegram.stop()
    await services.exchange.close()
    logger.info("Trading services shut down")
