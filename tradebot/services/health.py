"""System health check: exchange access, strategies and configuration."""

import logging
from dataclasses import dataclass, field

from tradebot.config import Settings
from tradebot.errors import TradingError
from tradebot.services.exchange_client import ExchangeClient
from tradebot.services.strategy_store import StrategyStore
from tradebot.utils.clock import now_ms

logger = logging.getLogger(__name__)

MAX_CLOCK_DRIFT_MS = 5 * 60 * 1000
HIGH_RISK_PER_TRADE = 5.0
TEST_ORDER_SYMBOL = "BTCUSDT"
TEST_ORDER_QUANTITY = 0.001


@dataclass
class HealthReport:
    overall: str = "healthy"  # "healthy", "warning", "critical"
    checks: dict[str, bool] = field(default_factory=lambda: {
        "api_keys_valid": False,
        "api_connection": False,
        "account_access": False,
        "trading_permissions": False,
        "strategies_loaded": False,
        "config_valid": False,
    })
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "checks": dict(self.checks),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "recommendations": list(self.recommendations),
        }


class HealthChecker:
    def __init__(self, exchange: ExchangeClient, strategies: StrategyStore, settings: Settings):
        self.exchange = exchange
        self.strategies = strategies
        self.settings = settings

    async def run(self) -> HealthReport:
        report = HealthReport()
        logger.info("Running system health check")

        self._check_api_keys(report)
        await self._check_connection(report)
        if report.checks["api_keys_valid"]:
            await self._check_account(report)
            await self._check_trading_permissions(report)
        self._check_strategies(report)
        self._check_configuration(report)

        failed = sum(1 for ok in report.checks.values() if not ok)
        if failed == 0:
            report.overall = "healthy"
        elif failed <= 2:
            report.overall = "warning"
        else:
            report.overall = "critical"

        logger.info(
            f"Health check done: {report.overall} ({failed} failed checks, "
            f"{len(report.warnings)} warnings, {len(report.errors)} errors)"
        )
        return report

    def _check_api_keys(self, report: HealthReport):
        report.checks["api_keys_valid"] = self.exchange.is_configured()
        if not report.checks["api_keys_valid"]:
            report.errors.append("API keys are not configured")
            report.recommendations.append("Set TB_API_KEY and TB_API_SECRET")

    async def _check_connection(self, report: HealthReport):
        try:
            server_time = await self.exchange.get_server_time()
        except TradingError as e:
            logger.error(f"Health check: no exchange connection: {e}")
            report.errors.append("Cannot reach the exchange API")
            report.recommendations.append("Check the network connection and firewall settings")
            return

        report.checks["api_connection"] = True
        if abs(now_ms() - server_time) > MAX_CLOCK_DRIFT_MS:
            report.warnings.append("System clock differs from the exchange server time by more than 5 minutes")
            report.recommendations.append("Synchronize the system clock")

    async def _check_account(self, report: HealthReport):
        try:
            account = await self.exchange.get_account_info()
        except TradingError as e:
            logger.error(f"Health check: account access failed: {e}")
            report.errors.append("Cannot read account information")
            report.recommendations.append("Check the API key permissions (spot trading required)")
            return

        report.checks["account_access"] = True
        if not account.can_trade:
            report.errors.append("Trading is not allowed on this account")
            report.recommendations.append("Enable trading permission in the API key settings")

        quote = self.settings.quote_asset
        available = account.free_balance(quote) or 0.0
        if available < self.settings.min_trade_amount:
            report.warnings.append(f"Low {quote} balance: {available} {quote}")
            report.recommendations.append(
                f"At least {self.settings.min_trade_amount} {quote} is required to trade"
            )

    async def _check_trading_permissions(self, report: HealthReport):
        try:
            result = await self.exchange.place_test_order(TEST_ORDER_SYMBOL, "BUY", "MARKET", TEST_ORDER_QUANTITY)
        except TradingError as e:
            logger.error(f"Health check: test order failed: {e}")
            result = None

        if result is None or not result.success:
            report.errors.append("No trading permission")
            report.recommendations.append("Enable trading permission for the API key")
            return
        report.checks["trading_permissions"] = True

    def _check_strategies(self, report: HealthReport):
        strategies = self.strategies.get_all()
        report.checks["strategies_loaded"] = len(strategies) > 0

        if not strategies:
            report.errors.append("No trading strategies configured")
            report.recommendations.append("Create at least one trading strategy")
        elif not any(s.is_active for s in strategies):
            report.warnings.append("No active trading strategies")
            report.recommendations.append("Activate at least one trading strategy")

        for strategy in strategies:
            if not strategy.symbols:
                report.warnings.append(f'Strategy "{strategy.name}" has no symbols configured')
            if strategy.risk_per_trade > HIGH_RISK_PER_TRADE:
                report.warnings.append(
                    f'High risk per trade in strategy "{strategy.name}": {strategy.risk_per_trade}%'
                )

    def _check_configuration(self, report: HealthReport):
        s = self.settings
        report.checks["config_valid"] = True

        if s.enable_real_trading and s.testnet:
            report.warnings.append("Real trading is enabled while testnet mode is on")
            report.recommendations.append("Disable testnet for live trading, or disable real trading for tests")

        if 0 < s.max_trade_amount < s.min_trade_amount:
            report.checks["config_valid"] = False
            report.errors.append("Maximum trade amount is lower than the minimum trade amount")
