"""Exception hierarchy shared by the engine, services and API layer."""


class TradingError(Exception):
    """Base class for all errors raised by tradebot."""


class ConfigurationError(TradingError):
    """Missing credentials or invalid risk parameters; the attempted operation is refused."""


class ExchangeError(TradingError):
    """Failure talking to the exchange or market data source."""


class ExchangeUnavailableError(ExchangeError):
    """Transient failure that persisted after all retry attempts."""


class ExchangeAuthError(ExchangeError):
    """401/403 from the exchange. Never retried."""

    def __init__(self, message: str):
        super().__init__(f"{message}. Please re-check your API key and secret.")


class ExecutionError(TradingError):
    """A signal could not be turned into an order. Nothing was submitted."""


class LedgerError(TradingError):
    pass


class TradeNotFoundError(LedgerError):
    def __init__(self, trade_id: str):
        super().__init__(f"Trade {trade_id} not found")
        self.trade_id = trade_id


class TradeClosedError(LedgerError):
    def __init__(self, trade_id: str):
        super().__init__(f"Trade {trade_id} is already closed")
        self.trade_id = trade_id


class StrategyError(TradingError):
    pass


class StrategyNotFoundError(StrategyError):
    def __init__(self, strategy_id: str):
        super().__init__(f"Strategy {strategy_id} not found")
        self.strategy_id = strategy_id


class StrategyExistsError(StrategyError):
    def __init__(self, strategy_id: str):
        super().__init__(f"Strategy {strategy_id} already exists")
        self.strategy_id = strategy_id


class InvalidStrategyError(StrategyError):
    pass
