"""Application configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'tradebot.db'}"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]  # Vite dev server

    # Exchange
    exchange_id: str = "binance"
    api_key: str = ""
    api_secret: str = ""
    testnet: bool = True
    enable_real_trading: bool = False  # False = test orders only
    quote_asset: str = "USDT"
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    request_timeout_seconds: float = 10.0
    use_price_stream: bool = False

    # Trading
    initial_balance: float = 100.0  # Equity curve baseline, in quote currency
    min_trade_amount: float = 10.0
    max_trade_amount: float = 0.0  # 0 = no cap
    min_confidence_score: float = 0.0

    # Analysis loop
    analysis_interval_seconds: int = 60
    lookback_periods: int = 100
    min_api_call_interval_ms: int = 100
    exit_monitor_interval_seconds: int = 15

    # Extreme stop
    extreme_stop_interval_seconds: int = 60
    max_stop_losses_30min: int = 3
    max_portfolio_loss_4h: float = 10.0

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "TB_", "env_file": ".env"}


settings = Settings()
