"""Shared constants and defaults."""

VALID_INTERVALS = ["1m", "5m", "15m", "30m", "1h", "2h", "4h", "8h", "1d"]

# Equity chart windows
EQUITY_WINDOWS_SECONDS: dict[str, int] = {
    "daily": 24 * 3600,
    "weekly": 7 * 24 * 3600,
    "monthly": 30 * 24 * 3600,
    "yearly": 365 * 24 * 3600,
}

# Storage keys
TRADES_KEY = "trading_history"
EQUITY_KEY = "equity_history"
STRATEGIES_KEY = "trading_strategies"

# Extreme stop windows
STOP_LOSS_WINDOW_SECONDS = 30 * 60
PORTFOLIO_WINDOW_SECONDS = 4 * 3600
