"""Shared API dependencies."""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from tradebot.container import TradingServices
from tradebot.errors import (
    ConfigurationError,
    ExchangeAuthError,
    ExchangeUnavailableError,
    InvalidStrategyError,
    StrategyExistsError,
    StrategyNotFoundError,
    TradeClosedError,
    TradeNotFoundError,
    TradingError,
)

_STATUS_BY_ERROR: list[tuple[type[TradingError], int]] = [
    (TradeNotFoundError, status.HTTP_404_NOT_FOUND),
    (StrategyNotFoundError, status.HTTP_404_NOT_FOUND),
    (TradeClosedError, status.HTTP_409_CONFLICT),
    (StrategyExistsError, status.HTTP_409_CONFLICT),
    (InvalidStrategyError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExchangeAuthError, status.HTTP_401_UNAUTHORIZED),
    (ExchangeUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ConfigurationError, status.HTTP_400_BAD_REQUEST),
]


def get_services(request: Request) -> TradingServices:
    """The process-wide services created in the app lifespan."""
    return request.app.state.services


def status_for_error(error: TradingError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def trading_error_handler(request: Request, exc: TradingError) -> JSONResponse:
    return JSONResponse(status_code=status_for_error(exc), content={"detail": str(exc)})
