"""Trade history, performance and equity API."""

from fastapi import APIRouter, Depends, HTTPException, Query

from tradebot.api.deps import get_services
from tradebot.container import TradingServices
from tradebot.schemas.trade import DailyPerformance, EquityPoint, StrategyPerformance, Trade
from tradebot.services.notifier import dispatch_alerts
from tradebot.utils.constants import EQUITY_WINDOWS_SECONDS

router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.get("", response_model=list[Trade])
def list_trades(
    limit: int = Query(default=20, ge=1, le=500),
    symbol: str | None = None,
    strategy_id: str | None = None,
    services: TradingServices = Depends(get_services),
):
    return services.ledger.get_recent_trades(limit=limit, symbol=symbol, strategy_id=strategy_id)


@router.get("/open", response_model=list[Trade])
def open_trades(services: TradingServices = Depends(get_services)):
    return services.ledger.get_open_trades()


@router.get("/performance", response_model=list[StrategyPerformance])
def performance(strategy_id: str | None = None, services: TradingServices = Depends(get_services)):
    return services.ledger.calculate_performance(strategy_id)


@router.get("/daily", response_model=list[DailyPerformance])
def daily_performance(
    days: int = Query(default=7, ge=1, le=365),
    services: TradingServices = Depends(get_services),
):
    return services.ledger.get_daily_performance(days)


@router.get("/equity", response_model=list[EquityPoint])
def equity(timeframe: str = "daily", services: TradingServices = Depends(get_services)):
    if timeframe not in EQUITY_WINDOWS_SECONDS:
        allowed = ", ".join(EQUITY_WINDOWS_SECONDS)
        raise HTTPException(status_code=422, detail=f"timeframe must be one of: {allowed}")
    return services.ledger.get_equity_data(timeframe)


@router.delete("")
def clear_trades(confirm: bool = False, services: TradingServices = Depends(get_services)):
    """Delete every trade and reset the equity curve. Requires ``confirm=true``."""
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear all trading data")
    services.ledger.clear_all_data()
    return {"status": "ok"}


@router.get("/{trade_id}", response_model=Trade)
def get_trade(trade_id: str, services: TradingServices = Depends(get_services)):
    return services.ledger.get_trade(trade_id)


@router.post("/{trade_id}/close", response_model=Trade)
async def close_trade(trade_id: str, services: TradingServices = Depends(get_services)):
    """Close an open trade manually at the current price."""
    trade = await services.exit_monitor.close_manually(trade_id)
    services.strategies.record_performance(services.ledger.calculate_performance())
    dispatch_alerts(services.notifier, services.exit_monitor.drain_alerts())
    return trade
