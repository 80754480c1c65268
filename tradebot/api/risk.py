"""Risk API: daily limits, extreme-stop status and reset, recent alerts."""

from fastapi import APIRouter, Depends, Query

from tradebot.api.deps import get_services
from tradebot.container import TradingServices

router = APIRouter(prefix="/api/risk", tags=["risk"])


@router.get("/status")
def risk_status(services: TradingServices = Depends(get_services)):
    decision = services.risk_guard.should_stop_trading(services.strategies.get_all())
    return {
        "trading_paused": decision.stop,
        "reason": decision.reason,
        "detail": decision.detail,
        "extreme_stop": services.extreme_stop.get_status(),
    }


@router.post("/reset")
def reset_extreme_stop(services: TradingServices = Depends(get_services)):
    """Clear the extreme-stop latch. The bot has to be started again by hand."""
    services.extreme_stop.reset()
    return services.extreme_stop.get_status()


@router.get("/alerts")
def recent_alerts(
    limit: int = Query(default=50, ge=1, le=100),
    services: TradingServices = Depends(get_services),
):
    return list(reversed(services.alert_log.alerts[-limit:]))
