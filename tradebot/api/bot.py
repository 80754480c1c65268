"""Bot lifecycle API: status, start, stop, manual cycle trigger."""

from fastapi import APIRouter, Depends, HTTPException

from tradebot.api.deps import get_services
from tradebot.container import TradingServices

router = APIRouter(prefix="/api/bot", tags=["bot"])


@router.get("/status")
def bot_status(services: TradingServices = Depends(get_services)):
    return services.status()


@router.post("/start")
async def start_bot(services: TradingServices = Depends(get_services)):
    started = await services.controller.start()
    return {"started": started, **services.controller.get_status()}


@router.post("/stop")
def stop_bot(services: TradingServices = Depends(get_services)):
    stopped = services.controller.stop()
    return {"stopped": stopped, **services.controller.get_status()}


@router.post("/trigger")
async def trigger_cycle(services: TradingServices = Depends(get_services)):
    """Run one analysis cycle now. The bot must be running."""
    if not services.controller.is_running:
        raise HTTPException(status_code=409, detail="Bot is not running")
    report = await services.controller.run_cycle()
    return report.summary()
