"""System API: liveness, full health report, scheduler status."""

from fastapi import APIRouter, Depends

from tradebot.api.deps import get_services
from tradebot.container import TradingServices
from tradebot.engine.scheduler import get_scheduler_status

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/health/report")
async def health_report(services: TradingServices = Depends(get_services)):
    """Run every health check against the exchange, strategies and config."""
    report = await services.health.run()
    return report.to_dict()


@router.get("/scheduler")
def scheduler_status(services: TradingServices = Depends(get_services)):
    """Current scheduler state with job details."""
    return get_scheduler_status(services.scheduler)
