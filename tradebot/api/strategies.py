"""CRUD API for strategy settings."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel

from tradebot.api.deps import get_services
from tradebot.container import TradingServices
from tradebot.schemas.strategy import StrategySettings, StrategyUpdate

router = APIRouter(prefix="/api/strategies", tags=["strategies"])


class StrategyImport(BaseModel):
    content: str  # JSON text: one strategy object or a list
    overwrite: bool = False


class StrategyToggle(BaseModel):
    is_active: bool


@router.get("", response_model=list[StrategySettings])
def list_strategies(active: bool | None = None, services: TradingServices = Depends(get_services)):
    if active:
        return services.strategies.get_active()
    strategies = services.strategies.get_all()
    if active is False:
        return [s for s in strategies if not s.is_active]
    return strategies


@router.post("", response_model=StrategySettings, status_code=201)
def create_strategy(data: StrategySettings, services: TradingServices = Depends(get_services)):
    return services.strategies.add(data)


@router.get("/export")
def export_strategies(strategy_id: str | None = None, services: TradingServices = Depends(get_services)):
    return Response(content=services.strategies.export_json(strategy_id), media_type="application/json")


@router.post("/import", response_model=list[StrategySettings], status_code=201)
def import_strategies(body: StrategyImport, services: TradingServices = Depends(get_services)):
    return services.strategies.import_json(body.content, overwrite=body.overwrite)


@router.get("/{strategy_id}", response_model=StrategySettings)
def get_strategy(strategy_id: str, services: TradingServices = Depends(get_services)):
    return services.strategies.get(strategy_id)


@router.put("/{strategy_id}", response_model=StrategySettings)
def update_strategy(
    strategy_id: str,
    data: StrategyUpdate,
    services: TradingServices = Depends(get_services),
):
    return services.strategies.update(strategy_id, data)


@router.post("/{strategy_id}/toggle", response_model=StrategySettings)
def toggle_strategy(
    strategy_id: str,
    body: StrategyToggle,
    services: TradingServices = Depends(get_services),
):
    return services.strategies.set_active(strategy_id, body.is_active)


@router.delete("/{strategy_id}", status_code=204)
def delete_strategy(strategy_id: str, services: TradingServices = Depends(get_services)):
    services.strategies.delete(strategy_id)
