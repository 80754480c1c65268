"""HTTP tests for the FastAPI routers and error mapping."""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from tradebot.container import build_services
from tradebot.main import create_app
from tradebot.schemas.trade import TradeSide
from tradebot.services.storage import MemoryStorage

from tests.conftest import make_exchange


@pytest.fixture
def services(settings):
    return build_services(settings, storage=MemoryStorage(), exchange=make_exchange())


@pytest.fixture
def client(services):
    app = create_app(services=services, run_jobs=False)
    with TestClient(app) as test_client:
        yield test_client


def _open_trade(services):
    return services.ledger.add_trade({
        "symbol": "BTCUSDT", "strategy_id": "rsi-ema-cross", "side": TradeSide.LONG,
        "entry_price": 100.0, "entry_time": services.ledger.clock(), "quantity": 1.0,
        "stop_loss": 98.0, "take_profit": 104.0,
    })


# ---------------------------------------------------------------------------
# Bot
# ---------------------------------------------------------------------------

class TestBotApi:
    def test_status_when_stopped(self, client):
        resp = client.get("/api/bot/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["bot"]["running"] is False
        assert body["open_trades"] == 0
        assert body["equity"] == 100.0

    def test_trigger_requires_running_bot(self, client):
        resp = client.post("/api/bot/trigger")
        assert resp.status_code == 409

    def test_start_without_keys_is_rejected(self, client, services):
        services.exchange.is_configured.return_value = False
        resp = client.post("/api/bot/start")
        assert resp.status_code == 400
        assert "API keys" in resp.json()["detail"]

    def test_stop_when_not_running(self, client):
        resp = client.post("/api/bot/stop")
        assert resp.status_code == 200
        assert resp.json()["stopped"] is False


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

class TestTradesApi:
    def test_unknown_trade_is_404(self, client):
        resp = client.get("/api/trades/missing")
        assert resp.status_code == 404

    def test_list_and_get(self, client, services):
        trade = _open_trade(services)
        assert [t["id"] for t in client.get("/api/trades").json()] == [trade.id]
        assert [t["id"] for t in client.get("/api/trades/open").json()] == [trade.id]
        assert client.get(f"/api/trades/{trade.id}").json()["symbol"] == "BTCUSDT"

    def test_manual_close_then_conflict(self, client, services):
        services.exchange.get_ticker = AsyncMock(return_value=101.0)
        trade = _open_trade(services)

        resp = client.post(f"/api/trades/{trade.id}/close")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "CLOSED"
        assert body["close_reason"] == "MANUAL"
        assert body["pnl"] == pytest.approx(1.0)
        assert services.strategies.get("rsi-ema-cross").total_trades == 1
        assert any("BTCUSDT" in a.title for a in services.alert_log.alerts)

        assert client.post(f"/api/trades/{trade.id}/close").status_code == 409

    def test_equity_rejects_unknown_timeframe(self, client):
        assert client.get("/api/trades/equity", params={"timeframe": "hourly"}).status_code == 422
        assert client.get("/api/trades/equity", params={"timeframe": "daily"}).status_code == 200

    def test_clear_requires_confirm(self, client, services):
        _open_trade(services)
        assert client.delete("/api/trades").status_code == 400
        assert client.delete("/api/trades", params={"confirm": "true"}).status_code == 200
        assert services.ledger.get_all_trades() == []


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class TestStrategiesApi:
    def _payload(self, **overrides):
        data = {
            "id": "scalper", "name": "Scalper", "symbols": ["solusdt"], "timeframes": ["5m"],
            "stop_loss": 1.0, "take_profit": 2.0, "risk_per_trade": 0.5,
        }
        data.update(overrides)
        return data

    def test_default_strategy_listed(self, client):
        resp = client.get("/api/strategies")
        assert [s["id"] for s in resp.json()] == ["rsi-ema-cross"]

    def test_create_and_duplicate(self, client):
        resp = client.post("/api/strategies", json=self._payload())
        assert resp.status_code == 201
        assert resp.json()["symbols"] == ["SOLUSDT"]
        assert client.post("/api/strategies", json=self._payload()).status_code == 409

    def test_invalid_body_is_422(self, client):
        resp = client.post("/api/strategies", json=self._payload(stop_loss=-1))
        assert resp.status_code == 422

    def test_update_with_invalid_merge_is_422(self, client):
        resp = client.put("/api/strategies/rsi-ema-cross",
                          json={"indicators": {"ema_short_period": 40, "ema_long_period": 21}})
        assert resp.status_code == 422

    def test_update_and_toggle(self, client):
        resp = client.put("/api/strategies/rsi-ema-cross", json={"take_profit": 6.0})
        assert resp.json()["take_profit"] == 6.0

        resp = client.post("/api/strategies/rsi-ema-cross/toggle", json={"is_active": False})
        assert resp.json()["is_active"] is False
        assert client.get("/api/strategies", params={"active": "true"}).json() == []

    def test_unknown_strategy_is_404(self, client):
        assert client.get("/api/strategies/nope").status_code == 404
        assert client.delete("/api/strategies/nope").status_code == 404

    def test_export_import(self, client):
        exported = client.get("/api/strategies/export").text
        assert json.loads(exported)[0]["id"] == "rsi-ema-cross"

        resp = client.post("/api/strategies/import", json={"content": exported})
        assert resp.status_code == 409

        resp = client.post("/api/strategies/import", json={"content": exported, "overwrite": True})
        assert resp.status_code == 201

        resp = client.post("/api/strategies/import", json={"content": "not json"})
        assert resp.status_code == 422

    def test_delete(self, client):
        assert client.delete("/api/strategies/rsi-ema-cross").status_code == 204
        assert client.get("/api/strategies").json() == []


# ---------------------------------------------------------------------------
# Risk and system
# ---------------------------------------------------------------------------

class TestRiskAndSystemApi:
    def test_risk_status(self, client):
        body = client.get("/api/risk/status").json()
        assert body["trading_paused"] is False
        assert body["extreme_stop"]["tripped"] is False

    def test_reset_and_alerts(self, client, services):
        services.extreme_stop.max_stop_losses = 1
        services.extreme_stop.record_stop_loss("BTCUSDT", "t1")
        assert client.get("/api/risk/status").json()["extreme_stop"]["tripped"] is True

        alerts = client.get("/api/risk/alerts").json()
        assert alerts[0]["severity"] == "critical"

        assert client.post("/api/risk/reset").json()["tripped"] is False

    def test_liveness(self, client):
        assert client.get("/api/system/health").json() == {"status": "ok"}

    def test_health_report(self, client):
        body = client.get("/api/system/health/report").json()
        assert body["overall"] == "healthy"
        assert all(body["checks"].values())

    def test_scheduler_status(self, client):
        body = client.get("/api/system/scheduler").json()
        assert body["running"] is False
        assert body["jobs"] == []
