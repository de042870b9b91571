"""
Tests for the decision engine REST API.
"""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import build_candles
from edgeflow.orchestrator import api
from edgeflow.orchestrator.config import EngineConfig
from edgeflow.orchestrator.engine import MasterOrchestrator
from edgeflow.prediction.config import BaseModelConfig, PredictionConfig

PORTFOLIO = {
    "balance": 100000,
    "equity": 100000,
    "total_capital": 100000,
    "allocated_capital": 20000,
}


def candle_records(candles):
    return [
        {
            "open": row.open,
            "high": row.high,
            "low": row.low,
            "close": row.close,
            "volume": row.volume,
            "timestamp": row.timestamp.isoformat(),
        }
        for row in candles.itertuples()
    ]


@pytest.fixture
def client():
    api._orchestrator = MasterOrchestrator()
    with TestClient(api.app) as test_client:
        yield test_client
    api._orchestrator = None


@pytest.fixture
def decision_request():
    np.random.seed(42)
    candles = build_candles(np.random.normal(0, 0.0008, 120))
    return {
        "pair": "EUR/USD",
        "candles": candle_records(candles),
        "current_price": float(candles['close'].iloc[-1]),
        "portfolio": PORTFOLIO,
    }


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["decisions"] == 0
        assert len(body["config_hash"]) == 16


class TestDecide:
    """Test the main decision endpoint"""

    def test_decide(self, client, decision_request):
        response = client.post("/decide", json=decision_request)
        assert response.status_code == 200

        decision = response.json()["decision"]
        assert decision["action"] in ("accept", "reject", "wait")
        assert 0.0 <= decision["confidence"] <= 1.0
        assert decision["timestamp"].startswith("2024-01-12T23:00:00")
        assert client.get("/health").json()["decisions"] == 1

    def test_decide_with_no_candles(self, client):
        response = client.post("/decide", json={
            "candles": [],
            "current_price": 1.10,
            "portfolio": PORTFOLIO,
        })
        assert response.status_code == 200
        decision = response.json()["decision"]
        assert decision["action"] == "reject"
        assert decision["regime"]["type"] == "neutral"
        assert decision["reasoning"][0]["message"] == "No candidate signals detected"

    def test_invalid_portfolio(self, client, decision_request):
        decision_request["portfolio"] = dict(PORTFOLIO, total_capital=0)
        response = client.post("/decide", json=decision_request)
        assert response.status_code == 422
        assert "total_capital" in response.json()["detail"]

    def test_invalid_price(self, client, decision_request):
        decision_request["current_price"] = 0
        assert client.post("/decide", json=decision_request).status_code == 422

    def test_schema_validation(self, client, decision_request):
        decision_request["candles"][0]["close"] = -1.0
        assert client.post("/decide", json=decision_request).status_code == 422

    def test_identical_requests_agree(self, decision_request):
        responses = []
        for _ in range(2):
            api._orchestrator = MasterOrchestrator()
            with TestClient(api.app) as client:
                responses.append(client.post("/decide", json=decision_request).json())
        api._orchestrator = None
        assert responses[0] == responses[1]


class TestOutcome:
    def test_unknown_signal(self, client):
        response = client.post("/outcome", json={"signal_id": "deadbeefdeadbeef", "actual_outcome": 0.01})
        assert response.status_code == 404

    def test_known_signal(self, client):
        api._orchestrator = MasterOrchestrator(EngineConfig(
            prediction=PredictionConfig(base=BaseModelConfig(min_agreeing_factors=1))
        ))
        np.random.seed(42)
        candles = build_candles(np.random.normal(0.0015, 0.0003, 200), wick=0.0002)
        client.post("/decide", json={
            "candles": candle_records(candles),
            "current_price": float(candles["close"].iloc[-1]),
            "portfolio": PORTFOLIO,
        })
        signal_id = api._orchestrator.get_decision_history()[-1].signal_id
        assert signal_id is not None

        response = client.post("/outcome", json={"signal_id": signal_id, "actual_outcome": 0.01})
        assert response.status_code == 200
        body = response.json()
        assert body["signal_id"] == signal_id
        assert body["actual_outcome"] == 0.01


class TestMonitoring:
    """Test KPI, subsystem, config and recalibration endpoints"""

    def test_kpis(self, client, decision_request):
        client.post("/decide", json=decision_request)
        body = client.get("/kpis").json()
        assert set(body) == {'current_kpis', 'historical_kpis', 'recent_decisions', 'counterfactual_insights'}
        assert len(body["recent_decisions"]) == 1

    def test_subsystems(self, client):
        body = client.get("/subsystems").json()
        assert "regime_adaptive" in body
        assert body["regime_adaptive"]["rejections"] == 0

    def test_config(self, client):
        body = client.get("/config").json()
        assert body["config"]["config_hash"] == body["status"]["config_hash"]
        assert body["status"]["flags"]["dynamic_barriers"] is True

    def test_recalibrate(self, client):
        response = client.post("/recalibrate")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "recalibrated"
        assert "edge_decay" in body["kpis"]


class TestLauncher:
    def test_run_api_serves_app(self, tmp_path, monkeypatch):
        calls = {}
        monkeypatch.setattr(api.uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))

        api.run_api(port=8123, log_dir=str(tmp_path / "logs"))

        assert calls["app"] is api.app
        assert calls["host"] == "127.0.0.1"
        assert calls["port"] == 8123
        assert (tmp_path / "logs").is_dir()
