"""Async endpoint tests for the paper trading signal service.

Covers:
- POST /ai-predict scoring and 3-minute caching, plus models/health.
- /trading orders, closes, account view, prices and pairs.
- GET /signal and the bot control endpoints.
- WS /ws/prices sends an initial price snapshot.

We use httpx.AsyncClient for the HTTP tests and FastAPI TestClient for WebSocket.
"""

import asyncio
import random

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from starlette.websockets import WebSocketDisconnect

from config import Settings
from main import create_app

PREDICT_BODY = {
	"symbol": "BTCUSDT",
	"timeframe": "1h",
	"data": {
		"rsi": 25,
		"macd": 0.002,
		"volume": 2.5e9,
		"trend": "up",
		"news_sentiment": "positive",
		"price_history": [100, 101, 102, 103, 104],
	},
}


def make_app():
	settings = Settings(
		price_tick_seconds=0.05,
		bot_analysis_interval_seconds=0.05,
		bot_trading_interval_seconds=0.05,
	)
	return create_app(settings, rng=random.Random(7))


@pytest_asyncio.fixture
async def client():
	app = make_app()
	# Manually run lifespan to start background tasks for AsyncClient usage
	async with app.router.lifespan_context(app):
		transport = ASGITransport(app=app)
		async with AsyncClient(transport=transport, base_url="http://test") as c:
			yield c


@pytest.mark.asyncio
async def test_ai_predict_returns_contract(client):
	resp = await client.post("/ai-predict", params={"model": "technical"}, json=PREDICT_BODY)
	assert resp.status_code == 200, resp.text
	data = resp.json()
	assert data["symbol"] == "BTCUSDT"
	assert data["prediction"] == "buy"
	assert data["probability_up"] + data["probability_down"] == 100
	assert 30 <= data["confidence"] <= 95
	assert data["model_used"].startswith("Technical")


@pytest.mark.asyncio
async def test_ai_predict_is_cached_per_symbol_and_timeframe(client):
	first = (await client.post("/ai-predict", json=PREDICT_BODY)).json()
	changed = dict(PREDICT_BODY, data=dict(PREDICT_BODY["data"], rsi=80, trend="down"))
	second = (await client.post("/ai-predict", json=changed)).json()
	assert second == first

	other = (await client.post("/ai-predict", json=dict(PREDICT_BODY, timeframe="4h"))).json()
	assert other["timestamp"] >= first["timestamp"]

	models = (await client.get("/ai-predict/models")).json()
	assert [m["name"] for m in models["available_models"]] == ["technical", "ml", "ensemble"]
	assert models["cache_stats"]["cached_predictions"] == 2
	assert models["cache_stats"]["cache_duration_minutes"] == 3.0

	health = (await client.get("/ai-predict/health")).json()
	assert health["status"] == "healthy"
	assert health["cache_size"] == 2


@pytest.mark.asyncio
async def test_ai_predict_rejects_malformed_body(client):
	resp = await client.post("/ai-predict", json={"symbol": "BTCUSDT", "data": {"rsi": 150}})
	assert resp.status_code == 422


@pytest.mark.asyncio
async def test_place_order_fill_and_reject(client):
	headers = {"user-id": "alice"}
	resp = await client.post(
		"/trading/orders", headers=headers,
		json={"symbol": "BTCUSDT", "side": "buy", "type": "market", "amount": 0.01},
	)
	assert resp.status_code == 200, resp.text
	data = resp.json()
	assert data["success"] is True
	assert data["order"]["status"] == "filled"
	assert data["account_summary"]["positions_count"] == 1
	assert data["account_summary"]["balance"] < 10_000

	resp = await client.post(
		"/trading/orders", headers=headers,
		json={"symbol": "BTCUSDT", "side": "buy", "amount": 1000},
	)
	data = resp.json()
	assert data["success"] is False
	assert data["order"]["status"] == "rejected"
	assert data["order"]["reason"] == "insufficient_funds"
	assert data["account_summary"]["positions_count"] == 1


@pytest.mark.asyncio
async def test_place_order_validation_errors(client):
	resp = await client.post("/trading/orders", json={"symbol": "BTCUSDT", "side": "buy", "amount": 0})
	assert resp.status_code == 422
	resp = await client.post(
		"/trading/orders",
		json={"symbol": "BTCUSDT", "side": "buy", "type": "limit", "amount": 0.01},
	)
	assert resp.status_code == 400


@pytest.mark.asyncio
async def test_close_position_and_account_view(client):
	headers = {"user-id": "bob"}
	await client.post("/trading/orders", headers=headers, json={"symbol": "ETHUSDT", "side": "buy", "amount": 0.5})
	account = (await client.get("/trading/account", headers=headers)).json()
	assert account["summary"]["total_positions"] == 1
	assert account["summary"]["win_rate"] == 100.0
	position_id = account["positions"][0]["id"]

	resp = await client.post("/trading/positions/close", headers=headers, json={"position_id": position_id})
	assert resp.status_code == 200, resp.text
	assert resp.json()["closed_position"]["id"] == position_id

	account = (await client.get("/trading/account", headers=headers)).json()
	assert account["positions"] == []
	assert account["account"]["margin"] == 0.0

	resp = await client.post("/trading/positions/close", headers=headers, json={"position_id": position_id})
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_accounts_are_isolated_by_user_header(client):
	await client.post("/trading/orders", headers={"user-id": "carol"}, json={"symbol": "BTCUSDT", "side": "buy", "amount": 0.01})
	fresh = (await client.get("/trading/account", headers={"user-id": "dave"})).json()
	assert fresh["account"]["balance"] == 10_000.0
	assert fresh["orders"] == []


@pytest.mark.asyncio
async def test_prices_pairs_and_health(client):
	prices = (await client.get("/trading/prices")).json()
	assert len(prices["prices"]) == 16
	assert all(p > 0 for p in prices["prices"].values())

	pairs = (await client.get("/trading/pairs")).json()
	assert "BTCUSDT" in pairs["supported_pairs"]
	assert pairs["trading_fee"] == pytest.approx(0.1)
	assert pairs["min_order_size"] == 0.001

	health = (await client.get("/trading/health")).json()
	assert health["status"] == "healthy"
	assert health["supported_pairs"] == 16


@pytest.mark.asyncio
async def test_prices_move_with_the_ticker(client):
	before = (await client.get("/trading/prices")).json()["prices"]
	await asyncio.sleep(0.3)
	after = (await client.get("/trading/prices")).json()["prices"]
	assert before != after
	for symbol, price in after.items():
		assert price > 0
		assert symbol in before


@pytest.mark.asyncio
async def test_get_signal_endpoint_returns_structure(client):
	await asyncio.sleep(0.2)
	resp = await client.get("/signal", params={"symbol": "btcusdt"})
	assert resp.status_code == 200, resp.text
	data = resp.json()
	assert set(["symbol", "trend", "rsi", "decision"]).issubset(set(data.keys()))
	assert data["symbol"] == "BTCUSDT"
	assert data["trend"] in {"bullish", "bearish", "neutral"}
	assert 0.0 <= float(data["rsi"]) <= 100.0
	assert data["decision"] in {"buy", "sell", "hold"}

	resp = await client.get("/signal", params={"symbol": "XYZ"})
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_bot_start_status_stop(client):
	headers = {"user-id": "botuser"}
	assert (await client.get("/bot/status", headers=headers)).status_code == 404

	resp = await client.post("/bot/start", headers=headers, params={"symbol": "ETHUSDT"})
	assert resp.status_code == 200, resp.text
	data = resp.json()
	assert data["running"] is True
	assert data["symbol"] == "ETHUSDT"
	assert data["last_analysis"] is not None

	await asyncio.sleep(0.2)
	status = (await client.get("/bot/status", headers=headers)).json()
	assert status["running"] is True
	assert len(status["logs"]) > 1

	stopped = (await client.post("/bot/stop", headers=headers)).json()
	assert stopped["running"] is False

	assert (await client.post("/bot/start", headers=headers, params={"symbol": "NOPE"})).status_code == 404


def test_websocket_prices_sends_initial_snapshot():
	app = make_app()
	with TestClient(app) as client:
		with client.websocket_connect("/ws/prices/BTCUSDT") as ws:
			message = ws.receive_json()
			assert message.get("symbol") == "BTCUSDT"
			assert message["price"] > 0
			assert "ts" in message


def test_websocket_unknown_symbol_is_closed():
	app = make_app()
	with TestClient(app) as client:
		with pytest.raises(WebSocketDisconnect) as excinfo:
			with client.websocket_connect("/ws/prices/NOPE") as ws:
				ws.receive_json()
		assert excinfo.value.code == 1008
