from locust import HttpUser, task, constant

PREDICT_BODY = {
    "symbol": "BTCUSDT",
    "timeframe": "1h",
    "data": {"rsi": 42, "macd": 0.001, "volume": 1.5e9, "trend": "up", "news_sentiment": "neutral"},
}


class PaperTraderUser(HttpUser):
    # ~100 QPS with 100 users if each sends ~1 request/second
    wait_time = constant(1.0)

    @task(5)
    def get_prices(self):
        self.client.get("/trading/prices")

    @task(3)
    def get_signal(self):
        self.client.get("/signal", params={"symbol": "BTCUSDT"})

    @task(2)
    def predict(self):
        # Mostly cache hits after the first call per symbol/timeframe
        self.client.post("/ai-predict", json=PREDICT_BODY)

    @task(1)
    def account(self):
        self.client.get("/trading/account", headers={"user-id": f"load_{id(self) % 50}"})
