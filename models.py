# src/models.py
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional
import time

from pydantic import BaseModel, ConfigDict, Field

Prediction = Literal["buy", "sell", "hold"]
RiskLevel = Literal["low", "medium", "high"]
Trend = Literal["up", "down", "sideways"]
Sentiment = Literal["positive", "neutral", "negative"]
Timeframe = Literal["5m", "15m", "30m", "1h", "4h", "1d", "1w"]
ModelName = Literal["technical", "ml", "ensemble"]

OrderSide = Literal["buy", "sell"]
OrderType = Literal["market", "limit", "stop"]
OrderStatus = Literal["pending", "filled", "cancelled", "rejected"]
PositionSide = Literal["long", "short"]


def now_ms() -> int:
    return int(time.time() * 1000)


# Data class for incoming stream ticks (matches price_feed.py output)
@dataclass
class Tick:
    symbol: str
    ts: float        # epoch seconds
    price: float


# The rolling state for one simulated symbol
class SymbolState:
    def __init__(self, max_size: int = 200):
        # A deque to hold a rolling window of prices (for indicators)
        self.prices: deque[float] = deque(maxlen=max_size)

    def add_price(self, price: float):
        self.prices.append(price)


# One bar of a PriceSeries
@dataclass
class Candle:
    ts: float
    open: float
    high: float
    low: float
    close: float
    volume: float


# --- Indicators ---

class BollingerBands(BaseModel):
    model_config = ConfigDict(frozen=True)

    upper: float
    middle: float
    lower: float


class IndicatorSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    rsi: float = Field(ge=0.0, le=100.0)
    macd: float
    signal: float
    histogram: float
    sma_short: float
    sma_long: float
    ema_short: float
    ema_long: float
    bollinger: BollingerBands
    volume_sma: float
    volatility: float


class MarketAnalysis(BaseModel):
    price: float
    price_change_24h: float
    volume_24h: float
    volatility: float
    rsi: float
    macd: float
    bollinger: BollingerBands
    support: float
    resistance: float
    trend: Literal["bullish", "bearish", "neutral"]
    signal: Prediction
    confidence: int


# --- Predictions ---

class PredictionInput(BaseModel):
    """Caller-supplied snapshot the scorer works on. It never fetches data."""

    symbol: str
    timeframe: Timeframe = "1h"
    rsi: float = Field(default=50.0, ge=0.0, le=100.0)
    macd: float = 0.0
    volume: float = Field(default=1e9, ge=0.0)
    trend: Trend = "sideways"
    sentiment: Sentiment = "neutral"
    price_history: List[float] = Field(default_factory=list)


class MarketData(BaseModel):
    rsi: float = Field(default=50.0, ge=0.0, le=100.0)
    macd: float = 0.0
    volume: float = Field(default=1e9, ge=0.0)
    trend: Trend = "sideways"
    news_sentiment: Sentiment = "neutral"
    price_history: List[float] = Field(default_factory=list)


# Request body for POST /ai-predict
class PredictionRequest(BaseModel):
    symbol: str = Field(min_length=1)
    timeframe: Timeframe = "1h"
    predict_period: Optional[str] = None
    data: MarketData

    @property
    def period(self) -> str:
        return self.predict_period or self.timeframe

    def to_input(self) -> PredictionInput:
        return PredictionInput(
            symbol=self.symbol,
            timeframe=self.timeframe,
            rsi=self.data.rsi,
            macd=self.data.macd,
            volume=self.data.volume,
            trend=self.data.trend,
            sentiment=self.data.news_sentiment,
            price_history=list(self.data.price_history),
        )


class PredictionResult(BaseModel):
    symbol: str
    prediction: Prediction
    confidence: int = Field(ge=30, le=95)
    probability_up: int = Field(ge=0, le=100)
    probability_down: int = Field(ge=0, le=100)
    target_price: float
    stop_loss: float
    reasoning: str
    technical_analysis: str
    risk_level: RiskLevel
    model_used: str
    timestamp: int = Field(default_factory=now_ms)


class ModelInfo(BaseModel):
    name: ModelName
    description: str
    accuracy: str
    speed: Literal["fast", "medium", "slow"]


class CacheStats(BaseModel):
    cached_predictions: int
    cache_duration_minutes: float


class ModelsResponse(BaseModel):
    available_models: List[ModelInfo]
    cache_stats: CacheStats


# --- Paper ledger records (owned by ledger.AccountStore) ---

@dataclass
class Position:
    id: str
    symbol: str
    side: PositionSide
    size: float
    entry_price: float
    current_price: float
    pnl: float = 0.0
    pnl_percent: float = 0.0
    timestamp: int = field(default_factory=now_ms)


@dataclass
class Order:
    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    amount: float
    price: Optional[float]
    status: OrderStatus
    filled_amount: float = 0.0
    fee: float = 0.0
    reason: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)


@dataclass
class Account:
    balance: float
    equity: float
    margin: float = 0.0
    free_margin: float = 0.0
    positions: List[Position] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)


# --- Ledger requests / responses ---

class PlaceOrderRequest(BaseModel):
    symbol: str = Field(min_length=1)
    side: OrderSide
    type: OrderType = "market"
    amount: float = Field(gt=0.0)
    price: Optional[float] = None
    stop_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


class ClosePositionRequest(BaseModel):
    position_id: str = Field(min_length=1)


class AccountSummary(BaseModel):
    balance: float
    equity: float
    free_margin: float
    positions_count: Optional[int] = None


class PlaceOrderResponse(BaseModel):
    success: bool
    order: Order
    account_summary: AccountSummary


class ClosePositionResponse(BaseModel):
    success: bool
    closed_position: Position
    pnl: float
    account_summary: AccountSummary


class AccountState(BaseModel):
    balance: float
    equity: float
    margin: float
    free_margin: float
    margin_level: float


class AccountStats(BaseModel):
    total_positions: int
    total_pnl: float
    win_rate: float


class AccountView(BaseModel):
    account: AccountState
    positions: List[Position]
    orders: List[Order]
    summary: AccountStats


class PricesResponse(BaseModel):
    prices: Dict[str, float]
    timestamp: int
    update_frequency: str


class TradingPairsResponse(BaseModel):
    supported_pairs: List[str]
    base_currency: str
    min_order_size: float
    max_order_size: float
    trading_fee: float  # percent
    features: List[str]


# The response model for the GET /signal endpoint
class SignalResponse(BaseModel):
    symbol: str
    trend: Literal["bullish", "bearish", "neutral"]
    rsi: float  # [0, 100]
    decision: Prediction
    confidence: int
    indicators: IndicatorSnapshot
    analysis: MarketAnalysis


class BotStatus(BaseModel):
    running: bool
    user_id: str
    symbol: str
    last_analysis: Optional[MarketAnalysis] = None
    logs: List[str] = Field(default_factory=list)
