# src/main.py
import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from bot import TradingBot
from config import Settings
from errors import LedgerError
from indicators import build_snapshot
from ledger import AccountStore
from market_analysis import analyze_market
from models import (
    AccountView,
    BotStatus,
    ClosePositionRequest,
    ClosePositionResponse,
    ModelsResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
    PredictionRequest,
    PredictionResult,
    PricesResponse,
    SignalResponse,
    SymbolState,
    TradingPairsResponse,
    now_ms,
)
from prediction_cache import PredictionCache, make_key
from price_feed import SimulatedPriceTable, price_stream
from scoring import PredictionEngine

logger = logging.getLogger(__name__)

DEFAULT_USER = "demo_user"


# --- ASYNC PRICE TICKER (Runs in the background) ---

async def price_consumer_task(app: FastAPI):
    """Advance the simulated price table and feed each symbol's rolling state."""
    table: SimulatedPriceTable = app.state.prices
    symbols: Dict[str, SymbolState] = app.state.symbols
    interval = app.state.settings.price_tick_seconds
    logger.info("Starting price ticker for %d symbols every %.1fs", len(table), interval)
    try:
        async for ticks in price_stream(table, interval_s=interval):
            for tick in ticks:
                state = symbols.get(tick.symbol)
                if state:
                    state.add_price(tick.price)
    except asyncio.CancelledError:
        logger.info("Price ticker cancelled.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Start the background ticker when the server starts
    app.state.ticker_task = asyncio.create_task(price_consumer_task(app))
    try:
        yield
    finally:
        for trading_bot in list(app.state.bots.values()):
            await trading_bot.stop()
        app.state.ticker_task.cancel()
        await app.state.ticker_task


def create_app(settings: Optional[Settings] = None, rng: Optional[random.Random] = None) -> FastAPI:
    """Build the service with its own price table, ledger, cache and models.

    ``rng`` seeds both the price random walk and the technical model's hold band.
    """
    settings = settings or Settings.from_env()
    rng = rng or random.Random()

    app = FastAPI(title="Paper Trading Signal Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.prices = SimulatedPriceTable(settings.base_prices(), jitter=settings.price_jitter, rng=rng)
    app.state.store = AccountStore(
        app.state.prices,
        starting_balance=settings.starting_balance,
        fee_rate=settings.fee_rate,
        fallback_price=settings.fallback_price,
        order_history_window=settings.order_history_window,
    )
    app.state.cache = PredictionCache(ttl_seconds=settings.cache_ttl_seconds)
    app.state.engine = PredictionEngine(rng=rng)
    app.state.bots = {}
    app.state.symbols = {}
    for sym, price in app.state.prices.snapshot().items():
        app.state.symbols[sym] = SymbolState(max_size=settings.bot_history_size)
        app.state.symbols[sym].add_price(price)

    app.include_router(router)
    return app


# --- Dependencies ---

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> AccountStore:
    return request.app.state.store


def get_prices(request: Request) -> SimulatedPriceTable:
    return request.app.state.prices


def get_engine(request: Request) -> PredictionEngine:
    return request.app.state.engine


def get_cache(request: Request) -> PredictionCache:
    return request.app.state.cache


def user_id_header(user_id: str = Header(default=DEFAULT_USER, alias="user-id")) -> str:
    return user_id or DEFAULT_USER


def _ledger_http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


router = APIRouter()


# --- Predictions ---

@router.post("/ai-predict", response_model=PredictionResult, tags=["Prediction"])
async def ai_predict(
    body: PredictionRequest,
    model: str = Query(default="ensemble"),
    engine: PredictionEngine = Depends(get_engine),
    cache: PredictionCache = Depends(get_cache),
):
    """Score a market snapshot with the technical, ml or ensemble model (cached 3 minutes)."""
    key = make_key(body.symbol, body.timeframe, body.period)
    cached = cache.get(key)
    if cached is not None:
        return cached

    result = engine.predict(body.to_input(), model=model)
    cache.put(key, result)
    return result


@router.get("/ai-predict/models", response_model=ModelsResponse, tags=["Prediction"])
async def ai_models(engine: PredictionEngine = Depends(get_engine), cache: PredictionCache = Depends(get_cache)):
    return ModelsResponse(available_models=engine.describe_models(), cache_stats=cache.stats())


@router.get("/ai-predict/health", tags=["Prediction"])
async def ai_health(engine: PredictionEngine = Depends(get_engine), cache: PredictionCache = Depends(get_cache)):
    return {
        "status": "healthy",
        "timestamp": now_ms(),
        "models_available": engine.model_names,
        "cache_size": len(cache),
    }


# --- Paper trading ---

@router.post("/trading/orders", response_model=PlaceOrderResponse, tags=["Trading"])
async def place_order(
    body: PlaceOrderRequest,
    user_id: str = Depends(user_id_header),
    store: AccountStore = Depends(get_store),
):
    try:
        order = store.place_market_order(user_id, body.symbol, body.side, body.amount, order_type=body.type)
    except LedgerError as exc:
        raise _ledger_http_error(exc)

    account = store.get_or_create(user_id)
    return PlaceOrderResponse(
        success=order.status == "filled",
        order=order,
        account_summary=store.summary(account, with_positions=True),
    )


@router.post("/trading/positions/close", response_model=ClosePositionResponse, tags=["Trading"])
async def close_position(
    body: ClosePositionRequest,
    user_id: str = Depends(user_id_header),
    store: AccountStore = Depends(get_store),
):
    try:
        position, pnl = store.close_position(user_id, body.position_id)
    except LedgerError as exc:
        raise _ledger_http_error(exc)

    return ClosePositionResponse(
        success=True,
        closed_position=position,
        pnl=pnl,
        account_summary=store.summary(store.get_or_create(user_id)),
    )


@router.get("/trading/account", response_model=AccountView, tags=["Trading"])
async def get_account(user_id: str = Depends(user_id_header), store: AccountStore = Depends(get_store)):
    return store.account_view(user_id)


@router.get("/trading/prices", response_model=PricesResponse, tags=["Trading"])
async def get_prices_snapshot(
    prices: SimulatedPriceTable = Depends(get_prices),
    settings: Settings = Depends(get_settings),
):
    return PricesResponse(
        prices=prices.snapshot(),
        timestamp=now_ms(),
        update_frequency=f"{settings.price_tick_seconds:g} seconds",
    )


@router.get("/trading/pairs", response_model=TradingPairsResponse, tags=["Trading"])
async def trading_pairs(
    prices: SimulatedPriceTable = Depends(get_prices),
    settings: Settings = Depends(get_settings),
):
    return TradingPairsResponse(
        supported_pairs=prices.symbols,
        base_currency="USDT",
        min_order_size=0.001,
        max_order_size=1000,
        trading_fee=settings.fee_rate * 100,
        features=["market_orders", "position_tracking", "pnl_calculation", "real_time_prices"],
    )


@router.get("/trading/health", tags=["Trading"])
async def trading_health(
    store: AccountStore = Depends(get_store),
    prices: SimulatedPriceTable = Depends(get_prices),
):
    return {
        "status": "healthy",
        "timestamp": now_ms(),
        "active_accounts": len(store),
        "supported_pairs": len(prices),
        "last_price_update": int(prices.last_update * 1000),
    }


# --- GET /signal Endpoint ---

@router.get("/signal", response_model=SignalResponse, tags=["Signal"])
async def get_signal(symbol: str, request: Request):
    """Indicator snapshot and bar-level analysis over the symbol's simulated price history."""
    state = request.app.state.symbols.get(symbol.upper())
    if not state:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Symbol {symbol} not tracked.")

    closes = list(state.prices)
    snapshot = build_snapshot(closes)
    change = (closes[-1] - closes[0]) / closes[0] * 100.0 if closes and closes[0] else 0.0
    analysis = analyze_market(closes, price_change_24h=change)
    return SignalResponse(
        symbol=symbol.upper(),
        trend=analysis.trend,
        rsi=snapshot.rsi,
        decision=analysis.signal,
        confidence=analysis.confidence,
        indicators=snapshot,
        analysis=analysis,
    )


# --- Bot control ---

@router.post("/bot/start", response_model=BotStatus, tags=["Bot"])
async def start_bot(
    request: Request,
    symbol: str = Query(default="BTCUSDT"),
    user_id: str = Depends(user_id_header),
):
    bots: Dict[str, TradingBot] = request.app.state.bots
    prices: SimulatedPriceTable = request.app.state.prices
    if symbol.upper() not in prices:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Symbol {symbol} not tracked.")

    current = bots.get(user_id)
    if current is not None and current.symbol != symbol.upper():
        await current.stop()
        current = None
    if current is None:
        current = TradingBot(
            request.app.state.store, prices, user_id=user_id, symbol=symbol,
            settings=request.app.state.settings,
        )
        state = request.app.state.symbols.get(symbol.upper())
        if state:
            current.seed_history(state.prices)
        bots[user_id] = current

    current.start()
    return current.status()


@router.post("/bot/stop", response_model=BotStatus, tags=["Bot"])
async def stop_bot(request: Request, user_id: str = Depends(user_id_header)):
    current: Optional[TradingBot] = request.app.state.bots.get(user_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No bot for this user.")
    await current.stop()
    return current.status()


@router.get("/bot/status", response_model=BotStatus, tags=["Bot"])
async def bot_status(request: Request, user_id: str = Depends(user_id_header)):
    current: Optional[TradingBot] = request.app.state.bots.get(user_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No bot for this user.")
    return current.status()


# --- WS /ws/prices Endpoint ---

@router.websocket("/ws/prices/{symbol}")
async def websocket_prices(websocket: WebSocket, symbol: str):
    """Stream the simulated price for ``symbol`` whenever it moves."""
    await websocket.accept()
    prices: SimulatedPriceTable = websocket.app.state.prices
    if symbol.upper() not in prices:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Symbol {symbol} not tracked.")
        return

    # Simple polling loop; the ticker only writes every few seconds.
    try:
        # Send an initial snapshot immediately so clients receive something on connect
        last_price = prices.get(symbol)
        await websocket.send_json({"symbol": symbol.upper(), "price": last_price, "ts": time.time()})
        while True:
            current_price = prices.get(symbol)
            if current_price != last_price:
                await websocket.send_json({"symbol": symbol.upper(), "price": current_price, "ts": time.time()})
                last_price = current_price
            await asyncio.sleep(0.1)
    except WebSocketDisconnect:
        logger.info("Client disconnected from %s price stream.", symbol.upper())


_settings = Settings.from_env()
logging.basicConfig(
    level=_settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
app = create_app(_settings)
