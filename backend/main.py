"""
CryptoVision — FastAPI Backend
Endpoints: market data proxy (cached), AI insights, simulated portfolio,
price alerts, gamified profile
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional, Dict
from sqlalchemy.orm import Session
import logging
import os

import uvicorn

from database import init_db, get_db, SqlStateStore
from insights import InsightGenerator
from market_data import MarketDataService, build_market_service
from portfolio_service import quote_trade
from store import AppStore

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

# ── App ──────────────────────────────────────────────────────────
app = FastAPI(title="CryptoVision API", version="1.0.0")

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:5000,http://127.0.0.1:3000"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in CORS_ORIGINS if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

market_service = build_market_service()
insight_generator = InsightGenerator(market_service)


# ── Rate limiting (in-memory, simple) ────────────────────────────
_rate_buckets: Dict[str, list] = {}
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = int(os.getenv("AI_RATE_LIMIT_MAX", "20"))  # LLM calls per window


def _check_rate_limit(client_ip: str) -> bool:
    now = datetime.now(timezone.utc).timestamp()
    bucket = _rate_buckets.setdefault(client_ip, [])
    # Prune old entries
    bucket[:] = [t for t in bucket if now - t < RATE_LIMIT_WINDOW]
    if len(bucket) >= RATE_LIMIT_MAX:
        return False
    bucket.append(now)
    return True


def _enforce_rate_limit(request: Request) -> None:
    client_ip = request.client.host if request.client else "unknown"
    if not _check_rate_limit(client_ip):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again later.")


# ── Startup ──────────────────────────────────────────────────────
@app.on_event("startup")
async def startup_event():
    init_db()
    logger.info("Market cache backend: %s",
                "redis" if market_service.cache.redis is not None else "memory")


# ── Dependencies ─────────────────────────────────────────────────
def get_market() -> MarketDataService:
    return market_service


def get_insights() -> InsightGenerator:
    return insight_generator


def get_store(db: Session = Depends(get_db)) -> AppStore:
    return AppStore.load(SqlStateStore(db))


# ── Pydantic Schemas ─────────────────────────────────────────────
class AskRequest(BaseModel):
    question: Optional[str] = None

class TradeIn(BaseModel):
    coin_id: str = Field(..., min_length=1)
    type: str = Field(..., pattern="^(buy|sell)$")
    quantity: float = Field(..., gt=0)
    price_per_coin: float = Field(..., gt=0)
    fee: Optional[float] = Field(None, ge=0)  # defaults to 0.1% of notional
    symbol: str = ""
    name: str = ""
    image: str = ""

class QuoteIn(BaseModel):
    amount_usd: float = Field(..., gt=0)
    price: float = Field(..., gt=0)
    type: str = Field("buy", pattern="^(buy|sell)$")

class PricesIn(BaseModel):
    prices: Optional[Dict[str, float]] = None  # fetched from CoinGecko when omitted

class AlertIn(BaseModel):
    coin_id: str = Field(..., min_length=1)
    target_price: float = Field(..., gt=0)
    condition: str = Field(..., pattern="^(above|below)$")
    symbol: str = ""
    name: str = ""
    image: str = ""

class XpIn(BaseModel):
    amount: int = Field(..., ge=0)

class ThemeIn(BaseModel):
    theme: str


@app.get("/")
async def root():
    return {"name": "CryptoVision API", "status": "ok"}


# ═══════════════════════════════════════════════════════════════
#  MARKET DATA ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.get("/api/crypto/coins")
def list_coins(limit: int = 50, page: int = 1, market: MarketDataService = Depends(get_market)):
    limit = limit if 0 < limit <= 250 else 50
    return market.list_coins(limit=limit, page=max(page, 1))


@app.get("/api/crypto/coin/{coin_id}")
def get_coin(coin_id: str, market: MarketDataService = Depends(get_market)):
    coin = market.get_coin(coin_id)
    if not coin:
        raise HTTPException(status_code=404, detail="Coin not found")
    return coin


@app.get("/api/crypto/coin-detail/{coin_id}")
def get_coin_detail(coin_id: str, market: MarketDataService = Depends(get_market)):
    return market.get_coin_detail(coin_id)


@app.get("/api/crypto/history/{coin_id}/{time_range}")
def get_history(coin_id: str, time_range: str, market: MarketDataService = Depends(get_market)):
    return market.get_price_history(coin_id, time_range)


@app.get("/api/crypto/global")
def get_global(market: MarketDataService = Depends(get_market)):
    return market.get_global()


@app.get("/api/crypto/trending")
def get_trending(market: MarketDataService = Depends(get_market)):
    return market.get_trending()


# ═══════════════════════════════════════════════════════════════
#  AI ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.get("/api/ai/market-insight", dependencies=[Depends(_enforce_rate_limit)])
def market_insight(insights: InsightGenerator = Depends(get_insights)):
    return insights.get_insight()


@app.post("/api/ai/ask", dependencies=[Depends(_enforce_rate_limit)])
def ask(req: AskRequest, insights: InsightGenerator = Depends(get_insights)):
    try:
        result = insights.ask(req.question or "")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if "error" in result:
        raise HTTPException(status_code=500, detail=result["error"])
    return result


# ═══════════════════════════════════════════════════════════════
#  PORTFOLIO ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.get("/api/portfolio")
def get_portfolio(store: AppStore = Depends(get_store)):
    """Portfolio with balances, holdings, transactions, and P&L."""
    return store.ledger.portfolio_summary()


@app.post("/api/portfolio/trade")
def trade(req: TradeIn, store: AppStore = Depends(get_store)):
    result = store.execute_trade(
        req.coin_id, req.type, req.quantity, req.price_per_coin, fee=req.fee,
        symbol=req.symbol, name=req.name, image=req.image,
    )
    if not result:
        raise HTTPException(status_code=400, detail=result.reason or "Trade failed")
    data = result.to_dict()
    data["profile"] = store.profile.to_dict()
    return data


@app.post("/api/portfolio/quote")
def quote(req: QuoteIn):
    result = quote_trade(req.amount_usd, req.price, req.type)
    if "error" in result:
        raise HTTPException(status_code=400, detail=result["error"])
    return result


def _resolve_prices(req: PricesIn, store: AppStore, market: MarketDataService) -> Dict[str, float]:
    if req.prices is not None:
        return req.prices
    coin_ids = [h.coin_id for h in store.portfolio.holdings]
    coin_ids += [a.coin_id for a in store.alert_book.active()]
    return market.get_prices(coin_ids)


@app.post("/api/portfolio/refresh")
def refresh_portfolio(
    req: PricesIn,
    store: AppStore = Depends(get_store),
    market: MarketDataService = Depends(get_market),
):
    """Revalue holdings with live prices and fire any alerts that are due."""
    prices = _resolve_prices(req, store, market)
    result = store.refresh_prices(prices)
    result["prices"] = prices
    return result


# ═══════════════════════════════════════════════════════════════
#  ALERT ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.get("/api/alerts")
def list_alerts(store: AppStore = Depends(get_store)):
    return {
        "active": [a.to_dict() for a in store.alert_book.active()],
        "triggered": [a.to_dict() for a in store.alert_book.triggered()],
    }


@app.post("/api/alerts")
def create_alert(req: AlertIn, store: AppStore = Depends(get_store)):
    result = store.add_alert(
        req.coin_id, req.target_price, req.condition,
        symbol=req.symbol, name=req.name, image=req.image,
    )
    if "error" in result:
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@app.delete("/api/alerts/{alert_id}")
def delete_alert(alert_id: str, store: AppStore = Depends(get_store)):
    if not store.remove_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"status": "deleted", "id": alert_id}


@app.post("/api/alerts/{alert_id}/trigger")
def trigger_alert(alert_id: str, store: AppStore = Depends(get_store)):
    alert = store.trigger_alert(alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert.to_dict()


@app.post("/api/alerts/check")
def check_alerts(
    req: PricesIn,
    store: AppStore = Depends(get_store),
    market: MarketDataService = Depends(get_market),
):
    prices = _resolve_prices(req, store, market)
    fired = store.check_alerts(prices)
    return {"triggered": [a.to_dict() for a in fired]}


# ═══════════════════════════════════════════════════════════════
#  PROFILE ENDPOINTS
# ═══════════════════════════════════════════════════════════════

def _profile_payload(store: AppStore) -> Dict:
    data = store.profile.to_dict()
    data["progress"] = store.gamification.xp_progress()
    return data


@app.get("/api/profile")
def get_profile(store: AppStore = Depends(get_store)):
    return _profile_payload(store)


@app.post("/api/profile/xp")
def add_xp(req: XpIn, store: AppStore = Depends(get_store)):
    store.add_xp(req.amount)
    return _profile_payload(store)


@app.post("/api/profile/achievements/{achievement_id}")
def unlock_achievement(achievement_id: str, store: AppStore = Depends(get_store)):
    if not store.profile.find_achievement(achievement_id):
        raise HTTPException(status_code=404, detail="Unknown achievement")
    unlocked = store.unlock_achievement(achievement_id)
    return {"unlocked": unlocked, "profile": _profile_payload(store)}


@app.post("/api/profile/streak")
def update_streak(store: AppStore = Depends(get_store)):
    store.update_streak()
    return _profile_payload(store)


@app.post("/api/profile/views/{coin_id}")
def track_view(coin_id: str, store: AppStore = Depends(get_store)):
    unlocked = store.track_coin_view(coin_id)
    return {"explorer_unlocked": unlocked, "viewed": len(store.profile.viewed_coins)}


@app.post("/api/profile/watchlist/{coin_id}")
def add_watchlist(coin_id: str, store: AppStore = Depends(get_store)):
    return {"watchlist": store.add_to_watchlist(coin_id)}


@app.delete("/api/profile/watchlist/{coin_id}")
def remove_watchlist(coin_id: str, store: AppStore = Depends(get_store)):
    return {"watchlist": store.remove_from_watchlist(coin_id)}


@app.put("/api/profile/theme")
def set_theme(req: ThemeIn, store: AppStore = Depends(get_store)):
    if not store.set_theme(req.theme):
        raise HTTPException(status_code=400, detail=f"Unknown theme: {req.theme}")
    return _profile_payload(store)


if __name__ == "__main__":
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting CryptoVision API on http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port)
