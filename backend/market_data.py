"""
Market data service — read-only proxy over the CoinGecko public API with
a fixed-TTL response cache and linear backoff on rate limiting.  Every
public call degrades to an empty/default shape when the upstream is
unreachable so the app always has something to render.
"""

from typing import Callable, Dict, List, Optional
from urllib.parse import quote
import json
import logging
import os
import time

import redis
import requests

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
REDIS_URL = os.getenv("REDIS_URL")

_http = requests.Session()
_http.headers.update({"Accept": "application/json", "User-Agent": "cryptovision/1.0"})

# ── Cache TTL per resource (seconds) ─────────────────────────────
CACHE_TTL: Dict[str, int] = {
    "coins": 60,
    "global": 120,
    "trending": 300,
    "history": 60,
    "detail": 300,
}

MAX_RETRIES = 3
RATE_LIMIT_BACKOFF = 1.0   # seconds × attempt number
ERROR_BACKOFF = 0.5

RANGE_TO_DAYS: Dict[str, str] = {
    "1d": "1", "7d": "7", "30d": "30",
    "90d": "90", "1y": "365", "all": "max",
}

EMPTY_HISTORY = {"prices": [], "market_caps": [], "total_volumes": []}


def empty_global_stats() -> Dict:
    return {
        "total_market_cap": {"usd": 0},
        "total_volume": {"usd": 0},
        "market_cap_percentage": {"btc": 0},
        "active_cryptocurrencies": 0,
        "market_cap_change_percentage_24h_usd": 0,
    }


class MarketDataError(Exception):
    """Upstream market data could not be fetched."""


# ── Response cache ───────────────────────────────────────────────
class ResponseCache:
    """
    Time-bounded memo of upstream responses keyed by request signature.
    Uses Redis when a client is supplied, otherwise an in-process dict.
    """

    def __init__(self, redis_client=None, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.clock = clock
        self._entries: Dict[str, tuple] = {}  # key → (data, timestamp)

    def get(self, key: str, ttl: int):
        if self.redis is not None:
            try:
                cached = self.redis.get(key)
                if cached:
                    return json.loads(cached)
            except redis.RedisError as exc:
                logger.warning("Redis get %s failed: %s", key, exc)
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry[1] < ttl:
            return entry[0]
        del self._entries[key]
        return None

    def set(self, key: str, data, ttl: int) -> None:
        if self.redis is not None:
            try:
                self.redis.setex(key, ttl, json.dumps(data))
            except redis.RedisError as exc:
                logger.warning("Redis set %s failed: %s", key, exc)
            return
        self._entries[key] = (data, self.clock())

    def clear(self) -> None:
        self._entries.clear()


def _connect_redis():
    """Redis is optional; without REDIS_URL or a reachable server the cache stays in memory."""
    if not REDIS_URL:
        return None
    try:
        client = redis.from_url(REDIS_URL, decode_responses=True)
        client.ping()
        return client
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Redis unavailable (%s), using in-memory cache", exc)
        return None


# ── Public API ───────────────────────────────────────────────────
class MarketDataService:
    """Central market data facade with caching and best-effort fallbacks."""

    def __init__(self, session: Optional[requests.Session] = None,
                 cache: Optional[ResponseCache] = None,
                 base_url: str = COINGECKO_BASE_URL,
                 sleep: Callable[[float], None] = time.sleep,
                 retries: int = MAX_RETRIES):
        self.session = session or _http
        self.cache = cache or ResponseCache()
        self.base_url = base_url.rstrip("/")
        self.sleep = sleep
        self.retries = retries

    def _fetch(self, endpoint: str, params: Optional[Dict] = None, ttl: int = 60):
        params = params or {}
        cache_key = endpoint + "?" + "&".join(f"{k}={params[k]}" for k in sorted(params))
        cached = self.cache.get(cache_key, ttl)
        if cached is not None:
            return cached

        for attempt in range(self.retries):
            try:
                r = self.session.get(f"{self.base_url}{endpoint}", params=params, timeout=15)
                if r.status_code == 429:
                    logger.warning("CoinGecko rate limited on %s (attempt %s)", endpoint, attempt + 1)
                    self.sleep(RATE_LIMIT_BACKOFF * (attempt + 1))
                    continue
                if r.status_code != 200:
                    raise MarketDataError(f"CoinGecko API error: {r.status_code}")
                data = r.json()
                self.cache.set(cache_key, data, ttl)
                return data
            except (requests.RequestException, ValueError, MarketDataError) as exc:
                if attempt == self.retries - 1:
                    raise MarketDataError(str(exc)) from exc
                self.sleep(ERROR_BACKOFF)
        raise MarketDataError(f"CoinGecko rate limit persisted for {endpoint}")

    # ── Strict fetchers (raise MarketDataError) ──────────────────
    def top_coins(self, limit: int = 50, page: int = 1, order: str = "market_cap_desc",
                  sparkline: bool = True) -> List[Dict]:
        params = {
            "vs_currency": "usd",
            "order": order,
            "per_page": limit,
            "page": page,
            "sparkline": "true" if sparkline else "false",
            "price_change_percentage": "24h,7d" if sparkline else "24h",
        }
        return self._fetch("/coins/markets", params, CACHE_TTL["coins"]) or []

    def global_stats(self) -> Dict:
        data = self._fetch("/global", ttl=CACHE_TTL["global"])
        if not data or not data.get("data"):
            raise MarketDataError("Malformed global stats payload")
        return data["data"]

    # ── Best-effort accessors ────────────────────────────────────
    def list_coins(self, limit: int = 50, page: int = 1,
                   order: str = "market_cap_desc") -> List[Dict]:
        try:
            return self.top_coins(limit=limit, page=page, order=order)
        except MarketDataError as e:
            logger.warning("Error fetching coins: %s", e)
            return []

    def get_coin(self, coin_id: str) -> Optional[Dict]:
        """Market snapshot for one coin, or None when CoinGecko doesn't know it."""
        params = {
            "vs_currency": "usd",
            "ids": coin_id,
            "sparkline": "true",
            "price_change_percentage": "24h,7d",
        }
        try:
            data = self._fetch("/coins/markets", params, CACHE_TTL["coins"])
        except MarketDataError as e:
            logger.warning("Error fetching coin %s: %s", coin_id, e)
            return None
        return data[0] if data else None

    def get_coin_detail(self, coin_id: str) -> Dict:
        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "false",
            "community_data": "false",
            "developer_data": "false",
        }
        try:
            return self._fetch(f"/coins/{quote(coin_id, safe='')}", params, CACHE_TTL["detail"]) or {}
        except MarketDataError as e:
            logger.warning("Error fetching coin detail %s: %s", coin_id, e)
            return {}

    def get_price_history(self, coin_id: str, time_range: str = "7d") -> Dict:
        days = RANGE_TO_DAYS.get(time_range, "7")
        try:
            data = self._fetch(
                f"/coins/{quote(coin_id, safe='')}/market_chart",
                {"vs_currency": "usd", "days": days},
                CACHE_TTL["history"],
            )
        except MarketDataError as e:
            logger.warning("Error fetching price history %s/%s: %s", coin_id, time_range, e)
            return dict(EMPTY_HISTORY)
        if not data or not data.get("prices"):
            return dict(EMPTY_HISTORY)
        return data

    def get_global(self) -> Dict:
        try:
            return self.global_stats()
        except MarketDataError as e:
            logger.warning("Error fetching global data: %s", e)
            return empty_global_stats()

    def get_trending(self) -> Dict:
        try:
            return self._fetch("/search/trending", ttl=CACHE_TTL["trending"]) or {"coins": []}
        except MarketDataError as e:
            logger.warning("Error fetching trending: %s", e)
            return {"coins": []}

    def get_prices(self, coin_ids: List[str]) -> Dict[str, float]:
        """Latest USD price per coin id, for revaluing the simulated portfolio."""
        if not coin_ids:
            return {}
        ids = ",".join(sorted(set(coin_ids)))
        try:
            data = self._fetch(
                "/simple/price", {"ids": ids, "vs_currencies": "usd"}, CACHE_TTL["coins"],
            ) or {}
        except MarketDataError as e:
            logger.warning("Error fetching prices for %s: %s", ids, e)
            return {}
        return {k: float(v["usd"]) for k, v in data.items() if v.get("usd") is not None}


def build_market_service() -> MarketDataService:
    return MarketDataService(cache=ResponseCache(redis_client=_connect_redis()))
