import json

import pytest
import redis
import requests

from conftest import FakeResponse, FakeSession
from market_data import (
    EMPTY_HISTORY, MarketDataError, MarketDataService, ResponseCache,
)


class TickingClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.ttls = {}
        self.fail = fail

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.data.get(key)

    def setex(self, key, ttl, value):
        if self.fail:
            raise redis.ConnectionError("down")
        self.data[key] = value
        self.ttls[key] = ttl


def _service(responses, cache=None):
    sleeps = []
    session = FakeSession(responses)
    service = MarketDataService(
        session=session, cache=cache or ResponseCache(clock=TickingClock()),
        base_url="https://api.test/v3/", sleep=sleeps.append,
    )
    return service, session, sleeps


COINS = [{"id": "bitcoin", "current_price": 50000}, {"id": "ethereum", "current_price": 3000}]


def test_top_coins_are_cached_within_ttl():
    clock = TickingClock()
    service, session, _ = _service([FakeResponse(200, COINS), FakeResponse(200, [])],
                                   cache=ResponseCache(clock=clock))
    assert service.top_coins(limit=2) == COINS
    clock.now += 59
    assert service.top_coins(limit=2) == COINS
    assert len(session.calls) == 1

    url, kwargs = session.calls[0]
    assert url == "https://api.test/v3/coins/markets"
    assert kwargs["params"]["per_page"] == 2
    assert kwargs["params"]["sparkline"] == "true"

    clock.now += 2
    assert service.top_coins(limit=2) == []
    assert len(session.calls) == 2


def test_distinct_params_use_distinct_cache_entries():
    service, session, _ = _service([FakeResponse(200, COINS), FakeResponse(200, COINS[:1])])
    service.top_coins(limit=2)
    assert service.top_coins(limit=1) == COINS[:1]
    assert len(session.calls) == 2


def test_rate_limit_backs_off_linearly_then_succeeds():
    service, session, sleeps = _service([
        FakeResponse(429), FakeResponse(429), FakeResponse(200, COINS),
    ])
    assert service.top_coins() == COINS
    assert sleeps == [1.0, 2.0]
    assert len(session.calls) == 3


def test_persistent_rate_limit_raises():
    service, _, sleeps = _service([FakeResponse(429)] * 3)
    with pytest.raises(MarketDataError):
        service.top_coins()
    assert sleeps == [1.0, 2.0, 3.0]


def test_upstream_errors_retry_then_fall_back():
    service, session, sleeps = _service([
        FakeResponse(500), requests.ConnectionError("reset"), FakeResponse(200, ValueError("bad json")),
    ])
    assert service.list_coins() == []
    assert sleeps == [0.5, 0.5]
    assert len(session.calls) == 3


def test_failed_fetch_is_not_cached():
    service, session, _ = _service([
        FakeResponse(500), FakeResponse(500), FakeResponse(500), FakeResponse(200, COINS),
    ])
    assert service.list_coins() == []
    assert service.list_coins() == COINS
    assert len(session.calls) == 4


def test_get_coin():
    service, session, _ = _service([FakeResponse(200, COINS[:1]), FakeResponse(200, [])])
    assert service.get_coin("bitcoin")["id"] == "bitcoin"
    assert session.calls[0][1]["params"]["ids"] == "bitcoin"
    assert service.get_coin("not-a-coin") is None


def test_get_coin_detail_falls_back_to_empty():
    service, session, _ = _service([FakeResponse(404)] * 3)
    assert service.get_coin_detail("bitcoin") == {}
    assert session.calls[0][0] == "https://api.test/v3/coins/bitcoin"


@pytest.mark.parametrize("time_range,days", [("1d", "1"), ("1y", "365"), ("all", "max"), ("5m", "7")])
def test_price_history_range_mapping(time_range, days):
    payload = {"prices": [[1, 2.0]], "market_caps": [], "total_volumes": []}
    service, session, _ = _service([FakeResponse(200, payload)])
    assert service.get_price_history("bitcoin", time_range) == payload
    url, kwargs = session.calls[0]
    assert url.endswith("/coins/bitcoin/market_chart")
    assert kwargs["params"]["days"] == days


def test_price_history_fallback():
    service, _, _ = _service([FakeResponse(200, {"prices": []})])
    assert service.get_price_history("bitcoin") == EMPTY_HISTORY
    service, _, _ = _service([FakeResponse(503)] * 3)
    assert service.get_price_history("bitcoin") == EMPTY_HISTORY


def test_global_stats_unwraps_data():
    service, _, _ = _service([FakeResponse(200, {"data": {"active_cryptocurrencies": 9000}})])
    assert service.get_global() == {"active_cryptocurrencies": 9000}


def test_global_and_trending_fallbacks():
    service, _, _ = _service([FakeResponse(200, {}), FakeResponse(500), FakeResponse(500), FakeResponse(500)])
    stats = service.get_global()
    assert stats["total_market_cap"] == {"usd": 0}
    assert stats["active_cryptocurrencies"] == 0
    assert service.get_trending() == {"coins": []}

    service, _, _ = _service([FakeResponse(200, {})])
    with pytest.raises(MarketDataError):
        service.global_stats()


def test_get_prices():
    service, session, _ = _service([FakeResponse(200, {
        "bitcoin": {"usd": 64000}, "ethereum": {"usd": 3100.5}, "ghost": {},
    })])
    prices = service.get_prices(["ethereum", "bitcoin", "bitcoin", "ghost"])
    assert prices == {"bitcoin": 64000.0, "ethereum": 3100.5}
    assert session.calls[0][1]["params"]["ids"] == "bitcoin,ethereum,ghost"
    assert service.get_prices([]) == {}


def test_redis_cache_backend():
    fake = FakeRedis()
    service, session, _ = _service([FakeResponse(200, {"coins": [{"item": {"id": "pepe"}}]})],
                                   cache=ResponseCache(redis_client=fake))
    first = service.get_trending()
    assert service.get_trending() == first
    assert len(session.calls) == 1
    (key, ttl), = fake.ttls.items()
    assert key.startswith("/search/trending")
    assert ttl == 300
    assert json.loads(fake.data[key]) == first


def test_redis_errors_degrade_to_upstream():
    service, session, _ = _service([FakeResponse(200, COINS), FakeResponse(200, COINS)],
                                   cache=ResponseCache(redis_client=FakeRedis(fail=True)))
    assert service.list_coins() == COINS
    assert service.list_coins() == COINS
    assert len(session.calls) == 2


def test_expired_entries_are_evicted():
    clock = TickingClock()
    cache = ResponseCache(clock=clock)
    cache.set("/global?", {"data": 1}, 120)
    assert cache.get("/global?", 120) == {"data": 1}
    clock.now += 120
    assert cache.get("/global?", 120) is None
    assert cache._entries == {}
