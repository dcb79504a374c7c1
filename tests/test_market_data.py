"""Tests for market data normalisation and caching."""

from datetime import timedelta

from conftest import NOW, make_market
from signalbot import market_data
from signalbot.market_data import MarketCache, fetch_active_markets, search_markets


RAW_MARKETS = [
    {
        "conditionId": "0xlow",
        "question": "Will ETH flip BTC?",
        "outcomes": '["Yes", "No"]',
        "outcomePrices": '["0.05", "0.95"]',
        "volume": "1000",
        "slug": "eth-flip",
    },
    {
        "id": "123",
        "question": "Will the Fed pause?",
        "outcomes": ["Yes", "No"],
        "outcomePrices": ["0.4", "0.6"],
        "volumeNum": 50000,
        "active": True,
    },
    {"conditionId": "0xnoquestion"},
    "garbage",
]


def test_fetch_active_markets_normalises_and_sorts(monkeypatch):
    captured = {}

    def fake_get(params):
        captured.update(params)
        return RAW_MARKETS

    monkeypatch.setattr(market_data, "_get_markets", fake_get)

    markets = fetch_active_markets(limit=50)

    assert captured["closed"] == "false"
    assert captured["limit"] == 50
    assert [m.condition_id for m in markets] == ["123", "0xlow"]
    fed = markets[0]
    assert fed.outcome_prices == [0.4, 0.6]
    assert fed.volume == 50000.0
    assert fed.price_for("YES") == 0.4
    assert fed.price_for("NO") == 0.6
    assert markets[1].slug == "eth-flip"


def test_non_list_response_yields_nothing(monkeypatch):
    monkeypatch.setattr(market_data, "_get_markets", lambda params: {"error": "nope"})
    assert fetch_active_markets() == []


def test_search_markets():
    markets = [make_market("a", "Will the Fed pause?"), make_market("b", "Will BTC hit 100k?")]
    assert [m.condition_id for m in search_markets(markets, "fed")] == ["a"]
    assert search_markets(markets, "  ") == []


class TestMarketCache:
    def setup_method(self):
        self.now = NOW
        self.fetches = 0

    def _fetcher(self, limit):
        self.fetches += 1
        return [make_market(f"m{self.fetches}")]

    def _cache(self):
        return MarketCache(fetcher=self._fetcher, limit=10, refresh_minutes=15, clock=lambda: self.now)

    def test_reuses_fresh_copy(self):
        cache = self._cache()
        first = cache.get_markets()
        self.now += timedelta(minutes=10)
        assert cache.get_markets() is first
        assert self.fetches == 1

    def test_refetches_when_stale(self):
        cache = self._cache()
        cache.get_markets()
        self.now += timedelta(minutes=16)
        assert cache.get_markets()[0].condition_id == "m2"

    def test_invalidate_forces_refetch(self):
        cache = self._cache()
        cache.get_markets()
        cache.invalidate()
        cache.get_markets()
        assert self.fetches == 2
