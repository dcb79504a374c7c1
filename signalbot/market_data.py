"""
Market data for active Polymarket instruments.

This module handles the retrieval and normalization of market data from the
Polymarket Gamma API, plus a small time-bounded cache so the edge scorer does
not refetch the catalogue for every cluster. It performs no business logic.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from signalbot.config import Config
from signalbot.models import MarketInstrument
from signalbot.utils import request_json, retry_with_backoff, safe_float

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CACHE_MINUTES = 15


@retry_with_backoff(max_retries=3, initial_delay=1.0)
def _get_markets(params: dict) -> Any:
    url = f"{Config.POLYMARKET_GAMMA_URL}/markets"
    logger.debug(f"Requesting markets from {url} with params: {params}")
    return request_json(
        "GET",
        url,
        timeout=Config.API_TIMEOUT,
        params=params,
        headers={
            "Accept": "application/json",
            "User-Agent": "SignalCampaignBot/1.0"
        },
    )


def fetch_active_markets(limit: int = 100) -> list[MarketInstrument]:
    """
    Fetch active markets from Polymarket Gamma API, highest volume first.

    Args:
        limit: Maximum number of markets to fetch

    Returns:
        List of MarketInstrument objects sorted by volume descending

    Raises:
        requests.RequestException: If the API is unreachable after retries
    """
    logger.info(f"Fetching up to {limit} active markets from Polymarket")

    params = {
        "closed": "false",
        "limit": limit,
        "order": "volume",
        "ascending": "false",
    }

    data = _get_markets(params)
    markets = _normalize_markets(data)
    markets.sort(key=lambda m: m.volume, reverse=True)

    logger.info(f"Successfully normalized {len(markets)} markets")
    return markets


def search_markets(markets: list[MarketInstrument], query: str, limit: int = 20) -> list[MarketInstrument]:
    """Case-insensitive substring search over market questions."""
    needle = query.lower().strip()
    if not needle:
        return []
    return [m for m in markets if needle in m.question.lower()][:limit]


def _normalize_markets(api_data: Any) -> list[MarketInstrument]:
    """
    Normalize raw API response data into MarketInstrument objects.

    Invalid entries are skipped with a warning.
    """
    markets: list[MarketInstrument] = []

    if not isinstance(api_data, list):
        logger.warning(f"Expected list of markets, got {type(api_data)}")
        return markets

    for idx, market_data in enumerate(api_data):
        try:
            market = _parse_market(market_data)
            if market:
                markets.append(market)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to parse market at index {idx}: {e}")
            continue

    return markets


def _decode_list(value: Any) -> list:
    """Gamma encodes list fields as JSON strings; accept either form."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return []
        return decoded if isinstance(decoded, list) else []
    return []


def _parse_market(data: dict) -> Optional[MarketInstrument]:
    """
    Parse a single market dictionary into a MarketInstrument.

    Returns:
        MarketInstrument, or None when the entry has no usable identifier
    """
    condition_id = data.get("conditionId") or data.get("condition_id") or data.get("id")
    if not condition_id:
        logger.debug("Market missing identifier, skipping")
        return None

    question = data.get("question") or data.get("title") or ""
    if not question:
        logger.debug(f"Market {condition_id} missing question, skipping")
        return None

    outcomes = [str(o) for o in _decode_list(data.get("outcomes"))]
    prices = [safe_float(p, 0.0) for p in _decode_list(data.get("outcomePrices"))]

    return MarketInstrument(
        condition_id=str(condition_id),
        slug=data.get("slug") or "",
        question=question,
        outcomes=outcomes,
        outcome_prices=prices,
        volume=safe_float(data.get("volume") or data.get("volumeNum"), 0.0),
        liquidity=safe_float(data.get("liquidity") or data.get("liquidityNum"), 0.0),
        end_date=data.get("endDate") or data.get("end_date_iso") or "",
        active=data.get("active") is not False,
    )


class MarketCache:
    """
    Time-bounded cache of the active market catalogue.

    Refetches when the cached copy is older than `refresh_minutes` or empty.
    """

    def __init__(
        self,
        fetcher: Callable[[int], list[MarketInstrument]] = fetch_active_markets,
        limit: int = 200,
        refresh_minutes: int = DEFAULT_CACHE_MINUTES,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.fetcher = fetcher
        self.limit = limit
        self.refresh_interval = timedelta(minutes=refresh_minutes)
        self.clock = clock
        self._markets: list[MarketInstrument] = []
        self._fetched_at: Optional[datetime] = None

    def get_markets(self) -> list[MarketInstrument]:
        now = self.clock()
        stale = self._fetched_at is None or now - self._fetched_at > self.refresh_interval
        if stale or not self._markets:
            self._markets = self.fetcher(self.limit)
            self._fetched_at = now
        return self._markets

    def invalidate(self) -> None:
        self._fetched_at = None
