"""Shared fakes and builders for the test suite."""

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest

from signalbot.config import CampaignConfig
from signalbot.models import (
    Author,
    EdgeOpportunity,
    EnrichedSignal,
    Engagement,
    ExecutionResult,
    MarketInstrument,
    PortfolioState,
    Position,
    RawMention,
    Sentiment,
    TopicCluster,
)
from signalbot.storage import Storage

NOW = datetime(2024, 3, 1, 12, 0, 0)


class FakeLLM:
    """
    Stand-in for ClaudeClient.

    Either replays queued responses in order or delegates to a responder
    callable (needed when calls happen from worker threads).
    """

    def __init__(self, responses=None, responder: Optional[Callable[[str, str], str]] = None):
        self.responses = list(responses or [])
        self.responder = responder
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        with self._lock:
            self.calls.append((system, prompt))
            if self.responder:
                response = self.responder(system, prompt)
            elif self.responses:
                response = self.responses.pop(0)
            else:
                raise AssertionError("Unexpected LLM call")
        if isinstance(response, Exception):
            raise response
        return response


class FakeMarketCache:
    def __init__(self, markets):
        self.markets = markets

    def get_markets(self):
        return self.markets


class FakeExecutor:
    def __init__(self, result: Optional[ExecutionResult] = None, positions=None):
        self.result = result or ExecutionResult(success=True, tx_ref="0xabc")
        self.positions = positions or []
        self.placed = []
        self.exit_rules = []

    def place_order(self, order):
        self.placed.append(order)
        return self.result

    def set_exit_rules(self, order):
        self.exit_rules.append(order)
        return {"stop_loss_set": True, "take_profit_set": True}

    def get_open_positions(self):
        return self.positions


class FakeTwitter:
    def __init__(self, mentions=None, fail_post: bool = False):
        self.mentions = list(mentions or [])
        self.fail_post = fail_post
        self.since_ids = []
        self.threads = []

    def fetch_mentions(self, since_id=None):
        self.since_ids.append(since_id)
        mentions, self.mentions = self.mentions, []
        return mentions

    def post_thread(self, texts):
        if self.fail_post:
            raise RuntimeError("post failed")
        self.threads.append(list(texts))
        return [str(i) for i in range(len(texts))]


def make_mention(
    mention_id: str = "100",
    handle: str = "alice",
    user_id: Optional[str] = None,
    text: str = "@VincentPlays the Fed is about to pause",
    followers: int = 1000,
    account_age_days: int = 365,
    likes: int = 0,
    reshares: int = 0,
    quote_shares: int = 0,
    timestamp: Optional[datetime] = None,
    conversation_context=(),
    quoted_message=None,
) -> RawMention:
    return RawMention(
        mention_id=mention_id,
        text=text,
        author=Author(
            id=user_id or f"u_{handle}",
            handle=handle,
            followers=followers,
            account_age_days=account_age_days,
        ),
        engagement=Engagement(likes=likes, reshares=reshares, quote_shares=quote_shares),
        timestamp=timestamp or NOW,
        conversation_context=tuple(conversation_context),
        quoted_message=quoted_message,
    )


def make_signal(
    signal_id: str = "sig_1",
    urgency: str = "developing",
    weight: float = 2.0,
    topics=("Fed policy",),
    **mention_kwargs
) -> EnrichedSignal:
    mention_kwargs.setdefault("mention_id", signal_id.replace("sig_", "") or "1")
    mention = make_mention(**mention_kwargs)
    return EnrichedSignal(
        id=signal_id,
        raw=mention,
        signal_type="news",
        core_claim="The Fed will pause rate hikes",
        urgency=urgency,
        topics=list(topics),
        weight=weight,
        processed_at=mention.timestamp,
    )


def make_cluster(signal_count: int = 5, name: str = "Fed pause", urgency: str = "developing") -> TopicCluster:
    signals = [
        make_signal(f"sig_{i}", urgency=urgency, handle=f"user{i}", timestamp=NOW - timedelta(minutes=i))
        for i in range(signal_count)
    ]
    return TopicCluster(
        id="clst_1",
        name=name,
        signals=signals,
        signal_count=len(signals),
        avg_engagement=0.0,
        sentiment=Sentiment("dovish", 0.8),
        first_seen_at=min(s.raw.timestamp for s in signals),
        last_updated_at=NOW,
    )


def make_market(
    condition_id: str = "0xmarket",
    question: str = "Will the Fed pause in March?",
    yes_price: float = 0.40,
    no_price: float = 0.60,
    volume: float = 100_000.0,
) -> MarketInstrument:
    return MarketInstrument(
        condition_id=condition_id,
        question=question,
        outcomes=["Yes", "No"],
        outcome_prices=[yes_price, no_price],
        volume=volume,
    )


def make_opportunity(
    edge_score: float = 0.85,
    signal_count: int = 5,
    market: Optional[MarketInstrument] = None,
    direction: str = "YES",
    price: float = 0.40,
) -> EdgeOpportunity:
    return EdgeOpportunity(
        cluster=make_cluster(signal_count),
        market=market or make_market(),
        direction=direction,
        signal_implied_probability=0.7,
        current_market_price=price,
        price_discrepancy=abs(0.7 - price),
        edge_score=edge_score,
        reasoning="Signals point to a pause",
    )


def make_portfolio(
    bankroll: float = 10_000.0,
    cash_available: Optional[float] = None,
    positions=(),
) -> PortfolioState:
    return PortfolioState(
        bankroll=bankroll,
        starting_bankroll=10_000.0,
        cash_available=bankroll if cash_available is None else cash_available,
        positions=tuple(positions),
    )


def make_position(market_id: str = "0xother", question: str = "Will BTC hit 100k?", size: float = 200.0) -> Position:
    return Position(
        market_id=market_id,
        market_question=question,
        direction="YES",
        entry_price=0.5,
        current_price=0.5,
        size=size,
    )


@pytest.fixture
def config() -> CampaignConfig:
    return CampaignConfig()


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path / "campaign.db")
