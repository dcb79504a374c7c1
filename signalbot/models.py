"""
Data models for the crowd-signal campaign bot.

This module defines the core dataclasses used throughout the application
for representing social mentions, enriched signals, topic clusters,
market instruments, edge opportunities, trade orders and portfolio snapshots.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional


SIGNAL_TYPES = ("news", "data", "rumor", "sentiment", "onchain", "market_pointer", "noise")
URGENCIES = ("breaking", "developing", "slow")
DIRECTIONS = ("YES", "NO")

TRADE = "TRADE"
PASS = "PASS"
WATCH = "WATCH"
DECISIONS = (TRADE, PASS, WATCH)


@dataclass(frozen=True)
class Engagement:
    """Public engagement counters of a post."""
    likes: int = 0
    reshares: int = 0
    replies: int = 0
    quote_shares: int = 0

    @property
    def total(self) -> int:
        return self.likes + self.reshares + self.replies + self.quote_shares


@dataclass(frozen=True)
class Author:
    """
    Identity of the account that posted a mention.

    Attributes:
        id: Platform user id
        handle: Screen name without the leading @
        followers: Follower count
        account_age_days: Whole days since the account was created
    """
    id: str
    handle: str
    followers: int = 0
    account_age_days: int = 0


@dataclass(frozen=True)
class ConversationMessage:
    """A post that gives context to a mention (reply ancestor or quoted post)."""
    message_id: str
    text: str
    author_handle: str
    author_followers: int
    urls: tuple[str, ...] = ()
    engagement: Engagement = field(default_factory=Engagement)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RawMention:
    """
    An inbound social mention tagging the campaign account.

    Attributes:
        mention_id: Unique post id
        text: Post text
        author: Posting account
        urls: Expanded URLs found in the post
        engagement: Engagement counters at fetch time
        timestamp: Post creation time (UTC)
        in_reply_to_id: Parent post id when the mention is a reply
        conversation_context: Reply ancestors ordered root first, closest parent last
        quoted_message: The quoted post when the mention is a quote
    """
    mention_id: str
    text: str
    author: Author
    urls: tuple[str, ...] = ()
    engagement: Engagement = field(default_factory=Engagement)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    in_reply_to_id: Optional[str] = None
    conversation_context: tuple[ConversationMessage, ...] = ()
    quoted_message: Optional[ConversationMessage] = None


@dataclass
class EnrichedSignal:
    """
    A classified interpretation of one RawMention.

    Attributes:
        id: Signal identifier (sig_ prefix)
        raw: The mention this signal was built from (shared, read-only)
        signal_type: One of SIGNAL_TYPES except "noise"
        core_claim: One-sentence summary of what the mention asserts
        urgency: One of URGENCIES
        topics: Short topic labels
        corroboration: Ids of corroborating signals
        weight: Engagement weight at enrichment time
        processed_at: When the signal was produced
    """
    id: str
    raw: RawMention
    signal_type: str
    core_claim: str
    urgency: str
    topics: list[str]
    weight: float
    processed_at: datetime
    corroboration: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Sentiment:
    direction: str
    confidence: float


@dataclass
class TopicCluster:
    """
    A group of signals sharing one narrative.

    Recomputed every clustering pass; never persisted.
    """
    id: str
    name: str
    signals: list[EnrichedSignal]
    signal_count: int
    avg_engagement: float
    sentiment: Sentiment
    first_seen_at: datetime
    last_updated_at: datetime


@dataclass
class MarketInstrument:
    """
    Represents a prediction market from Polymarket.

    Attributes:
        condition_id: Stable market identifier
        slug: URL-friendly identifier
        question: Market question
        outcomes: Outcome labels, YES first for binary markets
        outcome_prices: Per-outcome prices as probabilities (0.0 to 1.0)
        volume: Lifetime volume in USD
        liquidity: Available liquidity in USD
        end_date: Resolution date (ISO string as returned by the API)
        active: Whether the market is open for trading
    """
    condition_id: str
    question: str
    outcomes: list[str] = field(default_factory=list)
    outcome_prices: list[float] = field(default_factory=list)
    volume: float = 0.0
    liquidity: float = 0.0
    end_date: str = ""
    active: bool = True
    slug: str = ""

    def price_for(self, direction: str) -> float:
        """Price of the YES (index 0) or NO (index 1) outcome, 0.5 when unknown."""
        index = 0 if direction == "YES" else 1
        if index < len(self.outcome_prices) and self.outcome_prices[index]:
            return self.outcome_prices[index]
        return 0.5


@dataclass
class EdgeOpportunity:
    """A proposed mapping of one cluster onto one market instrument."""
    cluster: TopicCluster
    market: MarketInstrument
    direction: str
    signal_implied_probability: float
    current_market_price: float
    price_discrepancy: float
    edge_score: float
    reasoning: str


@dataclass(frozen=True)
class TradeOrder:
    """
    The terminal decision for an opportunity.

    Size is 0 for anything that is not a TRADE; exit levels are 0 when
    no position is being opened.
    """
    decision: str
    market: MarketInstrument
    direction: str
    size: int
    entry_price: float
    stop_loss: float
    take_profit: float
    edge_score: float
    reasoning: str
    contributing_signals: tuple[EnrichedSignal, ...]
    pass_reason: Optional[str] = None
    watch_condition: Optional[str] = None
    theme: str = ""

    def downgraded_to_pass(self, reason: str) -> "TradeOrder":
        """Copy of this order recorded as a PASS with no size or exit levels."""
        return replace(
            self,
            decision=PASS,
            size=0,
            stop_loss=0.0,
            take_profit=0.0,
            pass_reason=reason,
        )


@dataclass(frozen=True)
class Position:
    market_id: str
    market_question: str
    direction: str
    entry_price: float
    current_price: float
    size: float
    entered_at: Optional[datetime] = None
    theme: str = ""


@dataclass(frozen=True)
class PortfolioState:
    """
    Snapshot of the portfolio used as decision input.

    Built fresh every tick from persisted open trades plus live positions.
    """
    bankroll: float
    starting_bankroll: float
    cash_available: float
    positions: tuple[Position, ...] = ()
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    day_number: int = 1
    trades_entered: int = 0
    trades_exited: int = 0
    win_count: int = 0
    loss_count: int = 0


@dataclass
class Contributor:
    handle: str
    user_id: str
    signals_sent: int = 0
    signals_that_led_to_trades: int = 0
    profitable_contributions: int = 0
    first_to_flag_count: int = 0
    total_pnl_from_signals: float = 0.0
    best_signal: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    tx_ref: Optional[str] = None
    error: Optional[str] = None
