"""
Campaign orchestrator.

One tick runs the full pipeline:
1. Fetch new mentions since the persisted cursor
2. Rate-limit per author
3. Enrich into signals and persist them
4. Cluster all recent signals
5. Score edge opportunities and keep the best few
6. Decide, execute and publish

A daily digest is published once per UTC day inside a fixed hour window,
independently of whether the tick succeeded.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from signalbot.clustering import TopicClusterer
from signalbot.composer import ContentComposer
from signalbot.config import CampaignConfig
from signalbot.edge_scorer import EdgeScorer
from signalbot.enricher import SignalEnricher
from signalbot.executor import TradeExecutor
from signalbot.models import (
    PASS,
    TRADE,
    WATCH,
    EdgeOpportunity,
    EnrichedSignal,
    MarketInstrument,
    PortfolioState,
    Position,
    RawMention,
    TradeOrder,
)
from signalbot.sanity_checker import SanityChecker
from signalbot.state import CampaignState
from signalbot.storage import STATUS_OPEN, Storage, start_of_day
from signalbot.telegram_notifier import mirror_thread
from signalbot.twitter_client import TwitterClient
from signalbot.utils import safe_float

# Configure module logger
logger = logging.getLogger(__name__)

MIN_SIGNALS_TO_CLUSTER = 2
MIN_SIGNALS_TO_PUBLISH_WATCH = 3

Publisher = Callable[[list[str], Optional[str]], bool]


def newest_mention_id(mentions: list[RawMention]) -> str:
    """Highest mention id; ids are numeric strings on X, compared as integers."""
    try:
        return max(mentions, key=lambda m: int(m.mention_id)).mention_id
    except ValueError:
        # Non-numeric ids: the timeline is returned newest first
        return mentions[0].mention_id


def _position_price(position: dict) -> Optional[float]:
    for key in ("currentPrice", "curPrice", "price"):
        if position.get(key) is not None:
            price = safe_float(position.get(key), -1.0)
            if price >= 0:
                return price
    return None


def _position_market_id(position: dict) -> Optional[str]:
    market_id = position.get("marketId") or position.get("conditionId") or position.get("market_id")
    return str(market_id) if market_id else None


def _order_from_trade(trade: dict, signals: list[EnrichedSignal]) -> TradeOrder:
    """Rebuild the executed order from its persisted row."""
    return TradeOrder(
        decision=trade["decision"],
        market=MarketInstrument(condition_id=trade["market_id"], question=trade["market_question"]),
        direction=trade["direction"],
        size=int(trade["size"] or 0),
        entry_price=trade["entry_price"] or 0.0,
        stop_loss=trade["stop_loss"] or 0.0,
        take_profit=trade["take_profit"] or 0.0,
        edge_score=trade["edge_score"],
        reasoning=trade["reasoning"],
        contributing_signals=tuple(signals),
        theme=trade["theme"] or "",
    )


class Campaign:
    """Runs campaign ticks against injected collaborators."""

    def __init__(
        self,
        twitter: TwitterClient,
        enricher: SignalEnricher,
        clusterer: TopicClusterer,
        edge_scorer: EdgeScorer,
        sanity_checker: SanityChecker,
        executor: TradeExecutor,
        composer: ContentComposer,
        storage: Storage,
        state: CampaignState,
        config: CampaignConfig,
        publisher: Optional[Publisher] = mirror_thread,
    ):
        self.twitter = twitter
        self.enricher = enricher
        self.clusterer = clusterer
        self.edge_scorer = edge_scorer
        self.sanity_checker = sanity_checker
        self.executor = executor
        self.composer = composer
        self.storage = storage
        self.state = state
        self.config = config
        self.publisher = publisher

    def run_tick(self, now: Optional[datetime] = None) -> None:
        """Run one tick and the digest check. Never raises."""
        try:
            self.tick(now)
        except Exception as e:
            logger.error(f"Tick failed: {e}", exc_info=True)

        try:
            self.maybe_publish_digest(now)
        except Exception as e:
            logger.error(f"Digest check failed: {e}", exc_info=True)

    def tick(self, now: Optional[datetime] = None) -> list[TradeOrder]:
        """
        One pass of the pipeline.

        Returns:
            The orders decided in this tick (possibly empty)
        """
        now = now or datetime.utcnow()
        logger.info(f"Tick at {now.isoformat()}")

        # Step 1: Fetch mentions, persisting the cursor straight away
        mentions = self.twitter.fetch_mentions(since_id=self.state.get_last_seen_cursor())
        if not mentions:
            logger.info("No new mentions")
            return []

        self.state.set_last_seen_cursor(newest_mention_id(mentions))
        logger.info(f"Fetched {len(mentions)} new mentions")

        # Step 2: Per-author daily rate limit
        accepted = self.apply_rate_limit(mentions, now)

        # Step 3: Enrich and persist
        signals = self.enricher.enrich_batch(accepted)
        for signal in signals:
            if self.storage.save_signal(signal):
                self.storage.update_contributor(signal)
        logger.info(f"Enriched {len(signals)} signals ({len(mentions) - len(signals)} filtered/noise)")

        # Step 4: Cluster over the whole window, not just this batch
        recent = self.storage.get_recent_signals(self.config.cluster_window_hours, now)
        if len(recent) < MIN_SIGNALS_TO_CLUSTER:
            logger.info("Not enough recent signals to cluster")
            return []

        clusters = self.clusterer.cluster_signals(recent, now)
        logger.info(f"Found {len(clusters)} topic clusters")

        # Step 5: Score and rank
        opportunities: list[EdgeOpportunity] = []
        for cluster in clusters:
            weight = self.clusterer.cluster_weight(cluster, now)
            opportunities.extend(self.edge_scorer.find_edge(cluster, weight))

        opportunities.sort(key=lambda o: o.edge_score, reverse=True)
        top = opportunities[:self.config.top_opportunities_per_tick]
        logger.info(f"Found {len(opportunities)} edge opportunities, evaluating {len(top)}")

        # Step 6: Decide and act
        orders = []
        for opportunity in top:
            portfolio = self.get_portfolio_state(now)
            order = self.sanity_checker.evaluate(opportunity, portfolio)
            logger.info(f"{order.market.question[:50]} -> {order.decision}")
            orders.append(self.handle_order(order, portfolio))

        return orders

    def apply_rate_limit(self, mentions: list[RawMention], now: datetime) -> list[RawMention]:
        """
        Keep mentions while their author is under the daily signal cap.

        The count includes signals already persisted today plus mentions
        accepted earlier in this batch.
        """
        counts: dict[str, int] = {}
        accepted = []

        for mention in mentions:
            handle = mention.author.handle
            if handle not in counts:
                counts[handle] = self.storage.get_user_signal_count_today(handle, now)

            if counts[handle] >= self.config.max_signals_per_user_per_day:
                logger.debug(f"Rate limited @{handle}")
                continue

            counts[handle] += 1
            accepted.append(mention)

        if len(accepted) < len(mentions):
            logger.info(f"Rate limited {len(mentions) - len(accepted)} mentions")
        return accepted

    def handle_order(self, order: TradeOrder, portfolio: PortfolioState) -> TradeOrder:
        """
        Execute, persist and publish one decision.

        Returns:
            The order as recorded (a failed execution is recorded as PASS)
        """
        signal_count = len(order.contributing_signals)

        if order.decision == TRADE and order.size > 0:
            result = self.executor.place_order(order)

            if not result.success:
                logger.error(f"Trade failed on {order.market.condition_id}: {result.error}")
                recorded = order.downgraded_to_pass(f"Execution failed: {result.error}")
                self.storage.save_trade(recorded)
                return recorded

            if self.storage.save_trade(order, tx_ref=result.tx_ref) is None:
                logger.error(
                    f"Executed trade on {order.market.condition_id} (tx={result.tx_ref}) "
                    f"was not recorded; reconcile the ledger manually"
                )
            self.executor.set_exit_rules(order)
            self.storage.attribute_trade_to_contributors(order)
            logger.info(
                f"Trade placed: {order.direction} on \"{order.market.question[:50]}\" for ${order.size}"
            )
            self.publish(self.composer.compose_trade_entry(order, portfolio), "New position")
            return order

        if order.decision == TRADE:
            order = order.downgraded_to_pass("Position size is zero")

        self.storage.save_trade(order)

        if order.decision == PASS and signal_count >= self.config.min_signals_to_publish_pass:
            self.publish(self.composer.compose_trade_pass(order), "Passed")
        elif order.decision == WATCH and signal_count >= MIN_SIGNALS_TO_PUBLISH_WATCH:
            self.publish(self.composer.compose_trade_watch(order), "Watching")

        return order

    def record_exit(self, trade_id: str, exit_price: float, now: Optional[datetime] = None) -> Optional[float]:
        """
        Close an open trade at `exit_price` once the trade manager has sold it.

        Realised PnL is credited to the trade's contributors and an exit
        thread is published.

        Returns:
            Realised PnL, or None if the trade is unknown or already closed
        """
        trade = self.storage.get_trade(trade_id)
        if not trade or trade["status"] != STATUS_OPEN:
            logger.warning(f"Trade {trade_id} is not open, nothing to close")
            return None

        entry_price = trade["entry_price"] or 0.0
        size = trade["size"] or 0.0
        pnl = size * (exit_price / entry_price - 1) if entry_price > 0 else 0.0

        if not self.storage.close_trade(trade_id, exit_price, pnl):
            return None

        signals = self.storage.get_signals_by_ids(json.loads(trade["contributing_signal_ids"] or "[]"))
        self.storage.attribute_profit_to_contributors(signals, pnl, trade["market_question"])
        logger.info(f"Closed {trade_id} at ${exit_price:.2f} (P&L {pnl:+.2f})")

        order = _order_from_trade(trade, signals)
        posts = self.composer.compose_trade_exit(order, exit_price, pnl, self.get_portfolio_state(now))
        self.publish(posts, "Position closed")
        return pnl

    def publish(self, posts: list[str], title: Optional[str] = None) -> bool:
        """Post a thread and mirror it. Failures are logged, never raised."""
        if not posts:
            return False

        posted = False
        try:
            self.twitter.post_thread(posts)
            posted = True
        except Exception as e:
            logger.error(f"Failed to post thread: {e}", exc_info=True)

        if self.publisher:
            try:
                self.publisher(posts, title)
            except Exception as e:
                logger.error(f"Failed to mirror thread: {e}", exc_info=True)

        return posted

    def get_portfolio_state(self, now: Optional[datetime] = None) -> PortfolioState:
        """
        Snapshot built from persisted trades and live positions.

        Bankroll is the configured bankroll plus realised PnL; cash is the
        bankroll minus the size of every open position.
        """
        now = now or datetime.utcnow()

        live_prices: dict[str, float] = {}
        for live in self.executor.get_open_positions():
            market_id = _position_market_id(live)
            price = _position_price(live)
            if market_id and price is not None:
                live_prices[market_id] = price

        positions = []
        unrealised = 0.0
        for trade in self.storage.get_open_trades():
            entry_price = trade.get("entry_price") or 0.0
            size = trade.get("size") or 0.0
            current_price = live_prices.get(trade["market_id"], entry_price)
            if entry_price > 0:
                unrealised += size * (current_price / entry_price - 1)

            created_at = trade.get("created_at")
            positions.append(Position(
                market_id=trade["market_id"],
                market_question=trade["market_question"],
                direction=trade["direction"],
                entry_price=entry_price,
                current_price=current_price,
                size=size,
                entered_at=datetime.fromisoformat(created_at) if created_at else None,
                theme=trade.get("theme") or "",
            ))

        stats = self.storage.get_trade_stats()
        realised = stats["pnl"]
        bankroll = self.config.bankroll + realised
        exposure = sum(p.size for p in positions)
        total_pnl = realised + unrealised

        return PortfolioState(
            bankroll=bankroll,
            starting_bankroll=self.config.bankroll,
            cash_available=bankroll - exposure,
            positions=tuple(positions),
            total_pnl=total_pnl,
            total_pnl_percent=(total_pnl / self.config.bankroll * 100) if self.config.bankroll else 0.0,
            day_number=self.state.day_number(now),
            trades_entered=stats["entered"],
            trades_exited=stats["trades"],
            win_count=stats["wins"],
            loss_count=stats["losses"],
        )

    def is_digest_due(self, now: datetime) -> bool:
        if not (self.config.digest_hour_start_utc <= now.hour < self.config.digest_hour_end_utc):
            return False
        return self.state.get_last_digest_date() != now.date()

    def maybe_publish_digest(self, now: Optional[datetime] = None) -> bool:
        """
        Publish the daily digest if it is due.

        The date is recorded before posting so a failed post is not retried
        later the same day.

        Returns:
            True if a digest was composed and handed to publish
        """
        now = now or datetime.utcnow()
        if not self.is_digest_due(now):
            return False

        self.state.set_last_digest_date(now.date())

        counts = self.storage.get_signal_count_today(now)
        topics = self.storage.get_top_topics_today(3, now)
        today_stats = self.storage.get_trade_stats(since=start_of_day(now))
        contributors = self.storage.get_top_contributors(1)

        portfolio = replace(
            self.get_portfolio_state(now),
            trades_entered=today_stats["entered"],
            trades_exited=today_stats["trades"],
        )

        posts = self.composer.compose_daily_digest(
            portfolio,
            signals_today=counts["count"],
            unique_users=counts["unique_users"],
            top_topics=topics,
            best_contributor=contributors[0] if contributors else None,
        )
        logger.info(f"Publishing day {portfolio.day_number} digest")
        self.publish(posts, "Daily digest")
        return True
