"""
Content composer for published campaign threads.

Builds the text of entry, pass, watch, exit and daily-digest threads. Every
post is truncated to the platform limit. No I/O.
"""

import logging
from collections import defaultdict
from typing import Optional

from signalbot.models import Contributor, EnrichedSignal, PortfolioState, TradeOrder
from signalbot.utils import format_currency, format_signed_percentage

# Configure module logger
logger = logging.getLogger(__name__)

MAX_POST_LENGTH = 280
ELLIPSIS = "..."


def truncate(text: str, limit: int = MAX_POST_LENGTH) -> str:
    """Cut text to `limit` characters, ending with an ellipsis when shortened."""
    if len(text) <= limit:
        return text
    return text[:limit - len(ELLIPSIS)] + ELLIPSIS


def top_contributor_handles(signals: list[EnrichedSignal], limit: int = 3) -> list[str]:
    """Handles ranked by the summed weight of their signals."""
    totals: dict[str, float] = defaultdict(float)
    for signal in signals:
        totals[signal.raw.author.handle] += signal.weight
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [handle for handle, _ in ranked[:limit]]


class ContentComposer:
    """Turns decisions and portfolio snapshots into post threads."""

    def __init__(self, handle: str):
        self.handle = handle

    def _finish(self, posts: list[str]) -> list[str]:
        return [truncate(post) for post in posts if post]

    def compose_trade_entry(self, order: TradeOrder, portfolio: PortfolioState) -> list[str]:
        signals = list(order.contributing_signals)
        contributors = top_contributor_handles(signals)
        pct_of_bankroll = (order.size / portfolio.bankroll * 100) if portfolio.bankroll else 0.0

        posts = [
            f"The crowd flagged something. {len(signals)} of you pointed at "
            f"\"{order.market.question[:80]}\" recently. Here's what I'm seeing.",

            f"The signal: {order.reasoning}\n\n"
            f"Key contributors: {', '.join('@' + h for h in contributors) or 'n/a'}",

            "\n".join([
                f"Entering {order.direction} at ${order.entry_price:.2f}",
                f"Position: ${order.size} ({pct_of_bankroll:.1f}% of bankroll)",
                f"SL: ${order.stop_loss:.2f} | TP: ${order.take_profit:.2f}",
                f"Edge score: {order.edge_score:.2f}",
                "",
                f"Bankroll: {format_currency(portfolio.bankroll)}",
            ]),

            f"Read {len(signals)} signals, mapped them to a market, sized the position "
            f"and set the stop loss on its own.\n\nTag @{self.handle} with what you see next.",
        ]
        return self._finish(posts)

    def compose_trade_pass(self, order: TradeOrder) -> list[str]:
        lines = [
            f"{len(order.contributing_signals)} of you tagged me about \"{order.market.question[:60]}\"",
            "",
            f"I looked into it. {order.reasoning}",
            "",
            "Decision: PASS",
        ]
        if order.pass_reason:
            lines.append(f"Reason: {order.pass_reason}")
        lines.append("")
        lines.append("I only trade when what the crowd sees and what the market prices disagree. Keep the signals coming.")
        return self._finish(["\n".join(lines)])

    def compose_trade_watch(self, order: TradeOrder) -> list[str]:
        lines = [
            f"Watching: \"{order.market.question[:80]}\"",
            "",
            f"{len(order.contributing_signals)} signals so far. {order.reasoning}",
            "",
        ]
        if order.watch_condition:
            lines.append(f"Next move: {order.watch_condition}")
            lines.append("")
        lines.append("Tag me with more signal if you have it.")
        return self._finish(["\n".join(lines)])

    def compose_trade_exit(
        self,
        order: TradeOrder,
        exit_price: float,
        pnl: float,
        portfolio: PortfolioState
    ) -> list[str]:
        pnl_pct = (pnl / order.size * 100) if order.size else 0.0
        sign = "+" if pnl >= 0 else "-"
        contributors = top_contributor_handles(list(order.contributing_signals))

        posts = [
            "\n".join([
                f"Position closed: \"{order.market.question[:60]}\"",
                "",
                f"{order.direction} | Entry: ${order.entry_price:.2f} -> Exit: ${exit_price:.2f}",
                f"P&L: {sign}${abs(pnl):.0f} ({format_signed_percentage(pnl_pct)})",
                "",
                f"Bankroll: {format_currency(portfolio.bankroll)} "
                f"({format_signed_percentage(portfolio.total_pnl_percent)} all time)",
            ]),
        ]

        if contributors:
            verdict = (
                "The crowd's signal was right on this one." if pnl >= 0
                else "The crowd missed this one. It happens. Moving on."
            )
            posts.append(
                f"Top signal contributors: {', '.join('@' + h for h in contributors)}\n\n{verdict}"
            )

        return self._finish(posts)

    def compose_daily_digest(
        self,
        portfolio: PortfolioState,
        signals_today: int,
        unique_users: int,
        top_topics: list[str],
        best_contributor: Optional[Contributor] = None
    ) -> list[str]:
        lines = [
            f"Day {portfolio.day_number} digest:",
            "",
            f"Signals: {signals_today} from {unique_users} users",
            f"Topics trending: {', '.join(top_topics[:3]) or 'none yet'}",
            f"Trades: {portfolio.trades_entered} entered, {portfolio.trades_exited} exited",
            "",
            f"Bankroll: {format_currency(portfolio.bankroll)} "
            f"({format_signed_percentage(portfolio.total_pnl_percent)} all time)",
        ]
        if best_contributor and best_contributor.best_signal:
            lines.append("")
            lines.append(f"Best signal: @{best_contributor.handle} {best_contributor.best_signal}")

        posts = [
            "\n".join(lines),
            f"Processed {signals_today} signals today and managed {len(portfolio.positions)} "
            f"open positions with automated stop-losses.\n\nTag @{self.handle} to contribute.",
        ]
        return self._finish(posts)
