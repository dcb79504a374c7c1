"""Tests for thread composition."""

from conftest import make_cluster, make_market, make_portfolio, make_signal
from signalbot.composer import MAX_POST_LENGTH, ContentComposer, top_contributor_handles, truncate
from signalbot.models import PASS, TRADE, WATCH, Contributor, TradeOrder


def _order(decision, signals=None, **fields):
    values = dict(
        decision=decision,
        market=make_market(question="Will the Fed pause in March?"),
        direction="YES",
        size=400 if decision == TRADE else 0,
        entry_price=0.4,
        stop_loss=0.24 if decision == TRADE else 0.0,
        take_profit=0.8 if decision == TRADE else 0.0,
        edge_score=0.85,
        reasoning="Signals point to a pause",
        contributing_signals=tuple(signals if signals is not None else make_cluster(5).signals),
    )
    values.update(fields)
    return TradeOrder(**values)


def test_truncate():
    assert truncate("short") == "short"
    long_text = "x" * 500
    assert len(truncate(long_text)) == MAX_POST_LENGTH
    assert truncate(long_text).endswith("...")


def test_top_contributors_ranked_by_weight():
    signals = [
        make_signal("sig_1", handle="alice", weight=1.0),
        make_signal("sig_2", handle="bob", weight=3.0),
        make_signal("sig_3", handle="alice", weight=1.5),
        make_signal("sig_4", handle="carol", weight=0.5),
    ]
    assert top_contributor_handles(signals, limit=2) == ["bob", "alice"]


def test_trade_entry_thread():
    posts = ContentComposer("VincentPlays").compose_trade_entry(_order(TRADE), make_portfolio())

    assert len(posts) == 4
    assert "5 of you" in posts[0]
    assert "Entering YES at $0.40" in posts[2]
    assert "4.0% of bankroll" in posts[2]
    assert "SL: $0.24 | TP: $0.80" in posts[2]
    assert "@VincentPlays" in posts[3]
    assert all(len(p) <= MAX_POST_LENGTH for p in posts)


def test_pass_post_includes_reason():
    posts = ContentComposer("VincentPlays").compose_trade_pass(_order(PASS, pass_reason="Already priced in"))

    assert len(posts) == 1
    assert "Decision: PASS" in posts[0]
    assert "Reason: Already priced in" in posts[0]


def test_watch_post_includes_condition():
    posts = ContentComposer("VincentPlays").compose_trade_watch(_order(WATCH, watch_condition="CPI print Tuesday"))
    assert "Next move: CPI print Tuesday" in posts[0]


def test_long_reasoning_is_truncated():
    posts = ContentComposer("VincentPlays").compose_trade_pass(_order(PASS, reasoning="because " * 100))
    assert len(posts[0]) == MAX_POST_LENGTH


def test_exit_thread_reports_loss():
    posts = ContentComposer("VincentPlays").compose_trade_exit(_order(TRADE), 0.2, -200.0, make_portfolio(bankroll=9_800.0))

    assert "P&L: -$200 (-50.0%)" in posts[0]
    assert "missed" in posts[1]


def test_daily_digest():
    contributor = Contributor(handle="alice", user_id="u_alice", best_signal='Flagged "Fed" early')
    posts = ContentComposer("VincentPlays").compose_daily_digest(
        make_portfolio(),
        signals_today=12,
        unique_users=7,
        top_topics=["Fed", "CPI"],
        best_contributor=contributor,
    )

    assert posts[0].startswith("Day 1 digest:")
    assert "Signals: 12 from 7 users" in posts[0]
    assert "Topics trending: Fed, CPI" in posts[0]
    assert "@alice" in posts[0]
