"""Tests for the SQLite storage layer."""

from datetime import timedelta

import pytest

from conftest import NOW, make_market, make_signal
from signalbot.models import PASS, TRADE, WATCH, TradeOrder


def _order(decision=TRADE, signals=(), size=200, market=None):
    return TradeOrder(
        decision=decision,
        market=market or make_market(),
        direction="YES",
        size=size if decision == TRADE else 0,
        entry_price=0.4,
        stop_loss=0.24 if decision == TRADE else 0.0,
        take_profit=0.8 if decision == TRADE else 0.0,
        edge_score=0.85,
        reasoning="Signals point to a pause",
        contributing_signals=tuple(signals),
        theme="US macro",
    )


class TestSignals:
    def test_save_is_idempotent_per_mention(self, storage):
        signal = make_signal("sig_1")
        assert storage.save_signal(signal) is True
        assert storage.save_signal(signal) is False
        assert len(storage.get_recent_signals(24, NOW)) == 1

    def test_recent_window_and_round_trip(self, storage):
        fresh = make_signal("sig_1", handle="alice", likes=3, reshares=2, topics=("Fed", "Rates"))
        stale = make_signal("sig_2", handle="bob", timestamp=NOW - timedelta(hours=30))
        storage.save_signal(fresh)
        storage.save_signal(stale)

        recent = storage.get_recent_signals(24, NOW)

        assert [s.id for s in recent] == ["sig_1"]
        restored = recent[0]
        assert restored.raw.author.handle == "alice"
        assert restored.raw.engagement.likes == 3
        assert restored.raw.engagement.reshares == 2
        assert restored.topics == ["Fed", "Rates"]
        assert restored.raw.timestamp == NOW

    def test_counts_today(self, storage):
        storage.save_signal(make_signal("sig_1", handle="alice"))
        storage.save_signal(make_signal("sig_2", handle="alice", timestamp=NOW - timedelta(hours=1)))
        storage.save_signal(make_signal("sig_3", handle="bob"))
        storage.save_signal(make_signal("sig_4", handle="carol", timestamp=NOW - timedelta(days=1)))

        assert storage.get_signal_count_today(NOW) == {"count": 3, "unique_users": 2}
        assert storage.get_user_signal_count_today("alice", NOW) == 2
        assert storage.get_user_signal_count_today("carol", NOW) == 0

    def test_top_topics_today(self, storage):
        storage.save_signal(make_signal("sig_1", topics=("Fed", "CPI")))
        storage.save_signal(make_signal("sig_2", topics=("Fed",)))
        storage.save_signal(make_signal("sig_3", topics=("BTC", "CPI", "Fed")))

        assert storage.get_top_topics_today(2, NOW) == ["Fed", "CPI"]


class TestContributors:
    def test_update_counts_signals_sent(self, storage):
        signal = make_signal("sig_1", handle="alice")
        storage.update_contributor(signal)
        storage.update_contributor(signal)

        top = storage.get_top_contributors(5)

        assert len(top) == 1
        assert top[0].handle == "alice"
        assert top[0].signals_sent == 2

    def test_trade_attribution_credits_first_to_flag(self, storage):
        early = make_signal("sig_1", handle="alice", timestamp=NOW - timedelta(hours=2))
        late = make_signal("sig_2", handle="bob", timestamp=NOW)
        again = make_signal("sig_3", handle="bob", timestamp=NOW - timedelta(minutes=5))
        for s in (early, late, again):
            storage.update_contributor(s)

        assert storage.attribute_trade_to_contributors(_order(signals=(late, early, again)))

        by_handle = {c.handle: c for c in storage.get_top_contributors(5)}
        assert by_handle["alice"].signals_that_led_to_trades == 1
        assert by_handle["alice"].first_to_flag_count == 1
        assert "early" in by_handle["alice"].best_signal
        assert by_handle["bob"].signals_that_led_to_trades == 1
        assert by_handle["bob"].first_to_flag_count == 0
        assert by_handle["bob"].best_signal is None

    def test_profit_attribution_splits_pnl(self, storage):
        alice = make_signal("sig_1", handle="alice")
        bob = make_signal("sig_2", handle="bob")
        storage.update_contributor(alice)
        storage.update_contributor(bob)

        storage.attribute_profit_to_contributors([alice, bob], 100.0, "Will the Fed pause?")

        for contributor in storage.get_top_contributors(5):
            assert contributor.profitable_contributions == 1
            assert contributor.total_pnl_from_signals == pytest.approx(50.0)
            assert "+$100" in contributor.best_signal


class TestTrades:
    def test_trade_is_open_and_pass_is_not(self, storage):
        trade_id = storage.save_trade(_order(TRADE), tx_ref="0xabc")
        storage.save_trade(_order(PASS))
        storage.save_trade(_order(WATCH))

        open_trades = storage.get_open_trades()

        assert [t["id"] for t in open_trades] == [trade_id]
        assert open_trades[0]["tx_ref"] == "0xabc"
        assert open_trades[0]["theme"] == "US macro"

    def test_close_and_stats(self, storage):
        winner = storage.save_trade(_order(TRADE, market=make_market("0xa")))
        loser = storage.save_trade(_order(TRADE, market=make_market("0xb")))
        storage.save_trade(_order(PASS))

        assert storage.close_trade(winner, 0.8, 200.0)
        assert storage.close_trade(loser, 0.2, -100.0)
        assert not storage.close_trade(winner, 0.9, 1.0)

        stats = storage.get_trade_stats()
        assert stats == {"entered": 2, "trades": 2, "wins": 1, "losses": 1, "pnl": pytest.approx(100.0)}
        assert storage.get_open_trades() == []


def test_state_key_value(storage):
    assert storage.get_state("cursor") is None
    storage.set_state("cursor", "42")
    storage.set_state("cursor", "43")
    assert storage.get_state("cursor") == "43"
