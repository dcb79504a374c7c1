"""Tests for persisted campaign state."""

from datetime import timedelta

from conftest import NOW
from signalbot.state import CampaignState


def test_start_date_survives_restart(storage):
    first = CampaignState(storage)
    assert first.init_or_restore(NOW) == NOW

    restarted = CampaignState(storage)
    assert restarted.init_or_restore(NOW + timedelta(days=3)) == NOW


def test_day_number_is_one_based(storage):
    state = CampaignState(storage)
    state.init_or_restore(NOW)

    assert state.day_number(NOW) == 1
    assert state.day_number(NOW + timedelta(hours=23)) == 1
    assert state.day_number(NOW + timedelta(days=2)) == 3
    assert state.day_number(NOW - timedelta(days=1)) == 1


def test_cursor_and_digest_date(storage):
    state = CampaignState(storage)
    assert state.get_last_seen_cursor() is None
    assert state.get_last_digest_date() is None

    state.set_last_seen_cursor("1234")
    state.set_last_digest_date(NOW.date())

    restored = CampaignState(storage)
    assert restored.get_last_seen_cursor() == "1234"
    assert restored.get_last_digest_date() == NOW.date()


def test_corrupt_digest_date_reads_as_missing(storage):
    storage.set_state("last_digest_date", "yesterday")
    assert CampaignState(storage).get_last_digest_date() is None
