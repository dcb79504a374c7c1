"""Tests for the tick scheduler."""

import threading

from signalbot.scheduler import Scheduler


def test_rejects_interval_below_minimum():
    scheduler = Scheduler()
    assert scheduler.start(lambda: None, interval_seconds=5) is False
    assert scheduler.is_running is False


def test_rejects_non_callable():
    assert Scheduler().start("tick", interval_seconds=60) is False


def test_tick_errors_are_contained():
    scheduler = Scheduler()

    def failing_tick():
        raise RuntimeError("boom")

    scheduler.tick_function = failing_tick
    scheduler._safe_execute_tick()

    assert not scheduler.is_tick_running()


def test_overlapping_tick_is_skipped():
    scheduler = Scheduler()
    calls = []
    scheduler.tick_function = lambda: calls.append(1)

    scheduler._execution_lock.acquire()
    try:
        scheduler._safe_execute_tick()
    finally:
        scheduler._execution_lock.release()

    assert calls == []
    scheduler._safe_execute_tick()
    assert calls == [1]


def test_start_runs_immediately_and_stops():
    scheduler = Scheduler()
    ran = threading.Event()

    assert scheduler.start(ran.set, interval_seconds=3600) is True
    try:
        assert ran.wait(timeout=5)
        status = scheduler.get_status()
        assert status["is_running"] is True
        assert status["interval_seconds"] == 3600
        assert status["next_run_time"] is not None
    finally:
        assert scheduler.stop() is True

    assert scheduler.get_status()["is_running"] is False
    assert scheduler.stop() is False
