"""
Interval scheduler for campaign ticks.

Wraps an APScheduler BackgroundScheduler that fires one campaign tick per
poll interval. Ticks never overlap, a failing tick is logged and the next
one still runs, and shutdown waits for the tick in flight.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

import pytz
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from signalbot.config import MIN_POLL_INTERVAL_SECONDS, Config

# Configure module logger
logger = logging.getLogger(__name__)

TICK_JOB_ID = "campaign_tick"


class Scheduler:
    """
    Runs a tick callable on a fixed interval.

    APScheduler allows one job instance at a time, and a non-blocking lock
    skips a run outright if the previous tick has not returned.
    """

    def __init__(self):
        self.scheduler: Optional[BackgroundScheduler] = None
        self.tick_function: Optional[Callable[[], None]] = None
        self.interval_seconds: Optional[int] = None
        self.is_running = False
        self._execution_lock = threading.Lock()
        self._job_id = TICK_JOB_ID

    def start(
        self,
        tick_function: Callable[[], None],
        interval_seconds: int,
        run_immediately: bool = True
    ) -> bool:
        """
        Begin firing `tick_function` every `interval_seconds`.

        Args:
            tick_function: Callable that runs one campaign tick
            interval_seconds: Seconds between ticks (at least MIN_POLL_INTERVAL_SECONDS)
            run_immediately: Fire the first tick now instead of after one interval

        Returns:
            False if already running, the arguments are invalid or APScheduler
            could not start; True otherwise
        """
        if self.is_running:
            logger.warning("Tick scheduler already started")
            return False

        if not callable(tick_function):
            logger.error("tick_function must be callable")
            return False

        if interval_seconds < MIN_POLL_INTERVAL_SECONDS:
            logger.error(
                f"Poll interval {interval_seconds}s is below the "
                f"{MIN_POLL_INTERVAL_SECONDS}s minimum"
            )
            return False

        self.tick_function = tick_function
        self.interval_seconds = interval_seconds

        try:
            tz = pytz.timezone(Config.SCHEDULER_TIMEZONE)
            self.scheduler = BackgroundScheduler(timezone=tz)
            self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

            first_run = {"next_run_time": datetime.now(tz)} if run_immediately else {}
            self.scheduler.add_job(
                func=self._safe_execute_tick,
                trigger=IntervalTrigger(seconds=interval_seconds),
                id=self._job_id,
                name="Campaign Tick",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **first_run
            )

            self.scheduler.start()
            self.is_running = True

            logger.info(f"Ticking every {interval_seconds}s ({Config.SCHEDULER_TIMEZONE})")
            return True

        except Exception as e:
            logger.error(f"Could not start tick scheduler: {e}", exc_info=True)
            self.is_running = False
            return False

    def stop(self, wait: bool = True) -> bool:
        """
        Shut the scheduler down.

        Args:
            wait: Block until a tick in flight has finished

        Returns:
            False if it was not running or shutdown failed
        """
        if not self.is_running or not self.scheduler:
            logger.warning("Tick scheduler not started, nothing to stop")
            return False

        try:
            logger.info("Shutting down tick scheduler")
            self.scheduler.shutdown(wait=wait)
            self.is_running = False
            self.scheduler = None
            logger.info("Tick scheduler stopped")
            return True

        except Exception as e:
            logger.error(f"Tick scheduler shutdown failed: {e}", exc_info=True)
            return False

    def _safe_execute_tick(self) -> None:
        """Run one tick under the overlap lock, logging duration and failures."""
        if not self._execution_lock.acquire(blocking=False):
            logger.warning("Tick skipped: previous tick still in progress")
            return

        started = datetime.utcnow()

        try:
            if not self.tick_function:
                logger.error("Tick function not set")
                return

            self.tick_function()
            logger.debug(f"Tick finished in {(datetime.utcnow() - started).total_seconds():.2f}s")

        except Exception as e:
            elapsed = (datetime.utcnow() - started).total_seconds()
            logger.error(f"Tick failed after {elapsed:.2f}s: {e}", exc_info=True)

        finally:
            self._execution_lock.release()

    def _on_job_executed(self, event) -> None:
        if event.exception:
            logger.error(f"Scheduled job {event.job_id} errored: {event.exception}")
        else:
            logger.debug(f"Scheduled job {event.job_id} completed")

    def get_next_run_time(self) -> Optional[datetime]:
        """When the next tick fires, or None while stopped."""
        if not self.is_running or not self.scheduler:
            return None

        job = self.scheduler.get_job(self._job_id)
        return job.next_run_time if job else None

    def is_tick_running(self) -> bool:
        return self._execution_lock.locked()

    def get_status(self) -> dict:
        """
        Snapshot for the status command and logs.

        Returns:
            {"is_running", "tick_running", "next_run_time" (ISO or None),
            "interval_seconds" (None while stopped)}
        """
        next_run = self.get_next_run_time()
        return {
            "is_running": self.is_running,
            "tick_running": self.is_tick_running(),
            "next_run_time": next_run.isoformat() if next_run else None,
            "interval_seconds": self.interval_seconds if self.is_running else None,
        }
