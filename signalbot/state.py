"""
Campaign state that survives restarts.

Holds the mention cursor, the campaign start date and the date of the last
published digest in the storage key-value table.
"""

import logging
from datetime import date, datetime
from typing import Optional

from signalbot.storage import Storage

# Configure module logger
logger = logging.getLogger(__name__)

KEY_CAMPAIGN_START = "campaign_start_date"
KEY_LAST_SEEN_CURSOR = "last_seen_mention_id"
KEY_LAST_DIGEST_DATE = "last_digest_date"


class CampaignState:
    """Read/write access to persisted cross-tick state."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self.start_date: Optional[datetime] = None

    def init_or_restore(self, now: Optional[datetime] = None) -> datetime:
        """
        Restore the campaign start date, recording `now` on first run.

        Returns:
            The campaign start date
        """
        now = now or datetime.utcnow()
        stored = self.storage.get_state(KEY_CAMPAIGN_START)

        if stored:
            try:
                self.start_date = datetime.fromisoformat(stored)
                logger.info(f"Restored campaign start date: {self.start_date.isoformat()}")
                return self.start_date
            except ValueError:
                logger.warning(f"Invalid stored campaign start date {stored!r}, resetting")

        self.start_date = now
        self.storage.set_state(KEY_CAMPAIGN_START, now.isoformat())
        logger.info(f"Campaign start date set to {now.isoformat()}")
        return self.start_date

    def day_number(self, now: Optional[datetime] = None) -> int:
        """1-based campaign day."""
        now = now or datetime.utcnow()
        start = self.start_date or self.init_or_restore(now)
        return max(1, (now - start).days + 1)

    def get_last_seen_cursor(self) -> Optional[str]:
        return self.storage.get_state(KEY_LAST_SEEN_CURSOR)

    def set_last_seen_cursor(self, cursor: str) -> None:
        self.storage.set_state(KEY_LAST_SEEN_CURSOR, cursor)

    def get_last_digest_date(self) -> Optional[date]:
        stored = self.storage.get_state(KEY_LAST_DIGEST_DATE)
        if not stored:
            return None
        try:
            return date.fromisoformat(stored)
        except ValueError:
            return None

    def set_last_digest_date(self, value: date) -> None:
        self.storage.set_state(KEY_LAST_DIGEST_DATE, value.isoformat())
