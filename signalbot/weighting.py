"""
Engagement and recency weighting for signals.

Pure functions; no I/O.
"""

import math
from datetime import datetime
from typing import Optional

FRESH_HOURS = 2.0
DECAY_END_HOURS = 24.0
FRESH_MULTIPLIER = 2.0
DECAYED_MULTIPLIER = 1.0
STALE_MULTIPLIER = 0.5


def engagement_score(
    likes: Optional[int] = 0,
    reshares: Optional[int] = 0,
    quote_shares: Optional[int] = 0
) -> int:
    """Raw engagement score: likes + 2*reshares + 3*quote_shares. Missing counts are 0."""
    return (likes or 0) + 2 * (reshares or 0) + 3 * (quote_shares or 0)


def engagement_weight(
    likes: Optional[int] = 0,
    reshares: Optional[int] = 0,
    quote_shares: Optional[int] = 0
) -> float:
    """
    Convert engagement counts into a signal weight.

    weight = 1 + log2(1 + likes + 2*reshares + 3*quote_shares)

    Always >= 1 and non-decreasing in every argument.
    """
    raw = max(0, engagement_score(likes, reshares, quote_shares))
    return 1.0 + math.log2(1 + raw)


def recency_multiplier(signal_time: datetime, now: Optional[datetime] = None) -> float:
    """
    Recency multiplier used when aggregating cluster weight.

    2.0 up to 2 hours old, decaying linearly to 1.0 at 24 hours,
    then a flat 0.5 beyond 24 hours. Future timestamps count as fresh.
    """
    if now is None:
        now = datetime.utcnow()

    hours_ago = (now - signal_time).total_seconds() / 3600.0

    if hours_ago <= FRESH_HOURS:
        return FRESH_MULTIPLIER
    if hours_ago <= DECAY_END_HOURS:
        span = DECAY_END_HOURS - FRESH_HOURS
        return FRESH_MULTIPLIER - (hours_ago - FRESH_HOURS) / span * (FRESH_MULTIPLIER - DECAYED_MULTIPLIER)
    return STALE_MULTIPLIER
