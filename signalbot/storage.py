"""
Storage module for persisting signals, trades, contributors and campaign state.

This module provides a repository interface for SQLite database operations.
It handles table creation, insertion, aggregation queries and the small
key-value table that backs the campaign state store. The database runs in
WAL mode so dashboards can read while the campaign writes.
"""

import json
import logging
import sqlite3
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from signalbot.config import Config
from signalbot.models import (
    TRADE,
    Author,
    Contributor,
    EnrichedSignal,
    Engagement,
    RawMention,
    TradeOrder,
)
from signalbot.utils import generate_id

# Configure module logger
logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"

EPOCH = datetime(1970, 1, 1)


def start_of_day(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the given (naive UTC) timestamp."""
    now = now or datetime.utcnow()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class Storage:
    """
    Repository for database operations.

    Provides methods for storing and retrieving signals, contributors, trade
    decisions and campaign state. Handles table creation automatically.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file. If None, uses Config.DB_PATH
        """
        self.db_path = Path(db_path or Config.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Ensures proper connection handling and transaction management.
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            # Journal mode is persistent per database file
            cursor.execute("PRAGMA journal_mode=WAL")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS signals (
                    id TEXT PRIMARY KEY,
                    mention_id TEXT UNIQUE NOT NULL,
                    user_handle TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    user_followers INTEGER NOT NULL,
                    user_account_age_days INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    urls TEXT NOT NULL DEFAULT '[]',
                    likes INTEGER NOT NULL DEFAULT 0,
                    reshares INTEGER NOT NULL DEFAULT 0,
                    replies INTEGER NOT NULL DEFAULT 0,
                    quote_shares INTEGER NOT NULL DEFAULT 0,
                    signal_type TEXT NOT NULL,
                    core_claim TEXT NOT NULL,
                    urgency TEXT NOT NULL,
                    topics TEXT NOT NULL DEFAULT '[]',
                    corroboration TEXT NOT NULL DEFAULT '[]',
                    weight REAL NOT NULL DEFAULT 1.0,
                    timestamp TEXT NOT NULL,
                    processed_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id TEXT PRIMARY KEY,
                    market_id TEXT NOT NULL,
                    market_question TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    decision TEXT NOT NULL,
                    size REAL,
                    entry_price REAL,
                    stop_loss REAL,
                    take_profit REAL,
                    edge_score REAL NOT NULL,
                    reasoning TEXT NOT NULL,
                    contributing_signal_ids TEXT NOT NULL DEFAULT '[]',
                    pass_reason TEXT,
                    watch_condition TEXT,
                    theme TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    exit_price REAL,
                    pnl REAL,
                    tx_ref TEXT,
                    created_at TEXT NOT NULL,
                    closed_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS contributors (
                    user_id TEXT PRIMARY KEY,
                    handle TEXT NOT NULL,
                    signals_sent INTEGER NOT NULL DEFAULT 0,
                    signals_that_led_to_trades INTEGER NOT NULL DEFAULT 0,
                    profitable_contributions INTEGER NOT NULL DEFAULT 0,
                    first_to_flag_count INTEGER NOT NULL DEFAULT 0,
                    total_pnl_from_signals REAL NOT NULL DEFAULT 0,
                    best_signal TEXT,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS campaign_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            # Create indexes for common queries
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_signals_timestamp
                ON signals(timestamp)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_signals_user
                ON signals(user_handle)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_status
                ON trades(status)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_market
                ON trades(market_id)
            """)

            conn.commit()
            logger.info(f"Database initialized at {self.db_path}")

    # Signal operations

    def save_signal(self, signal: EnrichedSignal) -> bool:
        """
        Persist an enriched signal. A mention is stored at most once.

        Returns:
            True if a new row was written, False if it already existed or failed
        """
        raw = signal.raw
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT OR IGNORE INTO signals
                    (id, mention_id, user_handle, user_id, user_followers,
                     user_account_age_days, text, urls, likes, reshares, replies,
                     quote_shares, signal_type, core_claim, urgency, topics,
                     corroboration, weight, timestamp, processed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    signal.id,
                    raw.mention_id,
                    raw.author.handle,
                    raw.author.id,
                    raw.author.followers,
                    raw.author.account_age_days,
                    raw.text,
                    json.dumps(list(raw.urls)),
                    raw.engagement.likes,
                    raw.engagement.reshares,
                    raw.engagement.replies,
                    raw.engagement.quote_shares,
                    signal.signal_type,
                    signal.core_claim,
                    signal.urgency,
                    json.dumps(signal.topics),
                    json.dumps(signal.corroboration),
                    signal.weight,
                    raw.timestamp.isoformat(),
                    signal.processed_at.isoformat(),
                ))
                inserted = cursor.rowcount > 0

            logger.debug(f"Saved signal {signal.id} (new={inserted})")
            return inserted

        except Exception as e:
            logger.error(f"Error saving signal {signal.id}: {e}", exc_info=True)
            return False

    def get_recent_signals(self, hours_back: int = 24, now: Optional[datetime] = None) -> list[EnrichedSignal]:
        """
        Signals whose mention timestamp falls inside the rolling window, newest first.
        """
        now = now or datetime.utcnow()
        cutoff = (now - timedelta(hours=hours_back)).isoformat()
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT * FROM signals WHERE timestamp > ?
                    ORDER BY timestamp DESC
                """, (cutoff,))
                return [self._row_to_signal(row) for row in cursor.fetchall()]

        except Exception as e:
            logger.error(f"Error retrieving recent signals: {e}", exc_info=True)
            return []

    def get_signal_count_today(self, now: Optional[datetime] = None) -> dict:
        """
        Returns:
            {"count": signals today, "unique_users": distinct handles today}
        """
        since = start_of_day(now).isoformat()
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT COUNT(*) AS count, COUNT(DISTINCT user_handle) AS unique_users
                    FROM signals WHERE timestamp >= ?
                """, (since,))
                row = cursor.fetchone()
                return {"count": row["count"], "unique_users": row["unique_users"]}

        except Exception as e:
            logger.error(f"Error counting today's signals: {e}", exc_info=True)
            return {"count": 0, "unique_users": 0}

    def get_user_signal_count_today(self, user_handle: str, now: Optional[datetime] = None) -> int:
        since = start_of_day(now).isoformat()
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT COUNT(*) AS count FROM signals
                    WHERE user_handle = ? AND timestamp >= ?
                """, (user_handle, since))
                return cursor.fetchone()["count"]

        except Exception as e:
            logger.error(f"Error counting signals for @{user_handle}: {e}", exc_info=True)
            return 0

    def get_top_topics_today(self, limit: int = 3, now: Optional[datetime] = None) -> list[str]:
        """Most frequent topic labels among today's signals."""
        since = start_of_day(now).isoformat()
        counts: Counter = Counter()
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT topics FROM signals WHERE timestamp >= ?", (since,))
                for row in cursor.fetchall():
                    try:
                        topics = json.loads(row["topics"])
                    except json.JSONDecodeError:
                        continue
                    counts.update(str(t) for t in topics if t)

        except Exception as e:
            logger.error(f"Error aggregating topics: {e}", exc_info=True)
            return []

        return [topic for topic, _ in counts.most_common(limit)]

    def get_signals_by_ids(self, signal_ids: list[str]) -> list[EnrichedSignal]:
        if not signal_ids:
            return []
        placeholders = ", ".join("?" for _ in signal_ids)
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"SELECT * FROM signals WHERE id IN ({placeholders}) ORDER BY timestamp",
                    tuple(signal_ids),
                )
                return [self._row_to_signal(row) for row in cursor.fetchall()]

        except Exception as e:
            logger.error(f"Error retrieving signals by id: {e}", exc_info=True)
            return []

    def _row_to_signal(self, row: sqlite3.Row) -> EnrichedSignal:
        """Rebuild a signal. Conversation context is not persisted."""
        mention = RawMention(
            mention_id=row["mention_id"],
            text=row["text"],
            author=Author(
                id=row["user_id"],
                handle=row["user_handle"],
                followers=row["user_followers"],
                account_age_days=row["user_account_age_days"],
            ),
            urls=tuple(json.loads(row["urls"])),
            engagement=Engagement(
                likes=row["likes"],
                reshares=row["reshares"],
                replies=row["replies"],
                quote_shares=row["quote_shares"],
            ),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )
        return EnrichedSignal(
            id=row["id"],
            raw=mention,
            signal_type=row["signal_type"],
            core_claim=row["core_claim"],
            urgency=row["urgency"],
            topics=json.loads(row["topics"]),
            weight=row["weight"],
            processed_at=datetime.fromisoformat(row["processed_at"]),
            corroboration=json.loads(row["corroboration"]),
        )

    # Contributor operations

    def update_contributor(self, signal: EnrichedSignal) -> bool:
        """Count one more signal sent by the signal's author."""
        author = signal.raw.author
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO contributors (user_id, handle, signals_sent, updated_at)
                    VALUES (?, ?, 1, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        signals_sent = signals_sent + 1,
                        handle = excluded.handle,
                        updated_at = excluded.updated_at
                """, (author.id, author.handle, datetime.utcnow().isoformat()))
            return True

        except Exception as e:
            logger.error(f"Error updating contributor @{author.handle}: {e}", exc_info=True)
            return False

    def attribute_trade_to_contributors(self, order: TradeOrder) -> bool:
        """
        Credit each distinct contributor of an executed trade once.

        The author of the earliest contributing signal is credited as first
        to flag; their best_signal is set only if they have none yet.
        """
        now = datetime.utcnow().isoformat()
        ordered = sorted(order.contributing_signals, key=lambda s: s.raw.timestamp)
        seen: set[str] = set()

        try:
            with self._get_connection() as conn:
                for i, signal in enumerate(ordered):
                    user_id = signal.raw.author.id
                    if user_id in seen:
                        continue
                    seen.add(user_id)

                    conn.execute("""
                        UPDATE contributors SET
                            signals_that_led_to_trades = signals_that_led_to_trades + 1,
                            updated_at = ?
                        WHERE user_id = ?
                    """, (now, user_id))

                    if i == 0:
                        conn.execute("""
                            UPDATE contributors SET
                                first_to_flag_count = first_to_flag_count + 1,
                                best_signal = COALESCE(NULLIF(best_signal, ''), ?)
                            WHERE user_id = ?
                        """, (f'Flagged "{order.market.question[:60]}" early', user_id))

            logger.debug(f"Attributed trade on {order.market.condition_id} to {len(seen)} contributors")
            return True

        except Exception as e:
            logger.error(f"Error attributing trade to contributors: {e}", exc_info=True)
            return False

    def attribute_profit_to_contributors(
        self,
        signals: list[EnrichedSignal],
        pnl: float,
        market_question: str
    ) -> bool:
        """Split a closed trade's PnL evenly across its distinct contributors."""
        user_ids = {s.raw.author.id for s in signals}
        per_user_pnl = pnl / max(1, len(user_ids))
        now = datetime.utcnow().isoformat()

        try:
            with self._get_connection() as conn:
                for user_id in user_ids:
                    if pnl > 0:
                        conn.execute("""
                            UPDATE contributors SET
                                profitable_contributions = profitable_contributions + 1,
                                total_pnl_from_signals = total_pnl_from_signals + ?,
                                best_signal = ?,
                                updated_at = ?
                            WHERE user_id = ?
                        """, (
                            per_user_pnl,
                            f'Contributed to +${abs(pnl):.0f} trade on "{market_question[:50]}"',
                            now,
                            user_id,
                        ))
                    else:
                        conn.execute("""
                            UPDATE contributors SET
                                total_pnl_from_signals = total_pnl_from_signals + ?,
                                updated_at = ?
                            WHERE user_id = ?
                        """, (per_user_pnl, now, user_id))
            return True

        except Exception as e:
            logger.error(f"Error attributing profit to contributors: {e}", exc_info=True)
            return False

    def get_top_contributors(self, limit: int = 5) -> list[Contributor]:
        """Contributors ranked by trades led, then profitable contributions."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT * FROM contributors
                    ORDER BY signals_that_led_to_trades DESC,
                             profitable_contributions DESC,
                             signals_sent DESC
                    LIMIT ?
                """, (int(limit),))
                return [
                    Contributor(
                        handle=row["handle"],
                        user_id=row["user_id"],
                        signals_sent=row["signals_sent"],
                        signals_that_led_to_trades=row["signals_that_led_to_trades"],
                        profitable_contributions=row["profitable_contributions"],
                        first_to_flag_count=row["first_to_flag_count"],
                        total_pnl_from_signals=row["total_pnl_from_signals"],
                        best_signal=row["best_signal"],
                    )
                    for row in cursor.fetchall()
                ]

        except Exception as e:
            logger.error(f"Error retrieving top contributors: {e}", exc_info=True)
            return []

    # Trade operations

    def save_trade(self, order: TradeOrder, tx_ref: Optional[str] = None) -> Optional[str]:
        """
        Record a decision. TRADE orders are stored as open positions; PASS and
        WATCH are stored with their decision as status.

        Returns:
            The new trade id, or None on failure
        """
        trade_id = generate_id("trd")
        status = STATUS_OPEN if order.decision == TRADE else order.decision.lower()

        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO trades
                    (id, market_id, market_question, direction, decision, size,
                     entry_price, stop_loss, take_profit, edge_score, reasoning,
                     contributing_signal_ids, pass_reason, watch_condition, theme,
                     status, tx_ref, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    trade_id,
                    order.market.condition_id,
                    order.market.question,
                    order.direction,
                    order.decision,
                    order.size,
                    order.entry_price,
                    order.stop_loss,
                    order.take_profit,
                    order.edge_score,
                    order.reasoning,
                    json.dumps([s.id for s in order.contributing_signals]),
                    order.pass_reason,
                    order.watch_condition,
                    order.theme,
                    status,
                    tx_ref,
                    datetime.utcnow().isoformat(),
                ))

            logger.debug(f"Saved {order.decision} on {order.market.condition_id} as {trade_id}")
            return trade_id

        except Exception as e:
            logger.error(f"Error saving trade on {order.market.condition_id}: {e}", exc_info=True)
            return None

    def get_trade(self, trade_id: str) -> Optional[dict]:
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM trades WHERE id = ?", (trade_id,))
                row = cursor.fetchone()
                return dict(row) if row else None

        except Exception as e:
            logger.error(f"Error retrieving trade {trade_id}: {e}", exc_info=True)
            return None

    def get_open_trades(self) -> list[dict]:
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT * FROM trades WHERE status = ? ORDER BY created_at
                """, (STATUS_OPEN,))
                return [dict(row) for row in cursor.fetchall()]

        except Exception as e:
            logger.error(f"Error retrieving open trades: {e}", exc_info=True)
            return []

    def close_trade(self, trade_id: str, exit_price: float, pnl: float) -> bool:
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    UPDATE trades SET status = ?, exit_price = ?, pnl = ?, closed_at = ?
                    WHERE id = ? AND status = ?
                """, (STATUS_CLOSED, exit_price, pnl, datetime.utcnow().isoformat(), trade_id, STATUS_OPEN))
                closed = cursor.rowcount > 0

            if not closed:
                logger.warning(f"Trade {trade_id} not found or not open")
            return closed

        except Exception as e:
            logger.error(f"Error closing trade {trade_id}: {e}", exc_info=True)
            return False

    def get_trade_stats(self, since: Optional[datetime] = None) -> dict:
        """
        Aggregate trade outcomes.

        Returns:
            {"entered", "trades", "wins", "losses", "pnl"}: trades entered
            since `since`, and closed-trade counts and realised PnL since `since`
        """
        since_str = (since or EPOCH).isoformat()
        stats = {"entered": 0, "trades": 0, "wins": 0, "losses": 0, "pnl": 0.0}

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT pnl FROM trades WHERE status = ? AND closed_at > ?
                """, (STATUS_CLOSED, since_str))
                pnls = [row["pnl"] or 0.0 for row in cursor.fetchall()]

                cursor.execute("""
                    SELECT COUNT(*) AS count FROM trades
                    WHERE decision = ? AND created_at > ?
                """, (TRADE, since_str))
                stats["entered"] = cursor.fetchone()["count"]

        except Exception as e:
            logger.error(f"Error computing trade stats: {e}", exc_info=True)
            return stats

        stats["trades"] = len(pnls)
        stats["wins"] = sum(1 for p in pnls if p > 0)
        stats["losses"] = sum(1 for p in pnls if p <= 0)
        stats["pnl"] = sum(pnls)
        return stats

    # Campaign state (key-value)

    def get_state(self, key: str) -> Optional[str]:
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT value FROM campaign_state WHERE key = ?", (key,))
                row = cursor.fetchone()
                return row["value"] if row else None

        except Exception as e:
            logger.error(f"Error reading state {key}: {e}", exc_info=True)
            return None

    def set_state(self, key: str, value: str) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO campaign_state (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """, (key, str(value)))
            return True

        except Exception as e:
            logger.error(f"Error writing state {key}: {e}", exc_info=True)
            return False

    def close(self) -> None:
        """Checkpoint the write-ahead log so the main database file is current."""
        try:
            with self._get_connection() as conn:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.info("Database checkpointed")
        except Exception as e:
            logger.error(f"Error checkpointing database: {e}", exc_info=True)
