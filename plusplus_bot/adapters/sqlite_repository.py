"""SQLite repository adapter for local storage.

Implements RepositoryProtocol with a SQLite backend. Every call opens its own
connection so the repository can be used from worker threads; writes run in
``BEGIN IMMEDIATE`` transactions, which serialize writers on the database file.
Pure reads use a plain connection and never wait for the writer lock.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Final

from plusplus_bot.config.logging_config import get_logger
from plusplus_bot.domain.exceptions import RepositoryError
from plusplus_bot.domain.models import RateLimitDecision, RateLimitRecord, ScoreRecord
from plusplus_bot.services.rate_limiter import evaluate_window, new_record

logger = get_logger(__name__)

SCORES_TABLE: Final[str] = "scores"
RATE_LIMITS_TABLE: Final[str] = "rate_limits"
BUSY_TIMEOUT_SECONDS: Final[float] = 30.0


class SQLiteRepository:
    """SQLite-based score and rate-limit store."""

    def __init__(
        self, db_path: str, *, busy_timeout: float = BUSY_TIMEOUT_SECONDS
    ) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = db_path
        self._busy_timeout = busy_timeout

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Open a connection with manual transaction control."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a write transaction; roll back and wrap driver errors on failure."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise RepositoryError(f"SQLite connection error: {exc}") from exc

        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise RepositoryError(f"SQLite error: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        """Open a connection for reads that must not take the writer lock."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise RepositoryError(f"SQLite connection error: {exc}") from exc

        try:
            yield conn
        except sqlite3.Error as exc:
            raise RepositoryError(f"SQLite error: {exc}") from exc
        finally:
            conn.close()

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        with self._transaction() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {SCORES_TABLE} (
                    item TEXT PRIMARY KEY COLLATE NOCASE,
                    total INTEGER NOT NULL DEFAULT 0,
                    temp INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {RATE_LIMITS_TABLE} (
                    actor TEXT PRIMARY KEY COLLATE NOCASE,
                    count INTEGER NOT NULL DEFAULT 0,
                    window_start INTEGER NOT NULL
                )
                """
            )

    def close(self) -> None:
        """Nothing to release: connections are opened per call."""
        logger.debug("sqlite_repository_closed", db_path=str(self.db_path))

    @staticmethod
    def _row_to_score(row: sqlite3.Row) -> ScoreRecord:
        return ScoreRecord(item=row["item"], total=row["total"], temp=row["temp"])

    def apply(self, item: str, polarity: int, magnitude: int) -> ScoreRecord:
        """Add ``polarity * magnitude`` to both scores of an item.

        Args:
            item: Slack user ID or thing name
            polarity: +1 or -1
            magnitude: Points, at least 1

        Returns:
            Updated score record

        Raises:
            ValueError: On invalid polarity or magnitude
            RepositoryError: On storage errors
        """
        if polarity not in (1, -1):
            raise ValueError(f"polarity must be +1 or -1, got {polarity}")
        if magnitude < 1:
            raise ValueError(f"magnitude must be at least 1, got {magnitude}")

        delta = polarity * magnitude
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {SCORES_TABLE} (item, total, temp) VALUES (?, ?, ?)
                ON CONFLICT(item) DO UPDATE SET
                    total = total + excluded.total,
                    temp = temp + excluded.temp
                """,
                (item, delta, delta),
            )
            row = conn.execute(
                f"SELECT item, total, temp FROM {SCORES_TABLE} WHERE item = ?",
                (item,),
            ).fetchone()

        record = self._row_to_score(row)
        logger.info(
            "score_applied",
            item=record.item,
            delta=delta,
            total=record.total,
            temp=record.temp,
        )
        return record

    def query(self, item: str) -> ScoreRecord:
        """Read an item's scores, creating a zeroed record if absent.

        Raises:
            RepositoryError: On storage errors
        """
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {SCORES_TABLE} (item, total, temp) VALUES (?, 0, 0)
                ON CONFLICT(item) DO NOTHING
                """,
                (item,),
            )
            row = conn.execute(
                f"SELECT item, total, temp FROM {SCORES_TABLE} WHERE item = ?",
                (item,),
            ).fetchone()

        return self._row_to_score(row)

    def reset_era(self) -> int:
        """Zero every era score.

        Returns:
            Number of records whose era score changed

        Raises:
            RepositoryError: On storage errors
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {SCORES_TABLE} SET temp = 0 WHERE temp != 0"
            )
            reset_count = cursor.rowcount

        logger.info("era_reset", records_reset=reset_count)
        return reset_count

    def retrieve_top_scores(self, limit: int | None = None) -> list[ScoreRecord]:
        """Return records ordered by total score, highest first.

        Raises:
            RepositoryError: On storage errors
        """
        with self._reader() as conn:
            rows = conn.execute(
                f"""
                SELECT item, total, temp FROM {SCORES_TABLE}
                ORDER BY total DESC, item ASC
                LIMIT ?
                """,
                (limit if limit is not None else -1,),
            ).fetchall()

        return [self._row_to_score(row) for row in rows]

    def consume_rate_limit(
        self, actor: str, now: int, max_ops: int, window_seconds: int
    ) -> RateLimitDecision:
        """Evaluate one operation for an actor inside a write transaction.

        Raises:
            RepositoryError: On storage errors
        """
        with self._transaction() as conn:
            row = conn.execute(
                f"""
                SELECT actor, count, window_start FROM {RATE_LIMITS_TABLE}
                WHERE actor = ?
                """,
                (actor,),
            ).fetchone()

            current = (
                RateLimitRecord(
                    actor=row["actor"],
                    count=row["count"],
                    window_start=row["window_start"],
                )
                if row
                else new_record(actor, now)
            )
            decision = evaluate_window(current, now, max_ops, window_seconds)

            if row is None or decision.record != current:
                conn.execute(
                    f"""
                    INSERT INTO {RATE_LIMITS_TABLE} (actor, count, window_start)
                    VALUES (?, ?, ?)
                    ON CONFLICT(actor) DO UPDATE SET
                        count = excluded.count,
                        window_start = excluded.window_start
                    """,
                    (actor, decision.record.count, decision.record.window_start),
                )

        return decision

    def get_rate_limit(self, actor: str) -> RateLimitRecord | None:
        """Load an actor's quota record without changing it.

        Raises:
            RepositoryError: On storage errors
        """
        with self._reader() as conn:
            row = conn.execute(
                f"""
                SELECT actor, count, window_start FROM {RATE_LIMITS_TABLE}
                WHERE actor = ?
                """,
                (actor,),
            ).fetchone()

        if row is None:
            return None
        return RateLimitRecord(
            actor=row["actor"], count=row["count"], window_start=row["window_start"]
        )
