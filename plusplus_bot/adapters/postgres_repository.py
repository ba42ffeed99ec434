"""PostgreSQL repository implementation using psycopg2 with connection pooling.

Item and actor keys are ``CITEXT`` so lookups are case-insensitive while the
first spelling is kept for display. Score updates are single upsert statements
and quota checks lock the actor's row, so no lock wider than one key is taken.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from time import sleep
from typing import TYPE_CHECKING, Any, Final

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor

from plusplus_bot.config.logging_config import get_logger
from plusplus_bot.domain.exceptions import RepositoryError
from plusplus_bot.domain.models import RateLimitDecision, RateLimitRecord, ScoreRecord
from plusplus_bot.services.rate_limiter import evaluate_window, new_record

if TYPE_CHECKING:
    from plusplus_bot.config.settings import Settings


SCORES_TABLE: Final[str] = "scores"
RATE_LIMITS_TABLE: Final[str] = "rate_limits"

DEFAULT_POOL_MIN_CONNECTIONS: Final[int] = 1
DEFAULT_POOL_MAX_CONNECTIONS: Final[int] = 10
POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT: Final[int] = 5
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 2.0

SCHEMA_STATEMENTS: Final[tuple[str, ...]] = (
    "CREATE EXTENSION IF NOT EXISTS citext",
    f"""
    CREATE TABLE IF NOT EXISTS {SCORES_TABLE} (
        item CITEXT PRIMARY KEY,
        total INTEGER NOT NULL DEFAULT 0,
        temp INTEGER NOT NULL DEFAULT 0
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {RATE_LIMITS_TABLE} (
        actor CITEXT PRIMARY KEY,
        count INTEGER NOT NULL DEFAULT 0,
        window_start BIGINT NOT NULL
    )
    """,
)

logger = get_logger(__name__)


class PostgresRepository:
    """PostgreSQL score and rate-limit store backed by a connection pool."""

    def __init__(
        self,
        dsn: str,
        *,
        use_ssl: bool = True,
        settings: "Settings | None" = None,
    ) -> None:
        """Initialize PostgreSQL repository with pooled connections.

        Args:
            dsn: libpq connection string or URL
            use_ssl: Require TLS (``sslmode=require``) when True
            settings: Optional settings for pool sizing and timeouts

        Raises:
            RepositoryError: If the pool cannot be created or validated
        """
        self._dsn = dsn
        self._use_ssl = use_ssl
        self._statement_timeout_ms = (
            settings.postgres_statement_timeout_ms if settings else 10_000
        )
        self._connect_timeout_seconds = (
            settings.postgres_connect_timeout_seconds if settings else 10
        )
        self._application_name = (
            settings.postgres_application_name if settings else "plusplus_bot"
        )
        self._pool_min_connections = (
            settings.postgres_min_connections
            if settings
            else DEFAULT_POOL_MIN_CONNECTIONS
        )
        self._pool_max_connections = (
            settings.postgres_max_connections
            if settings
            else DEFAULT_POOL_MAX_CONNECTIONS
        )

        self._pool_acquire_max_attempts = POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT
        self._pool_acquire_base_delay_seconds = POOL_ACQUIRE_BASE_DELAY_SECONDS
        self._pool_acquire_max_delay_seconds = POOL_ACQUIRE_MAX_DELAY_SECONDS
        self._pool_in_use_count = 0
        self._pool_lock = Lock()

        if self._pool_min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if self._pool_max_connections < self._pool_min_connections:
            raise RepositoryError(
                "postgres_max_connections must be greater than or equal to postgres_min_connections"
            )

        self._pool = self._create_pool()
        self._create_schema()

    def _create_pool(self) -> psycopg2_pool.ThreadedConnectionPool:
        """Create a PostgreSQL connection pool with validation."""
        options = " ".join(
            [
                f"-c statement_timeout={self._statement_timeout_ms}",
                f"-c application_name={self._application_name}",
            ]
        )
        conn_kwargs: dict[str, Any] = {
            "dsn": self._dsn,
            "connect_timeout": self._connect_timeout_seconds,
            "options": options,
            "sslmode": "require" if self._use_ssl else "disable",
        }

        try:
            pool = psycopg2_pool.ThreadedConnectionPool(
                self._pool_min_connections,
                self._pool_max_connections,
                **conn_kwargs,
            )
        except PsycopgError as exc:
            raise RepositoryError(
                f"Failed to initialize PostgreSQL pool: {exc}"
            ) from exc

        try:
            conn = pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            finally:
                pool.putconn(conn)
        except PsycopgError as exc:
            pool.closeall()
            raise RepositoryError(f"PostgreSQL validation query failed: {exc}") from exc

        logger.info(
            "postgres_pool_initialized",
            min_connections=self._pool_min_connections,
            max_connections=self._pool_max_connections,
            statement_timeout_ms=self._statement_timeout_ms,
            ssl=self._use_ssl,
        )
        return pool

    def _create_schema(self) -> None:
        """Create extension and tables if they do not exist."""
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
            conn.commit()
        logger.info("postgres_schema_ready")

    def _acquire_connection_with_retry(self) -> extensions.connection:
        """Acquire a connection from the pool with exponential backoff."""
        attempt = 0
        delay = self._pool_acquire_base_delay_seconds
        while True:
            attempt += 1
            try:
                conn = self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= self._pool_acquire_max_attempts:
                    logger.error(
                        "postgres_pool_acquire_failed",
                        attempts=attempt,
                        max_connections=self._pool_max_connections,
                        in_use=self._pool_in_use_count,
                    )
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc

                logger.warning(
                    "postgres_pool_exhausted_retry",
                    attempt=attempt,
                    wait_seconds=delay,
                    max_connections=self._pool_max_connections,
                )
                sleep(delay)
                delay = min(delay * 2, self._pool_acquire_max_delay_seconds)
                continue

            with self._pool_lock:
                self._pool_in_use_count += 1
            return conn

    def _release_connection(self, conn: extensions.connection, *, close: bool) -> None:
        """Return a connection to the pool."""
        try:
            self._pool.putconn(conn, close=close)
        except PsycopgError:
            logger.warning("postgres_putconn_failed", close=close, exc_info=True)
        finally:
            with self._pool_lock:
                if self._pool_in_use_count > 0:
                    self._pool_in_use_count -= 1

    @contextmanager
    def _get_connection(self) -> Iterator[extensions.connection]:
        """Borrow a connection from the pool and ensure cleanup.

        Any uncommitted transaction is rolled back before the connection is
        returned, so a failed operation never leaves a partial update.
        """
        conn: extensions.connection | None = None
        try:
            conn = self._acquire_connection_with_retry()
            conn.autocommit = False
            yield conn
        except PsycopgError as exc:
            if conn is not None:
                try:
                    conn.rollback()
                except PsycopgError:
                    logger.warning("postgres_connection_rollback_failed", exc_info=True)
                finally:
                    self._release_connection(conn, close=True)
                    conn = None
            raise RepositoryError(f"PostgreSQL error: {exc}") from exc
        finally:
            if conn is not None:
                try:
                    status = conn.get_transaction_status()
                    if status in (
                        extensions.TRANSACTION_STATUS_INTRANS,
                        extensions.TRANSACTION_STATUS_INERROR,
                    ):
                        conn.rollback()
                except PsycopgError:
                    logger.warning("postgres_connection_cleanup_failed", exc_info=True)
                    self._release_connection(conn, close=True)
                else:
                    self._release_connection(conn, close=False)

    def close(self) -> None:
        """Close all connections in the pool."""
        self._pool.closeall()
        with self._pool_lock:
            self._pool_in_use_count = 0
        logger.info("postgres_pool_closed")

    @staticmethod
    def _row_to_score(row: dict[str, Any]) -> ScoreRecord:
        return ScoreRecord(item=row["item"], total=row["total"], temp=row["temp"])

    def apply(self, item: str, polarity: int, magnitude: int) -> ScoreRecord:
        """Add ``polarity * magnitude`` to both scores in one upsert.

        Raises:
            ValueError: On invalid polarity or magnitude
            RepositoryError: On storage errors
        """
        if polarity not in (1, -1):
            raise ValueError(f"polarity must be +1 or -1, got {polarity}")
        if magnitude < 1:
            raise ValueError(f"magnitude must be at least 1, got {magnitude}")

        delta = polarity * magnitude
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO {SCORES_TABLE} (item, total, temp)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (item) DO UPDATE SET
                        total = {SCORES_TABLE}.total + EXCLUDED.total,
                        temp = {SCORES_TABLE}.temp + EXCLUDED.temp
                    RETURNING item, total, temp
                    """,
                    (item, delta, delta),
                )
                row = cur.fetchone()
            conn.commit()

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
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO {SCORES_TABLE} (item, total, temp) VALUES (%s, 0, 0)
                    ON CONFLICT (item) DO NOTHING
                    """,
                    (item,),
                )
                cur.execute(
                    f"SELECT item, total, temp FROM {SCORES_TABLE} WHERE item = %s",
                    (item,),
                )
                row = cur.fetchone()
            conn.commit()

        return self._row_to_score(row)

    def reset_era(self) -> int:
        """Zero every era score; each row update takes that row's lock.

        Raises:
            RepositoryError: On storage errors
        """
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"UPDATE {SCORES_TABLE} SET temp = 0 WHERE temp <> 0")
                reset_count = cur.rowcount
            conn.commit()

        logger.info("era_reset", records_reset=reset_count)
        return reset_count

    def retrieve_top_scores(self, limit: int | None = None) -> list[ScoreRecord]:
        """Return records ordered by total score, highest first.

        Raises:
            RepositoryError: On storage errors
        """
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT item, total, temp FROM {SCORES_TABLE}
                    ORDER BY total DESC, item ASC
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = cur.fetchall()
            conn.commit()

        return [self._row_to_score(row) for row in rows]

    def consume_rate_limit(
        self, actor: str, now: int, max_ops: int, window_seconds: int
    ) -> RateLimitDecision:
        """Evaluate one operation for an actor while holding its row lock.

        Raises:
            RepositoryError: On storage errors
        """
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO {RATE_LIMITS_TABLE} (actor, count, window_start)
                    VALUES (%s, 0, %s)
                    ON CONFLICT (actor) DO NOTHING
                    """,
                    (actor, now),
                )
                cur.execute(
                    f"""
                    SELECT actor, count, window_start FROM {RATE_LIMITS_TABLE}
                    WHERE actor = %s
                    FOR UPDATE
                    """,
                    (actor,),
                )
                row = cur.fetchone()
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

                if decision.record != current:
                    cur.execute(
                        f"""
                        UPDATE {RATE_LIMITS_TABLE}
                        SET count = %s, window_start = %s
                        WHERE actor = %s
                        """,
                        (
                            decision.record.count,
                            decision.record.window_start,
                            actor,
                        ),
                    )
            conn.commit()

        return decision

    def get_rate_limit(self, actor: str) -> RateLimitRecord | None:
        """Load an actor's quota record without changing it.

        Raises:
            RepositoryError: On storage errors
        """
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT actor, count, window_start FROM {RATE_LIMITS_TABLE}
                    WHERE actor = %s
                    """,
                    (actor,),
                )
                row = cur.fetchone()
            conn.commit()

        if row is None:
            return None
        return RateLimitRecord(
            actor=row["actor"], count=row["count"], window_start=row["window_start"]
        )
