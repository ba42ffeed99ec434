"""Per-actor, time-windowed quota.

The window decision is a pure function so every storage backend applies the
same rules inside its own locking transaction.
"""

import time
from collections.abc import Callable
from typing import Final

from plusplus_bot.config.logging_config import get_logger
from plusplus_bot.domain.models import RateLimitDecision, RateLimitRecord
from plusplus_bot.domain.protocols import RateLimitStoreProtocol

logger = get_logger(__name__)

WINDOW_SECONDS: Final[int] = 3600

Clock = Callable[[], float]


def new_record(actor: str, now: int) -> RateLimitRecord:
    """Record created on an actor's first evaluation."""
    return RateLimitRecord(actor=actor, count=0, window_start=now)


def evaluate_window(
    record: RateLimitRecord,
    now: int,
    max_ops: int,
    window_seconds: int = WINDOW_SECONDS,
) -> RateLimitDecision:
    """Decide whether one more operation fits in the actor's window.

    Args:
        record: Current record (use ``new_record`` when none is stored)
        now: Current time, epoch seconds
        max_ops: Operations allowed per window
        window_seconds: Window length

    Returns:
        Decision plus the record to persist. On denial the record is unchanged.

    Example:
        >>> rec = RateLimitRecord(actor="U1", count=3, window_start=0)
        >>> evaluate_window(rec, now=10, max_ops=3).allowed
        False
        >>> evaluate_window(rec, now=3600, max_ops=3).record.count
        1
    """
    if now - record.window_start >= window_seconds:
        # This evaluation is the first operation of the new window.
        return RateLimitDecision(
            allowed=True,
            record=record.model_copy(update={"count": 1, "window_start": now}),
        )

    if record.count < max_ops:
        return RateLimitDecision(
            allowed=True,
            record=record.model_copy(update={"count": record.count + 1}),
        )

    return RateLimitDecision(allowed=False, record=record)


class RateLimiter:
    """Check-and-consume quota gate evaluated once per scoring command.

    Counts operations, not points: a ``:taco: :taco: :taco:`` message uses one
    slot per target regardless of magnitude.
    """

    def __init__(
        self,
        store: RateLimitStoreProtocol,
        max_ops: int,
        *,
        clock: Clock | None = None,
        window_seconds: int = WINDOW_SECONDS,
    ) -> None:
        if max_ops < 0:
            raise ValueError("max_ops must not be negative")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self._max_ops = max_ops
        self._clock = clock or time.time
        self._window_seconds = window_seconds

    @property
    def max_ops(self) -> int:
        return self._max_ops

    def check_and_consume(self, actor: str) -> bool:
        """Evaluate one operation for ``actor``.

        Returns:
            True when allowed (and recorded), False when the quota is used up

        Raises:
            RepositoryError: On storage errors
        """
        now = int(self._clock())
        decision = self._store.consume_rate_limit(
            actor, now, self._max_ops, self._window_seconds
        )

        if decision.allowed:
            logger.debug(
                "rate_limit_allowed",
                actor=actor,
                count=decision.record.count,
                max_ops=self._max_ops,
            )
        else:
            logger.info(
                "rate_limit_denied",
                actor=actor,
                count=decision.record.count,
                max_ops=self._max_ops,
                window_start=decision.record.window_start,
            )
        return decision.allowed
