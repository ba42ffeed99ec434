"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
"""

from typing import Protocol

from plusplus_bot.domain.models import RateLimitDecision, RateLimitRecord, ScoreRecord


class ScoreStoreProtocol(Protocol):
    """Durable, case-insensitive ledger of total and era scores."""

    def apply(self, item: str, polarity: int, magnitude: int) -> ScoreRecord:
        """Atomically upsert an item and add ``polarity * magnitude`` to both scores.

        Args:
            item: Slack user ID or thing name (case-insensitive identity)
            polarity: +1 or -1
            magnitude: Number of points, at least 1

        Returns:
            Record holding the new total and temp scores

        Raises:
            RepositoryError: On storage errors (nothing is committed)
        """
        ...

    def query(self, item: str) -> ScoreRecord:
        """Read an item's scores, creating a zeroed record if absent.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def reset_era(self) -> int:
        """Zero every ``temp`` score, leaving totals untouched.

        Returns:
            Number of records reset

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def retrieve_top_scores(self, limit: int | None = None) -> list[ScoreRecord]:
        """Return records ordered by total score, highest first.

        Raises:
            RepositoryError: On storage errors
        """
        ...


class RateLimitStoreProtocol(Protocol):
    """Per-actor quota records with atomic check-and-consume."""

    def consume_rate_limit(
        self, actor: str, now: int, max_ops: int, window_seconds: int
    ) -> RateLimitDecision:
        """Evaluate and record one operation for an actor under a per-actor lock.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def get_rate_limit(self, actor: str) -> RateLimitRecord | None:
        """Load an actor's quota record without changing it."""
        ...


class RepositoryProtocol(ScoreStoreProtocol, RateLimitStoreProtocol, Protocol):
    """Combined storage handle with an explicit lifecycle."""

    def close(self) -> None:
        """Release connections held by the repository."""
        ...


class ChatGatewayProtocol(Protocol):
    """Outbound chat transport."""

    async def send_message(self, text: str, channel: str) -> str | None:
        """Post a message to a channel.

        Returns:
            Message timestamp when the transport reports one

        Raises:
            ChatGatewayError: On API communication errors
        """
        ...

    async def send_threaded_message(
        self, text: str, channel: str, thread_ts: str
    ) -> str | None:
        """Post a reply attached to a parent message.

        Raises:
            ChatGatewayError: On API communication errors
        """
        ...

    async def send_ephemeral(self, text: str, channel: str, user: str) -> None:
        """Post a message visible only to one user.

        Raises:
            ChatGatewayError: On API communication errors
        """
        ...
