"""Domain models for the plusplus bot.

All models use Pydantic v2 for validation and serialization.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plusplus_bot.domain.operations import OperationKind

Polarity = Literal[1, -1]


class ScoreRecord(BaseModel):
    """Lifetime and current-era score of an item.

    ``total`` is never reset by normal operation; ``temp`` is zeroed by an
    era reset ("reincarnate").
    """

    item: str = Field(..., min_length=1, description="Slack user ID or thing name")
    total: int = Field(default=0, description="Lifetime score")
    temp: int = Field(default=0, description="Score since the last era reset")


class RateLimitRecord(BaseModel):
    """Per-actor quota usage within the current window."""

    actor: str = Field(..., min_length=1)
    count: int = Field(default=0, ge=0, description="Operations in current window")
    window_start: int = Field(..., description="Window start, epoch seconds")


class RateLimitDecision(BaseModel):
    """Result of a single quota evaluation."""

    allowed: bool
    record: RateLimitRecord


class ParsedCommand(BaseModel):
    """One unit of work extracted from a chat message."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., min_length=1, description="Item being scored")
    actor: str = Field(..., min_length=1, description="User who issued the command")
    magnitude: int = Field(default=1, ge=1)
    polarity: Polarity = 1
    operation: OperationKind = OperationKind.PLUS
    is_self_target: bool = False


class ChatEvent(BaseModel):
    """Inbound Slack Events API payload (the inner ``event`` object)."""

    model_config = ConfigDict(extra="ignore")

    type: str
    subtype: str | None = None
    text: str | None = None
    user: str | None = None
    bot_id: str | None = None
    channel: str | None = None
    ts: str | None = None
    thread_ts: str | None = None
    event_id: str | None = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Reject blank event types."""
        if not v.strip():
            raise ValueError("event type must not be empty")
        return v

    @property
    def reply_thread_ts(self) -> str | None:
        """Timestamp a threaded reply should attach to."""
        return self.thread_ts or self.ts


class OutcomeStatus(str, Enum):
    """Outcome of processing one command or one event."""

    APPLIED = "applied"
    QUERIED = "queried"
    SELF_TARGET = "self_target"
    RATE_LIMITED = "rate_limited"
    ADMIN = "admin"
    UNKNOWN_COMMAND = "unknown_command"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"
    HANDLED = "handled"


class CommandOutcome(BaseModel):
    """What happened to a single parsed command."""

    command: ParsedCommand | None = None
    status: OutcomeStatus
    total: int | None = None
    temp: int | None = None
    reply: str | None = None


class EventResult(BaseModel):
    """Aggregate result of dispatching one inbound event."""

    status: OutcomeStatus
    outcomes: list[CommandOutcome] = Field(default_factory=list)
    error: str | None = None


class MessagePool(BaseModel):
    """Weighted pool of candidate reply strings."""

    model_config = ConfigDict(frozen=True)

    weight: int = Field(..., ge=1)
    messages: tuple[str, ...] = Field(..., min_length=1)
