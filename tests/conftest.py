"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import random
from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from plusplus_bot.adapters.repository_factory import create_repository
from plusplus_bot.config.settings import Settings
from plusplus_bot.domain.protocols import RepositoryProtocol
from plusplus_bot.services.command_parser import CommandParser
from plusplus_bot.services.message_composer import MessageComposer
from plusplus_bot.services.rate_limiter import RateLimiter
from plusplus_bot.use_cases.dispatch_event import EventDispatcher

ACTOR_ID = "U0ACTOR01"
TARGET_ID = "U0TARGET1"
OTHER_ID = "U0OTHER01"
BOT_ID = "U0BOTUSER"
CHANNEL_ID = "C0CHANNEL"


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Chat gateway that records every outbound message."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []
        self.threaded: list[dict[str, Any]] = []
        self.ephemeral: list[dict[str, Any]] = []

    async def send_message(self, text: str, channel: str) -> str | None:
        self.messages.append({"text": text, "channel": channel})
        return "1700000000.000100"

    async def send_threaded_message(
        self, text: str, channel: str, thread_ts: str
    ) -> str | None:
        self.threaded.append({"text": text, "channel": channel, "thread_ts": thread_ts})
        return "1700000000.000200"

    async def send_ephemeral(self, text: str, channel: str, user: str) -> None:
        self.ephemeral.append({"text": text, "channel": channel, "user": user})

    @property
    def all_texts(self) -> list[str]:
        return [
            call["text"] for call in (*self.messages, *self.threaded, *self.ephemeral)
        ]


@pytest.fixture
def settings(
    tmp_path_factory: pytest.TempPathFactory, request: pytest.FixtureRequest
) -> Settings:
    """Create settings configured for the requested database backend."""

    base_settings = Settings(slack_bot_token="xoxb-test")

    if request.node.get_closest_marker("postgres"):
        if os.environ.get("TEST_POSTGRES", "0") != "1":
            pytest.skip("PostgreSQL tests disabled (TEST_POSTGRES!=1)")
        if not os.environ.get("DATABASE_URL"):
            pytest.skip("DATABASE_URL not set for PostgreSQL tests")
        return base_settings.model_copy(update={"database_type": "postgres"})

    temp_dir = tmp_path_factory.mktemp("db")
    db_path = temp_dir / "test.sqlite"
    return base_settings.model_copy(
        update={
            "database_type": "sqlite",
            "db_path": str(db_path),
            "max_ops": 3,
        }
    )


@pytest.fixture
def repo(settings: Settings) -> Generator[RepositoryProtocol, None, None]:
    """Provide a repository instance for the configured backend."""

    repository = create_repository(settings)

    try:
        yield repository
    finally:
        repository.close()

        if settings.database_type == "sqlite":
            db_path = Path(settings.db_path)
            if db_path.exists():
                db_path.unlink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def frozen_now() -> datetime:
    return datetime(2024, 3, 15, 10, 30, 0)


@pytest.fixture
def dispatcher(
    settings: Settings,
    repo: RepositoryProtocol,
    gateway: FakeGateway,
    rng: random.Random,
    clock: FakeClock,
    frozen_now: datetime,
) -> EventDispatcher:
    """Dispatcher wired to the temporary repository and fake collaborators."""

    return EventDispatcher(
        parser=CommandParser.from_settings(settings),
        rate_limiter=RateLimiter(repo, settings.max_ops, clock=clock),
        score_store=repo,
        composer=MessageComposer(rng, score_unit=settings.score_unit),
        gateway=gateway,
        rng=rng,
        date_clock=lambda: frozen_now,
        bot_user_id=BOT_ID,
        leaderboard_limit=settings.leaderboard_limit,
        score_unit=settings.score_unit,
        era_reset_actors=(ACTOR_ID,),
    )


def message_event(text: str, user: str = ACTOR_ID, **extra: Any) -> dict[str, Any]:
    """Build a Slack ``message`` event payload."""

    event: dict[str, Any] = {
        "type": "message",
        "text": text,
        "user": user,
        "channel": CHANNEL_ID,
        "ts": "1700000000.000001",
    }
    event.update(extra)
    return event


def mention_event(text: str, user: str = ACTOR_ID, **extra: Any) -> dict[str, Any]:
    """Build a Slack ``app_mention`` event payload addressed to the bot."""

    event = message_event(f"<@{BOT_ID}> {text}", user=user, **extra)
    event["type"] = "app_mention"
    return event
