"""Tests for leaderboard rendering and the rotating secret."""

import hashlib
from datetime import datetime, timedelta

from plusplus_bot.domain.models import ScoreRecord
from plusplus_bot.services.leaderboard import (
    build_help_text,
    derive_leaderboard_secret,
    format_leaderboard,
    verify_leaderboard_secret,
)

ACTOR = "U0ACTOR01"
NOW = datetime(2024, 3, 15, 10, 30, 0)


def test_secret_uses_zero_based_month() -> None:
    expected = hashlib.sha1(f"{ACTOR}10302024215".encode()).hexdigest()

    assert derive_leaderboard_secret(ACTOR, NOW) == expected


def test_secret_verifies_for_current_and_previous_minute() -> None:
    secret = derive_leaderboard_secret(ACTOR, NOW)

    assert verify_leaderboard_secret(ACTOR, secret, NOW)
    assert verify_leaderboard_secret(ACTOR, secret.upper(), NOW + timedelta(seconds=59))
    assert verify_leaderboard_secret(ACTOR, secret, NOW + timedelta(minutes=1))
    assert not verify_leaderboard_secret(ACTOR, secret, NOW + timedelta(minutes=2))


def test_secret_is_bound_to_actor() -> None:
    secret = derive_leaderboard_secret(ACTOR, NOW)

    assert not verify_leaderboard_secret("U0OTHER01", secret, NOW)
    assert not verify_leaderboard_secret(ACTOR, "", NOW)


def test_leaderboard_splits_users_and_things() -> None:
    records = [
        ScoreRecord(item="U0TARGET1", total=5, temp=2),
        ScoreRecord(item="coffee", total=3, temp=3),
        ScoreRecord(item="U0OTHER01", total=1, temp=1),
    ]

    text = format_leaderboard(records)

    assert text.splitlines() == [
        "*Users*",
        "1. <@U0TARGET1> 5 :taco:s (2 this era)",
        "2. <@U0OTHER01> 1 :taco: (1 this era)",
        "",
        "*Things*",
        "1. coffee 3 :taco:s (3 this era)",
    ]


def test_leaderboard_limit_applies_per_section() -> None:
    records = [ScoreRecord(item=f"thing{i}", total=10 - i) for i in range(5)]

    text = format_leaderboard(records, limit=2)

    assert "thing1" in text
    assert "thing2" not in text
    assert "_Nobody yet._" in text


def test_help_text_includes_secret_only_when_given() -> None:
    private = build_help_text("U0BOTUSER", secret="abc123")
    public = build_help_text("U0BOTUSER")

    assert "<@U0BOTUSER> leaderboardall abc123" in private
    assert "abc123" not in public
    assert "{your secret key from help}" in public
