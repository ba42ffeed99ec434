"""Tests for the operation registry."""

import pytest

from plusplus_bot.domain.exceptions import UnknownOperationError
from plusplus_bot.domain.operations import (
    ADMIN_COMMAND_KEYWORDS,
    MUTATING_OPERATIONS,
    AdminCommand,
    OperationKind,
    get_operation,
    get_operation_name,
    symbols_for,
)


@pytest.mark.parametrize(
    ("symbol", "expected"),
    [
        ("+", OperationKind.PLUS),
        ("++", OperationKind.PLUS),
        ("-", OperationKind.MINUS),
        ("--", OperationKind.MINUS),
        ("—", OperationKind.MINUS),
        ("=", OperationKind.EQUAL),
        ("#", OperationKind.RANDOM),
        ("!", OperationKind.REALLY_RANDOM),
    ],
)
def test_get_operation_resolves_symbols(symbol: str, expected: OperationKind) -> None:
    assert get_operation(symbol) is expected


@pytest.mark.parametrize("symbol", ["*", "?", "", "x+"])
def test_get_operation_rejects_unknown_symbols(symbol: str) -> None:
    with pytest.raises(UnknownOperationError):
        get_operation(symbol)


def test_display_names_match_message_pool_keys() -> None:
    assert get_operation_name(OperationKind.PLUS) == "plus"
    assert get_operation_name(OperationKind.REALLY_RANDOM) == "reallyrandom"
    assert get_operation_name(OperationKind.SELF) == "self"


def test_minus_has_both_hyphen_and_em_dash() -> None:
    assert symbols_for(OperationKind.MINUS) == frozenset({"-", "—"})
    assert symbols_for(OperationKind.SELF) == frozenset()


def test_query_and_self_are_not_mutating() -> None:
    assert not OperationKind.EQUAL.is_mutating
    assert not OperationKind.SELF.is_mutating
    assert OperationKind.PLUS in MUTATING_OPERATIONS
    assert OperationKind.RANDOM.is_random
    assert not OperationKind.MINUS.is_random


def test_admin_keywords_cover_every_command_and_prefer_longer_keywords() -> None:
    commands = {command for _, command in ADMIN_COMMAND_KEYWORDS}
    assert commands == set(AdminCommand)

    keywords = [keyword for keyword, _ in ADMIN_COMMAND_KEYWORDS]
    assert keywords.index("leaderboardall") < keywords.index("leaderboard")
    assert keywords.index("helpall") < keywords.index("help")
