"""Operation registry.

Static mapping from the symbols people type after a mention (``++``, ``--``,
``==`` ...) to operation kinds, plus the closed set of commands the bot
accepts when it is addressed directly.
"""

from enum import Enum
from types import MappingProxyType
from typing import Final

from plusplus_bot.domain.exceptions import UnknownOperationError


class OperationKind(str, Enum):
    """Kinds of point operations.

    The value is the display name used to look up message pools.
    """

    PLUS = "plus"
    MINUS = "minus"
    EQUAL = "equal"
    SELF = "self"
    RANDOM = "random"
    REALLY_RANDOM = "reallyrandom"

    @property
    def is_mutating(self) -> bool:
        """Whether the operation changes a score."""
        return self in MUTATING_OPERATIONS

    @property
    def is_random(self) -> bool:
        """Whether polarity and magnitude are drawn at dispatch time."""
        return self in (OperationKind.RANDOM, OperationKind.REALLY_RANDOM)


MUTATING_OPERATIONS: Final[frozenset[OperationKind]] = frozenset(
    {
        OperationKind.PLUS,
        OperationKind.MINUS,
        OperationKind.RANDOM,
        OperationKind.REALLY_RANDOM,
    }
)

# The em dash is what phones turn "--" into.
OPERATION_SYMBOLS: Final[MappingProxyType[str, OperationKind]] = MappingProxyType(
    {
        "+": OperationKind.PLUS,
        "-": OperationKind.MINUS,
        "—": OperationKind.MINUS,
        "=": OperationKind.EQUAL,
        "#": OperationKind.RANDOM,
        "!": OperationKind.REALLY_RANDOM,
    }
)


def get_operation(symbol: str) -> OperationKind:
    """Resolve an operation symbol.

    Args:
        symbol: Single operation character, or a doubled one (``"++"``)

    Returns:
        Operation kind bound to the symbol

    Raises:
        UnknownOperationError: If the symbol is not registered

    Example:
        >>> get_operation("++")
        <OperationKind.PLUS: 'plus'>
    """
    key = symbol[:1]
    try:
        return OPERATION_SYMBOLS[key]
    except KeyError as exc:
        raise UnknownOperationError(f"Invalid operation: {symbol!r}") from exc


def get_operation_name(kind: OperationKind) -> str:
    """Return the canonical display name of an operation."""
    return kind.value


def symbols_for(kind: OperationKind) -> frozenset[str]:
    """Return every symbol bound to an operation kind.

    SELF has no symbol; it is derived by the parser.
    """
    return frozenset(
        symbol for symbol, bound in OPERATION_SYMBOLS.items() if bound is kind
    )


class AdminCommand(str, Enum):
    """Commands accepted when the bot is mentioned directly."""

    LEADERBOARD_ALL = "leaderboardall"
    LEADERBOARD = "leaderboard"
    HELP_ALL = "helpall"
    HELP = "help"
    THANKS = "thanks"
    REINCARNATE = "reincarnate"


# Lookup order matters: longer keywords sharing a prefix come first.
ADMIN_COMMAND_KEYWORDS: Final[tuple[tuple[str, AdminCommand], ...]] = (
    ("leaderboardall", AdminCommand.LEADERBOARD_ALL),
    ("leaderboard", AdminCommand.LEADERBOARD),
    ("helpall", AdminCommand.HELP_ALL),
    ("help", AdminCommand.HELP),
    ("thx", AdminCommand.THANKS),
    ("thanks", AdminCommand.THANKS),
    ("thankyou", AdminCommand.THANKS),
    ("reincarnate", AdminCommand.REINCARNATE),
)
