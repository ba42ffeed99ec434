"""Command parser for free-text chat messages.

Turns message text into an ordered list of ``ParsedCommand``. Two forms are
recognized:

- Suffix form: a mention followed by an operator, ``<@U123>++``, ``@thing --``,
  ``@thing==``. One command per match, in text order.
- Reward form: user mentions anywhere plus N reward tokens (``:taco:``). Every
  distinct mentioned user gets one command of magnitude N.

Parsing does no I/O and has no side effects.
"""

import re
from typing import TYPE_CHECKING, Final

from plusplus_bot.domain.models import ParsedCommand
from plusplus_bot.domain.operations import OperationKind, get_operation

if TYPE_CHECKING:
    from plusplus_bot.config.settings import Settings

USER_MENTION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"<@(?P<user>[UW][A-Z0-9]+)(?:\|[^>]*)?>"
)
"""Slack user mention, optionally with a display label: <@U123> or <@U123|bob>."""

SUFFIX_COMMAND_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?:<@(?P<user>[UW][A-Z0-9]+)(?:\|[^>]*)?>"
    r"|(?<![\w.])@(?P<thing>[A-Za-z0-9_.\-]+?))"
    r"\s*(?P<op>\+\+|--|—|==|##|!!)"
)
"""Mention immediately followed (optionally after whitespace) by an operator."""

USER_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[UW][A-Z0-9]{6,}$")


def is_user_id(item: str) -> bool:
    """Whether an item looks like a Slack user ID rather than a thing name.

    Example:
        >>> is_user_id("U0123ABCD")
        True
        >>> is_user_id("coffee")
        False
    """
    return bool(USER_ID_PATTERN.match(item))


def same_item(left: str, right: str) -> bool:
    """Case-insensitive item identity."""
    return left.casefold() == right.casefold()


def strip_bot_mention(text: str, bot_user_id: str | None) -> str:
    """Remove the bot's own mention(s) from a message addressed to it.

    Args:
        text: Raw message text
        bot_user_id: The bot's user ID, or None to strip the leading mention

    Returns:
        Text with the bot mention removed and whitespace trimmed
    """
    if bot_user_id:
        pattern = re.compile(rf"<@{re.escape(bot_user_id)}(?:\|[^>]*)?>")
        return pattern.sub("", text).strip()

    match = USER_MENTION_PATTERN.match(text.lstrip())
    if match:
        return text.lstrip()[match.end() :].strip()
    return text.strip()


class CommandParser:
    """Extract scoring commands from message text."""

    def __init__(
        self,
        *,
        reward_token: str = ":taco:",
        penalty_token: str = ":poop:",
        privileged_actor_id: str | None = None,
        privileged_penalty_enabled: bool = False,
    ) -> None:
        if not reward_token:
            raise ValueError("reward_token must not be empty")
        self._reward_token = reward_token
        self._penalty_token = penalty_token
        self._privileged_actor_id = privileged_actor_id
        self._penalty_enabled = privileged_penalty_enabled and bool(
            privileged_actor_id and penalty_token
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CommandParser":
        return cls(
            reward_token=settings.reward_token,
            penalty_token=settings.penalty_token,
            privileged_actor_id=settings.privileged_actor_id,
            privileged_penalty_enabled=settings.privileged_penalty_enabled,
        )

    def parse(self, text: str, actor: str) -> list[ParsedCommand]:
        """Parse a message into commands.

        Args:
            text: Raw message text (Slack markup)
            actor: User ID of the message author

        Returns:
            Commands in the order they should be applied; empty when the text
            holds no recognizable command

        Example:
            >>> CommandParser().parse("<@U0123ABCD>++", actor="U0999ZZZZ")[0].magnitude
            1
        """
        if not text:
            return []

        reward_count = text.count(self._reward_token)
        if reward_count > 0:
            commands = self._parse_reward_form(text, actor, reward_count)
            if commands:
                return self._with_penalties(commands, text, actor)

        commands = self._parse_suffix_form(text, actor)
        return self._with_penalties(commands, text, actor)

    def _parse_reward_form(
        self, text: str, actor: str, reward_count: int
    ) -> list[ParsedCommand]:
        targets: list[str] = []
        seen: set[str] = set()
        for match in USER_MENTION_PATTERN.finditer(text):
            user = match.group("user")
            key = user.casefold()
            if key in seen:
                continue
            seen.add(key)
            targets.append(user)

        return [
            self._build(target, actor, OperationKind.PLUS, 1, reward_count)
            for target in targets
        ]

    def _parse_suffix_form(self, text: str, actor: str) -> list[ParsedCommand]:
        commands: list[ParsedCommand] = []
        for match in SUFFIX_COMMAND_PATTERN.finditer(text):
            target = match.group("user") or match.group("thing")
            if not target:
                continue
            operation = get_operation(match.group("op"))
            polarity = -1 if operation is OperationKind.MINUS else 1
            commands.append(self._build(target, actor, operation, polarity, 1))
        return commands

    def _with_penalties(
        self, commands: list[ParsedCommand], text: str, actor: str
    ) -> list[ParsedCommand]:
        """Append a compensating decrement after each credit by the privileged actor."""
        if not self._penalty_enabled or not commands:
            return commands
        if not same_item(actor, self._privileged_actor_id or ""):
            return commands

        penalty_count = text.count(self._penalty_token)
        if penalty_count < 1:
            return commands

        result: list[ParsedCommand] = []
        for command in commands:
            result.append(command)
            if command.operation is OperationKind.PLUS and not command.is_self_target:
                result.append(
                    self._build(
                        command.target, actor, OperationKind.MINUS, -1, penalty_count
                    )
                )
        return result

    @staticmethod
    def _build(
        target: str,
        actor: str,
        operation: OperationKind,
        polarity: int,
        magnitude: int,
    ) -> ParsedCommand:
        return ParsedCommand(
            target=target,
            actor=actor,
            magnitude=magnitude,
            polarity=polarity,
            operation=operation,
            is_self_target=operation.is_mutating and same_item(target, actor),
        )
