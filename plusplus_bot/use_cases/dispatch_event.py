"""Dispatch inbound Slack events to scoring and administrative handlers.

Each event is handled as one asyncio task. Commands parsed from one message
run strictly in order, each finishing (reply included) before the next, so a
later rate-limit check sees the effects of earlier ones. Store calls run in a
worker thread; they and the outbound replies are the only awaits.
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable, Collection, Mapping
from datetime import datetime
from typing import Any, Final

from pydantic import ValidationError as PydanticValidationError

from plusplus_bot.config.logging_config import get_logger
from plusplus_bot.config.settings import Settings
from plusplus_bot.domain.exceptions import (
    ChatGatewayError,
    MalformedEventError,
    RepositoryError,
    UnknownOperationError,
)
from plusplus_bot.domain.models import (
    ChatEvent,
    CommandOutcome,
    EventResult,
    OutcomeStatus,
    ParsedCommand,
)
from plusplus_bot.domain.operations import (
    ADMIN_COMMAND_KEYWORDS,
    AdminCommand,
    OperationKind,
)
from plusplus_bot.domain.protocols import (
    ChatGatewayProtocol,
    RepositoryProtocol,
    ScoreStoreProtocol,
)
from plusplus_bot.observability.metrics import COMMANDS_TOTAL, EVENTS_TOTAL
from plusplus_bot.observability.tracing import correlation_scope
from plusplus_bot.services.command_parser import CommandParser, strip_bot_mention
from plusplus_bot.services.leaderboard import (
    build_help_text,
    derive_leaderboard_secret,
    format_leaderboard,
    verify_leaderboard_secret,
)
from plusplus_bot.services.message_composer import MessageComposer, link_item
from plusplus_bot.services.rate_limiter import Clock, RateLimiter

logger = get_logger(__name__)

MESSAGE_EVENT: Final[str] = "message"
APP_MENTION_EVENT: Final[str] = "app_mention"
REACTION_EVENTS: Final[frozenset[str]] = frozenset(
    {"reaction_added", "reaction_removed"}
)
TEXT_EVENTS: Final[frozenset[str]] = frozenset({MESSAGE_EVENT, APP_MENTION_EVENT})

RANDOM_POLARITIES: Final[tuple[int, ...]] = (1, -1, 1, 1)
RANDOM_MAX_MAGNITUDE: Final[int] = 5
REALLY_RANDOM_POLARITIES: Final[tuple[int, ...]] = (1, -1)
REALLY_RANDOM_MAX_MAGNITUDE: Final[int] = 99

NOT_UNDERSTOOD_MESSAGE: Final[str] = (
    "Sorry, I'm not quite sure what you're asking me. I'm not very smart - there's "
    "only a few things I've been trained to do. Send me `help` for more details."
)
INVALID_SECRET_MESSAGE: Final[str] = (
    "Sorry, that secret key isn't valid (they only last a minute). "
    "Send me `help` to get a fresh one."
)
ERA_RESET_MESSAGE: Final[str] = (
    "A new era begins! Era scores have been reset; lifetime totals are untouched."
)
ERA_RESET_REFUSED_MESSAGE: Final[str] = (
    "Sorry, only the configured era keepers can start a new era."
)

LEADING_WORD_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\W*(\w+)")

DateClock = Callable[[], datetime]
AdminHandler = Callable[[ChatEvent, str], Awaitable[CommandOutcome]]


def quota_exceeded_message(actor: str, window_seconds: int) -> str:
    """Reply for an actor who used up their quota."""
    hours = max(window_seconds // 3600, 1)
    period = "1 hour" if hours == 1 else f"{hours} hours"
    return (
        f"No soup for {link_item(actor)}!\n"
        f"Sorry but you exceeded your taco limit, check back in {period}."
    )


def match_admin_command(text: str) -> AdminCommand | None:
    """Find the first administrative keyword in text addressed to the bot."""
    for keyword, command in ADMIN_COMMAND_KEYWORDS:
        if re.search(rf"(?<!\w){keyword}(?!\w)", text, flags=re.IGNORECASE):
            return command
    return None


def match_leading_admin_command(text: str) -> AdminCommand | None:
    """Return the admin command named by the first word of text, if any."""
    match = LEADING_WORD_PATTERN.match(text)
    if match is None:
        return None
    word = match.group(1).lower()
    for keyword, command in ADMIN_COMMAND_KEYWORDS:
        if word == keyword:
            return command
    return None


def extract_leaderboard_secret(text: str) -> str:
    """Return the word following ``leaderboardall``, or an empty string."""
    match = re.search(r"leaderboardall\s+(\S+)", text, flags=re.IGNORECASE)
    return match.group(1) if match else ""


def validate_event(
    raw_event: Mapping[str, Any] | ChatEvent, bot_user_id: str | None = None
) -> ChatEvent:
    """Validate an inbound event before any parsing.

    Raises:
        MalformedEventError: If a required field is missing or the event is
            unsupported (subtypes, bot messages, unknown types)
    """
    if isinstance(raw_event, ChatEvent):
        event = raw_event
    else:
        if not raw_event.get("type"):
            raise MalformedEventError("Event data missing")
        try:
            event = ChatEvent.model_validate(dict(raw_event))
        except PydanticValidationError as exc:
            raise MalformedEventError(f"Invalid event payload: {exc}") from exc

    # Edits, joins and bot_message posts all carry a subtype.
    if event.subtype is not None:
        raise MalformedEventError(f"Unsupported event subtype: {event.subtype}")
    if event.bot_id is not None or (bot_user_id and event.user == bot_user_id):
        raise MalformedEventError("Bot messages are not handled")

    if event.type in TEXT_EVENTS:
        if event.text is None or not event.text.strip():
            raise MalformedEventError("Event text missing")
        if not event.user or not event.channel:
            raise MalformedEventError("Event user or channel missing")
    elif event.type not in REACTION_EVENTS:
        raise MalformedEventError(f"Invalid event received: {event.type}")

    return event


class EventDispatcher:
    """Route chat events through parsing, quota, scoring and reply composition."""

    def __init__(
        self,
        *,
        parser: CommandParser,
        rate_limiter: RateLimiter,
        score_store: ScoreStoreProtocol,
        composer: MessageComposer,
        gateway: ChatGatewayProtocol,
        rng: random.Random | None = None,
        date_clock: DateClock | None = None,
        bot_user_id: str | None = None,
        leaderboard_limit: int = 10,
        score_unit: str = ":taco:",
        window_seconds: int = 3600,
        era_reset_actors: Collection[str] = (),
    ) -> None:
        self._parser = parser
        self._rate_limiter = rate_limiter
        self._score_store = score_store
        self._composer = composer
        self._gateway = gateway
        self._rng = rng or random.Random()
        self._date_clock = date_clock or datetime.now
        self._bot_user_id = bot_user_id
        self._leaderboard_limit = leaderboard_limit
        self._score_unit = score_unit
        self._window_seconds = window_seconds
        self._era_reset_actors = frozenset(era_reset_actors)

        self._admin_handlers: dict[AdminCommand, AdminHandler] = {
            AdminCommand.LEADERBOARD: self._send_leaderboard,
            AdminCommand.LEADERBOARD_ALL: self._send_leaderboard_all,
            AdminCommand.HELP: self._send_help,
            AdminCommand.HELP_ALL: self._send_help_all,
            AdminCommand.THANKS: self._say_thanks,
            AdminCommand.REINCARNATE: self._reincarnate,
        }
        missing = set(AdminCommand) - set(self._admin_handlers)
        if missing:
            raise UnknownOperationError(
                f"No handler for admin commands: {sorted(c.value for c in missing)}"
            )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: RepositoryProtocol,
        gateway: ChatGatewayProtocol,
        *,
        rng: random.Random | None = None,
        clock: Clock | None = None,
        date_clock: DateClock | None = None,
        bot_user_id: str | None = None,
    ) -> EventDispatcher:
        """Wire a dispatcher from settings and an open repository handle."""
        rng = rng or random.Random()
        return cls(
            parser=CommandParser.from_settings(settings),
            rate_limiter=RateLimiter(
                repository,
                settings.max_ops,
                clock=clock,
                window_seconds=settings.rate_limit_window_seconds,
            ),
            score_store=repository,
            composer=MessageComposer(rng, score_unit=settings.score_unit),
            gateway=gateway,
            rng=rng,
            date_clock=date_clock,
            bot_user_id=bot_user_id,
            leaderboard_limit=settings.leaderboard_limit,
            score_unit=settings.score_unit,
            window_seconds=settings.rate_limit_window_seconds,
            era_reset_actors=settings.era_reset_actor_ids,
        )

    async def handle_event(self, raw_event: Mapping[str, Any] | ChatEvent) -> EventResult:
        """Handle one inbound event.

        Policy outcomes (no-op, self-target, quota denial, unknown command) are
        returned as statuses. Storage and gateway faults abandon the event:
        they are logged once, no further replies are sent and the result has
        status FAILED.

        Args:
            raw_event: Inner ``event`` object of a Slack Events API payload

        Returns:
            Result with one outcome per processed command
        """
        event_id = (
            raw_event.event_id
            if isinstance(raw_event, ChatEvent)
            else raw_event.get("event_id") or raw_event.get("ts")
        )
        with correlation_scope(event_id):
            try:
                event = validate_event(raw_event, self._bot_user_id)
            except MalformedEventError as exc:
                event_type = (
                    raw_event.type
                    if isinstance(raw_event, ChatEvent)
                    else str(raw_event.get("type") or "missing")
                )
                logger.warning("event_rejected", event_type=event_type, reason=str(exc))
                EVENTS_TOTAL.labels(
                    event_type=event_type, status=OutcomeStatus.REJECTED.value
                ).inc()
                return EventResult(status=OutcomeStatus.REJECTED, error=str(exc))

            outcomes: list[CommandOutcome] = []
            try:
                if event.type == MESSAGE_EVENT and self._addresses_bot(event):
                    # Delivered again as app_mention; handled there.
                    logger.debug("message_left_to_mention_handler", channel=event.channel)
                    status = OutcomeStatus.IGNORED
                elif event.type == MESSAGE_EVENT:
                    status = await self._handle_message(event, event.text or "", outcomes)
                elif event.type == APP_MENTION_EVENT:
                    status = await self._handle_mention(event, outcomes)
                else:
                    status = self._handle_reaction(event)
            except (RepositoryError, ChatGatewayError) as exc:
                logger.error(
                    "event_abandoned",
                    event_type=event.type,
                    actor=event.user,
                    channel=event.channel,
                    completed_commands=len(outcomes),
                    error=str(exc),
                    exc_info=True,
                )
                EVENTS_TOTAL.labels(
                    event_type=event.type, status=OutcomeStatus.FAILED.value
                ).inc()
                return EventResult(
                    status=OutcomeStatus.FAILED, outcomes=outcomes, error=str(exc)
                )

            EVENTS_TOTAL.labels(event_type=event.type, status=status.value).inc()
            return EventResult(status=status, outcomes=outcomes)

    async def _handle_message(
        self, event: ChatEvent, text: str, outcomes: list[CommandOutcome]
    ) -> OutcomeStatus:
        commands = self._parser.parse(text, event.user or "")
        if not commands:
            logger.debug("message_not_a_command", channel=event.channel)
            return OutcomeStatus.IGNORED

        logger.info(
            "commands_parsed",
            actor=event.user,
            channel=event.channel,
            count=len(commands),
        )
        for command in commands:
            outcome = await self._process_command(event, command)
            COMMANDS_TOTAL.labels(
                operation=command.operation.value, outcome=outcome.status.value
            ).inc()
            outcomes.append(outcome)
        return OutcomeStatus.HANDLED

    def _addresses_bot(self, event: ChatEvent) -> bool:
        if not self._bot_user_id:
            return False
        pattern = rf"<@{re.escape(self._bot_user_id)}[|>]"
        return re.search(pattern, event.text or "") is not None

    def _handle_reaction(self, event: ChatEvent) -> OutcomeStatus:
        """Reactions are accepted but deliberately do not score anything."""
        logger.debug("reaction_event_ignored", event_type=event.type)
        return OutcomeStatus.IGNORED

    async def _process_command(
        self, event: ChatEvent, command: ParsedCommand
    ) -> CommandOutcome:
        if command.is_self_target:
            logger.info(
                "self_target_attempt",
                actor=command.actor,
                operation=command.operation.value,
            )
            reply = self._composer.compose(OperationKind.SELF, command.actor)
            await self._reply(event, reply)
            return CommandOutcome(
                command=command, status=OutcomeStatus.SELF_TARGET, reply=reply
            )

        if command.operation is OperationKind.EQUAL:
            record = await asyncio.to_thread(self._score_store.query, command.target)
            reply = self._composer.compose(
                OperationKind.EQUAL, command.target, record.total, record.temp
            )
            await self._reply(event, reply)
            return CommandOutcome(
                command=command,
                status=OutcomeStatus.QUERIED,
                total=record.total,
                temp=record.temp,
                reply=reply,
            )

        allowed = await asyncio.to_thread(
            self._rate_limiter.check_and_consume, command.actor
        )
        if not allowed:
            reply = quota_exceeded_message(command.actor, self._window_seconds)
            await self._reply(event, reply)
            return CommandOutcome(
                command=command, status=OutcomeStatus.RATE_LIMITED, reply=reply
            )

        polarity, magnitude = self._resolve_delta(command)
        record = await asyncio.to_thread(
            self._score_store.apply, command.target, polarity, magnitude
        )
        logger.info(
            "command_applied",
            actor=command.actor,
            target=command.target,
            operation=command.operation.value,
            delta=polarity * magnitude,
            total=record.total,
            temp=record.temp,
        )
        reply = self._composer.compose(
            command.operation, command.target, record.total, record.temp
        )
        await self._reply(event, reply)
        return CommandOutcome(
            command=command,
            status=OutcomeStatus.APPLIED,
            total=record.total,
            temp=record.temp,
            reply=reply,
        )

    def _resolve_delta(self, command: ParsedCommand) -> tuple[int, int]:
        """Polarity and magnitude to apply; random operations draw both."""
        if command.operation is OperationKind.RANDOM:
            return (
                self._rng.choice(RANDOM_POLARITIES),
                self._rng.randint(1, RANDOM_MAX_MAGNITUDE),
            )
        if command.operation is OperationKind.REALLY_RANDOM:
            return (
                self._rng.choice(REALLY_RANDOM_POLARITIES),
                self._rng.randint(1, REALLY_RANDOM_MAX_MAGNITUDE),
            )
        return command.polarity, command.magnitude

    async def _reply(self, event: ChatEvent, text: str) -> None:
        """Reply in the originating message's thread when possible."""
        channel = event.channel or ""
        thread_ts = event.reply_thread_ts
        if thread_ts:
            await self._gateway.send_threaded_message(text, channel, thread_ts)
        else:
            await self._gateway.send_message(text, channel)

    async def _handle_mention(
        self, event: ChatEvent, outcomes: list[CommandOutcome]
    ) -> OutcomeStatus:
        text = strip_bot_mention(event.text or "", self._bot_user_id)

        # A keyword later in the text only counts when no scoring command parsed.
        admin_command = match_leading_admin_command(text)
        if admin_command is not None:
            return await self._run_admin_command(admin_command, event, text, outcomes)

        status = await self._handle_message(event, text, outcomes)
        if status is not OutcomeStatus.IGNORED:
            return status

        admin_command = match_admin_command(text)
        if admin_command is not None:
            return await self._run_admin_command(admin_command, event, text, outcomes)

        logger.info("unknown_command", actor=event.user, channel=event.channel)
        await self._gateway.send_ephemeral(
            NOT_UNDERSTOOD_MESSAGE, event.channel or "", event.user or ""
        )
        outcomes.append(
            CommandOutcome(
                status=OutcomeStatus.UNKNOWN_COMMAND, reply=NOT_UNDERSTOOD_MESSAGE
            )
        )
        return OutcomeStatus.UNKNOWN_COMMAND

    async def _run_admin_command(
        self,
        command: AdminCommand,
        event: ChatEvent,
        text: str,
        outcomes: list[CommandOutcome],
    ) -> OutcomeStatus:
        logger.info("admin_command_received", command=command.value, actor=event.user)
        outcome = await self._admin_handlers[command](event, text)
        outcomes.append(outcome)
        return OutcomeStatus.HANDLED

    async def _leaderboard_text(self) -> str:
        records = await asyncio.to_thread(self._score_store.retrieve_top_scores, None)
        return format_leaderboard(records, self._leaderboard_limit, self._score_unit)

    async def _send_leaderboard(self, event: ChatEvent, text: str) -> CommandOutcome:
        reply = await self._leaderboard_text()
        await self._gateway.send_ephemeral(reply, event.channel or "", event.user or "")
        return CommandOutcome(status=OutcomeStatus.ADMIN, reply=reply)

    async def _send_leaderboard_all(
        self, event: ChatEvent, text: str
    ) -> CommandOutcome:
        secret = extract_leaderboard_secret(text)
        if not verify_leaderboard_secret(event.user or "", secret, self._date_clock()):
            logger.info("leaderboard_secret_rejected", actor=event.user)
            await self._gateway.send_ephemeral(
                INVALID_SECRET_MESSAGE, event.channel or "", event.user or ""
            )
            return CommandOutcome(
                status=OutcomeStatus.UNKNOWN_COMMAND, reply=INVALID_SECRET_MESSAGE
            )

        reply = await self._leaderboard_text()
        await self._gateway.send_message(reply, event.channel or "")
        return CommandOutcome(status=OutcomeStatus.ADMIN, reply=reply)

    async def _send_help(self, event: ChatEvent, text: str) -> CommandOutcome:
        secret = derive_leaderboard_secret(event.user or "", self._date_clock())
        reply = build_help_text(self._bot_user_id, secret)
        await self._gateway.send_ephemeral(reply, event.channel or "", event.user or "")
        return CommandOutcome(status=OutcomeStatus.ADMIN, reply=reply)

    async def _send_help_all(self, event: ChatEvent, text: str) -> CommandOutcome:
        reply = build_help_text(self._bot_user_id)
        await self._gateway.send_message(reply, event.channel or "")
        return CommandOutcome(status=OutcomeStatus.ADMIN, reply=reply)

    async def _say_thanks(self, event: ChatEvent, text: str) -> CommandOutcome:
        reply = self._composer.compose_thanks(event.user or "")
        await self._gateway.send_message(reply, event.channel or "")
        return CommandOutcome(status=OutcomeStatus.ADMIN, reply=reply)

    async def _reincarnate(self, event: ChatEvent, text: str) -> CommandOutcome:
        if event.user not in self._era_reset_actors:
            logger.warning("era_reset_refused", actor=event.user, channel=event.channel)
            await self._gateway.send_ephemeral(
                ERA_RESET_REFUSED_MESSAGE, event.channel or "", event.user or ""
            )
            return CommandOutcome(
                status=OutcomeStatus.UNKNOWN_COMMAND, reply=ERA_RESET_REFUSED_MESSAGE
            )

        reset_count = await asyncio.to_thread(self._score_store.reset_era)
        logger.info("era_reset_requested", actor=event.user, records_reset=reset_count)
        await self._gateway.send_message(ERA_RESET_MESSAGE, event.channel or "")
        return CommandOutcome(status=OutcomeStatus.ADMIN, reply=ERA_RESET_MESSAGE)
