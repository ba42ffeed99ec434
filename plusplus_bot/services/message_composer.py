"""Reply composition from weighted message pools.

Each operation kind owns one or more weighted pools. A pool is drawn with
probability proportional to its weight, then a message is picked uniformly
from it and substituted into the operation's reply format.
"""

import random
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Final

from plusplus_bot.domain.exceptions import UnknownOperationError
from plusplus_bot.domain.models import MessagePool
from plusplus_bot.domain.operations import OperationKind
from plusplus_bot.services.command_parser import is_user_id

_SHIFTY: Final[MessagePool] = MessagePool(weight=1, messages=(":shifty:",))

DEFAULT_MESSAGE_POOLS: Final[Mapping[OperationKind, tuple[MessagePool, ...]]] = (
    MappingProxyType(
        {
            OperationKind.PLUS: (
                MessagePool(
                    weight=100,
                    messages=(
                        "Congrats!",
                        "Got it!",
                        "Bravo.",
                        "Nice work!",
                        "Well done.",
                        "Exquisite.",
                        "Lovely.",
                        "Superb.",
                        "Classic!",
                        "Oh well done.",
                        "Charming.",
                        "Noted.",
                        "Well, well!",
                        "Well played.",
                        "Mmmmm...tacos.",
                        "Delicious.",
                        ":taconyancat:",
                        ":taco_dance:",
                        "Om nom nom",
                        "Aw yeah!",
                        "Let's taco 'bout how awesome you are!",
                        "If you don't like tacos, I'm nacho type",
                        "Purr-fect!",
                        "You've gotta be kitten me!",
                        "Was it a car or a cat I saw?",
                        "Never odd or even",
                    ),
                ),
                _SHIFTY,
            ),
            OperationKind.MINUS: (
                MessagePool(
                    weight=100,
                    messages=(
                        "Oh RLY?",
                        "Oh, really?",
                        "Oh :slightly_frowning_face:.",
                        "I see.",
                        "Ouch.",
                        "Oh là là.",
                        "Oh.",
                        "Condolences.",
                        ":smirk_cat:",
                    ),
                ),
                _SHIFTY,
            ),
            OperationKind.EQUAL: (
                MessagePool(weight=100, messages=("How is", "Why is")),
                _SHIFTY,
            ),
            OperationKind.SELF: (
                MessagePool(
                    weight=100,
                    messages=(
                        "Hahahahahahaha no.",
                        "Nope.",
                        "No. Just no.",
                        "Not cool!",
                    ),
                ),
                _SHIFTY,
            ),
            OperationKind.RANDOM: (
                MessagePool(
                    weight=100,
                    messages=(
                        "The dice have spoken.",
                        "Feeling lucky?",
                        "Spin the wheel!",
                    ),
                ),
                _SHIFTY,
            ),
            OperationKind.REALLY_RANDOM: (
                MessagePool(
                    weight=100,
                    messages=(
                        "Chaos reigns.",
                        "You asked for it.",
                        "No refunds.",
                    ),
                ),
                _SHIFTY,
            ),
        }
    )
)

SCORE_FORMAT: Final[str] = "{message} *{item}* has {temp} {unit}{plural}. ({total} total)"
QUERY_FORMAT: Final[str] = "{message} *{item}* currently at {total} {unit}{plural}."
SELF_FORMAT: Final[str] = "{item} {message}"

REPLY_FORMATS: Final[Mapping[OperationKind, str]] = MappingProxyType(
    {
        OperationKind.PLUS: SCORE_FORMAT,
        OperationKind.MINUS: SCORE_FORMAT,
        OperationKind.RANDOM: SCORE_FORMAT,
        OperationKind.REALLY_RANDOM: SCORE_FORMAT,
        OperationKind.EQUAL: QUERY_FORMAT,
        OperationKind.SELF: SELF_FORMAT,
    }
)

THANKYOU_MESSAGES: Final[tuple[str, ...]] = (
    "Don't mention it!",
    "You're welcome.",
    "Pleasure!",
    "No thank YOU!",
    (
        "++ for taking the time to say thanks!\n..."
        "just kidding, I can't `++` you. But it's the thought that counts, right??"
    ),
)


def plural_suffix(value: int) -> str:
    """Return ``"s"`` unless the value is exactly 1.

    Example:
        >>> plural_suffix(1), plural_suffix(0), plural_suffix(2)
        ('', 's', 's')
    """
    return "" if value == 1 else "s"


def link_item(item: str) -> str:
    """Render a Slack user ID as a mention; leave thing names untouched."""
    return f"<@{item}>" if is_user_id(item) else item


def choose_pool(pools: Sequence[MessagePool], rng: random.Random) -> MessagePool:
    """Weighted draw of one pool.

    Draws uniformly in ``[0, sum(weights))`` and subtracts weights in order;
    the first pool that takes the draw below zero wins.

    Raises:
        UnknownOperationError: If no pool can be chosen (empty pool list)
    """
    total_weight = sum(pool.weight for pool in pools)
    if total_weight <= 0:
        raise UnknownOperationError("No message pools configured")

    remaining = rng.randrange(total_weight)
    for pool in pools:
        remaining -= pool.weight
        if remaining < 0:
            return pool

    raise UnknownOperationError(
        f"Ran out of message pools with {remaining} remaining"
    )


class MessageComposer:
    """Build reply text for scoring operations."""

    def __init__(
        self,
        rng: random.Random | None = None,
        *,
        pools: Mapping[OperationKind, Sequence[MessagePool]] | None = None,
        score_unit: str = ":taco:",
    ) -> None:
        self._rng = rng or random.Random()
        self._pools = pools if pools is not None else DEFAULT_MESSAGE_POOLS
        self._score_unit = score_unit

    def random_message(self, operation: OperationKind) -> str:
        """Pick a message for an operation from its weighted pools.

        Raises:
            UnknownOperationError: If the operation has no pools
        """
        pools = self._pools.get(operation)
        if not pools:
            raise UnknownOperationError(f"Invalid operation: {operation}")
        pool = choose_pool(pools, self._rng)
        return self._rng.choice(pool.messages)

    def compose(
        self,
        operation: OperationKind,
        item: str,
        total: int = 0,
        temp: int = 0,
    ) -> str:
        """Compose a reply for an operation on an item.

        Args:
            operation: Operation kind that was performed
            item: Slack user ID or thing name
            total: Item's lifetime score
            temp: Item's current-era score

        Returns:
            Reply text

        Raises:
            UnknownOperationError: If the operation has no pools or format

        Example:
            >>> composer = MessageComposer(random.Random(1))
            >>> composer.compose(OperationKind.PLUS, "coffee", total=3, temp=1)  # doctest: +SKIP
            'Bravo. *coffee* has 1 :taco:. (3 total)'
        """
        reply_format = REPLY_FORMATS.get(operation)
        if reply_format is None:
            raise UnknownOperationError(f"Invalid operation: {operation}")

        # Score replies pluralize on the era score they print next to the unit.
        counted = total if operation is OperationKind.EQUAL else temp
        return reply_format.format(
            message=self.random_message(operation),
            item=link_item(item),
            total=total,
            temp=temp,
            unit=self._score_unit,
            plural=plural_suffix(counted),
        )

    def compose_thanks(self, actor: str) -> str:
        """Random thank-you reply addressed to the actor."""
        return f"{link_item(actor)} {self._rng.choice(THANKYOU_MESSAGES)}"
