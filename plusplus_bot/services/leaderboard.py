"""Leaderboard text, help text and the rotating leaderboard secret.

The full-channel leaderboard is gated by a short-lived secret that the help
command shows privately to the requesting user. The secret rotates every
minute.
"""

import hashlib
import hmac
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Final

from plusplus_bot.domain.models import ScoreRecord
from plusplus_bot.services.command_parser import is_user_id
from plusplus_bot.services.message_composer import link_item, plural_suffix

SECRET_GRACE_MINUTES: Final[int] = 1


def derive_leaderboard_secret(actor: str, now: datetime | None = None) -> str:
    """Derive the actor's leaderboard secret for the current minute.

    The digest input is the actor ID followed by hour, minute, year,
    zero-based month and day of month, concatenated without separators.

    Args:
        actor: Slack user ID
        now: Local time to derive for (defaults to now)

    Returns:
        Hex SHA-1 digest
    """
    moment = now or datetime.now()
    seed = (
        f"{actor}{moment.hour}{moment.minute}{moment.year}"
        f"{moment.month - 1}{moment.day}"
    )
    return hashlib.sha1(seed.encode("utf-8")).hexdigest()


def verify_leaderboard_secret(
    actor: str, candidate: str, now: datetime | None = None
) -> bool:
    """Check a secret against the current and previous minute.

    Args:
        actor: Slack user ID presenting the secret
        candidate: Secret supplied with the command
        now: Local time to verify at (defaults to now)

    Returns:
        True when the secret matches
    """
    if not candidate:
        return False
    moment = now or datetime.now()
    for minutes_back in range(SECRET_GRACE_MINUTES + 1):
        expected = derive_leaderboard_secret(
            actor, moment - timedelta(minutes=minutes_back)
        )
        if hmac.compare_digest(expected, candidate.strip().lower()):
            return True
    return False


def _format_section(
    title: str, records: Sequence[ScoreRecord], unit: str
) -> list[str]:
    lines = [f"*{title}*"]
    if not records:
        lines.append("_Nobody yet._")
        return lines
    for rank, record in enumerate(records, start=1):
        lines.append(
            f"{rank}. {link_item(record.item)} {record.total} {unit}{plural_suffix(record.total)}"
            f" ({record.temp} this era)"
        )
    return lines


def format_leaderboard(
    records: Sequence[ScoreRecord], limit: int = 10, unit: str = ":taco:"
) -> str:
    """Render users and things as two ranked lists.

    Args:
        records: Score records, highest total first
        limit: Entries per section
        unit: Emoji printed next to scores

    Returns:
        Plain Slack mrkdwn text
    """
    users = [record for record in records if is_user_id(record.item)][:limit]
    things = [record for record in records if not is_user_id(record.item)][:limit]

    lines = _format_section("Users", users, unit)
    lines.append("")
    lines.extend(_format_section("Things", things, unit))
    return "\n".join(lines)


def build_help_text(bot_user_id: str | None, secret: str | None = None) -> str:
    """Help text; includes the actor's leaderboard secret when given."""
    bot = f"<@{bot_user_id}>" if bot_user_id else "@bot"
    secret_hint = secret or "{your secret key from help}"
    return (
        "Sure, here's what I can do:\n\n"
        "• `@Someone++`: Add points to a user or a thing\n"
        "• `@Someone--`: Subtract points from a user or a thing\n"
        "• `@Someone==`: Gets current points from a user or a thing\n"
        "• `@Someone :taco: :taco:`: Give a user one point per taco\n"
        f"• `{bot} leaderboard`: Display the leaderboard for just you\n"
        f"• `{bot} leaderboardall {secret_hint}`: Display the leaderboard for "
        "everyone (you need your secret key)\n"
        f"• `{bot} help`: Display this message just for you\n"
        f"• `{bot} helpall`: Display this message for everyone\n\n"
        "You'll need to invite me to a channel before I can recognise "
        "`++` and `--` commands in it."
    )
