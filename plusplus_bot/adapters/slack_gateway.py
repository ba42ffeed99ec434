"""Slack Web API chat gateway adapter.

The SDK client is synchronous; calls run in a worker thread so the event
dispatcher can await them.
"""

import asyncio
from typing import Any, Final

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.http_retry.builtin_handlers import RateLimitErrorRetryHandler

from plusplus_bot.config.logging_config import get_logger
from plusplus_bot.domain.exceptions import ChatGatewayError, RateLimitError

logger = get_logger(__name__)

DEFAULT_SLACK_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_AFTER_SECONDS: Final[int] = 60


class SlackGateway:
    """Outbound Slack messaging: channel, threaded and ephemeral replies."""

    def __init__(
        self,
        bot_token: str,
        *,
        client: Any | None = None,
        max_retries: int = DEFAULT_SLACK_MAX_RETRIES,
    ) -> None:
        """Initialize Slack gateway.

        Args:
            bot_token: Slack bot user OAuth token
            client: Optional pre-built WebClient (tests pass a stub)
            max_retries: Retries the SDK performs on HTTP 429
        """
        if client is None:
            client = WebClient(token=bot_token)
            client.retry_handlers.append(
                RateLimitErrorRetryHandler(max_retry_count=max_retries)
            )
        self.client = client

    async def send_message(self, text: str, channel: str) -> str | None:
        """Post a message to a channel.

        Returns:
            Message timestamp

        Raises:
            ChatGatewayError: On API communication errors
            RateLimitError: When Slack keeps rate limiting after retries
        """
        response = await self._call(
            "chat_postMessage", channel=channel, text=text
        )
        return response.get("ts")

    async def send_threaded_message(
        self, text: str, channel: str, thread_ts: str
    ) -> str | None:
        """Post a reply in the thread of ``thread_ts``.

        Raises:
            ChatGatewayError: On API communication errors
        """
        response = await self._call(
            "chat_postMessage", channel=channel, text=text, thread_ts=thread_ts
        )
        return response.get("ts")

    async def send_ephemeral(self, text: str, channel: str, user: str) -> None:
        """Post a message only ``user`` can see.

        Raises:
            ChatGatewayError: On API communication errors
        """
        await self._call("chat_postEphemeral", channel=channel, user=user, text=text)

    async def auth_test(self) -> str | None:
        """Return the bot's own user ID.

        Raises:
            ChatGatewayError: On API communication errors
        """
        response = await self._call("auth_test")
        return response.get("user_id")

    async def _call(self, method: str, **params: Any) -> dict[str, Any]:
        return await asyncio.to_thread(self._call_sync, method, **params)

    def _call_sync(self, method: str, **params: Any) -> dict[str, Any]:
        """Invoke a WebClient method and translate SDK errors."""
        try:
            response = getattr(self.client, method)(**params)
        except SlackApiError as e:
            if e.response.get("error") == "ratelimited":
                retry_after = int(
                    e.response.headers.get("Retry-After", DEFAULT_RETRY_AFTER_SECONDS)
                )
                logger.warning(
                    "slack_rate_limited",
                    method=method,
                    retry_after_seconds=retry_after,
                )
                raise RateLimitError(retry_after=retry_after) from e

            raise ChatGatewayError(f"Slack {method} failed: {e}") from e

        if not response["ok"]:
            raise ChatGatewayError(f"Slack {method} failed: {response.get('error')}")

        logger.debug("slack_call_succeeded", method=method, channel=params.get("channel"))
        return dict(response.data) if hasattr(response, "data") else dict(response)
