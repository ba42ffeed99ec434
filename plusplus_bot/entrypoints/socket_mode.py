"""Socket Mode runner for the plusplus bot.

Connects to Slack over a websocket, so no public HTTP endpoint is needed.
Every ``events_api`` envelope is acknowledged first, then dispatched on its
own event loop in the SDK's listener thread pool.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import threading
from dataclasses import dataclass
from types import FrameType
from typing import Any

from pydantic import SecretStr
from slack_sdk import WebClient
from slack_sdk.socket_mode import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse

from plusplus_bot.adapters.repository_factory import create_repository
from plusplus_bot.adapters.slack_gateway import SlackGateway
from plusplus_bot.config.logging_config import get_logger, setup_logging
from plusplus_bot.config.settings import Settings, get_settings
from plusplus_bot.domain.exceptions import ChatGatewayError
from plusplus_bot.observability.metrics import ensure_metrics_exporter
from plusplus_bot.use_cases.dispatch_event import EventDispatcher

logger = get_logger(__name__)

EVENTS_API_REQUEST: str = "events_api"


@dataclass
class _ShutdownController:
    """Shutdown flag shared between signal handlers and the main thread."""

    _event: threading.Event

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def request(self, signum: int, frame: FrameType | None) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        self._event.set()


def create_shutdown_controller() -> _ShutdownController:
    return _ShutdownController(threading.Event())


def install_signal_handlers(controller: _ShutdownController) -> None:
    """Register SIGTERM/SIGINT handlers for graceful shutdown."""
    signal.signal(signal.SIGTERM, controller.request)
    signal.signal(signal.SIGINT, controller.request)


class EventsApiListener:
    """Socket Mode request listener feeding the event dispatcher."""

    def __init__(self, dispatcher: EventDispatcher) -> None:
        self._dispatcher = dispatcher

    def __call__(self, client: SocketModeClient, req: SocketModeRequest) -> None:
        if req.type != EVENTS_API_REQUEST:
            logger.debug("socket_mode_request_skipped", request_type=req.type)
            return

        # Ack before handling; Slack redelivers envelopes not acked within 3s.
        client.send_socket_mode_response(
            SocketModeResponse(envelope_id=req.envelope_id)
        )

        payload: dict[str, Any] = req.payload or {}
        event = dict(payload.get("event") or {})
        if payload.get("event_id") and "event_id" not in event:
            event["event_id"] = payload["event_id"]

        result = asyncio.run(self._dispatcher.handle_event(event))
        logger.debug(
            "socket_mode_event_processed",
            event_type=event.get("type"),
            status=result.status.value,
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the plusplus bot over Socket Mode")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def build_dispatcher(
    settings: Settings, repository: Any, gateway: SlackGateway
) -> EventDispatcher:
    """Resolve the bot identity and wire the dispatcher."""
    try:
        bot_user_id = asyncio.run(gateway.auth_test())
    except ChatGatewayError as exc:
        logger.warning("bot_identity_unresolved", error=str(exc))
        bot_user_id = None

    logger.info("bot_identity_resolved", bot_user_id=bot_user_id)
    return EventDispatcher.from_settings(
        settings, repository, gateway, bot_user_id=bot_user_id
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    json_logs = args.json_logs or settings.json_logs
    setup_logging(log_level=settings.log_level, json_logs=json_logs)
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_logs)

    if settings.slack_app_token is None:
        logger.error("slack_app_token_missing")
        return 1

    if settings.metrics_port is not None:
        ensure_metrics_exporter(settings.metrics_port)

    controller = create_shutdown_controller()
    install_signal_handlers(controller)

    repository = create_repository(settings)
    try:
        bot_token = _extract_secret(settings.slack_bot_token)
        web_client = WebClient(token=bot_token)
        gateway = SlackGateway(bot_token)
        dispatcher = build_dispatcher(settings, repository, gateway)

        socket_client = SocketModeClient(
            app_token=_extract_secret(settings.slack_app_token),
            web_client=web_client,
        )
        socket_client.socket_mode_request_listeners.append(
            EventsApiListener(dispatcher)
        )
        socket_client.connect()
        logger.info("socket_mode_connected")

        controller.wait()

        socket_client.close()
        logger.info("socket_mode_disconnected")
    finally:
        repository.close()

    return 0


def _extract_secret(secret: SecretStr) -> str:
    value = secret.get_secret_value()
    if not value:
        msg = "Secret value is empty"
        raise ValueError(msg)
    return value


if __name__ == "__main__":
    raise SystemExit(main())
