"""Prometheus metrics for command and event handling."""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, start_http_server

from plusplus_bot.config.logging_config import get_logger

logger = get_logger(__name__)

COMMANDS_TOTAL: Final[Counter] = Counter(
    "plusplus_commands_total",
    "Parsed commands by operation and outcome",
    labelnames=("operation", "outcome"),
)

EVENTS_TOTAL: Final[Counter] = Counter(
    "plusplus_events_total",
    "Inbound chat events by type and result status",
    labelnames=("event_type", "status"),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False


def ensure_metrics_exporter(port: int) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "COMMANDS_TOTAL",
    "EVENTS_TOTAL",
    "ensure_metrics_exporter",
]
