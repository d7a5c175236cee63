"""Transport that logs publishes instead of sending them (dry runs)."""

from typing import Any

from event_relay.config.logging_config import get_logger

logger = get_logger(__name__)


class LoggingTransport:
    """Record every publish in memory and in the log."""

    def __init__(self) -> None:
        self.published: list[tuple[str | list[str], str, dict[str, Any]]] = []

    def publish(
        self, channel_name: str | list[str], event_type: str, payload: dict[str, Any]
    ) -> None:
        self.published.append((channel_name, event_type, payload))
        logger.info(
            "dry_run_publish",
            channel=channel_name,
            event_type=event_type,
            event_id=payload.get("id"),
        )
