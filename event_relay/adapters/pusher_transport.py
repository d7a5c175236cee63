"""Pusher Channels transport for per-user event delivery."""

from typing import Any, Final

import pusher
import requests
from pusher.errors import PusherError

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import (
    PublishError,
    TransientPublishError,
    ValidationError,
)

logger = get_logger(__name__)

DEFAULT_CLUSTER: Final[str] = "us2"
DEFAULT_TIMEOUT_SECONDS: Final[int] = 5


class PusherTransport:
    """Publish events through the Pusher HTTP API.

    Connection-level failures are raised as ``TransientPublishError`` so the
    broadcaster can retry once; rejected requests become ``PublishError``.
    """

    def __init__(
        self,
        app_id: str,
        key: str,
        secret: str,
        cluster: str = DEFAULT_CLUSTER,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        client: pusher.Pusher | None = None,
    ) -> None:
        self.app_id = app_id
        self.key = key
        self.cluster = cluster
        self._client = client or pusher.Pusher(
            app_id=app_id,
            key=key,
            secret=secret,
            cluster=cluster,
            ssl=True,
            timeout=timeout_seconds,
        )
        logger.info("pusher_transport_initialized", cluster=cluster, app_id=app_id)

    def publish(
        self, channel_name: str | list[str], event_type: str, payload: dict[str, Any]
    ) -> None:
        try:
            self._client.trigger(channel_name, event_type, payload)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientPublishError(f"Pusher connection error: {exc}") from exc
        except OSError as exc:
            raise TransientPublishError(f"Pusher socket error: {exc}") from exc
        except PusherError as exc:
            raise PublishError(f"Pusher rejected trigger: {exc}") from exc

    def authenticate_user(
        self, socket_id: str, channel_name: str, user_id: str
    ) -> dict[str, Any]:
        """Sign a private-channel subscription for the channel's owner.

        Raises:
            ValidationError: ``user_id`` does not own ``channel_name``
        """
        expected = f"user-{user_id}"
        if channel_name != expected:
            logger.warning(
                "channel_auth_rejected",
                user_id=user_id,
                channel=channel_name,
                socket_id=socket_id,
            )
            raise ValidationError("Unauthorized channel access")

        auth = self._client.authenticate(channel=channel_name, socket_id=socket_id)
        logger.info("channel_auth_granted", user_id=user_id, channel=channel_name)
        return auth

    def channel_info(self) -> dict[str, str]:
        """Public connection details for clients."""
        return {"key": self.key, "cluster": self.cluster, "app_id": self.app_id}
