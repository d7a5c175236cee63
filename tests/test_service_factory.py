from __future__ import annotations

import pytest
import redis
from pydantic import SecretStr

from event_relay.adapters import service_factory
from event_relay.adapters.enrichment_runner_inprocess import InProcessEnrichmentRunner
from event_relay.adapters.logging_transport import LoggingTransport
from event_relay.adapters.memory_dedup_backend import InMemoryDedupBackend
from event_relay.adapters.pusher_transport import PusherTransport
from event_relay.adapters.redis_dedup_backend import RedisDedupBackend
from event_relay.adapters.redis_subscription_store import RedisSubscriptionStore
from event_relay.config.settings import Settings
from event_relay.domain.exceptions import ValidationError
from tests.conftest import FakeGenerator, FakeRedis, RecordingTransport


@pytest.fixture
def settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.chdir(tmp_path)
    for key in ("PUSHER_APP_ID", "PUSHER_KEY", "PUSHER_SECRET", "REDIS_URL"):
        monkeypatch.delenv(key, raising=False)
    return Settings()


def test_in_memory_services_without_redis(settings: Settings) -> None:
    services = service_factory.build_services(settings, transport=RecordingTransport())

    assert isinstance(services.notification_cache.backend, InMemoryDedupBackend)
    assert services.notification_cache.threshold_minutes == 30
    assert services.event_store.max_events == 1000
    assert services.enrichment_runner is None
    assert services.batch_processor is None
    assert services.conflict_options.back_to_back_threshold == 0


def test_redis_backed_services(settings: Settings) -> None:
    services = service_factory.build_services(
        settings, transport=RecordingTransport(), redis_client=FakeRedis()
    )

    assert isinstance(services.notification_cache.backend, RedisDedupBackend)
    assert isinstance(services.subscriptions.store, RedisSubscriptionStore)


def test_generator_enables_enrichment_and_batches(settings: Settings) -> None:
    services = service_factory.build_services(
        settings, transport=RecordingTransport(), summary_generator=FakeGenerator()
    )

    try:
        assert isinstance(services.enrichment_runner, InProcessEnrichmentRunner)
        assert services.broadcaster.enrichment_runner is services.enrichment_runner
        assert services.batch_processor is not None
    finally:
        services.shutdown()


def test_enrichment_can_be_disabled(settings: Settings) -> None:
    settings = settings.model_copy(update={"enrichment_enabled": False})

    services = service_factory.build_services(
        settings, transport=RecordingTransport(), summary_generator=FakeGenerator()
    )

    assert services.enrichment_runner is None
    assert services.batch_processor is not None


def test_transport_selection(settings: Settings, mocker) -> None:
    assert isinstance(service_factory.create_transport(settings, dry_run=True), LoggingTransport)

    with pytest.raises(ValidationError):
        service_factory.create_transport(settings)

    mocker.patch("event_relay.adapters.pusher_transport.pusher.Pusher")
    configured = settings.model_copy(
        update={
            "pusher_app_id": "123",
            "pusher_key": "pk",
            "pusher_secret": SecretStr("sk"),
        }
    )
    assert isinstance(service_factory.create_transport(configured), PusherTransport)


def test_redis_client_none_when_unset_or_unreachable(settings: Settings, mocker) -> None:
    assert service_factory.create_redis_client(settings) is None

    client = mocker.Mock()
    client.ping.side_effect = redis.ConnectionError("refused")
    from_url = mocker.patch.object(service_factory.redis.Redis, "from_url", return_value=client)
    configured = settings.model_copy(
        update={"redis_url": SecretStr("redis://localhost:6379/0")}
    )

    assert service_factory.create_redis_client(configured) is None
    from_url.assert_called_once_with(
        "redis://localhost:6379/0",
        decode_responses=True,
        socket_timeout=configured.redis_socket_timeout_seconds,
        socket_connect_timeout=configured.redis_socket_timeout_seconds,
    )


def test_dry_run_transport_records_publishes() -> None:
    transport = LoggingTransport()

    transport.publish("user-u1", "calendar_new_event", {"id": "e-1"})

    assert transport.published == [("user-u1", "calendar_new_event", {"id": "e-1"})]
