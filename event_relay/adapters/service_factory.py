"""Factory wiring settings into the relay's services."""

from dataclasses import dataclass
from datetime import timedelta

import redis

from event_relay.adapters.enrichment_runner_inprocess import InProcessEnrichmentRunner
from event_relay.adapters.logging_transport import LoggingTransport
from event_relay.adapters.memory_dedup_backend import InMemoryDedupBackend
from event_relay.adapters.memory_subscription_store import InMemorySubscriptionStore
from event_relay.adapters.pusher_transport import PusherTransport
from event_relay.adapters.redis_dedup_backend import RedisDedupBackend
from event_relay.adapters.redis_subscription_store import RedisSubscriptionStore
from event_relay.config.logging_config import get_logger
from event_relay.config.settings import Settings
from event_relay.domain.exceptions import ValidationError
from event_relay.domain.protocols import (
    ChannelTransport,
    ConversationHistory,
    DedupBackend,
    SubscriptionStore,
    SummaryGenerator,
)
from event_relay.services.conflict_detector import ConflictDetectionOptions
from event_relay.services.event_broadcaster import ENRICHMENT_JOB_NAME, EventBroadcaster
from event_relay.services.event_detector import EventDetector
from event_relay.services.event_store import EventStore
from event_relay.services.notification_cache import NotificationCache
from event_relay.services.subscription_manager import SubscriptionManager
from event_relay.use_cases.event_to_chat import EventToChatConverter
from event_relay.use_cases.process_event_batch import EventBatchProcessor

logger = get_logger(__name__)


@dataclass
class RelayServices:
    """Fully wired services for one process."""

    settings: Settings
    event_store: EventStore
    subscriptions: SubscriptionManager
    notification_cache: NotificationCache
    broadcaster: EventBroadcaster
    detector: EventDetector
    conflict_options: ConflictDetectionOptions
    enrichment_runner: InProcessEnrichmentRunner | None = None
    batch_processor: EventBatchProcessor | None = None

    def shutdown(self) -> None:
        if self.enrichment_runner is not None:
            self.enrichment_runner.shutdown(wait=True)


def create_redis_client(settings: Settings) -> redis.Redis | None:
    """Connect to Redis when REDIS_URL is set; None when unset or unreachable."""
    if settings.redis_url is None:
        logger.info("redis_not_configured")
        return None

    client = redis.Redis.from_url(
        settings.redis_url.get_secret_value(),
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("redis_unreachable", error=str(exc))
        return None

    logger.info("redis_connected")
    return client


def create_dedup_backend(client: redis.Redis | None) -> DedupBackend:
    if client is None:
        logger.warning(
            "dedup_backend_in_memory",
            detail="duplicates are only suppressed within this process",
        )
        return InMemoryDedupBackend()
    return RedisDedupBackend(client)


def create_subscription_store(client: redis.Redis | None) -> SubscriptionStore:
    if client is None:
        logger.warning("subscription_store_in_memory")
        return InMemorySubscriptionStore()
    return RedisSubscriptionStore(client)


def create_transport(settings: Settings, *, dry_run: bool = False) -> ChannelTransport:
    """Create the Pusher transport, or a logging transport for dry runs.

    Raises:
        ValidationError: Pusher credentials are missing and dry_run is False
    """
    if dry_run:
        logger.info("transport_dry_run_selected")
        return LoggingTransport()

    app_id, key, secret = (
        settings.pusher_app_id,
        settings.pusher_key,
        settings.pusher_secret,
    )
    if not (app_id and key and secret):
        raise ValidationError(
            "PUSHER_APP_ID, PUSHER_KEY and PUSHER_SECRET must be set "
            "(or run with --dry-run)"
        )

    return PusherTransport(
        app_id=app_id,
        key=key,
        secret=secret.get_secret_value(),
        cluster=settings.pusher_cluster,
        timeout_seconds=settings.publish_timeout_seconds,
    )


def build_conflict_options(settings: Settings) -> ConflictDetectionOptions:
    return ConflictDetectionOptions(
        back_to_back_threshold=settings.conflict_back_to_back_threshold_minutes,
        enable_back_to_back_detection=settings.conflict_enable_back_to_back,
        min_overlap_for_detection=settings.conflict_min_overlap_minutes,
    )


def build_services(
    settings: Settings,
    *,
    transport: ChannelTransport | None = None,
    redis_client: redis.Redis | None = None,
    summary_generator: SummaryGenerator | None = None,
    history: ConversationHistory | None = None,
    dry_run: bool = False,
) -> RelayServices:
    """Wire every service from settings.

    Enrichment and batch summaries are enabled only when a summary generator
    is supplied.
    """
    event_store = EventStore(
        max_events=settings.event_store_max_events,
        max_age=timedelta(hours=settings.event_store_max_age_hours),
    )
    subscriptions = SubscriptionManager(create_subscription_store(redis_client))
    notification_cache = NotificationCache(
        create_dedup_backend(redis_client),
        threshold_minutes=settings.notification_threshold_minutes,
    )
    broadcaster = EventBroadcaster(
        event_store=event_store,
        subscriptions=subscriptions,
        notification_cache=notification_cache,
        transport=transport or create_transport(settings, dry_run=dry_run),
        retry_delay_seconds=settings.publish_retry_delay_seconds,
    )

    services = RelayServices(
        settings=settings,
        event_store=event_store,
        subscriptions=subscriptions,
        notification_cache=notification_cache,
        broadcaster=broadcaster,
        detector=EventDetector(),
        conflict_options=build_conflict_options(settings),
    )

    if summary_generator is None:
        logger.info("enrichment_disabled", reason="no_summary_generator")
        return services

    services.batch_processor = EventBatchProcessor(
        summary_generator, broadcaster, notification_cache
    )

    if settings.enrichment_enabled:
        converter = EventToChatConverter(summary_generator, broadcaster, history)
        runner = InProcessEnrichmentRunner(
            {ENRICHMENT_JOB_NAME: converter.handle_job},
            max_workers=settings.enrichment_max_workers,
            max_pending=settings.enrichment_max_pending,
        )
        broadcaster.enrichment_runner = runner
        services.enrichment_runner = runner

    return services
