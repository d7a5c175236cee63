"""Entry point for the polling notification worker."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from event_relay.adapters.service_factory import (
    RelayServices,
    build_services,
    create_redis_client,
)
from event_relay.adapters.snapshot_provider import JsonSnapshotProvider
from event_relay.config.logging_config import get_logger
from event_relay.config.settings import get_settings
from event_relay.domain.exceptions import ValidationError
from event_relay.observability.metrics import ensure_metrics_exporter
from event_relay.use_cases.run_detection_cycle import run_detection_cycle

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the notification worker")
    parser.add_argument(
        "--snapshot-dir",
        default=None,
        help="Directory with per-user snapshot files (overrides config)",
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Seconds between polling cycles (overrides config)",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log publishes instead of sending them to Pusher",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Expose Prometheus metrics over HTTP",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def run_cycle(provider: JsonSnapshotProvider, services: RelayServices) -> int:
    """Process every user once; returns the number of delivered events."""
    delivered = 0
    for user in provider.list_users():
        result = run_detection_cycle(
            user,
            provider,
            services.detector,
            services.broadcaster,
            conflict_options=services.conflict_options,
            batch_processor=services.batch_processor,
        )
        if result.failed == 0 and not result.errors:
            provider.mark_cycle_complete(user.user_id)
        delivered += result.delivered

    services.broadcaster.cleanup()
    return delivered


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    if args.metrics:
        ensure_metrics_exporter()

    controller = pipeline_runtime.create_shutdown_controller()
    pipeline_runtime.install_signal_handlers(controller)

    try:
        services = build_services(
            settings,
            redis_client=create_redis_client(settings),
            dry_run=args.dry_run,
        )
    except ValidationError as exc:
        logger.error("worker_configuration_invalid", error=str(exc))
        return 1

    provider = JsonSnapshotProvider(args.snapshot_dir or settings.snapshot_dir)
    interval = args.interval_seconds or float(settings.polling_interval_seconds)

    try:
        pipeline_runtime.run_scheduler_loop(
            controller=controller,
            interval_seconds=interval,
            run_once=args.run_once,
            action=lambda: run_cycle(provider, services),
        )
    finally:
        services.shutdown()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
