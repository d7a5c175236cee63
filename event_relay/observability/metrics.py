"""Prometheus metrics for the detection and delivery pipeline.

The HTTP exporter is started explicitly by long-running entry points via
``ensure_metrics_exporter()``; importing this module never binds a port.
"""

from __future__ import annotations

import os
import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from event_relay.config.logging_config import get_logger

logger = get_logger(__name__)

BROADCASTS_TOTAL: Final[Counter] = Counter(
    "event_relay_broadcasts_total",
    "Broadcast attempts by event type and outcome",
    labelnames=("event_type", "outcome"),
)

DUPLICATES_SUPPRESSED_TOTAL: Final[Counter] = Counter(
    "event_relay_duplicates_suppressed_total",
    "Publishes skipped because the change was already announced",
    labelnames=("category",),
)

PUBLISH_RETRIES_TOTAL: Final[Counter] = Counter(
    "event_relay_publish_retries_total",
    "Publish retries after transient transport failures",
    labelnames=("outcome",),
)

SUBSCRIPTION_SELF_HEALS_TOTAL: Final[Counter] = Counter(
    "event_relay_subscription_self_heals_total",
    "Default subscriptions created during broadcast",
)

ENRICHMENT_JOBS_TOTAL: Final[Counter] = Counter(
    "event_relay_enrichment_jobs_total",
    "Background enrichment jobs by outcome",
    labelnames=("job", "outcome"),
)

ENRICHMENT_JOB_DURATION_SECONDS: Final[Histogram] = Histogram(
    "event_relay_enrichment_job_duration_seconds",
    "Duration of background enrichment jobs in seconds",
    labelnames=("job",),
)

PIPELINE_STAGE_DURATION_SECONDS: Final[Histogram] = Histogram(
    "event_relay_stage_duration_seconds",
    "Duration of detection cycle stages in seconds",
    labelnames=("stage",),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False
_DEFAULT_METRICS_PORT: Final[int] = 9000
_METRICS_PORT_ENV: Final[str] = "METRICS_PORT"


def _resolve_metrics_port() -> int:
    port_raw = os.getenv(_METRICS_PORT_ENV)
    try:
        return int(port_raw) if port_raw else _DEFAULT_METRICS_PORT
    except ValueError:
        logger.warning("invalid_metrics_port", port=port_raw)
        return _DEFAULT_METRICS_PORT


def ensure_metrics_exporter(port: int | None = None) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        resolved_port = port or _resolve_metrics_port()

        try:
            start_http_server(resolved_port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=resolved_port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=resolved_port)


__all__ = [
    "BROADCASTS_TOTAL",
    "DUPLICATES_SUPPRESSED_TOTAL",
    "ENRICHMENT_JOBS_TOTAL",
    "ENRICHMENT_JOB_DURATION_SECONDS",
    "PIPELINE_STAGE_DURATION_SECONDS",
    "PUBLISH_RETRIES_TOTAL",
    "SUBSCRIPTION_SELF_HEALS_TOTAL",
    "ensure_metrics_exporter",
]
