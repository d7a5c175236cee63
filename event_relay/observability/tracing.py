"""Helpers for correlation identifiers and stage timing in logs."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from event_relay.config.logging_config import bind_context, get_logger, unbind_context
from event_relay.observability.metrics import PIPELINE_STAGE_DURATION_SECONDS

CORRELATION_ID_KEY = "correlation_id"

logger = get_logger(__name__)


@contextmanager
def correlation_scope(existing_id: str | None = None) -> Iterator[str]:
    """Bind a correlation identifier for the lifetime of the context."""

    correlation_id = existing_id or str(uuid4())
    bind_context(**{CORRELATION_ID_KEY: correlation_id})
    try:
        yield correlation_id
    finally:
        unbind_context(CORRELATION_ID_KEY)


@contextmanager
def stage_timer(stage: str) -> Iterator[None]:
    """Record the duration of a pipeline stage, even when it raises."""

    started = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - started
        PIPELINE_STAGE_DURATION_SECONDS.labels(stage=stage).observe(duration)
        logger.debug("stage_completed", stage=stage, duration_seconds=duration)


__all__ = ["CORRELATION_ID_KEY", "correlation_scope", "stage_timer"]
