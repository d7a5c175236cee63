"""Common runtime helpers for relay scripts."""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from types import FrameType
from typing import Protocol

from event_relay.config.logging_config import get_logger, setup_logging
from event_relay.config.settings import Settings

logger = get_logger(__name__)


class ShutdownSignal(Protocol):
    def is_set(self) -> bool: ...

    def wait(self, timeout: float) -> bool: ...


@dataclass
class _ShutdownController:
    """Mutable shutdown state shared across signal handlers and loops."""

    _event: threading.Event

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def request(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("shutdown_signal_received", signal=sig_name)
        self._event.set()


def create_shutdown_controller() -> _ShutdownController:
    return _ShutdownController(threading.Event())


def install_signal_handlers(controller: _ShutdownController) -> None:
    """Register SIGTERM/SIGINT handlers for graceful shutdown."""

    def _handler(signum: int, frame: FrameType | None) -> None:
        controller.request(signum, frame)

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    """Initialize structlog-based logging for scripts."""

    json_enabled = json_logs or settings.log_json
    setup_logging(log_level=settings.log_level, json_logs=json_enabled)
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_enabled)


def run_scheduler_loop(
    *,
    controller: ShutdownSignal,
    interval_seconds: float,
    run_once: bool,
    action: Callable[[], object],
) -> int:
    """Run polling cycles until shutdown, one every ``interval_seconds``.

    Cycles start on a fixed cadence: the wait after a cycle is shortened by
    the time the cycle took. A failing cycle is logged and the loop carries
    on, except in run-once mode where the error propagates.

    Returns:
        Number of cycles started
    """

    interval_seconds = max(0.1, interval_seconds)
    logger.info("polling_loop_started", interval=interval_seconds, run_once=run_once)
    cycles = 0
    consecutive_failures = 0
    while not controller.is_set():
        cycles += 1
        started = time.monotonic()
        try:
            outcome = action()
        except Exception:  # noqa: BLE001
            consecutive_failures += 1
            logger.exception(
                "polling_cycle_failed",
                cycle=cycles,
                consecutive_failures=consecutive_failures,
            )
            if run_once:
                raise
        else:
            consecutive_failures = 0
            logger.info(
                "polling_cycle_finished",
                cycle=cycles,
                outcome=outcome,
                duration_seconds=round(time.monotonic() - started, 3),
            )
        if run_once:
            break
        controller.wait(max(0.0, interval_seconds - (time.monotonic() - started)))

    logger.info("polling_loop_stopped", cycles=cycles)
    return cycles


__all__ = [
    "ShutdownSignal",
    "create_shutdown_controller",
    "initialize_logging",
    "install_signal_handlers",
    "run_scheduler_loop",
]
