"""Bounded in-process runner for best-effort enrichment jobs."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Final
from uuid import uuid4

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import EnrichmentRejectedError
from event_relay.observability.metrics import (
    ENRICHMENT_JOB_DURATION_SECONDS,
    ENRICHMENT_JOBS_TOTAL,
)
from event_relay.ports.enrichment_runner import EnrichmentRunnerPort

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, object]], dict[str, object] | None]

DEFAULT_MAX_WORKERS: Final[int] = 4
DEFAULT_MAX_PENDING: Final[int] = 100
MAX_FINISHED_RECORDS: Final[int] = 500

_STATUS_QUEUED: Final[str] = "queued"
_STATUS_RUNNING: Final[str] = "running"
_STATUS_SUCCEEDED: Final[str] = "succeeded"
_STATUS_FAILED: Final[str] = "failed"


@dataclass
class JobRecord:
    """Internal representation of a submitted job."""

    name: str
    params: dict[str, object]
    status: str = field(default=_STATUS_QUEUED)
    submitted_at: float = field(default_factory=time.time)
    started_at: float | None = field(default=None)
    finished_at: float | None = field(default=None)
    result: dict[str, object] | None = field(default=None)
    error: str | None = field(default=None)

    @property
    def finished(self) -> bool:
        return self.status in (_STATUS_SUCCEEDED, _STATUS_FAILED)


class InProcessEnrichmentRunner(EnrichmentRunnerPort):
    """Run enrichment handlers on a fixed-size thread pool.

    At most ``max_pending`` jobs may be queued or running; further
    submissions are rejected rather than queued without bound.
    """

    def __init__(
        self,
        handlers: dict[str, JobHandler],
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        if not handlers:
            raise ValueError("handlers must not be empty")
        if max_workers <= 0 or max_pending <= 0:
            raise ValueError("max_workers and max_pending must be positive")
        self._handlers = handlers
        self._max_pending = max_pending
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="enrichment"
        )
        self._jobs: dict[str, JobRecord] = {}
        self._pending = 0
        self.rejected_count = 0
        self._lock = threading.RLock()

    def register(self, name: str, handler: JobHandler) -> None:
        with self._lock:
            self._handlers[name] = handler

    def submit(self, name: str, params: dict[str, object]) -> str:
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown job name: {name}")

        job_id = str(uuid4())
        with self._lock:
            if self._pending >= self._max_pending:
                self.rejected_count += 1
                ENRICHMENT_JOBS_TOTAL.labels(job=name, outcome="rejected").inc()
                logger.warning(
                    "enrichment_job_rejected",
                    job_name=name,
                    pending=self._pending,
                    max_pending=self._max_pending,
                )
                raise EnrichmentRejectedError(
                    f"Enrichment queue full ({self._max_pending} pending)"
                )
            self._pending += 1
            self._jobs[job_id] = JobRecord(name=name, params=dict(params))
            self._prune_finished()

        try:
            self._executor.submit(self._execute_job, job_id, handler)
        except RuntimeError as exc:
            # Executor already shut down
            with self._lock:
                self._pending -= 1
                self._jobs.pop(job_id, None)
            ENRICHMENT_JOBS_TOTAL.labels(job=name, outcome="rejected").inc()
            logger.warning(
                "enrichment_job_rejected_stopped", job_name=name, error=str(exc)
            )
            raise EnrichmentRejectedError("Enrichment runner is stopped") from exc

        logger.debug("enrichment_job_submitted", job_id=job_id, job_name=name)
        ENRICHMENT_JOBS_TOTAL.labels(job=name, outcome="submitted").inc()
        return job_id

    def status(self, job_id: str) -> dict[str, object]:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise KeyError(f"Unknown job_id: {job_id}")
            return self._snapshot(job_id, record)

    def result(self, job_id: str) -> dict[str, object] | None:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise KeyError(f"Unknown job_id: {job_id}")
            return record.result

    def failures(self) -> list[dict[str, object]]:
        with self._lock:
            return [
                self._snapshot(job_id, record)
                for job_id, record in self._jobs.items()
                if record.status == _STATUS_FAILED
            ]

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("enrichment_runner_stopped", rejected=self.rejected_count)

    # Internal helpers -------------------------------------------------

    def _execute_job(self, job_id: str, handler: JobHandler) -> None:
        with self._lock:
            record = self._jobs[job_id]
            record.status = _STATUS_RUNNING
            record.started_at = time.time()
            name = record.name
            params = dict(record.params)

        start_time = time.perf_counter()
        try:
            result = handler(params)
        except Exception as exc:  # noqa: BLE001
            duration = time.perf_counter() - start_time
            ENRICHMENT_JOB_DURATION_SECONDS.labels(job=name).observe(duration)
            ENRICHMENT_JOBS_TOTAL.labels(job=name, outcome="failed").inc()
            logger.exception("enrichment_job_failed", job_id=job_id, job_name=name)
            with self._lock:
                record.status = _STATUS_FAILED
                record.finished_at = time.time()
                record.error = str(exc)
                self._pending -= 1
        else:
            duration = time.perf_counter() - start_time
            ENRICHMENT_JOB_DURATION_SECONDS.labels(job=name).observe(duration)
            ENRICHMENT_JOBS_TOTAL.labels(job=name, outcome="succeeded").inc()
            logger.info(
                "enrichment_job_completed",
                job_id=job_id,
                job_name=name,
                duration_seconds=duration,
            )
            with self._lock:
                record.status = _STATUS_SUCCEEDED
                record.finished_at = time.time()
                record.result = result
                self._pending -= 1

    def _prune_finished(self) -> None:
        finished = [
            job_id for job_id, record in self._jobs.items() if record.finished
        ]
        excess = len(finished) - MAX_FINISHED_RECORDS
        for job_id in finished[: max(excess, 0)]:
            del self._jobs[job_id]

    @staticmethod
    def _snapshot(job_id: str, record: JobRecord) -> dict[str, object]:
        return {
            "job_id": job_id,
            "name": record.name,
            "status": record.status,
            "submitted_at": record.submitted_at,
            "started_at": record.started_at,
            "finished_at": record.finished_at,
            "error": record.error,
        }


__all__ = ["InProcessEnrichmentRunner", "JobHandler", "JobRecord"]
