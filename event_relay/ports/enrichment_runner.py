"""Port definition for best-effort background enrichment."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EnrichmentRunnerPort(Protocol):
    """Interface for submitting and tracking background enrichment jobs."""

    def submit(self, name: str, params: dict[str, object]) -> str:
        """Schedule a job for asynchronous execution.

        Args:
            name: Logical job name.
            params: Arbitrary job parameters.

        Returns:
            Unique identifier for the submitted job.

        Raises:
            EnrichmentRejectedError: The runner is at capacity.
        """

    def status(self, job_id: str) -> dict[str, object]:
        """Retrieve current status for a submitted job."""

    def failures(self) -> list[dict[str, object]]:
        """Return status snapshots of every failed job."""


__all__ = ["EnrichmentRunnerPort"]
