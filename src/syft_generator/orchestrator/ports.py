"""Driven ports used by the orchestrator core."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from syft_generator.orchestrator.models import FailureSpec, GenerationStatus, GenerationTask


class GenerationExecutor(Protocol):
    """Execution environment that runs generation attempts."""

    def schedule_generation(self, task: GenerationTask) -> None:
        """Submit one attempt for execution."""

    def abort_generation(self, generation_id: str) -> None:
        """Delete resources of a generation on manual cancellation."""

    def cleanup_generation(self, generation_id: str) -> None:
        """Delete resources of a generation after it reached a terminal status."""

    def count_active_executions(self) -> int:
        """Return how many executions of this generator have not finished yet."""


class StatusNotifier(Protocol):
    """Outbound channel for generation status updates."""

    def notify_status(
        self,
        generation_id: str,
        status: GenerationStatus,
        reason: str | None,
        result_urls: Sequence[str] | None,
    ) -> None:
        """Publish a status update; delivery is at-least-once."""


class FailureNotifier(Protocol):
    """Outbound channel for unexpected processing failures."""

    def notify(
        self,
        failure: FailureSpec,
        correlation_id: str | None,
        source_event: object | None,
    ) -> None:
        """Publish a processing failure."""
