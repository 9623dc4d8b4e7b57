"""Domain models for generation tasks and their reported status."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class GenerationStatus(str, Enum):
    """Status values published to the status channel."""

    GENERATING = "GENERATING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in {GenerationStatus.FINISHED, GenerationStatus.FAILED}


@dataclass(frozen=True, slots=True)
class GenerationTask:
    """One attempt of a generation waiting in the queue or running in the cluster.

    A task is never mutated: an OOM retry produces a new value with the same
    ``generation_id`` and ``spec``, an incremented ``retry_count`` and a larger
    ``memory_override``.
    """

    generation_id: str
    spec: Mapping[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    memory_override: str | None = None
    trace_parent: str | None = None

    def next_attempt(self, *, memory: str) -> GenerationTask:
        """Return the task for the following OOM retry."""

        return replace(self, retry_count=self.retry_count + 1, memory_override=memory)

    @property
    def target_identifier(self) -> str | None:
        target = self.spec.get("target")
        if not isinstance(target, Mapping):
            return None
        identifier = target.get("identifier")
        return identifier if isinstance(identifier, str) else None


@dataclass(slots=True)
class FailureSpec:
    """Standardized failure descriptor sent to the failure channel."""

    reason: str
    error_code: str
    details: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, object]:
        return {
            "reason": self.reason,
            "errorCode": self.error_code,
            "details": dict(self.details),
        }
