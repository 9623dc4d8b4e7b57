"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import pytest

from syft_generator.orchestrator.models import FailureSpec, GenerationStatus, GenerationTask
from syft_generator.orchestrator.retry_policy import RetryPolicy
from syft_generator.orchestrator.service import GeneratorService


@dataclass
class FakeExecutor:
    """In-memory executor that records calls and can fail on demand."""

    active: int = 0
    fail_for: set[str] = field(default_factory=set)
    count_error: Exception | None = None
    cleanup_error: Exception | None = None
    scheduled: list[GenerationTask] = field(default_factory=list)
    aborted: list[str] = field(default_factory=list)
    cleaned: list[str] = field(default_factory=list)

    def schedule_generation(self, task: GenerationTask) -> None:
        if task.generation_id in self.fail_for:
            raise RuntimeError(f"cluster rejected {task.generation_id}")
        self.scheduled.append(task)

    def abort_generation(self, generation_id: str) -> None:
        self.aborted.append(generation_id)

    def cleanup_generation(self, generation_id: str) -> None:
        self.cleaned.append(generation_id)
        if self.cleanup_error is not None:
            raise self.cleanup_error

    def count_active_executions(self) -> int:
        if self.count_error is not None:
            raise self.count_error
        return self.active


@dataclass
class RecordingStatusNotifier:
    updates: list[tuple[str, GenerationStatus, str | None, list[str] | None]] = field(
        default_factory=list,
    )

    def notify_status(
        self,
        generation_id: str,
        status: GenerationStatus,
        reason: str | None,
        result_urls: Sequence[str] | None,
    ) -> None:
        urls = list(result_urls) if result_urls is not None else None
        self.updates.append((generation_id, status, reason, urls))

    def statuses(self, generation_id: str) -> list[GenerationStatus]:
        return [status for gid, status, _, _ in self.updates if gid == generation_id]


@dataclass
class RecordingFailureNotifier:
    failures: list[tuple[FailureSpec, str | None, object | None]] = field(default_factory=list)

    def notify(
        self,
        failure: FailureSpec,
        correlation_id: str | None,
        source_event: object | None,
    ) -> None:
        self.failures.append((failure, correlation_id, source_event))


@pytest.fixture()
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture()
def status_notifier() -> RecordingStatusNotifier:
    return RecordingStatusNotifier()


@pytest.fixture()
def failure_notifier() -> RecordingFailureNotifier:
    return RecordingFailureNotifier()


@pytest.fixture()
def service(
    executor: FakeExecutor,
    status_notifier: RecordingStatusNotifier,
    failure_notifier: RecordingFailureNotifier,
) -> GeneratorService:
    return GeneratorService(
        executor=executor,
        status_notifier=status_notifier,
        failure_notifier=failure_notifier,
        max_concurrent=20,
        retry_policy=RetryPolicy(max_retries=3, multiplier=1.5, default_memory="1Gi"),
    )


@pytest.fixture()
def make_request():
    """Builds a generation request payload for a container image."""
    return _generation_request


@pytest.fixture()
def make_event():
    """Builds a ``GenerationCreated`` event addressed to a generator."""
    return _generation_created_event


@pytest.fixture()
def make_taskrun():
    """Builds a TaskRun resource as listed by the Kubernetes API."""
    return _taskrun_resource


def _generation_request(generation_id: str, image: str = "quay.io/org/app:1.0") -> dict:
    return {
        "generationId": generation_id,
        "target": {"type": "CONTAINER_IMAGE", "identifier": image},
    }


def _generation_created_event(
    generation_id: str,
    *,
    generator: str = "syft-generator",
    trace_parent: str | None = "00-trace-span-01",
) -> dict:
    context = {
        "eventId": f"evt-{generation_id}",
        "type": "GenerationCreated",
        "correlationId": f"corr-{generation_id}",
    }
    if trace_parent is not None:
        context["traceParent"] = trace_parent
    return {
        "context": context,
        "data": {
            "generationRequest": _generation_request(generation_id),
            "recipe": {"generator": {"name": generator, "version": "1.0.0"}},
        },
    }


def _taskrun_resource(  # noqa: PLR0913
    generation_id: str | None,
    *,
    name: str | None = None,
    succeeded: str | None = None,
    step_reasons: Sequence[str] = (),
    results: dict[str, str] | None = None,
    retry_count: int | None = 0,
    generator_type: str = "syft",
) -> dict:
    labels = {"sbomer.jboss.org/generator-type": generator_type}
    if generation_id is not None:
        labels["sbomer.jboss.org/generation-id"] = generation_id
    annotations = {}
    if retry_count is not None:
        annotations["sbomer.jboss.org/retry-count"] = str(retry_count)
    status: dict = {}
    if succeeded is not None:
        status["conditions"] = [
            {
                "type": "Succeeded",
                "status": succeeded,
                "reason": "Succeeded" if succeeded == "True" else "Failed",
            },
        ]
    if step_reasons:
        status["steps"] = [
            {"name": f"step-{index}", "terminated": {"reason": reason}}
            for index, reason in enumerate(step_reasons)
        ]
    if results is not None:
        status["taskResults"] = [{"name": key, "value": value} for key, value in results.items()]
    return {
        "apiVersion": "tekton.dev/v1beta1",
        "kind": "TaskRun",
        "metadata": {
            "name": name or f"syft-gen-{(generation_id or 'unknown')[:8].lower()}-abcde",
            "labels": labels,
            "annotations": annotations,
        },
        "status": status,
    }
