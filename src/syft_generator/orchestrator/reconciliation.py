"""Deterministic classification of observed TaskRun state into domain outcomes."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from syft_generator.orchestrator.failures import report_failure
from syft_generator.orchestrator.models import GenerationStatus
from syft_generator.orchestrator.ports import FailureNotifier
from syft_generator.orchestrator.retry_policy import REASON_OOM_KILLED

logger = logging.getLogger(__name__)

GENERATION_ID_LABEL = "sbomer.jboss.org/generation-id"
GENERATOR_TYPE_LABEL = "sbomer.jboss.org/generator-type"
GENERATOR_TYPE_VALUE = "syft"
RETRY_COUNT_ANNOTATION = "sbomer.jboss.org/retry-count"
TRACEPARENT_ANNOTATION = "sbomer.jboss.org/traceparent"
RESULT_NAME_SBOM_URL = "sbom-url"

SUCCEEDED_CONDITION = "Succeeded"
TASKRUN_SUCCEEDED_REASON = "TaskRun Succeeded"
TASKRUN_FAILED_REASON = "TaskRun Failed"


class ResultParseError(ValueError):
    """Raised when a succeeded TaskRun does not carry a usable result."""


class DecisionKind(str, Enum):
    """Outcome classes of the reconciliation table."""

    IGNORE = "ignore"
    PENDING = "pending"
    FINISHED = "finished"
    FAILED = "failed"
    OOM_KILLED = "oom_killed"
    RESULT_INVALID = "result_invalid"


@dataclass(frozen=True, slots=True)
class Condition:
    type: str
    status: str
    reason: str | None = None


@dataclass(slots=True)
class JobObservation:
    """Observed state of one execution, independent of the resource format."""

    name: str
    generation_id: str | None
    generator_type: str | None = None
    retry_count: int | None = None
    trace_parent: str | None = None
    conditions: tuple[Condition, ...] = ()
    step_termination_reasons: tuple[str | None, ...] = ()
    results: dict[str, str] = field(default_factory=dict)

    def has_condition(self, condition_type: str, status: str) -> bool:
        return any(c.type == condition_type and c.status == status for c in self.conditions)

    @property
    def succeeded(self) -> bool:
        return self.has_condition(SUCCEEDED_CONDITION, "True")

    @property
    def failed(self) -> bool:
        return self.has_condition(SUCCEEDED_CONDITION, "False")

    @property
    def is_terminal(self) -> bool:
        return self.succeeded or self.failed

    @property
    def oom_killed(self) -> bool:
        return REASON_OOM_KILLED in self.step_termination_reasons

    @property
    def state_label(self) -> str:
        if not self.conditions:
            return "Unknown"
        return self.conditions[0].reason or self.conditions[0].status


@dataclass(slots=True)
class ReconcileDecision:
    """Decision for one observation."""

    kind: DecisionKind
    generation_id: str | None
    reason: str | None = None
    result_urls: list[str] | None = None
    error: ResultParseError | None = None


def classify_observation(
    observation: JobObservation,
    *,
    generator_type: str = GENERATOR_TYPE_VALUE,
) -> ReconcileDecision:
    """Map an observation to a decision; never raises."""

    generation_id = observation.generation_id
    if not generation_id:
        return ReconcileDecision(kind=DecisionKind.IGNORE, generation_id=None, reason="missing-id")
    if observation.generator_type is not None and observation.generator_type != generator_type:
        return ReconcileDecision(
            kind=DecisionKind.IGNORE,
            generation_id=generation_id,
            reason="other-generator",
        )

    if observation.succeeded:
        try:
            urls = parse_result_urls(observation.results.get(RESULT_NAME_SBOM_URL))
        except ResultParseError as error:
            return ReconcileDecision(
                kind=DecisionKind.RESULT_INVALID,
                generation_id=generation_id,
                reason=f"Result parsing failed: {error}",
                error=error,
            )
        return ReconcileDecision(
            kind=DecisionKind.FINISHED,
            generation_id=generation_id,
            reason=TASKRUN_SUCCEEDED_REASON,
            result_urls=urls,
        )

    if observation.failed:
        if observation.oom_killed:
            return ReconcileDecision(
                kind=DecisionKind.OOM_KILLED,
                generation_id=generation_id,
                reason=REASON_OOM_KILLED,
            )
        return ReconcileDecision(
            kind=DecisionKind.FAILED,
            generation_id=generation_id,
            reason=TASKRUN_FAILED_REASON,
        )

    return ReconcileDecision(kind=DecisionKind.PENDING, generation_id=generation_id)


def parse_result_urls(raw: str | None) -> list[str]:
    """Parse the ``sbom-url`` result, a JSON object whose values are URLs."""

    if raw is None:
        raise ResultParseError(f"Result '{RESULT_NAME_SBOM_URL}' not found in TaskRun")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ResultParseError(f"Result '{RESULT_NAME_SBOM_URL}' is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ResultParseError(f"Result '{RESULT_NAME_SBOM_URL}' must be a JSON object")
    urls: list[str] = []
    for key, value in payload.items():
        if not isinstance(value, str):
            raise ResultParseError(f"Result '{RESULT_NAME_SBOM_URL}' entry {key!r} is not a string")
        urls.append(value)
    return urls


def observation_from_taskrun(resource: Mapping[str, Any]) -> JobObservation:
    """Extract the fields used by reconciliation from a TaskRun document."""

    metadata = _mapping(resource.get("metadata"))
    labels = _mapping(metadata.get("labels"))
    annotations = _mapping(metadata.get("annotations"))
    status = _mapping(resource.get("status"))

    conditions = tuple(
        Condition(
            type=str(item.get("type", "")),
            status=str(item.get("status", "")),
            reason=item.get("reason") if isinstance(item.get("reason"), str) else None,
        )
        for item in _mappings(status.get("conditions"))
    )
    step_reasons = tuple(
        _mapping(step.get("terminated")).get("reason")
        for step in _mappings(status.get("steps"))
        if step.get("terminated") is not None
    )
    results: dict[str, str] = {}
    # v1beta1 reports taskResults; older payloads used taskRunResults.
    for item in _mappings(status.get("taskResults") or status.get("taskRunResults")):
        name = item.get("name")
        value = item.get("value")
        if isinstance(name, str) and isinstance(value, str):
            results[name] = value

    return JobObservation(
        name=str(metadata.get("name") or metadata.get("generateName") or "unknown"),
        generation_id=labels.get(GENERATION_ID_LABEL),
        generator_type=labels.get(GENERATOR_TYPE_LABEL),
        retry_count=_optional_int(annotations.get(RETRY_COUNT_ANNOTATION)),
        trace_parent=annotations.get(TRACEPARENT_ANNOTATION),
        conditions=conditions,
        step_termination_reasons=step_reasons,
        results=results,
    )


class GenerationUpdateHandler(Protocol):
    """Inbound feedback port implemented by the orchestrator service."""

    def handle_update(  # noqa: PLR0913
        self,
        generation_id: str,
        status: GenerationStatus,
        reason: str | None = None,
        result_urls: list[str] | None = None,
        *,
        attempt: int | None = None,
    ) -> None: ...


class TaskRunReconciler:
    """Applies reconciliation decisions to the orchestrator."""

    def __init__(
        self,
        *,
        orchestrator: GenerationUpdateHandler,
        failure_notifier: FailureNotifier,
        generator_type: str = GENERATOR_TYPE_VALUE,
    ) -> None:
        self.orchestrator = orchestrator
        self.failure_notifier = failure_notifier
        self.generator_type = generator_type

    def reconcile(self, resource: Mapping[str, Any]) -> ReconcileDecision:
        observation = observation_from_taskrun(resource)
        return self.reconcile_observation(observation)

    def reconcile_observation(self, observation: JobObservation) -> ReconcileDecision:
        logger.info(
            "Reconciling TaskRun '%s' (generation %s) - state: %s",
            observation.name,
            observation.generation_id,
            observation.state_label,
        )
        decision = classify_observation(observation, generator_type=self.generator_type)
        generation_id = decision.generation_id

        if decision.kind == DecisionKind.IGNORE or generation_id is None:
            if decision.reason == "missing-id":
                logger.warning("TaskRun '%s' is missing generation-id label", observation.name)
            return decision
        if decision.kind == DecisionKind.PENDING:
            logger.debug("TaskRun '%s' is still running/pending", observation.name)
            return decision

        attempt = observation.retry_count
        if decision.kind == DecisionKind.FINISHED:
            logger.info("TaskRun '%s' succeeded for generation %s", observation.name, generation_id)
            self.orchestrator.handle_update(
                generation_id,
                GenerationStatus.FINISHED,
                decision.reason,
                decision.result_urls,
                attempt=attempt,
            )
        elif decision.kind == DecisionKind.RESULT_INVALID:
            logger.error("Failed to parse results from TaskRun '%s': %s", observation.name, decision.error)
            self.orchestrator.handle_update(
                generation_id,
                GenerationStatus.FAILED,
                decision.reason,
                None,
                attempt=attempt,
            )
            if decision.error is not None:
                report_failure(self.failure_notifier, decision.error, generation_id)
        else:
            logger.warning(
                "TaskRun '%s' failed for generation %s: %s",
                observation.name,
                generation_id,
                decision.reason,
            )
            self.orchestrator.handle_update(
                generation_id,
                GenerationStatus.FAILED,
                decision.reason,
                None,
                attempt=attempt,
            )
        return decision


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _mappings(value: object) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value))
    except ValueError:
        return None
