"""Ingress adapter for ``GenerationCreated`` and ``GenerationCancelled`` events."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from syft_generator.orchestrator.failures import report_failure
from syft_generator.orchestrator.models import GenerationTask
from syft_generator.orchestrator.ports import FailureNotifier

logger = logging.getLogger(__name__)

CANCELLED_EVENT_TYPE = "GenerationCancelled"


class RequestAcceptor(Protocol):
    def accept_request(
        self,
        generation_id: str,
        spec: Mapping[str, Any],
        trace_parent: str | None = None,
    ) -> GenerationTask | None: ...

    def abort(self, generation_id: str) -> None: ...


class MalformedEventError(ValueError):
    """Raised when an event addressed to this generator lacks required fields."""


class RequestConsumer:
    """Filters incoming events for this generator and hands them to the orchestrator."""

    def __init__(
        self,
        *,
        orchestrator: RequestAcceptor,
        failure_notifier: FailureNotifier,
        generator_name: str = "syft-generator",
    ) -> None:
        self.orchestrator = orchestrator
        self.failure_notifier = failure_notifier
        self.generator_name = generator_name

    def receive(self, event: object) -> bool:
        """Accept one event; returns ``True`` when a request was queued or aborted.

        A ``GenerationCancelled`` event aborts the generation it names. Errors
        never escape, so one bad event cannot stop the consumer loop.
        """

        try:
            task = parse_request_event(event, generator_name=self.generator_name)
            if task is None:
                return False
            if is_cancellation(event):
                logger.info("Received cancellation for generation %s", task.generation_id)
                self.orchestrator.abort(task.generation_id)
                return True
            logger.info("%s received task for generation %s", self.generator_name, task.generation_id)
            accepted = self.orchestrator.accept_request(task.generation_id, task.spec, task.trace_parent)
            return accepted is not None
        except Exception as error:
            logger.exception("Skipping malformed or incompatible event")
            correlation_id = None
            if isinstance(event, Mapping):
                correlation_id = _mapping(event.get("context")).get("correlationId")
            report_failure(self.failure_notifier, error, correlation_id, event)
            return False

    def is_my_generator(self, event: Mapping[str, Any]) -> bool:
        return is_addressed_to(event, self.generator_name)


def is_addressed_to(event: Mapping[str, Any], generator_name: str) -> bool:
    generator = _mapping(_mapping(_mapping(event.get("data")).get("recipe")).get("generator"))
    return generator.get("name") == generator_name


def is_cancellation(event: Mapping[str, Any]) -> bool:
    return _mapping(event.get("context")).get("type") == CANCELLED_EVENT_TYPE


def parse_request_event(event: object, *, generator_name: str) -> GenerationTask | None:
    """Build a task from a ``GenerationCreated`` event.

    Returns ``None`` for events addressed to another generator and raises
    ``MalformedEventError`` when an event for this generator cannot be used.
    """

    if not isinstance(event, Mapping):
        raise MalformedEventError(f"Event must be a JSON object, got {type(event).__name__}")
    context = _mapping(event.get("context"))
    logger.debug("Received event %s", context.get("eventId"))
    if not is_addressed_to(event, generator_name):
        return None

    request = _mapping(_mapping(event.get("data")).get("generationRequest"))
    generation_id = request.get("generationId")
    if not isinstance(generation_id, str) or not generation_id:
        raise MalformedEventError("Event is missing data.generationRequest.generationId")
    trace_parent = context.get("traceParent")
    return GenerationTask(
        generation_id=generation_id,
        spec=request,
        trace_parent=trace_parent if isinstance(trace_parent, str) else None,
    )


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}
