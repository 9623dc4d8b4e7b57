"""Orchestrator backend implementations."""

from syft_generator.orchestrator.backend.events import (
    EventFailureNotifier,
    EventPublisher,
    EventStatusNotifier,
)
from syft_generator.orchestrator.backend.tekton import (
    TaskRunFactory,
    TektonClient,
    TektonGenerationExecutor,
)
from syft_generator.orchestrator.backend.watcher import TaskRunWatcher

__all__ = [
    "EventFailureNotifier",
    "EventPublisher",
    "EventStatusNotifier",
    "TaskRunFactory",
    "TaskRunWatcher",
    "TektonClient",
    "TektonGenerationExecutor",
]
