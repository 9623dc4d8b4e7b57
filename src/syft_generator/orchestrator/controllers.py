"""Controllers for generator CLI commands."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TextIO

from syft_generator.config import Settings
from syft_generator.orchestrator.admission import AdmissionLoop
from syft_generator.orchestrator.backend import (
    EventFailureNotifier,
    EventPublisher,
    EventStatusNotifier,
    TaskRunFactory,
    TaskRunWatcher,
    TektonClient,
    TektonGenerationExecutor,
)
from syft_generator.orchestrator.intake import (
    MalformedEventError,
    RequestConsumer,
    parse_request_event,
)
from syft_generator.orchestrator.reconciliation import TaskRunReconciler
from syft_generator.orchestrator.service import GeneratorService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI input for the generator node."""

    events: TextIO
    exit_when_idle: bool = False
    idle_check_seconds: float = 1.0


@dataclass(slots=True)
class RenderTaskRunCommand:
    """CLI input for TaskRun rendering."""

    event: TextIO
    retry_count: int = 0
    memory: str | None = None


@dataclass(slots=True)
class CheckConfigCommand:
    """CLI input for configuration check."""


@dataclass(slots=True)
class GeneratorRuntime:
    """Wired components of a running generator node."""

    service: GeneratorService
    consumer: RequestConsumer
    admission_loop: AdmissionLoop
    watcher: TaskRunWatcher | None = None
    closers: list[Callable[[], None]] = field(default_factory=list)

    def start(self) -> None:
        self.admission_loop.start()
        if self.watcher is not None:
            self.watcher.start()

    def stop(self) -> None:
        self.admission_loop.stop()
        if self.watcher is not None:
            self.watcher.stop()
        for close in self.closers:
            close()

    def is_idle(self) -> bool:
        return self.service.is_idle()


def build_runtime(settings: Settings) -> GeneratorRuntime:
    """Wire the Tekton executor and event notifiers around a service."""

    client = TektonClient.from_settings(settings.tekton)
    publisher = EventPublisher.from_settings(settings.events)
    factory = TaskRunFactory.from_settings(settings.tekton)
    status_notifier = EventStatusNotifier(
        publisher=publisher,
        topic=settings.events.status_topic,
    )
    failure_notifier = EventFailureNotifier(
        publisher=publisher,
        topic=settings.events.failure_topic,
    )
    service = GeneratorService(
        executor=TektonGenerationExecutor(client=client, factory=factory),
        status_notifier=status_notifier,
        failure_notifier=failure_notifier,
        max_concurrent=settings.generator.max_concurrent,
        retry_policy=settings.generator.retry_policy(),
    )
    reconciler = TaskRunReconciler(orchestrator=service, failure_notifier=failure_notifier)
    return GeneratorRuntime(
        service=service,
        consumer=RequestConsumer(
            orchestrator=service,
            failure_notifier=failure_notifier,
            generator_name=settings.generator.generator_name,
        ),
        admission_loop=AdmissionLoop(
            service.admission,
            interval_seconds=settings.generator.poll_interval_seconds,
        ),
        watcher=TaskRunWatcher(
            client=client,
            reconciler=reconciler,
            interval_seconds=settings.tekton.reconcile_interval_seconds,
        ),
        closers=[client.close, publisher.close],
    )


class GeneratorCliController:
    """Coordinates the generator node and its inspection commands."""

    def __init__(
        self,
        runtime_factory: Callable[[Settings], GeneratorRuntime] = build_runtime,
    ) -> None:
        self.runtime_factory = runtime_factory

    def run(self, command: RunCommand) -> list[str]:
        settings = _load_settings()
        runtime = self.runtime_factory(settings)
        stopped = threading.Event()
        read = accepted = 0

        runtime.start()
        try:
            for line in command.events:
                if not line.strip():
                    continue
                read += 1
                try:
                    event = json.loads(line)
                except json.JSONDecodeError as error:
                    logger.warning("Skipping event line %d, invalid JSON: %s", read, error)
                    continue
                if runtime.consumer.receive(event):
                    accepted += 1

            if command.exit_when_idle:
                while not runtime.is_idle():
                    stopped.wait(command.idle_check_seconds)
            else:
                logger.info("All events read, running until interrupted")
                stopped.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            runtime.stop()

        return [
            "Generator summary: "
            f"events={read} accepted={accepted} "
            f"pending={len(runtime.service.queue)} active={len(runtime.service.registry)}",
        ]

    def render_taskrun(self, command: RenderTaskRunCommand) -> list[str]:
        settings = _load_settings()
        try:
            event = json.load(command.event)
        except json.JSONDecodeError as error:
            raise ValueError(f"Event is not valid JSON: {error}") from error

        task = parse_request_event(event, generator_name=settings.generator.generator_name)
        if task is None:
            raise MalformedEventError(
                f"Event is not addressed to generator {settings.generator.generator_name!r}",
            )
        if command.retry_count or command.memory is not None:
            task = replace(task, retry_count=command.retry_count, memory_override=command.memory)

        document = TaskRunFactory.from_settings(settings.tekton).create_task_run(task)
        return json.dumps(document, indent=2).splitlines()

    def check_config(self, command: CheckConfigCommand) -> list[str]:  # noqa: ARG002
        settings = _load_settings()
        generator = settings.generator
        tekton = settings.tekton
        events = settings.events
        return [
            "Configuration OK",
            f"Generator: name={generator.generator_name} "
            f"max_concurrent={generator.max_concurrent} "
            f"poll_interval={generator.poll_interval_seconds}s",
            f"OOM retry: max_retries={generator.max_oom_retries} "
            f"multiplier={generator.memory_multiplier} "
            f"default_memory={generator.default_memory} "
            f"fallback_memory={generator.fallback_memory}",
            f"Tekton: api_url={tekton.api_url} namespace={tekton.namespace} "
            f"task={tekton.task_name} service_account={tekton.service_account} "
            f"step={tekton.step_name} verify_tls={tekton.verify_tls}",
            f"Storage: {tekton.storage_url or '-'}",
            f"Events: url={events.events_url} status_topic={events.status_topic} "
            f"failure_topic={events.failure_topic}",
        ]


def _load_settings() -> Settings:
    settings = Settings.from_env()
    settings.validate()
    return settings
