"""Capacity-bounded admission of queued tasks into the execution environment."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from syft_generator.orchestrator.failures import report_failure
from syft_generator.orchestrator.models import GenerationStatus, GenerationTask
from syft_generator.orchestrator.ports import (
    FailureNotifier,
    GenerationExecutor,
    StatusNotifier,
)
from syft_generator.orchestrator.task_queue import ActiveRegistry, PendingQueue

logger = logging.getLogger(__name__)

SCHEDULED_REASON = "Scheduled in execution environment"


@dataclass(slots=True)
class AdmissionOutcome:
    """Result of admitting one task within a tick."""

    generation_id: str
    scheduled: bool
    error: str | None = None


@dataclass(slots=True)
class AdmissionSummary:
    """Aggregate counters for one admission tick."""

    skipped: bool = False
    capacity_exhausted: bool = False
    active: int | None = None
    slots: int = 0
    scheduled: int = 0
    failed: int = 0
    withdrawn: int = 0
    outcomes: list[AdmissionOutcome] = field(default_factory=list)


class AdmissionController:
    """Moves tasks from the pending queue into execution under ``max_concurrent``.

    Capacity is sampled once per tick and spent within that tick. Only one tick
    runs at a time; a call made while another tick is in progress returns a
    ``skipped`` summary immediately.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue: PendingQueue,
        registry: ActiveRegistry,
        executor: GenerationExecutor,
        status_notifier: StatusNotifier,
        failure_notifier: FailureNotifier,
        max_concurrent: int = 20,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.executor = executor
        self.status_notifier = status_notifier
        self.failure_notifier = failure_notifier
        self.max_concurrent = max_concurrent
        self._tick_lock = threading.Lock()

    def tick(self) -> AdmissionSummary:
        """Run one admission pass."""

        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous admission tick still running, skipping")
            return AdmissionSummary(skipped=True)
        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def is_drained(self) -> bool:
        """Return ``True`` when nothing is queued or active; waits for a running tick."""

        with self._tick_lock:
            return self.queue.is_empty() and len(self.registry) == 0

    def _tick(self) -> AdmissionSummary:
        summary = AdmissionSummary()
        if self.queue.is_empty():
            return summary

        try:
            active = self.executor.count_active_executions()
        except Exception:
            logger.exception("Could not count active executions, admission postponed")
            return summary
        summary.active = active
        slots = self.max_concurrent - active
        if slots <= 0:
            logger.debug("Cluster at capacity (%d/%d)", active, self.max_concurrent)
            summary.capacity_exhausted = True
            return summary

        summary.slots = slots
        # Each task is registered before the queue lock is released.
        batch = self.queue.dequeue_up_to(slots, on_take=self._register)
        logger.info(
            "Cluster has capacity (%d/%d), scheduling %d task(s)",
            active,
            self.max_concurrent,
            len(batch),
        )
        for task in batch:
            outcome = self._admit(task)
            summary.outcomes.append(outcome)
            if outcome.scheduled:
                summary.scheduled += 1
            elif outcome.error is None:
                summary.withdrawn += 1
            else:
                summary.failed += 1
        return summary

    def _register(self, task: GenerationTask) -> bool:
        if self.registry.admit(task):
            return True
        logger.info("Dropping queued attempt of %s, generation already resolved", task.generation_id)
        return False

    def _admit(self, task: GenerationTask) -> AdmissionOutcome:
        generation_id = task.generation_id
        if self.registry.get(generation_id) is not task:
            logger.info("Generation %s was resolved before scheduling, skipping", generation_id)
            return AdmissionOutcome(generation_id=generation_id, scheduled=False)
        try:
            self.executor.schedule_generation(task)
        except Exception as error:  # noqa: BLE001
            logger.error("Failed to schedule generation %s: %s", generation_id, error)
            self._report_schedule_failure(task, error)
            return AdmissionOutcome(generation_id=generation_id, scheduled=False, error=str(error))

        if self.registry.get(generation_id) is not task:
            logger.info("Generation %s was resolved while scheduling, removing its resources", generation_id)
            self._cleanup(generation_id)
            return AdmissionOutcome(generation_id=generation_id, scheduled=False)

        try:
            self.status_notifier.notify_status(
                generation_id,
                GenerationStatus.GENERATING,
                SCHEDULED_REASON,
                None,
            )
        except Exception:
            logger.exception("Failed to publish GENERATING for %s", generation_id)
        return AdmissionOutcome(generation_id=generation_id, scheduled=True)

    def _report_schedule_failure(self, task: GenerationTask, error: Exception) -> None:
        generation_id = task.generation_id
        if not self.registry.resolve(generation_id):
            return
        try:
            self.status_notifier.notify_status(
                generation_id,
                GenerationStatus.FAILED,
                str(error) or type(error).__name__,
                None,
            )
        except Exception:
            logger.exception("Failed to publish FAILED for %s", generation_id)
        report_failure(self.failure_notifier, error, generation_id)
        self._cleanup(generation_id)

    def _cleanup(self, generation_id: str) -> None:
        try:
            self.executor.cleanup_generation(generation_id)
        except Exception as error:
            logger.exception("Cleanup failed for generation %s", generation_id)
            report_failure(self.failure_notifier, error, generation_id)


class AdmissionLoop:
    """Background thread that runs an admission tick every ``interval_seconds``."""

    def __init__(self, controller: AdmissionController, *, interval_seconds: float = 10.0) -> None:
        self.controller = controller
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="syft-admission",
        )
        self._thread.start()
        logger.info("Admission loop started (interval=%.1fs)", self.interval_seconds)

    def stop(self, timeout: float | None = 15.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Admission loop stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.controller.tick()
            except Exception:
                logger.exception("Admission tick error")
            self._stop.wait(timeout=self.interval_seconds)
