"""Generation orchestrator: ingress, admission and status feedback."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from syft_generator.orchestrator.admission import AdmissionController, AdmissionSummary
from syft_generator.orchestrator.failures import report_failure
from syft_generator.orchestrator.models import GenerationStatus, GenerationTask
from syft_generator.orchestrator.ports import (
    FailureNotifier,
    GenerationExecutor,
    StatusNotifier,
)
from syft_generator.orchestrator.retry_policy import (
    REASON_OOM_KILLED,
    REASON_STATE_LOST,
    RetryPolicy,
    decide_oom_retry,
)
from syft_generator.orchestrator.task_queue import ActiveRegistry, PendingQueue

logger = logging.getLogger(__name__)

ABORTED_REASON = "Aborted"


class GeneratorService:
    """Owns the pending queue and the active registry.

    ``accept_request`` is called by the ingress adapter, ``handle_update`` by the
    reconciliation adapter and ``process_queue`` by the admission loop. All three
    may run concurrently.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        executor: GenerationExecutor,
        status_notifier: StatusNotifier,
        failure_notifier: FailureNotifier,
        max_concurrent: int = 20,
        retry_policy: RetryPolicy | None = None,
        queue: PendingQueue | None = None,
        registry: ActiveRegistry | None = None,
    ) -> None:
        self.executor = executor
        self.status_notifier = status_notifier
        self.failure_notifier = failure_notifier
        self.retry_policy = retry_policy or RetryPolicy()
        self.queue = queue if queue is not None else PendingQueue()
        self.registry = registry if registry is not None else ActiveRegistry()
        self.admission = AdmissionController(
            queue=self.queue,
            registry=self.registry,
            executor=executor,
            status_notifier=status_notifier,
            failure_notifier=failure_notifier,
            max_concurrent=max_concurrent,
        )

    def accept_request(
        self,
        generation_id: str,
        spec: Mapping[str, Any],
        trace_parent: str | None = None,
    ) -> GenerationTask | None:
        """Queue a new request; admission happens on the next tick.

        Returns ``None`` for an id that is already queued, active or recently
        resolved, so a redelivered request never starts a second execution.
        """

        task = GenerationTask(generation_id=generation_id, spec=spec, trace_parent=trace_parent)
        if not self.queue.enqueue_unless(task, self.registry.holds):
            logger.info("Generation %s is already known, ignoring duplicate request", generation_id)
            return None
        logger.info("Accepted request for generation %s", generation_id)
        return task

    def process_queue(self) -> AdmissionSummary:
        return self.admission.tick()

    def is_idle(self) -> bool:
        return self.admission.is_drained()

    def handle_update(  # noqa: PLR0913
        self,
        generation_id: str,
        status: GenerationStatus,
        reason: str | None = None,
        result_urls: Sequence[str] | None = None,
        *,
        attempt: int | None = None,
    ) -> None:
        """Apply a status observed in the execution environment.

        ``attempt`` is the retry count of the execution that produced the update;
        updates for an attempt that has since been superseded are ignored.
        """

        logger.info("Handling update for generation %s: %s (%s)", generation_id, status.value, reason)
        current = self.registry.get(generation_id)
        if current is not None and attempt is not None and attempt != current.retry_count:
            logger.info(
                "Ignoring update for superseded attempt %d of %s (current attempt %d)",
                attempt,
                generation_id,
                current.retry_count,
            )
            return

        if status == GenerationStatus.FAILED and reason == REASON_OOM_KILLED:
            self._handle_oom(generation_id, current)
            return

        if not status.is_terminal:
            if current is None and self.registry.was_resolved(generation_id):
                logger.info("Generation %s already resolved, ignoring %s", generation_id, status.value)
                return
            self._notify(generation_id, status, reason, result_urls)
            return

        if not self.registry.resolve(generation_id):
            logger.info(
                "Generation %s already resolved, ignoring duplicate %s",
                generation_id,
                status.value,
            )
            return
        self._notify(generation_id, status, reason, result_urls)
        self._cleanup(generation_id)

    def abort(self, generation_id: str) -> None:
        """Cancel a generation and delete its execution resources."""

        logger.info("Aborting generation %s", generation_id)
        dropped = self.queue.discard(generation_id)
        if not self.registry.resolve(generation_id):
            logger.info("Generation %s already resolved, nothing to abort", generation_id)
            return
        if dropped:
            logger.info("Dropped %d queued attempt(s) of %s", dropped, generation_id)
        try:
            self.executor.abort_generation(generation_id)
        except Exception as error:
            logger.exception("Abort failed for generation %s", generation_id)
            report_failure(self.failure_notifier, error, generation_id)
        self._notify(generation_id, GenerationStatus.FAILED, ABORTED_REASON, None)

    def _handle_oom(self, generation_id: str, task: GenerationTask | None) -> None:
        if task is None:
            if not self.registry.resolve(generation_id):
                logger.info("Generation %s already resolved, ignoring duplicate OOM", generation_id)
                return
            logger.warning("Cannot retry OOM for %s, task state lost", generation_id)
            self._notify(generation_id, GenerationStatus.FAILED, REASON_STATE_LOST, None)
            self._cleanup(generation_id)
            return

        decision = decide_oom_retry(task, policy=self.retry_policy)
        if decision.retry_task is None:
            if not self.registry.resolve(generation_id):
                return
            logger.warning(
                "Max OOM retries (%d) reached for %s, giving up",
                self.retry_policy.max_retries,
                generation_id,
            )
            self._notify(generation_id, GenerationStatus.FAILED, decision.reason, None)
            self._cleanup(generation_id)
            return

        if not self.registry.replace(generation_id, task, decision.retry_task):
            logger.info("OOM retry for %s already handled concurrently", generation_id)
            return
        logger.info("Retrying %s due to OOM. %s", generation_id, decision.reason)
        self.queue.enqueue(decision.retry_task)

    def _cleanup(self, generation_id: str) -> None:
        try:
            self.executor.cleanup_generation(generation_id)
        except Exception as error:
            logger.exception("Cleanup failed for generation %s", generation_id)
            report_failure(self.failure_notifier, error, generation_id)

    def _notify(
        self,
        generation_id: str,
        status: GenerationStatus,
        reason: str | None,
        result_urls: Sequence[str] | None,
    ) -> None:
        try:
            self.status_notifier.notify_status(generation_id, status, reason, result_urls)
        except Exception:
            logger.exception("Failed to publish %s for %s", status.value, generation_id)
