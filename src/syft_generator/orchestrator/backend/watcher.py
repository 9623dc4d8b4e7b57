"""Polling adapter that feeds TaskRun state changes to the reconciler."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from syft_generator.orchestrator.backend.tekton import TektonClient
from syft_generator.orchestrator.reconciliation import (
    GENERATOR_TYPE_LABEL,
    GENERATOR_TYPE_VALUE,
    TaskRunReconciler,
    observation_from_taskrun,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WatchPassSummary:
    """Counters for one listing pass."""

    listed: int = 0
    delivered: int = 0
    errors: int = 0


class TaskRunWatcher:
    """Lists this generator's TaskRuns and reconciles each terminal state once.

    A TaskRun is delivered again only after it disappears from the listing and
    shows up under the same name, which Kubernetes never does for generated
    names.
    """

    def __init__(
        self,
        *,
        client: TektonClient,
        reconciler: TaskRunReconciler,
        interval_seconds: float = 5.0,
        generator_type: str = GENERATOR_TYPE_VALUE,
    ) -> None:
        self.client = client
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.label_selector = f"{GENERATOR_TYPE_LABEL}={generator_type}"
        self._delivered: set[str] = set()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def poll_once(self) -> WatchPassSummary:
        summary = WatchPassSummary()
        taskruns = self.client.list_taskruns(self.label_selector)
        summary.listed = len(taskruns)
        seen: set[str] = set()
        for resource in taskruns:
            observation = observation_from_taskrun(resource)
            seen.add(observation.name)
            if not observation.is_terminal or observation.name in self._delivered:
                continue
            try:
                self.reconciler.reconcile_observation(observation)
            except Exception:
                logger.exception("Reconciliation failed for TaskRun '%s'", observation.name)
                summary.errors += 1
                continue
            self._delivered.add(observation.name)
            summary.delivered += 1
        self._delivered &= seen
        return summary

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="syft-watcher")
        self._thread.start()
        logger.info("TaskRun watcher started (interval=%.1fs)", self.interval_seconds)

    def stop(self, timeout: float | None = 15.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("TaskRun watcher stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("TaskRun watcher pass failed")
            self._stop.wait(timeout=self.interval_seconds)
