"""In-memory pending queue and active-task registry.

Both containers are shared between the ingress thread, the admission loop and
the feedback (reconciliation) thread. Each guards its state with an internal
lock that is released before control returns to the caller, so no external
call ever runs under it. The only nesting is queue lock, then registry lock:
``dequeue_up_to`` hands tasks to the registry and ``enqueue_unless`` asks the
registry about an id while holding the queue lock.
"""

from __future__ import annotations

import threading
from collections import Counter, OrderedDict, deque
from collections.abc import Callable

from syft_generator.orchestrator.models import GenerationTask

RESOLVED_HISTORY_SIZE = 10_000


class PendingQueue:
    """Unbounded FIFO of tasks waiting for admission."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[GenerationTask] = deque()
        self._ids: Counter[str] = Counter()

    def enqueue(self, task: GenerationTask) -> None:
        with self._lock:
            self._append(task)

    def enqueue_unless(self, task: GenerationTask, held: Callable[[str], bool]) -> bool:
        """Append ``task`` unless its id is already queued or ``held`` claims it.

        ``held`` runs under the queue lock, so a concurrent ``dequeue_up_to``
        cannot move the id out of sight between the check and the append.
        """

        with self._lock:
            generation_id = task.generation_id
            if self._ids[generation_id] or held(generation_id):
                return False
            self._append(task)
            return True

    def dequeue_up_to(
        self,
        limit: int,
        on_take: Callable[[GenerationTask], bool] | None = None,
    ) -> list[GenerationTask]:
        """Remove and return at most ``limit`` tasks in arrival order.

        ``on_take`` is called for each task before the queue lock is released;
        tasks it rejects are dropped and do not count towards ``limit``.
        """

        taken: list[GenerationTask] = []
        with self._lock:
            while self._items and len(taken) < limit:
                task = self._items.popleft()
                self._forget(task.generation_id)
                if on_take is None or on_take(task):
                    taken.append(task)
        return taken

    def discard(self, generation_id: str) -> int:
        """Drop every queued task for ``generation_id``; returns how many were dropped."""

        with self._lock:
            dropped = self._ids.pop(generation_id, 0)
            if dropped:
                self._items = deque(task for task in self._items if task.generation_id != generation_id)
            return dropped

    def is_empty(self) -> bool:
        with self._lock:
            return not self._items

    def __contains__(self, generation_id: object) -> bool:
        with self._lock:
            return generation_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _append(self, task: GenerationTask) -> None:
        self._items.append(task)
        self._ids[task.generation_id] += 1

    def _forget(self, generation_id: str) -> None:
        self._ids[generation_id] -= 1
        if self._ids[generation_id] <= 0:
            del self._ids[generation_id]


class ActiveRegistry:
    """Tasks admitted to the cluster, keyed by generation id."""

    def __init__(self, *, resolved_history_size: int = RESOLVED_HISTORY_SIZE) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, GenerationTask] = {}
        self._resolved: OrderedDict[str, None] = OrderedDict()
        self._resolved_history_size = resolved_history_size

    def put(self, generation_id: str, task: GenerationTask) -> None:
        with self._lock:
            self._tasks[generation_id] = task
            self._resolved.pop(generation_id, None)

    def get(self, generation_id: str) -> GenerationTask | None:
        with self._lock:
            return self._tasks.get(generation_id)

    def remove(self, generation_id: str) -> GenerationTask | None:
        with self._lock:
            return self._tasks.pop(generation_id, None)

    def admit(self, task: GenerationTask) -> bool:
        """Register a dequeued task unless its id was resolved while it waited."""

        generation_id = task.generation_id
        with self._lock:
            current = self._tasks.get(generation_id)
            if current is not task and (current is not None or generation_id in self._resolved):
                return False
            self._tasks[generation_id] = task
            return True

    def replace(
        self,
        generation_id: str,
        expected: GenerationTask,
        new: GenerationTask,
    ) -> bool:
        """Swap the entry only if it still holds ``expected``."""

        with self._lock:
            if self._tasks.get(generation_id) is not expected:
                return False
            self._tasks[generation_id] = new
            return True

    def resolve(self, generation_id: str) -> bool:
        """Remove the entry and remember the id as terminally resolved.

        Returns ``False`` when the id was already resolved and has not been
        registered again since, so exactly one caller wins the resolution.
        """

        with self._lock:
            task = self._tasks.pop(generation_id, None)
            if task is None and generation_id in self._resolved:
                return False
            self._resolved[generation_id] = None
            while len(self._resolved) > self._resolved_history_size:
                self._resolved.popitem(last=False)
            return True

    def was_resolved(self, generation_id: str) -> bool:
        with self._lock:
            return generation_id in self._resolved

    def holds(self, generation_id: str) -> bool:
        """Return ``True`` while the id is active or was recently resolved."""

        with self._lock:
            return generation_id in self._tasks or generation_id in self._resolved

    def snapshot(self) -> dict[str, GenerationTask]:
        with self._lock:
            return dict(self._tasks)

    def __contains__(self, generation_id: object) -> bool:
        with self._lock:
            return generation_id in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
