from __future__ import annotations

import threading

import allure

from syft_generator.orchestrator.models import GenerationTask
from syft_generator.orchestrator.task_queue import ActiveRegistry, PendingQueue

pytestmark = [
    allure.epic("Generation Runtime"),
    allure.feature("Queue & Registry"),
]


def _task(generation_id: str, retry_count: int = 0) -> GenerationTask:
    return GenerationTask(generation_id=generation_id, retry_count=retry_count)


def test_dequeue_up_to_preserves_arrival_order() -> None:
    queue = PendingQueue()
    for generation_id in ("A", "B", "C", "D"):
        queue.enqueue(_task(generation_id))

    first = queue.dequeue_up_to(3)
    rest = queue.dequeue_up_to(3)

    assert [task.generation_id for task in first] == ["A", "B", "C"]
    assert [task.generation_id for task in rest] == ["D"]
    assert queue.is_empty()
    assert queue.dequeue_up_to(5) == []


def test_dequeue_up_to_zero_takes_nothing() -> None:
    queue = PendingQueue()
    queue.enqueue(_task("A"))

    assert queue.dequeue_up_to(0) == []
    assert len(queue) == 1


def test_concurrent_enqueue_loses_no_tasks() -> None:
    queue = PendingQueue()

    def _produce(prefix: str) -> None:
        for index in range(500):
            queue.enqueue(_task(f"{prefix}-{index}"))

    threads = [threading.Thread(target=_produce, args=(f"p{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    drained = queue.dequeue_up_to(10_000)
    assert len(drained) == 2000
    assert len({task.generation_id for task in drained}) == 2000


def test_enqueue_unless_refuses_queued_and_held_ids() -> None:
    queue = PendingQueue()
    held = {"B"}

    assert queue.enqueue_unless(_task("A"), held.__contains__)
    assert not queue.enqueue_unless(_task("A"), held.__contains__)
    assert not queue.enqueue_unless(_task("B"), held.__contains__)
    assert "A" in queue
    assert "B" not in queue

    queue.dequeue_up_to(1)

    assert "A" not in queue
    assert queue.enqueue_unless(_task("A"), held.__contains__)


def test_discard_drops_every_attempt_of_an_id() -> None:
    queue = PendingQueue()
    queue.enqueue(_task("A"))
    queue.enqueue(_task("B"))
    queue.enqueue(_task("A", retry_count=1))

    assert queue.discard("A") == 2
    assert queue.discard("missing") == 0
    assert [task.generation_id for task in queue.dequeue_up_to(5)] == ["B"]


def test_dequeue_up_to_skips_tasks_rejected_on_take() -> None:
    queue = PendingQueue()
    for generation_id in ("A", "B", "C"):
        queue.enqueue(_task(generation_id))

    taken = queue.dequeue_up_to(2, on_take=lambda task: task.generation_id != "A")

    assert [task.generation_id for task in taken] == ["B", "C"]
    assert queue.is_empty()


def test_registry_put_get_remove() -> None:
    registry = ActiveRegistry()
    task = _task("A")

    registry.put("A", task)

    assert registry.get("A") is task
    assert "A" in registry
    assert len(registry) == 1
    assert registry.remove("A") is task
    assert registry.get("A") is None
    assert registry.remove("A") is None


def test_replace_only_swaps_the_expected_entry() -> None:
    registry = ActiveRegistry()
    original = _task("A")
    retry = _task("A", retry_count=1)
    registry.put("A", original)

    assert registry.replace("A", original, retry)
    assert registry.get("A") is retry
    assert not registry.replace("A", original, _task("A", retry_count=2))
    assert registry.get("A") is retry


def test_resolve_has_exactly_one_winner() -> None:
    registry = ActiveRegistry()
    registry.put("A", _task("A"))

    assert registry.resolve("A")
    assert not registry.resolve("A")
    assert registry.was_resolved("A")
    assert "A" not in registry


def test_resolve_unknown_id_wins_once() -> None:
    registry = ActiveRegistry()

    assert registry.resolve("orphan")
    assert not registry.resolve("orphan")


def test_put_after_resolve_clears_tombstone() -> None:
    registry = ActiveRegistry()
    registry.resolve("A")

    registry.put("A", _task("A"))

    assert not registry.was_resolved("A")
    assert registry.resolve("A")


def test_resolved_history_is_bounded() -> None:
    registry = ActiveRegistry(resolved_history_size=2)
    for generation_id in ("A", "B", "C"):
        registry.resolve(generation_id)

    assert not registry.was_resolved("A")
    assert registry.was_resolved("B")
    assert registry.was_resolved("C")


def test_concurrent_resolve_of_same_id_has_single_winner() -> None:
    registry = ActiveRegistry()
    registry.put("A", _task("A"))
    barrier = threading.Barrier(8)
    results: list[bool] = []
    lock = threading.Lock()

    def _resolve() -> None:
        barrier.wait()
        outcome = registry.resolve("A")
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=_resolve) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1


def test_snapshot_is_a_copy() -> None:
    registry = ActiveRegistry()
    registry.put("A", _task("A"))

    snapshot = registry.snapshot()
    snapshot.clear()

    assert "A" in registry


def test_admit_refuses_tasks_resolved_while_queued() -> None:
    registry = ActiveRegistry()
    fresh = _task("A")
    retry = _task("B", retry_count=1)
    registry.put("B", retry)
    registry.resolve("B")
    registry.resolve("C")

    assert registry.admit(fresh)
    assert registry.get("A") is fresh
    assert not registry.admit(retry)
    assert not registry.admit(_task("C"))
    assert "B" not in registry


def test_admit_accepts_the_registered_retry() -> None:
    registry = ActiveRegistry()
    first = _task("A")
    retry = _task("A", retry_count=1)
    registry.put("A", first)
    assert registry.replace("A", first, retry)

    assert registry.admit(retry)
    assert not registry.admit(_task("A", retry_count=1))


def test_holds_covers_active_and_resolved_ids() -> None:
    registry = ActiveRegistry()
    registry.put("A", _task("A"))
    registry.resolve("B")

    assert registry.holds("A")
    assert registry.holds("B")
    assert not registry.holds("C")
