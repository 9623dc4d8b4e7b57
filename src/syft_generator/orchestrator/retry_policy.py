"""OOM retry policy: when to retry and how much memory to ask for next."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from syft_generator.orchestrator.models import GenerationTask

REASON_OOM_KILLED = "OOMKilled"
REASON_MAX_RETRIES_EXCEEDED = "OOMKilled (Max retries exceeded)"
REASON_STATE_LOST = "OOMKilled (Retry failed - state lost)"

_QUANTITY_PATTERN = re.compile(r"^\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>Ki|Mi|Gi|Ti)?\s*$")
# Multipliers relative to one gibibyte.
_UNIT_TO_GI: dict[str, Decimal] = {
    "": Decimal(1) / Decimal(1024**3),
    "Ki": Decimal(1) / Decimal(1024**2),
    "Mi": Decimal(1) / Decimal(1024),
    "Gi": Decimal(1),
    "Ti": Decimal(1024),
}


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Configured bounds for OOM retries."""

    max_retries: int = 3
    multiplier: float = 1.5
    default_memory: str = "1Gi"
    fallback_memory: str = "2Gi"


@dataclass(slots=True)
class RetryDecision:
    """Decision returned by the OOM retry policy."""

    should_retry: bool
    reason: str
    previous_memory: str
    retry_task: GenerationTask | None = None

    @property
    def new_memory(self) -> str | None:
        if self.retry_task is None:
            return None
        return self.retry_task.memory_override


def decide_oom_retry(task: GenerationTask, *, policy: RetryPolicy) -> RetryDecision:
    """Retry with escalated memory until ``policy.max_retries`` is consumed."""

    current_memory = task.memory_override or policy.default_memory
    if task.retry_count >= policy.max_retries:
        return RetryDecision(
            should_retry=False,
            reason=REASON_MAX_RETRIES_EXCEEDED,
            previous_memory=current_memory,
        )

    new_memory = escalate_memory(
        current_memory,
        multiplier=policy.multiplier,
        fallback=policy.fallback_memory,
    )
    return RetryDecision(
        should_retry=True,
        reason=(
            f"Attempt {task.retry_count + 1}/{policy.max_retries}: "
            f"memory {current_memory} -> {new_memory}"
        ),
        previous_memory=current_memory,
        retry_task=task.next_attempt(memory=new_memory),
    )


def escalate_memory(current: str, *, multiplier: float, fallback: str = "2Gi") -> str:
    """Return ``ceil(current * multiplier)`` in gibibytes, e.g. ``1Gi`` -> ``2Gi``.

    Smaller units are normalized to ``Gi`` before multiplying. Input that is not
    a binary memory quantity yields ``fallback``.
    """

    value_gi = parse_quantity_gi(current)
    if value_gi is None:
        return fallback
    try:
        factor = Decimal(str(multiplier))
    except InvalidOperation:
        return fallback
    return f"{math.ceil(value_gi * factor)}Gi"


def parse_quantity_gi(quantity: str | None) -> Decimal | None:
    """Parse a quantity such as ``512Mi`` into gibibytes; ``None`` if unparseable."""

    if quantity is None:
        return None
    match = _QUANTITY_PATTERN.match(quantity)
    if match is None:
        return None
    return Decimal(match.group("value")) * _UNIT_TO_GI[match.group("unit") or ""]
