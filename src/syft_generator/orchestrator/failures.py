"""Helpers that turn caught exceptions into failure descriptors."""

from __future__ import annotations

import logging
import traceback

from syft_generator.orchestrator.models import FailureSpec
from syft_generator.orchestrator.ports import FailureNotifier

logger = logging.getLogger(__name__)


def failure_from_exception(error: BaseException) -> FailureSpec:
    """Build a ``FailureSpec`` carrying the error message, type and stack trace."""

    stack_trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return FailureSpec(
        reason=str(error) or type(error).__name__,
        error_code=type(error).__name__,
        details={"stackTrace": stack_trace},
    )


def report_failure(
    notifier: FailureNotifier,
    error: BaseException,
    correlation_id: str | None,
    source_event: object | None = None,
) -> None:
    """Publish ``error`` on the failure channel; a notifier error is only logged."""

    try:
        notifier.notify(failure_from_exception(error), correlation_id, source_event)
    except Exception:
        logger.exception("Failed to publish failure notification for %s", correlation_id)
