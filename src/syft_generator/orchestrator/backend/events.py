"""Status and failure notifiers publishing events through an HTTP event gateway.

Events are posted as Kafka REST Proxy v2 JSON records to
``{events_url}/topics/{topic}``. Publishing failures are logged and not
raised: delivery is at-least-once from the producer's point of view and the
orchestrator must keep going when the gateway is unavailable.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Sequence
from dataclasses import asdict, is_dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx

from syft_generator.config import EventSettings
from syft_generator.orchestrator.models import FailureSpec, GenerationStatus

logger = logging.getLogger(__name__)

COMPONENT_NAME = "syft-generator"
EVENT_VERSION = "1.0"
KAFKA_JSON_CONTENT_TYPE = "application/vnd.kafka.json.v2+json"


class EventPublisher:
    """Posts JSON events to topics of the event gateway."""

    def __init__(
        self,
        *,
        events_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=events_url,
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={"Content-Type": KAFKA_JSON_CONTENT_TYPE},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: EventSettings) -> EventPublisher:
        return cls(events_url=settings.events_url, timeout_seconds=settings.request_timeout_seconds)

    def publish(self, topic: str, event: dict[str, Any], *, key: str | None = None) -> bool:
        """Publish one event; returns ``False`` when the gateway rejected it."""

        record: dict[str, Any] = {"value": event}
        if key is not None:
            record["key"] = key
        try:
            response = self._client.post(
                f"/topics/{topic}",
                content=json.dumps({"records": [record]}),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to publish %s event to %s: %s", _event_type(event), topic, exc)
            return False
        return True

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> EventPublisher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class EventStatusNotifier:
    """``StatusNotifier`` publishing ``GenerationUpdate`` events."""

    def __init__(self, *, publisher: EventPublisher, topic: str = "generation-update") -> None:
        self.publisher = publisher
        self.topic = topic

    def notify_status(
        self,
        generation_id: str,
        status: GenerationStatus,
        reason: str | None,
        result_urls: Sequence[str] | None,
    ) -> None:
        logger.info("Sending status update: id=%s status=%s", generation_id, status.value)
        event = {
            "context": _context(event_type="GenerationUpdate"),
            "data": {
                "generationId": generation_id,
                "status": status.value,
                "reason": reason,
                "resultCode": 1 if status == GenerationStatus.FAILED else 0,
                "baseSbomUrls": list(result_urls) if result_urls is not None else None,
            },
        }
        if self.publisher.publish(self.topic, event, key=generation_id):
            logger.debug("Status update sent for generation %s", generation_id)


class EventFailureNotifier:
    """``FailureNotifier`` publishing ``ProcessingFailed`` events."""

    def __init__(self, *, publisher: EventPublisher, topic: str = "sbomer.errors") -> None:
        self.publisher = publisher
        self.topic = topic

    def notify(
        self,
        failure: FailureSpec,
        correlation_id: str | None,
        source_event: object | None,
    ) -> None:
        event_type = type(source_event).__name__ if source_event is not None else "N/A"
        logger.error(
            "Publishing failure notification (source %s, correlationId %s): %s",
            event_type,
            correlation_id,
            failure.reason,
        )
        context = _context(event_type="ProcessingFailed")
        context["correlationId"] = correlation_id
        event = {
            "context": context,
            "errorData": {
                "failure": failure.to_payload(),
                "sourceEvent": encode_source_event(source_event),
            },
        }
        self.publisher.publish(self.topic, event, key=correlation_id)


def encode_source_event(source_event: object | None) -> str | None:
    """Serialize the originating event to base64 so any payload shape fits the schema."""

    if source_event is None:
        return None
    if isinstance(source_event, bytes | bytearray):
        raw = bytes(source_event)
    else:
        is_instance = is_dataclass(source_event) and not isinstance(source_event, type)
        value = asdict(source_event) if is_instance else source_event
        try:
            raw = json.dumps(value, default=str).encode("utf-8")
        except (TypeError, ValueError):
            logger.warning(
                "Source event of type %s is not serializable, sending null",
                type(source_event).__name__,
            )
            return None
    return base64.b64encode(raw).decode("ascii")


def _context(*, event_type: str) -> dict[str, Any]:
    return {
        "eventId": str(uuid4()),
        "type": event_type,
        "source": COMPONENT_NAME,
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "eventVersion": EVENT_VERSION,
    }


def _event_type(event: dict[str, Any]) -> str:
    context = event.get("context")
    if isinstance(context, dict):
        return str(context.get("type", "unknown"))
    return "unknown"
