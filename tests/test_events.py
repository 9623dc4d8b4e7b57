from __future__ import annotations

import base64
import json
from dataclasses import dataclass

import allure
import httpx

from syft_generator.orchestrator.backend.events import (
    KAFKA_JSON_CONTENT_TYPE,
    EventFailureNotifier,
    EventPublisher,
    EventStatusNotifier,
    encode_source_event,
)
from syft_generator.orchestrator.models import FailureSpec, GenerationStatus

pytestmark = [
    allure.epic("Generation Runtime"),
    allure.feature("Event Notifications"),
]


class FakeGateway:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"offsets": [{"partition": 0, "offset": 1}]})

    def records(self) -> list[dict]:
        return [json.loads(request.content)["records"][0] for request in self.requests]


def _publisher(gateway: FakeGateway) -> EventPublisher:
    return EventPublisher(events_url="http://gateway:8082", transport=httpx.MockTransport(gateway))


def test_status_update_is_published_as_generation_update() -> None:
    gateway = FakeGateway()
    notifier = EventStatusNotifier(publisher=_publisher(gateway), topic="generation-update")

    notifier.notify_status("G1", GenerationStatus.FINISHED, "TaskRun Succeeded", ["url1", "url2"])

    request = gateway.requests[0]
    assert request.url.path == "/topics/generation-update"
    assert request.headers["Content-Type"] == KAFKA_JSON_CONTENT_TYPE
    record = gateway.records()[0]
    assert record["key"] == "G1"
    event = record["value"]
    assert event["context"]["type"] == "GenerationUpdate"
    assert event["context"]["source"] == "syft-generator"
    assert event["data"] == {
        "generationId": "G1",
        "status": "FINISHED",
        "reason": "TaskRun Succeeded",
        "resultCode": 0,
        "baseSbomUrls": ["url1", "url2"],
    }


def test_failed_status_carries_non_zero_result_code() -> None:
    gateway = FakeGateway()
    notifier = EventStatusNotifier(publisher=_publisher(gateway))

    notifier.notify_status("G1", GenerationStatus.FAILED, "TaskRun Failed", None)

    data = gateway.records()[0]["value"]["data"]
    assert data["resultCode"] == 1
    assert data["baseSbomUrls"] is None


def test_failure_notification_embeds_encoded_source_event() -> None:
    gateway = FakeGateway()
    notifier = EventFailureNotifier(publisher=_publisher(gateway), topic="sbomer.errors")
    source_event = {"context": {"eventId": "e1"}}

    notifier.notify(
        FailureSpec(reason="boom", error_code="RuntimeError", details={"stackTrace": "..."}),
        "corr-1",
        source_event,
    )

    assert gateway.requests[0].url.path == "/topics/sbomer.errors"
    event = gateway.records()[0]["value"]
    assert event["context"]["type"] == "ProcessingFailed"
    assert event["context"]["correlationId"] == "corr-1"
    assert event["errorData"]["failure"] == {
        "reason": "boom",
        "errorCode": "RuntimeError",
        "details": {"stackTrace": "..."},
    }
    decoded = json.loads(base64.b64decode(event["errorData"]["sourceEvent"]))
    assert decoded == source_event


def test_publish_returns_false_when_gateway_rejects() -> None:
    gateway = FakeGateway(status_code=500)

    assert not _publisher(gateway).publish("generation-update", {"context": {"type": "X"}})


def test_publish_swallows_transport_errors() -> None:
    def _unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    publisher = EventPublisher(
        events_url="http://gateway:8082",
        transport=httpx.MockTransport(_unreachable),
    )
    notifier = EventStatusNotifier(publisher=publisher)

    notifier.notify_status("G1", GenerationStatus.GENERATING, None, None)


def test_encode_source_event_variants() -> None:
    @dataclass
    class _Event:
        generation_id: str

    assert encode_source_event(None) is None
    assert base64.b64decode(encode_source_event(b"raw")) == b"raw"
    assert json.loads(base64.b64decode(encode_source_event(_Event("G1")))) == {"generation_id": "G1"}
    assert json.loads(base64.b64decode(encode_source_event("text"))) == "text"
