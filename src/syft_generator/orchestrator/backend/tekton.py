"""Tekton execution backend talking to the Kubernetes API over HTTP."""

from __future__ import annotations

import logging
import ssl
from pathlib import Path
from typing import Any

import httpx

from syft_generator.config import TektonSettings
from syft_generator.orchestrator.models import GenerationTask
from syft_generator.orchestrator.reconciliation import (
    GENERATION_ID_LABEL,
    GENERATOR_TYPE_LABEL,
    GENERATOR_TYPE_VALUE,
    RETRY_COUNT_ANNOTATION,
    TRACEPARENT_ANNOTATION,
    observation_from_taskrun,
)

logger = logging.getLogger(__name__)

TEKTON_API_VERSION = "tekton.dev/v1beta1"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "sbomer-syft-generator"
WORKSPACE_NAME = "data"


class TaskRunFactory:
    """Builds the TaskRun document for one generation attempt.

    The generation-id and generator-type labels written here are what the
    capacity count and the reconciliation lookup select on.
    """

    def __init__(
        self,
        *,
        task_name: str = "generator-syft",
        service_account: str = "sbomer-sa",
        storage_url: str = "",
        step_name: str = "generate",
        generator_type: str = GENERATOR_TYPE_VALUE,
    ) -> None:
        self.task_name = task_name
        self.service_account = service_account
        self.storage_url = storage_url
        self.step_name = step_name
        self.generator_type = generator_type

    @classmethod
    def from_settings(cls, settings: TektonSettings) -> TaskRunFactory:
        return cls(
            task_name=settings.task_name,
            service_account=settings.service_account,
            storage_url=settings.storage_url,
            step_name=settings.step_name,
        )

    def create_task_run(self, task: GenerationTask) -> dict[str, Any]:
        generation_id = task.generation_id
        identifier = task.target_identifier
        if identifier is None:
            raise ValueError(f"Generation {generation_id} has no target identifier")

        params: list[dict[str, str]] = [
            {"name": "image", "value": identifier},
            {"name": "generation-id", "value": generation_id},
            {"name": "storage-service-url", "value": self.storage_url},
        ]
        if task.trace_parent is not None:
            params.append({"name": "trace-parent", "value": task.trace_parent})

        annotations = {RETRY_COUNT_ANNOTATION: str(task.retry_count)}
        if task.trace_parent is not None:
            annotations[TRACEPARENT_ANNOTATION] = task.trace_parent

        spec: dict[str, Any] = {
            "serviceAccountName": self.service_account,
            "params": params,
            "taskRef": {"name": self.task_name},
            "workspaces": [{"name": WORKSPACE_NAME, "emptyDir": {}}],
        }
        if task.memory_override is not None:
            # Request equals limit: no burst headroom.
            spec["stepOverrides"] = [
                {
                    "name": self.step_name,
                    "resources": {
                        "requests": {"memory": task.memory_override},
                        "limits": {"memory": task.memory_override},
                    },
                },
            ]

        return {
            "apiVersion": TEKTON_API_VERSION,
            "kind": "TaskRun",
            "metadata": {
                "generateName": f"syft-gen-{shorten_id(generation_id)}-",
                "labels": {
                    GENERATION_ID_LABEL: generation_id,
                    GENERATOR_TYPE_LABEL: self.generator_type,
                    MANAGED_BY_LABEL: MANAGED_BY_VALUE,
                },
                "annotations": annotations,
            },
            "spec": spec,
        }


def shorten_id(generation_id: str | None) -> str:
    """Shorten ids so generated names stay within the 63-char Kubernetes limit."""

    if not generation_id:
        return "unknown"
    return generation_id.lower()[:8]


class TektonClient:
    """Minimal TaskRun client for one namespace."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_url: str,
        namespace: str,
        token: str | None = None,
        verify: bool | ssl.SSLContext = True,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.namespace = namespace
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            verify=verify,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: TektonSettings) -> TektonClient:
        token = None
        token_path = Path(settings.token_path)
        if token_path.is_file():
            token = token_path.read_text("utf-8").strip()
        verify: bool | ssl.SSLContext = settings.verify_tls
        if settings.verify_tls and Path(settings.ca_cert_path).is_file():
            verify = ssl.create_default_context(cafile=settings.ca_cert_path)
        return cls(
            api_url=settings.api_url,
            namespace=settings.namespace,
            token=token,
            verify=verify,
            timeout_seconds=settings.request_timeout_seconds,
        )

    @property
    def taskruns_path(self) -> str:
        return f"/apis/{TEKTON_API_VERSION}/namespaces/{self.namespace}/taskruns"

    def create_taskrun(self, document: dict[str, Any]) -> dict[str, Any]:
        response = self._client.post(self.taskruns_path, json=document)
        response.raise_for_status()
        return response.json()

    def list_taskruns(self, label_selector: str) -> list[dict[str, Any]]:
        response = self._client.get(self.taskruns_path, params={"labelSelector": label_selector})
        response.raise_for_status()
        items = response.json().get("items")
        return [item for item in items or [] if isinstance(item, dict)]

    def delete_taskruns(self, label_selector: str) -> None:
        response = self._client.delete(self.taskruns_path, params={"labelSelector": label_selector})
        if response.status_code == httpx.codes.NOT_FOUND:
            return
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TektonClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class TektonGenerationExecutor:
    """``GenerationExecutor`` backed by Tekton TaskRuns."""

    def __init__(
        self,
        *,
        client: TektonClient,
        factory: TaskRunFactory,
        generator_type: str = GENERATOR_TYPE_VALUE,
    ) -> None:
        self.client = client
        self.factory = factory
        self.generator_type = generator_type

    def schedule_generation(self, task: GenerationTask) -> None:
        logger.info(
            "Scheduling TaskRun for generation %s (attempt %d, memory %s)",
            task.generation_id,
            task.retry_count,
            task.memory_override or "default",
        )
        created = self.client.create_taskrun(self.factory.create_task_run(task))
        logger.debug(
            "Created TaskRun %s",
            created.get("metadata", {}).get("name", "<unnamed>"),
        )

    def abort_generation(self, generation_id: str) -> None:
        logger.info("Aborting generation: %s", generation_id)
        self.client.delete_taskruns(_generation_selector(generation_id))

    def cleanup_generation(self, generation_id: str) -> None:
        logger.info("Cleaning up generation: %s", generation_id)
        self.client.delete_taskruns(_generation_selector(generation_id))

    def count_active_executions(self) -> int:
        taskruns = self.client.list_taskruns(f"{GENERATOR_TYPE_LABEL}={self.generator_type}")
        return sum(1 for item in taskruns if not observation_from_taskrun(item).is_terminal)


def _generation_selector(generation_id: str) -> str:
    return f"{GENERATION_ID_LABEL}={generation_id}"
