"""Runtime configuration for the generator node."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from syft_generator.orchestrator.retry_policy import RetryPolicy, parse_quantity_gi

ENV_PREFIX = "SYFT_GENERATOR_"
SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


@dataclass(slots=True)
class GeneratorSettings:
    """Admission and OOM retry settings."""

    generator_name: str = "syft-generator"
    max_concurrent: int = 20
    max_oom_retries: int = 3
    memory_multiplier: float = 1.5
    default_memory: str = "1Gi"
    fallback_memory: str = "2Gi"
    poll_interval_seconds: float = 10.0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_oom_retries,
            multiplier=self.memory_multiplier,
            default_memory=self.default_memory,
            fallback_memory=self.fallback_memory,
        )


@dataclass(slots=True)
class TektonSettings:
    """Kubernetes API and TaskRun settings."""

    api_url: str = "https://kubernetes.default.svc"
    namespace: str = "default"
    token_path: str = f"{SERVICE_ACCOUNT_DIR}/token"
    ca_cert_path: str = f"{SERVICE_ACCOUNT_DIR}/ca.crt"
    verify_tls: bool = True
    task_name: str = "generator-syft"
    service_account: str = "sbomer-sa"
    storage_url: str = ""
    step_name: str = "generate"
    request_timeout_seconds: float = 30.0
    reconcile_interval_seconds: float = 5.0


@dataclass(slots=True)
class EventSettings:
    """Event gateway settings for status and failure notifications."""

    events_url: str = "http://localhost:8082"
    status_topic: str = "generation-update"
    failure_topic: str = "sbomer.errors"
    request_timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    generator: GeneratorSettings = field(default_factory=GeneratorSettings)
    tekton: TektonSettings = field(default_factory=TektonSettings)
    events: EventSettings = field(default_factory=EventSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``SYFT_GENERATOR_*`` environment variables."""

        return cls(
            generator=GeneratorSettings(
                generator_name=_env("GENERATOR_NAME", "syft-generator"),
                max_concurrent=int(_env("MAX_CONCURRENT", "20")),
                max_oom_retries=int(_env("OOM_RETRIES", "3")),
                memory_multiplier=float(_env("MEMORY_MULTIPLIER", "1.5")),
                default_memory=_env("DEFAULT_MEMORY", "1Gi"),
                fallback_memory=_env("FALLBACK_MEMORY", "2Gi"),
                poll_interval_seconds=float(_env("POLL_INTERVAL_SECONDS", "10")),
            ),
            tekton=TektonSettings(
                api_url=_env("KUBERNETES_API_URL", "https://kubernetes.default.svc"),
                namespace=_env("NAMESPACE", _service_account_namespace()),
                token_path=_env("KUBERNETES_TOKEN_PATH", f"{SERVICE_ACCOUNT_DIR}/token"),
                ca_cert_path=_env("KUBERNETES_CA_CERT_PATH", f"{SERVICE_ACCOUNT_DIR}/ca.crt"),
                verify_tls=_env_bool(f"{ENV_PREFIX}KUBERNETES_VERIFY_TLS", default=True),
                task_name=_env("TASK_NAME", "generator-syft"),
                service_account=_env("SERVICE_ACCOUNT", "sbomer-sa"),
                storage_url=_env("STORAGE_URL", ""),
                step_name=_env("STEP_NAME", "generate"),
                request_timeout_seconds=float(_env("KUBERNETES_TIMEOUT_SECONDS", "30")),
                reconcile_interval_seconds=float(_env("RECONCILE_INTERVAL_SECONDS", "5")),
            ),
            events=EventSettings(
                events_url=_env("EVENTS_URL", "http://localhost:8082"),
                status_topic=_env("STATUS_TOPIC", "generation-update"),
                failure_topic=_env("FAILURE_TOPIC", "sbomer.errors"),
                request_timeout_seconds=float(_env("EVENTS_TIMEOUT_SECONDS", "10")),
            ),
        )

    def validate(self) -> None:
        """Raise ``ValueError`` describing the first invalid setting."""

        generator = self.generator
        if generator.max_concurrent <= 0:
            raise ValueError(f"{ENV_PREFIX}MAX_CONCURRENT must be > 0.")
        if generator.max_oom_retries < 0:
            raise ValueError(f"{ENV_PREFIX}OOM_RETRIES must be >= 0.")
        if generator.memory_multiplier <= 1.0:
            raise ValueError(f"{ENV_PREFIX}MEMORY_MULTIPLIER must be > 1.0.")
        for name, value in (
            ("DEFAULT_MEMORY", generator.default_memory),
            ("FALLBACK_MEMORY", generator.fallback_memory),
        ):
            if parse_quantity_gi(value) is None:
                raise ValueError(
                    f"Invalid {ENV_PREFIX}{name}: {value!r}. "
                    "Expected a memory quantity such as '512Mi' or '1Gi'.",
                )
        if generator.poll_interval_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}POLL_INTERVAL_SECONDS must be > 0.")
        if self.tekton.reconcile_interval_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}RECONCILE_INTERVAL_SECONDS must be > 0.")
        if not self.tekton.namespace:
            raise ValueError(f"{ENV_PREFIX}NAMESPACE must not be empty.")
        _validate_http_url(f"{ENV_PREFIX}KUBERNETES_API_URL", self.tekton.api_url)
        _validate_http_url(f"{ENV_PREFIX}EVENTS_URL", self.events.events_url)


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _service_account_namespace() -> str:
    try:
        with open(f"{SERVICE_ACCOUNT_DIR}/namespace", encoding="utf-8") as handle:
            return handle.read().strip() or "default"
    except OSError:
        return "default"


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
