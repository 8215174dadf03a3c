"""Configuration provider following Black Box Design principles."""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

import yaml
from pydantic import ValidationError

from lexiroute.modules.api.models import ProviderDescriptor
from lexiroute.modules.errors import DEFAULT_RETRYABLE_KEYWORDS


@dataclass
class RetryConfig:
    """Retry configuration."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: bool = True
    retryable_keywords: Tuple[str, ...] = DEFAULT_RETRYABLE_KEYWORDS


@dataclass
class AvailabilityConfig:
    """Availability cache configuration."""
    ttl: float = 60.0
    unavailable_ttl: float = 60.0


@dataclass
class RelayConfig:
    """Relay configuration."""
    backend: str = "local"
    context: str = "offscreen"
    max_pending: int = 5
    response_ttl: int = 60
    probe_timeout: float = 3.0

    @property
    def uses_redis(self) -> bool:
        """Check if relay traffic goes through Redis."""
        return self.backend == "redis"


@dataclass
class OrchestratorConfig:
    """Orchestrator configuration."""
    attempt_timeout: float = 15.0
    default_deadline_ms: int = 30000
    reachability_url: Optional[str] = None
    providers: List[ProviderDescriptor] = field(default_factory=list)


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration."""
        ...

    def get_availability_config(self) -> AvailabilityConfig:
        """Get availability cache configuration."""
        ...

    def get_relay_config(self) -> RelayConfig:
        """Get relay configuration."""
        ...

    def get_orchestrator_config(self) -> OrchestratorConfig:
        """Get orchestrator configuration."""
        ...


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration from environment variables."""
        keywords = os.getenv("LEXIROUTE_RETRYABLE_KEYWORDS")
        return RetryConfig(
            max_attempts=int(os.getenv("LEXIROUTE_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("LEXIROUTE_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("LEXIROUTE_MAX_DELAY", "10.0")),
            jitter=_env_bool("LEXIROUTE_JITTER", "true"),
            retryable_keywords=(
                tuple(k.strip() for k in keywords.split(",") if k.strip())
                if keywords
                else DEFAULT_RETRYABLE_KEYWORDS
            ),
        )

    def get_availability_config(self) -> AvailabilityConfig:
        """Get availability cache configuration from environment variables."""
        ttl = float(os.getenv("LEXIROUTE_AVAILABILITY_TTL", "60"))
        return AvailabilityConfig(
            ttl=ttl,
            unavailable_ttl=float(os.getenv("LEXIROUTE_UNAVAILABLE_TTL", str(ttl))),
        )

    def get_relay_config(self) -> RelayConfig:
        """Get relay configuration from environment variables."""
        backend = os.getenv("LEXIROUTE_RELAY_BACKEND", "local").lower()
        if backend not in ("local", "redis"):
            raise ValueError(f"LEXIROUTE_RELAY_BACKEND must be 'local' or 'redis', got '{backend}'")

        return RelayConfig(
            backend=backend,
            context=os.getenv("LEXIROUTE_RELAY_CONTEXT", "offscreen"),
            max_pending=int(os.getenv("LEXIROUTE_RELAY_MAX_PENDING", "5")),
            response_ttl=int(os.getenv("LEXIROUTE_RELAY_RESPONSE_TTL", "60")),
            probe_timeout=float(os.getenv("LEXIROUTE_PROBE_TIMEOUT", "3.0")),
        )

    def get_orchestrator_config(self) -> OrchestratorConfig:
        """Get orchestrator configuration from environment variables."""
        providers_file = os.getenv("LEXIROUTE_PROVIDERS_FILE")
        return OrchestratorConfig(
            attempt_timeout=float(os.getenv("LEXIROUTE_ATTEMPT_TIMEOUT", "15.0")),
            default_deadline_ms=int(os.getenv("LEXIROUTE_DEFAULT_DEADLINE_MS", "30000")),
            reachability_url=os.getenv("LEXIROUTE_REACHABILITY_URL"),
            providers=load_provider_descriptors(providers_file) if providers_file else default_providers(),
        )


def default_providers() -> List[ProviderDescriptor]:
    """Ranking used when no providers file is configured: on-device only."""
    return [
        ProviderDescriptor(
            id="on_device",
            priority=10,
            operations=frozenset({"detect_language", "summarize", "analyze_vocabulary"}),
        )
    ]


def parse_provider_descriptors(data: Any) -> List[ProviderDescriptor]:
    """
    Build descriptors from parsed YAML.

    Accepts either a list of entries or a mapping with a ``providers`` list.

    Raises:
        ValueError: If the document or any entry is invalid
    """
    if isinstance(data, dict):
        data = data.get("providers")
    if not isinstance(data, list):
        raise ValueError("Provider configuration must be a list under 'providers'")

    descriptors: List[ProviderDescriptor] = []
    seen: Dict[str, int] = {}
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Provider entry {index} must be a mapping")
        try:
            descriptor = ProviderDescriptor.model_validate(entry)
        except ValidationError as e:
            raise ValueError(f"Invalid provider entry {index} ({entry.get('id')}): {e}") from e

        if descriptor.id in seen:
            raise ValueError(f"Duplicate provider id '{descriptor.id}' (entries {seen[descriptor.id]} and {index})")
        seen[descriptor.id] = index
        descriptors.append(descriptor)

    return descriptors


def load_provider_descriptors(path: str) -> List[ProviderDescriptor]:
    """Load the provider ranking from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return parse_provider_descriptors(data)
