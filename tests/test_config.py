import logging
import logging.config

import pytest

from lexiroute.config.provider import (
    EnvConfigProvider,
    load_provider_descriptors,
    parse_provider_descriptors,
)
from lexiroute.logging_config import ProbeChatterFilter, get_logging_config
from lexiroute.modules.api.models import ContextRequirement, Operation, ProviderKind
from lexiroute.modules.config import ConfigModule, get_config, reset_config

PROVIDERS_YAML = """
providers:
  - id: on_device
    priority: 1
    operations: [detect_language, summarize]
  - id: remote
    priority: 2
    kind: remote_api
    operations: [detect_language, translate]
    options:
      base_url: https://api.example.test
      api_key_env: REMOTE_API_KEY
  - id: offscreen
    priority: 3
    kind: offscreen
    context: relay
    operations: [analyze_vocabulary]
    options:
      engine: on_device
"""


# ============================================================================
# Provider ranking
# ============================================================================

def test_load_provider_descriptors(tmp_path):
    path = tmp_path / "providers.yaml"
    path.write_text(PROVIDERS_YAML)

    descriptors = load_provider_descriptors(str(path))

    assert [d.id for d in descriptors] == ["on_device", "remote", "offscreen"]
    assert descriptors[1].kind == ProviderKind.REMOTE_API
    assert descriptors[1].options["base_url"] == "https://api.example.test"
    assert descriptors[2].context == ContextRequirement.RELAY
    assert descriptors[0].operations == frozenset({Operation.DETECT_LANGUAGE, Operation.SUMMARIZE})


def test_plain_list_accepted():
    descriptors = parse_provider_descriptors([{"id": "a", "operations": ["summarize"]}])

    assert descriptors[0].priority == 100


@pytest.mark.parametrize(
    "data",
    [
        None,
        {"providers": "nope"},
        ["not a mapping"],
        [{"id": "a", "operations": ["teleport"]}],
        [{"operations": ["summarize"]}],
        [{"id": "a", "operations": ["summarize"]}, {"id": "a", "operations": ["translate"]}],
    ],
)
def test_invalid_provider_config_rejected(data):
    with pytest.raises(ValueError):
        parse_provider_descriptors(data)


# ============================================================================
# Environment provider
# ============================================================================

def test_env_defaults(monkeypatch):
    for name in (
        "LEXIROUTE_MAX_ATTEMPTS",
        "LEXIROUTE_AVAILABILITY_TTL",
        "LEXIROUTE_UNAVAILABLE_TTL",
        "LEXIROUTE_RELAY_BACKEND",
        "LEXIROUTE_PROVIDERS_FILE",
        "LEXIROUTE_RETRYABLE_KEYWORDS",
    ):
        monkeypatch.delenv(name, raising=False)
    provider = EnvConfigProvider()

    retry = provider.get_retry_config()
    assert (retry.max_attempts, retry.base_delay, retry.max_delay) == (3, 1.0, 10.0)
    assert "rate_limit" in retry.retryable_keywords
    assert provider.get_availability_config().ttl == 60.0
    assert provider.get_relay_config().uses_redis is False

    orchestrator = provider.get_orchestrator_config()
    assert orchestrator.attempt_timeout == 15.0
    assert orchestrator.default_deadline_ms == 30000
    assert [d.id for d in orchestrator.providers] == ["on_device"]


def test_env_overrides(monkeypatch, tmp_path):
    path = tmp_path / "providers.yaml"
    path.write_text(PROVIDERS_YAML)
    monkeypatch.setenv("LEXIROUTE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("LEXIROUTE_RETRYABLE_KEYWORDS", "overloaded, busy")
    monkeypatch.setenv("LEXIROUTE_AVAILABILITY_TTL", "30")
    monkeypatch.setenv("LEXIROUTE_RELAY_BACKEND", "redis")
    monkeypatch.setenv("LEXIROUTE_PROVIDERS_FILE", str(path))
    provider = EnvConfigProvider()

    assert provider.get_retry_config().max_attempts == 5
    assert provider.get_retry_config().retryable_keywords == ("overloaded", "busy")
    assert provider.get_availability_config().unavailable_ttl == 30.0
    assert provider.get_relay_config().uses_redis is True
    assert len(provider.get_orchestrator_config().providers) == 3


def test_env_rejects_unknown_relay_backend(monkeypatch):
    monkeypatch.setenv("LEXIROUTE_RELAY_BACKEND", "carrier-pigeon")

    with pytest.raises(ValueError):
        EnvConfigProvider().get_relay_config()


# ============================================================================
# Config module
# ============================================================================

def test_config_module_contract(monkeypatch):
    monkeypatch.setenv("REDIS_HOST", "redis.local")
    monkeypatch.setenv("REDIS_PORT", "tcp://10.0.0.1:6380")
    monkeypatch.setenv("REDIS_DB", "2")
    monkeypatch.setenv("REDIS_PASSWORD", "pw")
    config = ConfigModule()

    schema = ConfigModule.get_config_schema()
    for key in schema["required"]:
        assert config.get(key) is not None
    assert config.get("redis_port") == 6380
    assert config.redis_url == "redis://redis.local:6380/2"
    assert config.get("redis_password") == "pw"


def test_config_missing_required_key(monkeypatch):
    monkeypatch.setattr(ConfigModule, "_load_from_env", lambda self: {"redis_host": "x"})

    with pytest.raises(ValueError) as exc_info:
        ConfigModule()
    assert "relay_backend" in str(exc_info.value)


def test_get_config_singleton():
    reset_config()
    assert get_config() is get_config()
    reset_config()


# ============================================================================
# Logging
# ============================================================================

def test_logging_config_applies():
    config = get_logging_config(level="debug", quiet_probes=True)

    assert config["loggers"]["lexiroute"]["level"] == "DEBUG"
    assert config["handlers"]["default"]["filters"] == ["probe_chatter_filter"]
    logging.config.dictConfig(config)


def test_probe_chatter_filter():
    probe_filter = ProbeChatterFilter()

    def record(name, level):
        return logging.LogRecord(name, level, __file__, 1, "msg", None, None)

    assert probe_filter.filter(record("lexiroute.availability", logging.INFO)) is False
    assert probe_filter.filter(record("lexiroute.availability", logging.WARNING)) is True
    assert probe_filter.filter(record("lexiroute.orchestrator", logging.INFO)) is True
