"""
Shared pytest fixtures for Lexiroute tests.

This module provides common fixtures including:
- ScriptedProvider: provider double that replays a fixed script of outcomes
- Recording sleep for retry backoff without real delays
- Redis mocks for relay tests
- Orchestrator builder wiring router, cache and retry policy together
"""

import asyncio
import os
import sys
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lexiroute.modules.api.models import (
    ContextRequirement,
    Operation,
    ProviderDescriptor,
    ProviderKind,
)
from lexiroute.modules.availability import AvailabilityCache
from lexiroute.modules.orchestrator import ProviderOrchestrator
from lexiroute.modules.providers import Provider
from lexiroute.modules.relay import ExecutionContextRouter
from lexiroute.modules.retry import RetryPolicy
from lexiroute.modules.timeout import TimeoutGuard


# =============================================================================
# Provider Doubles
# =============================================================================

HANG = object()


class ScriptedProvider(Provider):
    """
    Provider that replays a script, one entry per call.

    Entries are returned as values, raised when they are exceptions, or
    block forever when they are HANG. The last entry repeats once the
    script runs out.

    Usage:
        provider = ScriptedProvider(descriptor("remote"), [TransientError("network"), "hola"])
    """

    kind = ProviderKind.ON_DEVICE

    def __init__(self, descriptor: ProviderDescriptor, script: Iterable[Any], probe_result: bool = True):
        super().__init__(descriptor)
        self.script: List[Any] = list(script)
        self.calls: List[Dict[str, Any]] = []
        self.probe_result = probe_result
        self.probe_calls = 0
        self.cancelled = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _invoke(self, operation: Operation, payload: Dict[str, Any]) -> Any:
        index = min(len(self.calls), len(self.script) - 1)
        self.calls.append({"operation": operation, "payload": payload})
        step = self.script[index]

        if step is HANG:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if isinstance(step, BaseException):
            raise step
        return step

    async def probe(self, operation: Operation) -> bool:
        self.probe_calls += 1
        # Let concurrent callers pile up on the same probe
        await asyncio.sleep(0.01)
        return self.probe_result


def descriptor(
    provider_id: str,
    priority: int = 100,
    operations: Iterable[Operation] = tuple(Operation),
    context: ContextRequirement = ContextRequirement.LOCAL,
    kind: ProviderKind = ProviderKind.ON_DEVICE,
    **options: Any,
) -> ProviderDescriptor:
    """Shorthand descriptor builder."""
    return ProviderDescriptor(
        id=provider_id,
        priority=priority,
        operations=frozenset(operations),
        context=context,
        kind=kind,
        options=options,
    )


# =============================================================================
# Timing Doubles
# =============================================================================

class RecordingSleep:
    """Awaitable sleep replacement that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# Redis Mocks
# =============================================================================

@pytest.fixture
def mock_redis():
    """Create a mock Redis client"""
    redis = AsyncMock()

    redis.lpush = AsyncMock()
    redis.brpop = AsyncMock(return_value=None)
    redis.setex = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock()
    redis.expire = AsyncMock()
    redis.exists = AsyncMock(return_value=0)
    redis.publish = AsyncMock()
    redis.ping = AsyncMock(return_value=True)

    return redis


# =============================================================================
# Orchestrator Wiring
# =============================================================================

def build_orchestrator(
    providers: Iterable[ScriptedProvider],
    *,
    cache: Optional[AvailabilityCache] = None,
    retry_policy: Optional[RetryPolicy] = None,
    sleep=None,
    **kwargs: Any,
) -> ProviderOrchestrator:
    """Wire scripted local providers into an orchestrator."""
    providers = list(providers)
    router = ExecutionContextRouter({p.id: p for p in providers}, guard=TimeoutGuard())
    return ProviderOrchestrator(
        [p.descriptor for p in providers],
        router,
        cache or AvailabilityCache(),
        retry_policy=retry_policy or RetryPolicy(jitter=False, sleep=sleep or RecordingSleep()),
        **kwargs,
    )
