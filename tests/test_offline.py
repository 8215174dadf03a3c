import asyncio

import httpx
import pytest

from conftest import ScriptedProvider, build_orchestrator, descriptor

from lexiroute.modules.api.models import Operation, ProviderKind
from lexiroute.modules.availability import AvailabilityCache
from lexiroute.modules.offline import ConnectionQuality, OfflineModeManager

ALL_OPS = set(Operation)


def manager_for(providers, cache=None, **kwargs):
    orchestrator = build_orchestrator(providers, cache=cache or AvailabilityCache())
    return OfflineModeManager(orchestrator, **kwargs)


# ============================================================================
# Capabilities
# ============================================================================

@pytest.mark.asyncio
async def test_capabilities_probe_unknown_pairs():
    a = ScriptedProvider(descriptor("a", operations=[Operation.SUMMARIZE]), ["x"])
    b = ScriptedProvider(descriptor("b", operations=[Operation.TRANSLATE]), ["x"], probe_result=False)
    manager = manager_for([a, b])

    capabilities = await manager.get_capabilities()

    assert capabilities == {Operation.SUMMARIZE}
    assert a.probe_calls == 1
    assert b.probe_calls == 1


@pytest.mark.asyncio
async def test_concurrent_capability_queries_probe_once():
    a = ScriptedProvider(descriptor("a", operations=[Operation.SUMMARIZE]), ["x"])
    manager = manager_for([a])

    results = await asyncio.gather(*(manager.get_capabilities() for _ in range(10)))

    assert all(r == {Operation.SUMMARIZE} for r in results)
    assert a.probe_calls == 1
    assert manager.cache.probe_count == 1


@pytest.mark.asyncio
async def test_capabilities_use_cached_entries(clock):
    cache = AvailabilityCache(clock=clock)
    a = ScriptedProvider(descriptor("a", operations=[Operation.SUMMARIZE]), ["x"])
    manager = manager_for([a], cache=cache)
    cache.record("a", Operation.SUMMARIZE, False)

    assert await manager.get_capabilities() == set()
    assert a.probe_calls == 0

    # Expired entries are probed again
    clock.advance(61)
    assert await manager.get_capabilities() == {Operation.SUMMARIZE}
    assert a.probe_calls == 1


@pytest.mark.asyncio
async def test_capabilities_never_call_providers():
    a = ScriptedProvider(descriptor("a"), ["x"])
    manager = manager_for([a])

    assert await manager.get_capabilities() == ALL_OPS
    assert a.call_count == 0


# ============================================================================
# Offline signal
# ============================================================================

def test_offline_when_every_remote_provider_is_unavailable():
    local = ScriptedProvider(descriptor("local", operations=[Operation.SUMMARIZE]), ["x"])
    remote = ScriptedProvider(
        descriptor("remote", kind=ProviderKind.REMOTE_API, operations=[Operation.TRANSLATE]), ["x"]
    )
    manager = manager_for([local, remote])

    assert manager.is_offline() is False

    manager.cache.record("remote", Operation.TRANSLATE, False)

    assert manager.is_offline() is True
    assert manager.connection_quality() == ConnectionQuality.OFFLINE
    assert manager.degraded_mode_message() == "Offline mode: Only on-device features are available."


def test_on_device_only_setup_is_never_offline():
    manager = manager_for([ScriptedProvider(descriptor("local"), ["x"])])

    assert manager.is_offline() is False
    assert manager.degraded_mode_message() is None


def test_degraded_message_lists_unavailable_providers():
    a = ScriptedProvider(descriptor("a"), ["x"])
    b = ScriptedProvider(descriptor("b", kind=ProviderKind.REMOTE_API), ["x"])
    manager = manager_for([a, b])
    manager.cache.record("a", Operation.SUMMARIZE, False)

    assert manager.unavailable_providers() == ["a"]
    assert manager.degraded_mode_message() == (
        "Some providers are temporarily unavailable: a. Using fallback options."
    )
    assert manager.get_status()["unavailable_providers"] == ["a"]


# ============================================================================
# Reachability
# ============================================================================

def reachability_manager(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return manager_for(
        [ScriptedProvider(descriptor("local"), ["x"])],
        reachability_url="https://status.example.test/ping",
        client=client,
    )


@pytest.mark.asyncio
async def test_reachability_online():
    manager = reachability_manager(lambda request: httpx.Response(204))

    assert await manager.refresh_reachability() is True
    assert manager.is_offline() is False
    assert manager.connection_quality() == ConnectionQuality.GOOD


@pytest.mark.asyncio
async def test_reachability_failure_goes_offline_and_notifies():
    state = {"up": True}

    def handler(request):
        if not state["up"]:
            raise httpx.ConnectError("no route", request=request)
        return httpx.Response(200)

    manager = reachability_manager(handler)
    events = []
    manager.on_status_change(events.append)

    await manager.refresh_reachability()
    state["up"] = False
    assert await manager.refresh_reachability() is False

    assert manager.is_offline() is True
    assert manager.connection_quality() == ConnectionQuality.OFFLINE
    assert events == [False]

    state["up"] = True
    manager.off_status_change(events.append)
    await manager.refresh_reachability()
    assert events == [False]


@pytest.mark.asyncio
async def test_slow_reachability_is_poor():
    manager = reachability_manager(lambda request: httpx.Response(200))
    manager.poor_latency = -1

    await manager.refresh_reachability()

    assert manager.connection_quality() == ConnectionQuality.POOR


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_notification():
    manager = reachability_manager(lambda request: httpx.Response(503))
    events = []

    def broken(online):
        raise RuntimeError("listener bug")

    manager.on_status_change(broken)
    manager.on_status_change(events.append)

    await manager.refresh_reachability()

    assert events == [False]


@pytest.mark.asyncio
async def test_refresh_without_url_uses_derived_view():
    manager = manager_for([ScriptedProvider(descriptor("local"), ["x"])])

    assert await manager.refresh_reachability() is True
