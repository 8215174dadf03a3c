#!/usr/bin/env python3
"""
Lexiroute - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Wires them into a runtime (or runs the relay peer)

All business logic is in the modules, following black box principles.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from lexiroute.config.provider import ConfigProvider, EnvConfigProvider
from lexiroute.logging_config import setup_logging

# Import modules through their black box interfaces
from lexiroute.modules.availability import AvailabilityCache
from lexiroute.modules.config import get_config
from lexiroute.modules.offline import OfflineModeManager
from lexiroute.modules.orchestrator import ProviderOrchestrator
from lexiroute.modules.providers import build_local_providers, build_relay_providers
from lexiroute.modules.relay import (
    ExecutionContextRouter,
    LocalRelayChannel,
    RedisRelayChannel,
    RelayChannel,
    RelayPeer,
)
from lexiroute.modules.retry import RetryPolicy
from lexiroute.modules.timeout import TimeoutGuard

logger = logging.getLogger("lexiroute.main")


async def get_redis_client() -> redis.Redis:
    """Create Redis client from configuration."""
    config = get_config()

    return await redis.from_url(
        config.redis_url,
        password=config.get("redis_password"),  # Passed separately to avoid URL encoding issues
        encoding="utf-8",
        decode_responses=True,
    )


@dataclass
class Runtime:
    """Everything a caller needs, built once per process."""

    orchestrator: ProviderOrchestrator
    offline: OfflineModeManager
    router: ExecutionContextRouter
    cache: AvailabilityCache
    redis_client: Optional[redis.Redis] = None

    async def shutdown(self) -> None:
        logger.info("Shutting down Lexiroute runtime...")
        await self.offline.close()
        await self.router.close()
        if self.redis_client is not None:
            await self.redis_client.close()
        logger.info("Lexiroute runtime shutdown complete")


async def create_runtime(
    config_provider: Optional[ConfigProvider] = None,
    redis_client: Optional[redis.Redis] = None,
) -> Runtime:
    """
    Build the cache, retry policy, router, orchestrator and offline manager.

    Args:
        config_provider: Source of module settings (default: environment)
        redis_client: Client for the Redis relay backend (created when needed)
    """
    config_provider = config_provider or EnvConfigProvider()
    retry_config = config_provider.get_retry_config()
    availability_config = config_provider.get_availability_config()
    relay_config = config_provider.get_relay_config()
    orchestrator_config = config_provider.get_orchestrator_config()
    descriptors = orchestrator_config.providers

    cache = AvailabilityCache(default_ttl=availability_config.ttl)
    retry_policy = RetryPolicy(
        max_attempts=retry_config.max_attempts,
        base_delay=retry_config.base_delay,
        max_delay=retry_config.max_delay,
        jitter=retry_config.jitter,
        retryable_keywords=retry_config.retryable_keywords,
    )

    channel: Optional[RelayChannel]
    if relay_config.uses_redis:
        if redis_client is None:
            redis_client = await get_redis_client()
        channel = RedisRelayChannel(
            redis_client, context=relay_config.context, response_ttl=relay_config.response_ttl
        )
    else:
        # Peer context is created on first relay request
        channel = LocalRelayChannel(
            lambda: RelayPeer(build_relay_providers(descriptors), context=relay_config.context),
            max_pending=relay_config.max_pending,
        )

    router = ExecutionContextRouter(
        build_local_providers(descriptors),
        channel=channel,
        guard=TimeoutGuard(default_timeout=orchestrator_config.attempt_timeout),
        unreachable_window=availability_config.ttl,
        probe_timeout=relay_config.probe_timeout,
    )
    orchestrator = ProviderOrchestrator(
        descriptors,
        router,
        cache,
        retry_policy=retry_policy,
        unavailable_ttl=availability_config.unavailable_ttl,
        attempt_timeout=orchestrator_config.attempt_timeout,
        default_deadline_ms=orchestrator_config.default_deadline_ms,
    )
    offline = OfflineModeManager(orchestrator, reachability_url=orchestrator_config.reachability_url)

    logger.info(
        f"Lexiroute runtime ready: {len(descriptors)} providers, relay backend '{relay_config.backend}'"
    )
    return Runtime(
        orchestrator=orchestrator,
        offline=offline,
        router=router,
        cache=cache,
        redis_client=redis_client,
    )


async def run_relay_peer(config_provider: Optional[ConfigProvider] = None) -> None:
    """Serve relay providers from Redis until SIGINT or SIGTERM."""
    config_provider = config_provider or EnvConfigProvider()
    relay_config = config_provider.get_relay_config()
    descriptors = config_provider.get_orchestrator_config().providers

    providers = build_relay_providers(descriptors)
    if not providers:
        logger.warning("No relay providers configured; peer will answer every call as unsupported")

    peer = RelayPeer(providers, context=relay_config.context)
    redis_client = await get_redis_client()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"Starting relay peer '{relay_config.context}' with providers: {sorted(providers)}")
    try:
        await peer.serve_redis(redis_client, response_ttl=relay_config.response_ttl, stop_event=stop_event)
    finally:
        await peer.close()
        await redis_client.close()
        logger.info("Relay peer stopped")


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.get("log_level"), config.get("quiet_probes"))
    asyncio.run(run_relay_peer())
