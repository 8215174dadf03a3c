"""
Offline mode manager.

A read-mostly view over the AvailabilityCache for callers that want to adapt
what they offer without attempting a call. It owns no availability state of
its own: capabilities are derived from the cache, and unknown pairs are
probed lazily through the cache's coalescing probe.

An optional HTTP reachability check adds a coarse network signal
(online, connection quality) on top.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from lexiroute.modules.api.models import Operation, ProviderKind
from lexiroute.modules.availability import Availability
from lexiroute.modules.orchestrator import ProviderOrchestrator

logger = logging.getLogger("lexiroute.offline")

StatusListener = Callable[[bool], Any]


class ConnectionQuality(str, Enum):
    GOOD = "good"
    POOR = "poor"
    OFFLINE = "offline"


class OfflineModeManager:
    """Derived availability view plus a best-effort reachability signal."""

    # Round trips slower than this count as a poor connection
    POOR_LATENCY = 1.0

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        reachability_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        reachability_timeout: float = 5.0,
        poor_latency: float = POOR_LATENCY,
    ):
        """
        Initialize offline mode manager.

        Args:
            orchestrator: Source of provider descriptors, router and cache
            reachability_url: URL checked by refresh_reachability() (None: derive only)
            client: Optional httpx client for the reachability check
            reachability_timeout: Seconds allowed for the reachability check
            poor_latency: Latency in seconds above which the connection is poor
        """
        self.orchestrator = orchestrator
        self.cache = orchestrator.cache
        self.router = orchestrator.router
        self.reachability_url = reachability_url
        self.reachability_timeout = reachability_timeout
        self.poor_latency = poor_latency

        self._owns_client = client is None
        self._client = client
        self._online: Optional[bool] = None
        self._quality = ConnectionQuality.GOOD
        self._listeners: List[StatusListener] = []

    # ==================== Derived view ====================

    def _remote_providers(self):
        return [d for d in self.orchestrator.providers if d.kind != ProviderKind.ON_DEVICE]

    def is_offline(self) -> bool:
        """
        Best-effort offline signal.

        Uses the last reachability check when there is one. Otherwise the
        system counts as offline when every non on-device provider is known
        unavailable for every operation it declares.
        """
        if self._online is not None:
            return not self._online

        remote = self._remote_providers()
        if not remote:
            return False
        return all(
            self.cache.is_known_unavailable(d.id, op) for d in remote for op in d.operations
        )

    async def get_capabilities(self) -> Set[Operation]:
        """
        Operations with at least one currently available provider.

        Pairs without a live cache entry are probed first; concurrent callers
        share the same probe for each pair.
        """
        pairs = [(d, op) for d in self.orchestrator.providers for op in d.operations]

        unknown = [
            (d, op) for d, op in pairs if self.cache.status(d.id, op) == Availability.UNKNOWN
        ]
        if unknown:
            logger.debug(f"Probing {len(unknown)} unknown provider/operation pairs")
            await asyncio.gather(
                *(
                    self.cache.probe(d.id, op, lambda d=d, op=op: self.router.probe(d, op))
                    for d, op in unknown
                )
            )

        return {op for d, op in pairs if self.cache.status(d.id, op) == Availability.AVAILABLE}

    def unavailable_providers(self) -> List[str]:
        """Provider ids with at least one live negative entry."""
        return sorted({entry.provider_id for entry in self.cache.snapshot() if not entry.available})

    # ==================== Reachability ====================

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.reachability_timeout)
        return self._client

    async def refresh_reachability(self) -> bool:
        """
        Check network reachability and update connection quality.

        Returns:
            True when online. Without a reachability URL the derived view is used.
        """
        if not self.reachability_url:
            return not self.is_offline()

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            response = await self._get_client().get(self.reachability_url)
            online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.info(f"Reachability check failed: {e}")
            online = False
        latency = loop.time() - started

        if not online:
            quality = ConnectionQuality.OFFLINE
        elif latency > self.poor_latency:
            quality = ConnectionQuality.POOR
        else:
            quality = ConnectionQuality.GOOD

        self._set_status(online, quality)
        return online

    def _set_status(self, online: bool, quality: ConnectionQuality) -> None:
        changed = self._online is not None and self._online != online
        first = self._online is None
        self._online = online
        self._quality = quality

        if changed or (first and not online):
            logger.info(f"Network: {'Online' if online else 'Offline'} ({quality.value})")
            self._notify(online)

    def connection_quality(self) -> ConnectionQuality:
        if self.is_offline():
            return ConnectionQuality.OFFLINE
        return self._quality

    def get_status(self) -> Dict[str, Any]:
        """Diagnostic snapshot."""
        return {
            "online": not self.is_offline(),
            "quality": self.connection_quality().value,
            "reachability_checked": self._online is not None,
            "unavailable_providers": self.unavailable_providers(),
        }

    # ==================== Listeners ====================

    def on_status_change(self, callback: StatusListener) -> None:
        self._listeners.append(callback)

    def off_status_change(self, callback: StatusListener) -> None:
        self._listeners = [cb for cb in self._listeners if cb != callback]

    def _notify(self, online: bool) -> None:
        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception:
                logger.exception("Network status callback error")

    # ==================== Degradation ====================

    def degraded_mode_message(self, unavailable: Optional[List[str]] = None) -> Optional[str]:
        """
        Human-readable summary of reduced service, or None when nothing is degraded.

        Args:
            unavailable: Provider ids to report (default: from the cache)
        """
        if self.is_offline():
            return "Offline mode: Only on-device features are available."

        unavailable = self.unavailable_providers() if unavailable is None else list(unavailable)
        if not unavailable:
            return None
        return (
            f"Some providers are temporarily unavailable: {', '.join(unavailable)}. "
            f"Using fallback options."
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
