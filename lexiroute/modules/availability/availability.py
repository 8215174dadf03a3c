"""
Availability Module for Lexiroute.

This module keeps a short-lived memo of whether a provider could serve an
operation the last time anyone asked. The orchestrator uses it to reorder
candidates; the offline manager uses it to derive what works right now.

Design Principles:
- Lazy: entries are created on first probe or first recorded outcome
- TTL-based: entries expire and revert to unknown, never to a permanent blacklist
- Coalesced: concurrent probes for the same key run once
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("lexiroute.availability")

CacheKey = Tuple[str, str]


class Availability(str, Enum):
    """Tri-state view of a cache key."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class AvailabilityEntry:
    """Recorded outcome for a (provider, operation) pair."""

    provider_id: str
    operation: str
    available: bool
    checked_at: float
    ttl: float
    checked_at_iso: Optional[str] = None

    @property
    def expires_at(self) -> float:
        return self.checked_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class AvailabilityCache:
    """
    Process-wide availability memo, constructed once and passed by reference.

    Reads never block. Writes are last-write-wins per key.
    """

    # Default TTL: 60 seconds
    DEFAULT_TTL = 60.0

    def __init__(self, default_ttl: float = DEFAULT_TTL, clock: Optional[Callable[[], float]] = None):
        """
        Initialize availability cache.

        Args:
            default_ttl: Lifetime of an entry in seconds
            clock: Monotonic clock, injectable for tests
        """
        self.default_ttl = default_ttl
        self._clock = clock or time.monotonic
        self._entries: Dict[CacheKey, AvailabilityEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self.probe_count = 0

    @staticmethod
    def _key(provider_id: str, operation: Any) -> CacheKey:
        return (provider_id, getattr(operation, "value", operation))

    def get(self, provider_id: str, operation: Any) -> Optional[AvailabilityEntry]:
        """
        Return the live entry for a key, or None when unknown or expired.

        Args:
            provider_id: Provider identifier
            operation: Operation enum or its string value
        """
        key = self._key(provider_id, operation)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            # Expired entries revert to unknown
            self._entries.pop(key, None)
            logger.debug(f"Availability entry expired for {key[0]}/{key[1]}")
            return None

        return entry

    def status(self, provider_id: str, operation: Any) -> Availability:
        """Tri-state lookup."""
        entry = self.get(provider_id, operation)
        if entry is None:
            return Availability.UNKNOWN
        return Availability.AVAILABLE if entry.available else Availability.UNAVAILABLE

    def is_known_unavailable(self, provider_id: str, operation: Any) -> bool:
        return self.status(provider_id, operation) == Availability.UNAVAILABLE

    def record(
        self,
        provider_id: str,
        operation: Any,
        available: bool,
        ttl: Optional[float] = None,
    ) -> AvailabilityEntry:
        """
        Store an outcome for a key, replacing any previous entry.

        Args:
            provider_id: Provider identifier
            operation: Operation enum or its string value
            available: Whether the provider served the operation
            ttl: Entry lifetime in seconds (default: cache default)

        Returns:
            The stored entry
        """
        key = self._key(provider_id, operation)
        entry = AvailabilityEntry(
            provider_id=key[0],
            operation=key[1],
            available=available,
            checked_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
            checked_at_iso=datetime.now(timezone.utc).isoformat(),
        )
        previous = self._entries.get(key)
        self._entries[key] = entry

        if previous is None or previous.available != available:
            logger.info(
                f"Availability for {key[0]}/{key[1]} -> "
                f"{'available' if available else 'unavailable'} (TTL: {entry.ttl}s)"
            )
        return entry

    async def probe(
        self,
        provider_id: str,
        operation: Any,
        probe_fn: Callable[[], Awaitable[bool]],
        ttl: Optional[float] = None,
    ) -> AvailabilityEntry:
        """
        Run probe_fn for a key, coalescing concurrent callers.

        Only one probe per key runs at a time; everyone else awaits its
        outcome. Cancelling one waiter does not cancel the shared probe.
        A probe that raises is recorded as unavailable.

        Returns:
            The entry recorded from the probe outcome
        """
        key = self._key(provider_id, operation)
        task = self._inflight.get(key)

        if task is None:
            task = asyncio.ensure_future(self._run_probe(key, probe_fn, ttl))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        else:
            logger.debug(f"Joining in-flight probe for {key[0]}/{key[1]}")

        return await asyncio.shield(task)

    async def _run_probe(
        self,
        key: CacheKey,
        probe_fn: Callable[[], Awaitable[bool]],
        ttl: Optional[float],
    ) -> AvailabilityEntry:
        self.probe_count += 1
        try:
            available = bool(await probe_fn())
        except Exception as e:
            logger.warning(f"Probe failed for {key[0]}/{key[1]}: {e}")
            available = False
        return self.record(key[0], key[1], available, ttl)

    def is_probing(self, provider_id: str, operation: Any) -> bool:
        return self._key(provider_id, operation) in self._inflight

    def invalidate(self, provider_id: Optional[str] = None, operation: Any = None) -> int:
        """
        Drop entries matching the filters (all entries when both are None).

        Returns:
            Number of entries removed
        """
        op_value = getattr(operation, "value", operation)
        doomed = [
            key
            for key in self._entries
            if (provider_id is None or key[0] == provider_id)
            and (op_value is None or key[1] == op_value)
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def snapshot(self) -> List[AvailabilityEntry]:
        """Live entries, expired ones excluded."""
        now = self._clock()
        return [entry for entry in self._entries.values() if not entry.is_expired(now)]
