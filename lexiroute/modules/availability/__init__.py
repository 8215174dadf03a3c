"""
Availability Module - Black Box Interface

Purpose: Remember recent per-(provider, operation) outcomes
Interface: get(), record(), probe(), status(), invalidate()
Hidden: TTL bookkeeping, probe coalescing, clock source

Provides graceful degradation - an unknown entry never blocks routing.
"""

from .availability import Availability, AvailabilityCache, AvailabilityEntry

__all__ = ["Availability", "AvailabilityCache", "AvailabilityEntry"]
