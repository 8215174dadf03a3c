"""
Offline Module - Black Box Interface

Purpose: Tell callers what works right now without attempting a call
Interface: OfflineModeManager.is_offline(), get_capabilities(), connection_quality()
Hidden: Probe scheduling, reachability checks
"""

from .offline import ConnectionQuality, OfflineModeManager

__all__ = ["ConnectionQuality", "OfflineModeManager"]
