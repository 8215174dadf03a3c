"""
Providers Module - Black Box Interface

Purpose: Interchangeable capability implementations
Interface: Provider.invoke(), Provider.probe(), build_provider()
Hidden: Heuristics, HTTP transport, status code mapping

Each provider kind declares its operations up front; nothing is probed
reflectively at call time.
"""

from .base import Provider
from .factory import build_local_providers, build_provider, build_relay_providers
from .on_device import OnDeviceProvider
from .remote import RemoteApiProvider

__all__ = [
    "OnDeviceProvider",
    "Provider",
    "RemoteApiProvider",
    "build_local_providers",
    "build_provider",
    "build_relay_providers",
]
