"""
Provider factory for the closed set of provider kinds.
"""

from typing import Dict, Iterable

from lexiroute.modules.api.models import ContextRequirement, ProviderDescriptor, ProviderKind

from .base import Provider
from .on_device import OnDeviceProvider
from .remote import RemoteApiProvider

PROVIDER_CLASSES = {
    ProviderKind.ON_DEVICE: OnDeviceProvider,
    ProviderKind.REMOTE_API: RemoteApiProvider,
}


def build_provider(descriptor: ProviderDescriptor) -> Provider:
    """
    Create the implementation for a descriptor.

    Offscreen providers are hosted by a relay peer; the peer builds them from
    the ``engine`` option, which names one of the concrete kinds.
    """
    kind = descriptor.kind
    if kind == ProviderKind.OFFSCREEN:
        engine = descriptor.options.get("engine", ProviderKind.ON_DEVICE.value)
        kind = ProviderKind(engine)
        if kind == ProviderKind.OFFSCREEN:
            raise ValueError(f"Offscreen provider {descriptor.id} needs a concrete engine")

    provider_class = PROVIDER_CLASSES.get(kind)
    if provider_class is None:
        raise ValueError(f"Unknown provider kind: {kind}")
    return provider_class(descriptor)


def build_local_providers(descriptors: Iterable[ProviderDescriptor]) -> Dict[str, Provider]:
    """Implementations for every descriptor reachable from this context."""
    return {
        d.id: build_provider(d) for d in descriptors if d.context == ContextRequirement.LOCAL
    }


def build_relay_providers(descriptors: Iterable[ProviderDescriptor]) -> Dict[str, Provider]:
    """Implementations a relay peer should host."""
    return {
        d.id: build_provider(d) for d in descriptors if d.context == ContextRequirement.RELAY
    }
