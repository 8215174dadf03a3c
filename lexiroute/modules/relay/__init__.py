"""
Relay Module - Black Box Interface

Purpose: Reach providers that live in another execution context
Interface: ExecutionContextRouter.dispatch(), RelayPeer.receive(), RelayChannel
Hidden: Envelope serialization, request correlation, transport choice

Can be backed by an in-process queue or by Redis without affecting callers.
"""

from .channel import LocalRelayChannel, RedisRelayChannel, RelayChannel
from .peer import RelayPeer
from .router import ExecutionContextRouter

__all__ = [
    "ExecutionContextRouter",
    "LocalRelayChannel",
    "RedisRelayChannel",
    "RelayChannel",
    "RelayPeer",
]
