"""
Execution context router.

Local providers are called directly. Relay providers are reached by message
passing: the request is serialized into an envelope, sent over a channel and
the response is matched back by request id. Both paths run under the same
TimeoutGuard.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from lexiroute.modules.api.models import (
    ContextRequirement,
    EnvelopeKind,
    ErrorKind,
    Operation,
    ProviderDescriptor,
    RelayEnvelope,
    RelayResponse,
)
from lexiroute.modules.errors import (
    PermanentError,
    RelayUnreachableError,
    error_for_kind,
)
from lexiroute.modules.providers import Provider
from lexiroute.modules.timeout import TimeoutGuard

from .channel import RelayChannel

logger = logging.getLogger("lexiroute.relay")


class ExecutionContextRouter:
    """Dispatch provider calls to the context that can run them."""

    DEFAULT_UNREACHABLE_WINDOW = 60.0

    def __init__(
        self,
        local_providers: Optional[Mapping[str, Provider]] = None,
        channel: Optional[RelayChannel] = None,
        guard: Optional[TimeoutGuard] = None,
        unreachable_window: float = DEFAULT_UNREACHABLE_WINDOW,
        probe_timeout: float = 3.0,
    ):
        """
        Initialize router.

        Args:
            local_providers: Providers callable from this context, by id
            channel: Transport to the peer context (None: no relay)
            guard: TimeoutGuard shared by local and relay calls
            unreachable_window: Seconds within which a repeated identical
                relay-unreachable failure is treated as permanent
            probe_timeout: Seconds allowed for an availability probe
        """
        self.local_providers: Dict[str, Provider] = dict(local_providers or {})
        self.channel = channel
        self.guard = guard or TimeoutGuard()
        self.unreachable_window = unreachable_window
        self.probe_timeout = probe_timeout
        self._unreachable: Dict[str, Tuple[str, float]] = {}

    def register_local(self, provider: Provider) -> None:
        self.local_providers[provider.id] = provider

    async def dispatch(
        self,
        descriptor: ProviderDescriptor,
        operation: Operation,
        payload: Dict[str, Any],
        *,
        request_id: str,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Run one operation on one provider, wherever it lives.

        Returns:
            The provider's raw value

        Raises:
            CapabilityError: Provider or relay failure
            ProviderTimeoutError: The call outlived its timeout
        """
        label = f"{descriptor.id}/{operation.value}"

        if descriptor.context == ContextRequirement.LOCAL:
            provider = self._local(descriptor)
            return await self.guard.run(
                lambda: provider.invoke(operation, payload), timeout, label=label
            )

        envelope = RelayEnvelope(
            request_id=self._relay_id(request_id),
            provider_id=descriptor.id,
            operation=operation,
            payload=payload,
        )
        return await self.guard.run(lambda: self._relay(envelope), timeout, label=label)

    async def probe(self, descriptor: ProviderDescriptor, operation: Operation) -> bool:
        """Ask a provider whether it can serve an operation, without running it."""
        label = f"probe {descriptor.id}/{operation.value}"

        if descriptor.context == ContextRequirement.LOCAL:
            provider = self._local(descriptor)
            return bool(await self.guard.run(lambda: provider.probe(operation), self.probe_timeout, label=label))

        envelope = RelayEnvelope(
            request_id=self._relay_id("probe"),
            provider_id=descriptor.id,
            operation=operation,
            kind=EnvelopeKind.PROBE,
        )
        return bool(await self.guard.run(lambda: self._relay(envelope), self.probe_timeout, label=label))

    def _local(self, descriptor: ProviderDescriptor) -> Provider:
        provider = self.local_providers.get(descriptor.id)
        if provider is None:
            raise PermanentError(
                f"No local implementation registered for {descriptor.id}", provider_id=descriptor.id
            )
        return provider

    @staticmethod
    def _relay_id(request_id: str) -> str:
        # Each relay call gets its own id so late replies to abandoned
        # attempts can never be matched to a newer attempt
        return f"{request_id}:{uuid.uuid4().hex[:12]}"

    async def _relay(self, envelope: RelayEnvelope) -> Any:
        provider_id = envelope.provider_id
        if self.channel is None:
            raise PermanentError(f"No relay channel configured for {provider_id}", provider_id=provider_id)

        try:
            raw = await self.channel.request(envelope.request_id, envelope.model_dump_json())
        except RelayUnreachableError as e:
            e.provider_id = provider_id
            escalated = self._escalate(provider_id, e)
            if escalated is e:
                raise
            raise escalated from e

        try:
            response = RelayResponse.model_validate_json(raw)
        except ValidationError as e:
            raise PermanentError(f"Malformed relay response from {provider_id}", provider_id=provider_id, cause=e) from e

        if response.request_id != envelope.request_id:
            raise PermanentError(
                f"Relay response correlated to {response.request_id}, expected {envelope.request_id}",
                provider_id=provider_id,
            )

        self._unreachable.pop(provider_id, None)

        if not response.ok:
            kind = response.error_kind or ErrorKind.PERMANENT
            raise error_for_kind(kind, response.error_message or "relay call failed", provider_id=provider_id)

        return response.value

    def _escalate(self, provider_id: str, error: RelayUnreachableError) -> Exception:
        """
        Transient on first occurrence, permanent when the identical failure
        repeats within the unreachable window.
        """
        now = asyncio.get_running_loop().time()
        previous = self._unreachable.get(provider_id)

        if previous is not None:
            message, first_seen = previous
            if message == error.message and now - first_seen < self.unreachable_window:
                logger.warning(f"Relay to {provider_id} still unreachable: {error.message}")
                return PermanentError(
                    f"Relay unreachable: {error.message}", provider_id=provider_id, cause=error
                )

        self._unreachable[provider_id] = (error.message, now)
        logger.info(f"Relay to {provider_id} unreachable, treating as transient: {error.message}")
        return error

    async def close(self) -> None:
        if self.channel is not None:
            await self.channel.close()
        for provider in self.local_providers.values():
            await provider.close()
