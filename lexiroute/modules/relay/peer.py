"""
Relay peer - the receiving end of cross-context dispatch.

A peer hosts providers that can only run in its own execution context. It
exposes a single endpoint, ``receive(request_id, operation, payload)``, and
serving loops that feed it from a channel.

Serving over Redis follows the same queue layout the channel writes:
- relay:requests:{context}   LPUSH by callers, BRPOP here
- relay:response:{id}        result with TTL
- relay:ready:{id}           notification channel
- relay:cancel:{id}          abandon marker written by callers
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from lexiroute.modules.api.models import EnvelopeKind, Operation, RelayEnvelope, RelayResponse
from lexiroute.modules.errors import CapabilityError, UnsupportedOperationError, normalize_error
from lexiroute.modules.providers import Provider

logger = logging.getLogger("lexiroute.relay.peer")

Deliver = Callable[[str], Any]


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


class RelayPeer:
    """Peer execution context endpoint."""

    def __init__(self, providers: Mapping[str, Provider], context: str = "offscreen"):
        """
        Initialize relay peer.

        Args:
            providers: Providers hosted in this context, keyed by provider id
            context: Name of this context, used for queue naming
        """
        self.providers: Dict[str, Provider] = dict(providers)
        self.context = context
        self._running: Dict[str, asyncio.Task] = {}

    def _resolve(self, provider_id: Optional[str]) -> Provider:
        if provider_id is None and len(self.providers) == 1:
            return next(iter(self.providers.values()))
        provider = self.providers.get(provider_id or "")
        if provider is None:
            raise UnsupportedOperationError(
                f"Provider {provider_id} is not hosted in context {self.context}",
                provider_id=provider_id,
            )
        return provider

    async def receive(
        self,
        request_id: str,
        operation: Operation,
        payload: Dict[str, Any],
        provider_id: Optional[str] = None,
    ) -> Any:
        """
        Run an operation on a hosted provider.

        Returns:
            The provider's raw value

        Raises:
            CapabilityError: Whatever the provider raised, normalized
        """
        provider = self._resolve(provider_id)
        logger.debug(f"[{request_id}] {provider.id} <- {operation.value}")
        try:
            return await provider.invoke(operation, payload)
        except CapabilityError:
            raise
        except Exception as e:
            raise normalize_error(e, provider_id=provider.id) from e

    async def handle(self, envelope: RelayEnvelope) -> RelayResponse:
        """Turn one envelope into one correlated response."""
        try:
            if envelope.kind == EnvelopeKind.PROBE:
                provider = self._resolve(envelope.provider_id)
                available = await provider.probe(envelope.operation) if envelope.operation else True
                return RelayResponse(request_id=envelope.request_id, ok=True, value=bool(available))

            if envelope.operation is None:
                raise UnsupportedOperationError("Envelope carries no operation")

            value = await self.receive(
                envelope.request_id, envelope.operation, envelope.payload, envelope.provider_id
            )
            return RelayResponse(request_id=envelope.request_id, ok=True, value=_jsonable(value))

        except CapabilityError as e:
            return RelayResponse(
                request_id=envelope.request_id,
                ok=False,
                error_kind=e.kind,
                error_message=e.message,
            )

    async def handle_message(self, message: str) -> Optional[str]:
        """Decode, handle and encode one message. Returns None for cancel notices."""
        try:
            envelope = RelayEnvelope.model_validate_json(message)
        except ValidationError as e:
            logger.error(f"Dropping malformed relay message: {e}")
            return None

        if envelope.kind == EnvelopeKind.CANCEL:
            self.cancel(envelope.request_id)
            return None

        response = await self.handle(envelope)
        return response.model_dump_json()

    async def close(self) -> None:
        for task in list(self._running.values()):
            task.cancel()
        for provider in self.providers.values():
            await provider.close()

    def cancel(self, request_id: str) -> bool:
        """Abandon work for a request id, if it is still running."""
        task = self._running.get(request_id)
        if task is None or task.done():
            return False
        logger.info(f"[{request_id}] Cancelled by caller")
        task.cancel()
        return True

    async def serve(self, inbox: "asyncio.Queue[str]", deliver: Deliver) -> None:
        """
        Serve messages from an in-process queue until cancelled.

        Each message runs as its own task so slow operations do not hold up
        the queue or cancel notices.
        """
        logger.info(f"Relay peer '{self.context}' serving in-process")
        try:
            while True:
                message = await inbox.get()
                self._spawn(message, deliver)
        finally:
            for task in list(self._running.values()):
                task.cancel()

    def _spawn(self, message: str, deliver: Deliver) -> None:
        try:
            header = json.loads(message)
            request_id, kind = header.get("request_id"), header.get("kind")
        except (ValueError, AttributeError):
            request_id, kind = None, None

        if kind == EnvelopeKind.CANCEL.value:
            self.cancel(request_id)
            return

        async def run() -> None:
            try:
                reply = await self.handle_message(message)
                if reply is not None:
                    result = deliver(reply)
                    if asyncio.iscoroutine(result):
                        await result
            except asyncio.CancelledError:
                logger.debug(f"[{request_id}] Abandoned")
                raise
            finally:
                self._running.pop(request_id, None)

        task = asyncio.ensure_future(run())
        if request_id:
            self._running[request_id] = task

    async def serve_redis(
        self,
        redis_client,
        poll_timeout: int = 5,
        response_ttl: int = 60,
        stop_event: Optional[asyncio.Event] = None,
        retry_delay: float = 1.0,
    ) -> None:
        """
        Serve requests from Redis until stop_event is set.

        Args:
            redis_client: Async Redis client
            poll_timeout: Seconds each BRPOP blocks
            response_ttl: TTL for stored responses
            stop_event: Optional event that ends the loop
            retry_delay: Pause after a failed queue read
        """
        queue_key = f"relay:requests:{self.context}"
        logger.info(f"Relay peer '{self.context}' serving from {queue_key}")

        async def store(request_id: str, reply: str) -> None:
            try:
                if await redis_client.exists(f"relay:cancel:{request_id}"):
                    logger.info(f"[{request_id}] Result discarded, caller already gave up")
                    return
                await redis_client.setex(f"relay:response:{request_id}", response_ttl, reply)
                await redis_client.publish(f"relay:ready:{request_id}", "1")
            except (RedisError, OSError) as e:
                logger.error(f"[{request_id}] Could not store relay response: {e}")

        while stop_event is None or not stop_event.is_set():
            try:
                result = await redis_client.brpop(queue_key, timeout=poll_timeout)
            except (RedisError, OSError) as e:
                logger.error(f"Relay queue read failed: {e}; retrying in {retry_delay}s")
                await asyncio.sleep(retry_delay)
                continue
            if not result:
                continue

            message = result[1]
            if isinstance(message, bytes):
                message = message.decode("utf-8")

            try:
                header = json.loads(message)
                request_id, kind = header.get("request_id"), header.get("kind")
            except (ValueError, AttributeError):
                logger.error("Dropping undecodable relay message")
                continue

            if kind == EnvelopeKind.CANCEL.value:
                self.cancel(request_id)
                continue

            try:
                cancelled = bool(request_id) and bool(await redis_client.exists(f"relay:cancel:{request_id}"))
            except (RedisError, OSError) as e:
                logger.warning(f"[{request_id}] Could not check cancel marker: {e}")
                cancelled = False
            if cancelled:
                logger.info(f"[{request_id}] Skipping cancelled request")
                continue

            self._spawn(message, lambda reply, rid=request_id: store(rid, reply))
