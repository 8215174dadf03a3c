"""
Relay channels - transports between this context and a peer context.

A channel moves serialized envelopes to the peer and hands back the
serialized response with the same request id. It has no timeout of its
own; callers bound it with a TimeoutGuard.
"""

import asyncio
import json
import logging
from typing import Callable, Dict, Optional, Protocol, Union

from redis.exceptions import RedisError

from lexiroute.modules.api.models import EnvelopeKind, RelayEnvelope
from lexiroute.modules.errors import RelayUnreachableError, TransientError

from .peer import RelayPeer

logger = logging.getLogger("lexiroute.relay.channel")


class RelayChannel(Protocol):
    """Protocol for relay transports."""

    async def request(self, request_id: str, message: str) -> str:
        """Send one serialized envelope and wait for its serialized response."""
        ...

    def cancel(self, request_id: str) -> None:
        """Tell the peer that the caller no longer wants this response."""
        ...

    async def ping(self) -> bool:
        """Best-effort reachability check."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...


class LocalRelayChannel:
    """
    In-process channel to a peer running as a task on the same event loop.

    The peer is started lazily on the first request. Pending requests are
    tracked by request id and resolved when the matching response arrives;
    responses nobody is waiting for are dropped.
    """

    MAX_PENDING = 5

    def __init__(
        self,
        peer: Union[RelayPeer, Callable[[], RelayPeer]],
        max_pending: int = MAX_PENDING,
    ):
        """
        Initialize local relay channel.

        Args:
            peer: Peer instance, or a factory creating it on first use
            max_pending: Maximum number of relay requests in flight
        """
        self._peer_source = peer
        self.max_pending = max_pending
        self._peer: Optional[RelayPeer] = None
        self._inbox: Optional[asyncio.Queue] = None
        self._peer_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_peer_running(self) -> bool:
        return self._peer_task is not None and not self._peer_task.done()

    def _ensure_peer(self) -> None:
        if self.is_peer_running:
            return

        try:
            if self._peer is None:
                source = self._peer_source
                self._peer = source if isinstance(source, RelayPeer) else source()
        except Exception as e:
            raise RelayUnreachableError(f"peer context failed to start: {e}", cause=e) from e

        self._inbox = asyncio.Queue()
        self._peer_task = asyncio.ensure_future(self._peer.serve(self._inbox, self._deliver))
        logger.info(f"Started relay peer '{self._peer.context}'")

    def _deliver(self, message: str) -> None:
        try:
            request_id = json.loads(message).get("request_id")
        except ValueError:
            logger.error("Dropping undecodable relay response")
            return

        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            logger.debug(f"[{request_id}] Dropping response nobody is waiting for")
            return
        future.set_result(message)

    async def request(self, request_id: str, message: str) -> str:
        if self._closed:
            raise RelayUnreachableError("relay channel is closed")
        if len(self._pending) >= self.max_pending:
            raise TransientError("Too many concurrent relay tasks (temporary_unavailable)")

        self._ensure_peer()

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._inbox.put_nowait(message)

        try:
            return await future
        except asyncio.CancelledError:
            self.cancel(request_id)
            raise
        finally:
            self._pending.pop(request_id, None)

    def cancel(self, request_id: str) -> None:
        self._pending.pop(request_id, None)
        if self._inbox is not None and self.is_peer_running:
            notice = RelayEnvelope(request_id=request_id, provider_id="", kind=EnvelopeKind.CANCEL)
            self._inbox.put_nowait(notice.model_dump_json())

    async def ping(self) -> bool:
        if self._closed:
            return False
        try:
            self._ensure_peer()
        except RelayUnreachableError:
            return False
        return True

    async def close(self) -> None:
        self._closed = True
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(RelayUnreachableError(f"relay channel closed ({request_id})"))
        self._pending.clear()

        if self._peer_task is not None:
            self._peer_task.cancel()
            try:
                await self._peer_task
            except asyncio.CancelledError:
                pass
            self._peer_task = None

        if self._peer is not None:
            await self._peer.close()


class RedisRelayChannel:
    """
    Channel to a peer in another process, through Redis.

    Requests are pushed to the peer's queue; the response is polled with a
    growing interval until it shows up. A failing Redis connection is
    reported as an unreachable relay.
    """

    def __init__(
        self,
        redis_client,
        context: str = "offscreen",
        response_ttl: int = 60,
        queue_ttl: int = 300,
        poll_interval: float = 0.05,
        max_poll_interval: float = 1.0,
    ):
        """
        Initialize Redis relay channel.

        Args:
            redis_client: Async Redis client
            context: Peer context name, selects the request queue
            response_ttl: TTL for cancel markers in seconds
            queue_ttl: TTL refreshed on the request queue in seconds
            poll_interval: First response poll interval in seconds
            max_poll_interval: Cap for the growing poll interval
        """
        self.redis = redis_client
        self.context = context
        self.response_ttl = response_ttl
        self.queue_ttl = queue_ttl
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self._background: set = set()

    @property
    def queue_key(self) -> str:
        return f"relay:requests:{self.context}"

    async def request(self, request_id: str, message: str) -> str:
        """
        Push a request and wait for its response.

        Logic:
        1. LPUSH to the peer queue (peer BRPOPs, so FIFO)
        2. Refresh queue expiration
        3. Poll relay:response:{id} with exponential interval
        """
        response_key = f"relay:response:{request_id}"

        try:
            await self.redis.lpush(self.queue_key, message)
            await self.redis.expire(self.queue_key, self.queue_ttl)
        except (RedisError, OSError) as e:
            raise RelayUnreachableError(f"relay queue unreachable: {type(e).__name__}", cause=e) from e

        poll_interval = self.poll_interval
        try:
            while True:
                try:
                    result = await self.redis.get(response_key)
                except (RedisError, OSError) as e:
                    raise RelayUnreachableError(
                        f"relay queue unreachable: {type(e).__name__}", cause=e
                    ) from e

                if result:
                    if isinstance(result, bytes):
                        result = result.decode("utf-8")
                    await self._discard(request_id, response_key)
                    return result

                await asyncio.sleep(poll_interval)
                poll_interval = min(poll_interval * 1.5, self.max_poll_interval)
        except asyncio.CancelledError:
            self.cancel(request_id)
            raise

    async def _discard(self, request_id: str, response_key: str) -> None:
        # The response is already read, a leftover key expires on its own
        try:
            await self.redis.delete(response_key)
        except (RedisError, OSError) as e:
            logger.warning(f"[{request_id}] Could not delete relay response: {e}")

    def cancel(self, request_id: str) -> None:
        task = asyncio.ensure_future(self._mark_cancelled(request_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _mark_cancelled(self, request_id: str) -> None:
        try:
            await self.redis.setex(f"relay:cancel:{request_id}", self.response_ttl, "1")
            notice = RelayEnvelope(request_id=request_id, provider_id="", kind=EnvelopeKind.CANCEL)
            await self.redis.lpush(self.queue_key, notice.model_dump_json())
        except (RedisError, OSError) as e:
            logger.warning(f"[{request_id}] Could not mark request cancelled: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
