"""
Provider Orchestrator for Lexiroute.

Executes a capability request against the best provider and falls back in
priority order until one succeeds.

Design Principles:
- One provider at a time: candidates are never raced for the same request
- Exactly one provider's output is returned, never a merge
- Stale negative availability only reorders candidates, it never drops them
- A cancelled request commits none of its own availability writes
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from lexiroute.modules.api.models import (
    AttemptOutcome,
    AttemptRecord,
    CapabilityRequest,
    CapabilityResult,
    DetectedLanguage,
    ErrorKind,
    Operation,
    ProviderDescriptor,
    VocabularyEntry,
    coerce_value,
)
from lexiroute.modules.availability import Availability, AvailabilityCache
from lexiroute.modules.errors import (
    AggregateCapabilityError,
    CapabilityError,
    InputInvalidError,
    PermanentError,
    ProviderFailure,
    ProviderTimeoutError,
    normalize_error,
)
from lexiroute.modules.relay import ExecutionContextRouter
from lexiroute.modules.retry import RetryPolicy

logger = logging.getLogger("lexiroute.orchestrator")


class ProviderOrchestrator:
    """
    Runs requests through retry, timeout and relay, with priority fallback.

    Follows the same construction pattern as the other modules:
    - Receives its collaborators in __init__ (nothing global)
    - The availability cache is shared by reference
    """

    DEFAULT_DEADLINE_MS = 30000
    DEFAULT_ATTEMPT_TIMEOUT = 15.0

    def __init__(
        self,
        providers: Iterable[ProviderDescriptor],
        router: ExecutionContextRouter,
        cache: AvailabilityCache,
        retry_policy: Optional[RetryPolicy] = None,
        unavailable_ttl: Optional[float] = None,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        default_deadline_ms: int = DEFAULT_DEADLINE_MS,
    ):
        """
        Initialize orchestrator.

        Args:
            providers: Provider descriptors, in registration order
            router: Dispatches calls to local or relay providers
            cache: Shared availability cache
            retry_policy: Per-provider retry policy (default: 3 attempts)
            unavailable_ttl: TTL for negative entries (default: cache TTL)
            attempt_timeout: Upper bound for a single attempt in seconds
            default_deadline_ms: Budget for requests that carry no deadline
        """
        self.router = router
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.unavailable_ttl = unavailable_ttl
        self.attempt_timeout = attempt_timeout
        self.default_deadline_ms = default_deadline_ms

        self._providers: Dict[str, ProviderDescriptor] = {}
        self._sequence: Dict[str, int] = {}
        for descriptor in providers:
            self.register(descriptor)

    # ==================== Configuration ====================

    @property
    def providers(self) -> List[ProviderDescriptor]:
        return list(self._providers.values())

    def register(self, descriptor: ProviderDescriptor) -> None:
        """Add or replace a provider. Replacing keeps its original position."""
        if descriptor.id not in self._sequence:
            self._sequence[descriptor.id] = len(self._sequence)
        self._providers[descriptor.id] = descriptor
        logger.info(
            f"Registered provider {descriptor.id} (priority {descriptor.priority}, "
            f"{descriptor.context.value}, ops: {sorted(op.value for op in descriptor.operations)})"
        )

    def unregister(self, provider_id: str) -> bool:
        removed = self._providers.pop(provider_id, None)
        self._sequence.pop(provider_id, None)
        return removed is not None

    def set_priority(self, provider_id: str, priority: int) -> ProviderDescriptor:
        """Explicitly reconfigure a provider's rank."""
        descriptor = self._providers.get(provider_id)
        if descriptor is None:
            raise KeyError(f"Unknown provider: {provider_id}")
        updated = descriptor.model_copy(update={"priority": priority})
        self._providers[provider_id] = updated
        logger.info(f"Provider {provider_id} priority {descriptor.priority} -> {priority}")
        return updated

    def candidates(self, operation: Operation) -> List[ProviderDescriptor]:
        """
        Providers declaring the operation, best first.

        Sorted by (priority, registration order). Providers with a live
        negative availability entry are moved behind the rest.
        """
        supported = sorted(
            (d for d in self._providers.values() if d.supports(operation)),
            key=lambda d: (d.priority, self._sequence[d.id]),
        )
        preferred = [d for d in supported if not self.cache.is_known_unavailable(d.id, operation)]
        deferred = [d for d in supported if self.cache.is_known_unavailable(d.id, operation)]
        return preferred + deferred

    # ==================== Execution ====================

    @staticmethod
    def build_request(
        operation: Union[Operation, str],
        payload: Dict[str, Any],
        request_id: Optional[str] = None,
        deadline_ms: Optional[int] = None,
    ) -> CapabilityRequest:
        """
        Validate caller input into a request.

        Raises:
            InputInvalidError: The input does not form a valid request
        """
        data: Dict[str, Any] = {"operation": operation, "payload": payload}
        if request_id:
            data["request_id"] = request_id
        if deadline_ms is not None:
            data["deadline_ms"] = deadline_ms
        try:
            return CapabilityRequest.model_validate(data)
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise InputInvalidError(f"Invalid request: {messages}") from e

    async def execute(self, request: Union[CapabilityRequest, Dict[str, Any]]) -> CapabilityResult:
        """
        Execute a request against the best available provider.

        Returns:
            CapabilityResult naming the provider that produced the value

        Raises:
            InputInvalidError: Caller error, no provider was tried further
            AggregateCapabilityError: Every candidate failed or was unavailable
        """
        if not isinstance(request, CapabilityRequest):
            request = self.build_request(
                request.get("operation"),
                request.get("payload") or {},
                request.get("request_id"),
                request.get("deadline_ms"),
            )

        loop = asyncio.get_running_loop()
        operation = request.operation
        deadline_ms = request.deadline_ms or self.default_deadline_ms
        deadline = loop.time() + deadline_ms / 1000

        await self._probe_unknown(operation, deadline, request.request_id)
        candidates = self.candidates(operation)
        attempts: List[AttemptRecord] = []
        failures: List[ProviderFailure] = []
        # Availability writes are held back until the request completes, so
        # a cancelled request never mutates the cache
        staged: List[Tuple[str, bool]] = []

        logger.info(
            f"[{request.request_id}] {operation.value}: candidates "
            f"{[d.id for d in candidates]} (deadline {deadline_ms}ms)"
        )

        for index, descriptor in enumerate(candidates):
            if deadline - loop.time() <= 0:
                for skipped in candidates[index:]:
                    failures.append(
                        ProviderFailure(skipped.id, ErrorKind.TRANSIENT, "Deadline exceeded before attempt")
                    )
                break

            try:
                value = await self.retry_policy.run(
                    lambda attempt, d=descriptor: self._attempt(d, request, attempt, deadline, attempts),
                    provider_id=descriptor.id,
                    deadline=deadline,
                )
            except InputInvalidError:
                self._commit(operation, staged)
                raise
            except CapabilityError as e:
                failures.append(ProviderFailure(descriptor.id, e.kind, e.message))
                staged.append((descriptor.id, False))
                logger.warning(
                    f"[{request.request_id}] {descriptor.id} failed ({e.kind.value}): {e.message}; "
                    f"falling back"
                )
                continue

            staged.append((descriptor.id, True))
            self._commit(operation, staged)
            logger.info(
                f"[{request.request_id}] {operation.value} served by {descriptor.id} "
                f"after {len(attempts)} attempt(s)"
            )
            return CapabilityResult(
                operation=operation,
                value=value,
                provider_id=descriptor.id,
                attempts=attempts,
            )

        self._commit(operation, staged)
        error = AggregateCapabilityError(operation.value, failures, attempts)
        logger.error(f"[{request.request_id}] {error.message}")
        raise error

    async def _probe_unknown(self, operation: Operation, deadline: float, request_id: str) -> None:
        """
        Probe candidates that have no live availability entry.

        Probes run through the shared cache, so concurrent requests for the
        same cold pair wait on a single probe. The probe task belongs to no
        request: a caller that is cancelled or runs out of budget stops
        waiting, and the probe still records its outcome.
        """
        cold = [
            d
            for d in self._providers.values()
            if d.supports(operation) and self.cache.status(d.id, operation) == Availability.UNKNOWN
        ]
        if not cold:
            return

        waiters = [
            self.cache.probe(d.id, operation, lambda d=d: self.router.probe(d, operation))
            for d in cold
        ]
        remaining = deadline - asyncio.get_running_loop().time()
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{request_id}] Availability probes for {[d.id for d in cold]} outlasted the deadline"
            )

    async def _attempt(
        self,
        descriptor: ProviderDescriptor,
        request: CapabilityRequest,
        attempt: int,
        deadline: float,
        attempts: List[AttemptRecord],
    ) -> Any:
        """One guarded call to one provider, recorded as an AttemptRecord."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout = min(self.attempt_timeout, deadline - started)

        def record(outcome: AttemptOutcome, error: Optional[CapabilityError] = None) -> None:
            attempts.append(
                AttemptRecord(
                    provider_id=descriptor.id,
                    attempt=attempt,
                    duration_ms=round((loop.time() - started) * 1000, 3),
                    outcome=outcome,
                    error_kind=error.kind if error else None,
                    message=error.message if error else None,
                )
            )

        try:
            raw = await self.router.dispatch(
                descriptor,
                request.operation,
                request.payload,
                request_id=request.request_id,
                timeout=timeout,
            )
        except Exception as e:
            error = normalize_error(
                e, provider_id=descriptor.id, retryable_keywords=self.retry_policy.retryable_keywords
            )
            outcome = AttemptOutcome.TIMEOUT if isinstance(error, ProviderTimeoutError) else AttemptOutcome.ERROR
            record(outcome, error)
            if error is e:
                raise
            raise error from e

        try:
            value = coerce_value(request.operation, raw)
        except ValueError as e:
            error = PermanentError(
                f"Malformed {request.operation.value} output: {e}", provider_id=descriptor.id, cause=e
            )
            record(AttemptOutcome.ERROR, error)
            raise error from e

        record(AttemptOutcome.SUCCESS)
        return value

    def _commit(self, operation: Operation, staged: List[Tuple[str, bool]]) -> None:
        for provider_id, available in staged:
            ttl = None if available else self.unavailable_ttl
            self.cache.record(provider_id, operation, available, ttl)

    # ==================== Convenience ====================

    async def detect_language(self, text: str, deadline_ms: Optional[int] = None) -> DetectedLanguage:
        request = self.build_request(Operation.DETECT_LANGUAGE, {"text": text}, deadline_ms=deadline_ms)
        return (await self.execute(request)).value

    async def translate(
        self, text: str, source: Optional[str], target: str, deadline_ms: Optional[int] = None
    ) -> str:
        payload = {"text": text, "source": source, "target": target}
        request = self.build_request(Operation.TRANSLATE, payload, deadline_ms=deadline_ms)
        return (await self.execute(request)).value

    async def summarize(
        self, text: str, max_sentences: int = 3, deadline_ms: Optional[int] = None
    ) -> str:
        payload = {"text": text, "max_sentences": max_sentences}
        request = self.build_request(Operation.SUMMARIZE, payload, deadline_ms=deadline_ms)
        return (await self.execute(request)).value

    async def analyze_vocabulary(
        self, words: List[str], context: str = "", deadline_ms: Optional[int] = None
    ) -> List[VocabularyEntry]:
        payload = {"words": words, "context": context}
        request = self.build_request(Operation.ANALYZE_VOCABULARY, payload, deadline_ms=deadline_ms)
        return (await self.execute(request)).value
