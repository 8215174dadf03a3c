"""
Error taxonomy for capability execution.

Every failure that leaves a provider is converted into one of these types
before it is recorded or reported. Only ``AggregateCapabilityError`` (and
``InputInvalidError`` for caller mistakes) is meant to reach callers of the
orchestrator; everything else is recovered by failover.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from lexiroute.modules.api.models import AttemptRecord, ErrorKind

DEFAULT_RETRYABLE_KEYWORDS = (
    "network",
    "timeout",
    "rate_limit",
    "temporary_unavailable",
)

# HTTP statuses that are worth another try on the same provider
TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}
UNSUPPORTED_STATUS_CODES = {404, 405, 501}

USER_MESSAGES = {
    ErrorKind.INPUT_INVALID: "Invalid input provided.",
    ErrorKind.UNSUPPORTED: "This capability is not available from the selected service.",
    ErrorKind.TRANSIENT: "The service is temporarily unavailable.",
    ErrorKind.PERMANENT: "The service could not process this request.",
    ErrorKind.AGGREGATE: "No service was able to complete this request.",
}

SUGGESTED_ACTIONS = {
    ErrorKind.INPUT_INVALID: "Please check your input and try again.",
    ErrorKind.UNSUPPORTED: "Configure another provider for this capability.",
    ErrorKind.TRANSIENT: "Check your internet connection and try again.",
    ErrorKind.PERMANENT: "Try again later or configure a fallback provider.",
    ErrorKind.AGGREGATE: "Try again later or configure a remote API as fallback.",
}


class CapabilityError(Exception):
    """Base class for all taxonomy errors."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.kind, self.message)

    @property
    def suggested_action(self) -> Optional[str]:
        return SUGGESTED_ACTIONS.get(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and diagnostics."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider_id": self.provider_id,
            "retryable": self.retryable,
            "user_message": self.user_message,
            "suggested_action": self.suggested_action,
        }


class InputInvalidError(CapabilityError):
    """Caller error. Rejected immediately, never retried or failed over."""

    kind = ErrorKind.INPUT_INVALID


class UnsupportedOperationError(CapabilityError):
    """Provider cannot perform this operation at all."""

    kind = ErrorKind.UNSUPPORTED


class TransientError(CapabilityError):
    """Believed recoverable by retry or failover."""

    kind = ErrorKind.TRANSIENT


class ProviderTimeoutError(TransientError):
    """Call did not finish before its deadline."""

    def __init__(self, message: str = "Operation timeout", *, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class RelayUnreachableError(TransientError):
    """Peer execution context could not be reached."""


class PermanentError(CapabilityError):
    """Provider-confirmed incapability for this request."""

    kind = ErrorKind.PERMANENT


class RetryExhaustedError(PermanentError):
    """Transient failures outlasted the retry budget."""

    def __init__(self, attempts: int, last_error: BaseException, *, provider_id: Optional[str] = None):
        reason = _reason(last_error)
        super().__init__(
            f"Failed after {attempts} attempt{'' if attempts == 1 else 's'}: {reason}",
            provider_id=provider_id,
            cause=last_error,
        )
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class ProviderFailure:
    """One provider's final failure inside an aggregate error."""

    provider_id: str
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"provider_id": self.provider_id, "kind": self.kind.value, "message": self.message}


class AggregateCapabilityError(CapabilityError):
    """Every candidate provider for the operation failed or was unavailable."""

    kind = ErrorKind.AGGREGATE

    def __init__(
        self,
        operation: str,
        failures: Sequence[ProviderFailure],
        attempts: Optional[Iterable[AttemptRecord]] = None,
    ):
        self.operation = operation
        self.failures: List[ProviderFailure] = list(failures)
        self.attempts: List[AttemptRecord] = list(attempts or [])
        super().__init__(self._summarize())

    def _summarize(self) -> str:
        if not self.failures:
            return f"No providers available for {self.operation}"
        details = "; ".join(f"{f.provider_id} ({f.kind.value}): {f.message}" for f in self.failures)
        return f"All providers failed for {self.operation}. Errors: {details}"

    @property
    def retryable(self) -> bool:
        return bool(self.failures) and all(f.kind == ErrorKind.TRANSIENT for f in self.failures)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.operation
        data["failures"] = [f.to_dict() for f in self.failures]
        data["attempts"] = [a.model_dump(mode="json") for a in self.attempts]
        return data


def _reason(error: BaseException) -> str:
    if isinstance(error, CapabilityError):
        return error.message
    return str(error) or type(error).__name__


def classify_error(error: BaseException, retryable_keywords: Iterable[str] = DEFAULT_RETRYABLE_KEYWORDS) -> ErrorKind:
    """
    Map any exception onto the error taxonomy.

    Order of checks:
    1. Taxonomy errors carry their own kind
    2. Timeouts and transport failures are transient
    3. HTTP status errors map by status code
    4. Untyped errors are transient if their message names a retryable cause
    5. Everything else is permanent
    """
    if isinstance(error, CapabilityError):
        return error.kind

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError, httpx.TransportError)):
        return ErrorKind.TRANSIENT

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code in TRANSIENT_STATUS_CODES:
            return ErrorKind.TRANSIENT
        if status_code in UNSUPPORTED_STATUS_CODES:
            return ErrorKind.UNSUPPORTED
        return ErrorKind.PERMANENT

    if isinstance(error, NotImplementedError):
        return ErrorKind.UNSUPPORTED

    message = str(error).lower()
    if any(keyword.lower() in message for keyword in retryable_keywords):
        return ErrorKind.TRANSIENT

    return ErrorKind.PERMANENT


_KIND_TO_ERROR = {
    ErrorKind.INPUT_INVALID: InputInvalidError,
    ErrorKind.UNSUPPORTED: UnsupportedOperationError,
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.PERMANENT: PermanentError,
}


def error_for_kind(kind: ErrorKind, message: str, *, provider_id: Optional[str] = None) -> CapabilityError:
    """Rebuild a taxonomy error from its kind, e.g. after crossing the relay."""
    error_cls = _KIND_TO_ERROR.get(kind, PermanentError)
    return error_cls(message, provider_id=provider_id)


def normalize_error(
    error: BaseException,
    *,
    provider_id: Optional[str] = None,
    retryable_keywords: Iterable[str] = DEFAULT_RETRYABLE_KEYWORDS,
) -> CapabilityError:
    """Wrap a raw exception so that low-level errors never cross the boundary."""
    if isinstance(error, CapabilityError):
        if error.provider_id is None:
            error.provider_id = provider_id
        return error

    kind = classify_error(error, retryable_keywords)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError(provider_id=provider_id, cause=error)

    normalized = error_for_kind(kind, _reason(error), provider_id=provider_id)
    normalized.cause = error
    return normalized
