"""
Errors Module - Black Box Interface

Purpose: Error taxonomy, classification and user-facing reporting
Interface: CapabilityError hierarchy, classify_error(), normalize_error()
Hidden: Status code tables, keyword matching, message catalogs

Raw low-level errors are normalized here and never cross module boundaries.
"""

from .errors import (
    DEFAULT_RETRYABLE_KEYWORDS,
    AggregateCapabilityError,
    CapabilityError,
    InputInvalidError,
    PermanentError,
    ProviderFailure,
    ProviderTimeoutError,
    RelayUnreachableError,
    RetryExhaustedError,
    TransientError,
    UnsupportedOperationError,
    classify_error,
    error_for_kind,
    normalize_error,
)

__all__ = [
    "DEFAULT_RETRYABLE_KEYWORDS",
    "AggregateCapabilityError",
    "CapabilityError",
    "InputInvalidError",
    "PermanentError",
    "ProviderFailure",
    "ProviderTimeoutError",
    "RelayUnreachableError",
    "RetryExhaustedError",
    "TransientError",
    "UnsupportedOperationError",
    "classify_error",
    "error_for_kind",
    "normalize_error",
]
