"""
API Module - Black Box Interface

Purpose: Shared request, result and wire models
Interface: Pydantic models and enums
Hidden: Validation rules, value coercion

Every other module speaks in these types; none of them shares internals.
"""

from .models import (
    AttemptOutcome,
    AttemptRecord,
    CapabilityRequest,
    CapabilityResult,
    ContextRequirement,
    DetectedLanguage,
    EnvelopeKind,
    ErrorKind,
    Operation,
    ProviderDescriptor,
    ProviderKind,
    RelayEnvelope,
    RelayResponse,
    VocabularyEntry,
    coerce_value,
)

__all__ = [
    "AttemptOutcome",
    "AttemptRecord",
    "CapabilityRequest",
    "CapabilityResult",
    "ContextRequirement",
    "DetectedLanguage",
    "EnvelopeKind",
    "ErrorKind",
    "Operation",
    "ProviderDescriptor",
    "ProviderKind",
    "RelayEnvelope",
    "RelayResponse",
    "VocabularyEntry",
    "coerce_value",
]
