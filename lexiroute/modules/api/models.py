"""
Lexiroute shared data models.

These models define the structure of all data passed between
components in the Lexiroute system, including the relay wire format.
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

LETTERS = re.compile(r"[^\W\d_]", re.UNICODE)

# Enums


class Operation(str, Enum):
    """Capabilities a provider can offer."""

    DETECT_LANGUAGE = "detect_language"
    TRANSLATE = "translate"
    SUMMARIZE = "summarize"
    ANALYZE_VOCABULARY = "analyze_vocabulary"


class ContextRequirement(str, Enum):
    """Where a provider can be reached from."""

    LOCAL = "local"
    RELAY = "relay"


class ProviderKind(str, Enum):
    """Closed set of provider implementations."""

    ON_DEVICE = "on_device"
    REMOTE_API = "remote_api"
    OFFSCREEN = "offscreen"


class ErrorKind(str, Enum):
    """Error taxonomy shared by attempts, failures and relay responses."""

    INPUT_INVALID = "input_invalid"
    UNSUPPORTED = "unsupported"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    AGGREGATE = "aggregate"


class AttemptOutcome(str, Enum):
    """Outcome of a single provider attempt."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class EnvelopeKind(str, Enum):
    """Relay message types."""

    INVOKE = "invoke"
    PROBE = "probe"
    CANCEL = "cancel"


# Request Models (Input)


class CapabilityRequest(BaseModel):
    """Request to run one capability."""

    operation: Operation = Field(..., description="Capability to run")
    payload: Dict[str, Any] = Field(
        default_factory=dict, description="Operation specific input"
    )
    request_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Correlation ID, generated when absent",
    )
    deadline_ms: Optional[int] = Field(
        default=None, description="Total time budget in milliseconds", gt=0
    )

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v, info):
        """Ensure the payload carries what the operation needs."""
        operation = info.data.get("operation")
        if operation is None:
            return v

        if operation == Operation.ANALYZE_VOCABULARY:
            words = v.get("words")
            if not isinstance(words, list) or not words:
                raise ValueError("analyze_vocabulary requires a non-empty 'words' list")
            return v

        text = v.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"{operation.value} requires non-empty 'text'")

        if operation == Operation.DETECT_LANGUAGE and not LETTERS.search(text):
            raise ValueError("detect_language requires text containing words")
        if operation == Operation.SUMMARIZE:
            max_sentences = v.get("max_sentences", 1)
            if isinstance(max_sentences, bool) or not isinstance(max_sentences, int) or max_sentences < 1:
                raise ValueError("summarize requires 'max_sentences' to be a positive integer")

        if operation == Operation.TRANSLATE and not v.get("target"):
            raise ValueError("translate requires a 'target' language")
        return v


class ProviderDescriptor(BaseModel):
    """Static description of a provider."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Provider identifier", min_length=1)
    priority: int = Field(default=100, description="Lower is tried first")
    operations: FrozenSet[Operation] = Field(
        ..., description="Operations the provider declares"
    )
    context: ContextRequirement = Field(default=ContextRequirement.LOCAL)
    kind: ProviderKind = Field(default=ProviderKind.ON_DEVICE)
    options: Dict[str, Any] = Field(
        default_factory=dict, description="Kind specific settings"
    )

    def supports(self, operation: Operation) -> bool:
        """Check the declared operation set."""
        return operation in self.operations


# Result Models (Output)


class DetectedLanguage(BaseModel):
    """Language detection result."""

    language: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class VocabularyEntry(BaseModel):
    """Single analyzed vocabulary item."""

    word: str
    frequency: int = 0
    difficulty: int = Field(default=1, ge=1, le=5)
    definition: Optional[str] = None


class AttemptRecord(BaseModel):
    """Diagnostics for one provider attempt."""

    provider_id: str
    attempt: int = Field(..., ge=1)
    duration_ms: float = 0.0
    outcome: AttemptOutcome
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class CapabilityResult(BaseModel):
    """Successful capability execution."""

    operation: Operation
    value: Any
    provider_id: str
    attempts: List[AttemptRecord] = Field(default_factory=list)


# Relay Wire Models


class RelayEnvelope(BaseModel):
    """Message sent to a peer execution context."""

    request_id: str
    provider_id: str
    operation: Optional[Operation] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    kind: EnvelopeKind = EnvelopeKind.INVOKE
    sent_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class RelayResponse(BaseModel):
    """Reply from a peer execution context, correlated by request_id."""

    request_id: str
    ok: bool
    value: Any = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


def coerce_value(operation: Operation, raw: Any) -> Any:
    """
    Convert a provider's raw output into the typed value for an operation.

    Raises:
        ValueError: If the raw value does not match the operation's shape
    """
    if operation == Operation.DETECT_LANGUAGE:
        if isinstance(raw, DetectedLanguage):
            return raw
        return DetectedLanguage.model_validate(raw)

    if operation == Operation.ANALYZE_VOCABULARY:
        if not isinstance(raw, list):
            raise ValueError("vocabulary analysis must return a list")
        return [
            item if isinstance(item, VocabularyEntry) else VocabularyEntry.model_validate(item)
            for item in raw
        ]

    if not isinstance(raw, str):
        raise ValueError(f"{operation.value} must return text")
    return raw
