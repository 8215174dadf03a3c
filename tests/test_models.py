"""Tests for shared data models"""

import pytest
from pydantic import ValidationError

from lexiroute.modules.api.models import (
    AttemptOutcome,
    AttemptRecord,
    CapabilityRequest,
    DetectedLanguage,
    EnvelopeKind,
    Operation,
    ProviderDescriptor,
    RelayEnvelope,
    RelayResponse,
    VocabularyEntry,
    coerce_value,
)


class TestCapabilityRequest:
    def test_generates_request_id(self):
        a = CapabilityRequest(operation="summarize", payload={"text": "One."})
        b = CapabilityRequest(operation="summarize", payload={"text": "One."})

        assert a.request_id != b.request_id
        assert a.operation == Operation.SUMMARIZE
        assert a.deadline_ms is None

    def test_rejects_unknown_operation(self):
        with pytest.raises(ValidationError):
            CapabilityRequest(operation="transmogrify", payload={"text": "x"})

    def test_rejects_blank_text(self):
        with pytest.raises(ValidationError):
            CapabilityRequest(operation="detect_language", payload={"text": "   "})

    def test_translate_requires_target(self):
        with pytest.raises(ValidationError):
            CapabilityRequest(operation="translate", payload={"text": "hello"})

        request = CapabilityRequest(operation="translate", payload={"text": "hello", "target": "es"})
        assert request.payload["target"] == "es"

    def test_detect_language_requires_words(self):
        with pytest.raises(ValidationError, match="containing words"):
            CapabilityRequest(operation="detect_language", payload={"text": "12345 67890"})

        request = CapabilityRequest(operation="detect_language", payload={"text": "42 cats"})
        assert request.payload["text"] == "42 cats"

    @pytest.mark.parametrize("max_sentences", [0, -1, "2", True])
    def test_summarize_requires_positive_max_sentences(self, max_sentences):
        with pytest.raises(ValidationError):
            CapabilityRequest(
                operation="summarize", payload={"text": "One. Two.", "max_sentences": max_sentences}
            )

    def test_vocabulary_requires_words(self):
        with pytest.raises(ValidationError):
            CapabilityRequest(operation="analyze_vocabulary", payload={"words": []})

    def test_deadline_must_be_positive(self):
        with pytest.raises(ValidationError):
            CapabilityRequest(operation="summarize", payload={"text": "x"}, deadline_ms=0)


class TestProviderDescriptor:
    def test_supports_declared_operations_only(self):
        desc = ProviderDescriptor(id="p", operations={"summarize"})

        assert desc.supports(Operation.SUMMARIZE)
        assert not desc.supports(Operation.TRANSLATE)

    def test_is_frozen(self):
        desc = ProviderDescriptor(id="p", operations={"summarize"})

        with pytest.raises(ValidationError):
            desc.priority = 1

    def test_rejects_unknown_operation(self):
        with pytest.raises(ValidationError):
            ProviderDescriptor(id="p", operations={"dance"})


class TestCoerceValue:
    def test_detected_language_from_dict(self):
        value = coerce_value(Operation.DETECT_LANGUAGE, {"language": "en", "confidence": 0.95})

        assert value == DetectedLanguage(language="en", confidence=0.95)

    def test_confidence_out_of_range(self):
        with pytest.raises(ValueError):
            coerce_value(Operation.DETECT_LANGUAGE, {"language": "en", "confidence": 1.5})

    def test_vocabulary_list(self):
        value = coerce_value(Operation.ANALYZE_VOCABULARY, [{"word": "cat"}, VocabularyEntry(word="dog")])

        assert [v.word for v in value] == ["cat", "dog"]

    def test_vocabulary_must_be_list(self):
        with pytest.raises(ValueError):
            coerce_value(Operation.ANALYZE_VOCABULARY, {"word": "cat"})

    def test_text_operations_require_str(self):
        assert coerce_value(Operation.TRANSLATE, "hola") == "hola"
        with pytest.raises(ValueError):
            coerce_value(Operation.SUMMARIZE, 42)


class TestRelayModels:
    def test_envelope_json_roundtrip_keeps_correlation(self):
        envelope = RelayEnvelope(request_id="r1", provider_id="p", operation="summarize", payload={"text": "x"})
        decoded = RelayEnvelope.model_validate_json(envelope.model_dump_json())

        assert decoded.request_id == "r1"
        assert decoded.kind == EnvelopeKind.INVOKE
        assert decoded.operation == Operation.SUMMARIZE

    def test_response_error_fields(self):
        response = RelayResponse(request_id="r1", ok=False, error_kind="transient", error_message="busy")

        assert response.value is None
        assert response.error_kind.value == "transient"


def test_attempt_record_requires_positive_attempt():
    with pytest.raises(ValidationError):
        AttemptRecord(provider_id="p", attempt=0, outcome=AttemptOutcome.SUCCESS)
