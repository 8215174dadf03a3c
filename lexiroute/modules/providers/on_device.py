"""
On-device provider.

Runs cheap heuristics in-process: stop-word language detection, leading
sentence summaries and frequency based vocabulary analysis. It has no
translation model.
"""

import logging
import re
from collections import Counter
from typing import Any, Dict, List

from lexiroute.modules.api.models import (
    DetectedLanguage,
    Operation,
    ProviderDescriptor,
    ProviderKind,
    VocabularyEntry,
)
from lexiroute.modules.errors import PermanentError, UnsupportedOperationError

from .base import Provider

logger = logging.getLogger("lexiroute.providers.on_device")

STOP_WORDS = {
    "en": {"the", "and", "is", "are", "of", "to", "in", "that", "it", "with", "was", "for", "this"},
    "es": {"el", "la", "los", "las", "de", "que", "y", "en", "un", "una", "es", "por", "con"},
    "fr": {"le", "la", "les", "de", "des", "et", "est", "un", "une", "que", "dans", "pour", "pas"},
    "de": {"der", "die", "das", "und", "ist", "nicht", "ein", "eine", "zu", "mit", "den", "von"},
    "it": {"il", "lo", "gli", "di", "che", "e", "non", "un", "una", "per", "sono", "della"},
    "pt": {"o", "os", "as", "de", "que", "e", "do", "da", "um", "uma", "para", "com", "não"},
}

WORD_PATTERN = re.compile(r"[^\W\d_]+", re.UNICODE)
SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

DEFAULT_SUMMARY_SENTENCES = 3


def _difficulty(word: str) -> int:
    """Rough 1-5 difficulty from word length."""
    length = len(word)
    if length <= 4:
        return 1
    if length <= 6:
        return 2
    if length <= 8:
        return 3
    if length <= 10:
        return 4
    return 5


class OnDeviceProvider(Provider):
    """Local heuristic provider"""

    kind = ProviderKind.ON_DEVICE

    def __init__(self, descriptor: ProviderDescriptor):
        super().__init__(descriptor)
        self.enabled = bool(descriptor.options.get("enabled", True))
        self.min_confidence = float(descriptor.options.get("min_confidence", 0.3))

    async def probe(self, operation: Operation) -> bool:
        return self.enabled and self.descriptor.supports(operation)

    async def _invoke(self, operation: Operation, payload: Dict[str, Any]) -> Any:
        if not self.enabled:
            raise PermanentError(f"{self.id} is disabled on this device", provider_id=self.id)

        if operation == Operation.DETECT_LANGUAGE:
            return self.detect_language(payload.get("text", ""))
        if operation == Operation.SUMMARIZE:
            return self.summarize(
                payload.get("text", ""),
                int(payload.get("max_sentences", DEFAULT_SUMMARY_SENTENCES)),
            )
        if operation == Operation.ANALYZE_VOCABULARY:
            return self.analyze_vocabulary(payload.get("words", []), payload.get("context", ""))

        raise UnsupportedOperationError(
            f"{self.id} has no on-device model for {operation.value}", provider_id=self.id
        )

    def detect_language(self, text: str) -> DetectedLanguage:
        words = [w.lower() for w in WORD_PATTERN.findall(text)]
        if not words:
            raise PermanentError("No words to detect a language from", provider_id=self.id)

        hits = {lang: sum(1 for w in words if w in stop_words) for lang, stop_words in STOP_WORDS.items()}
        total = sum(hits.values())
        if total == 0:
            raise PermanentError("Unable to determine language on device", provider_id=self.id)

        language, best = max(hits.items(), key=lambda item: item[1])
        confidence = round(best / total, 2)
        if confidence < self.min_confidence:
            raise PermanentError(
                f"Language confidence {confidence} below threshold {self.min_confidence}",
                provider_id=self.id,
            )
        return DetectedLanguage(language=language, confidence=confidence)

    def summarize(self, text: str, max_sentences: int = DEFAULT_SUMMARY_SENTENCES) -> str:
        if max_sentences < 1:
            raise PermanentError("max_sentences must be at least 1", provider_id=self.id)
        sentences = [s.strip() for s in SENTENCE_END.split(text.strip()) if s.strip()]
        return " ".join(sentences[:max_sentences])

    def analyze_vocabulary(self, words: List[str], context: str) -> List[VocabularyEntry]:
        counts = Counter(w.lower() for w in WORD_PATTERN.findall(context or ""))
        entries = []
        for word in words:
            normalized = str(word).strip()
            if not normalized:
                continue
            entries.append(
                VocabularyEntry(
                    word=normalized,
                    frequency=counts.get(normalized.lower(), 0),
                    difficulty=_difficulty(normalized),
                )
            )
        return entries
