from __future__ import annotations

import re
from enum import Enum
from typing import Protocol


class Severity(str, Enum):
    LOW = "low"
    ELEVATED = "elevated"
    URGENT = "urgent"


class SeverityClassifier(Protocol):
    def classify(self, text: str) -> Severity: ...


class KeywordSeverityClassifier:
    """Pattern based classifier. Swappable for a model-backed one behind the same protocol."""

    _URGENT_PATTERNS = [
        re.compile(r"chest pain.*breath", re.IGNORECASE),
        re.compile(r"can(?:no|')?t breathe|not breathing|difficulty breathing", re.IGNORECASE),
        re.compile(r"heart attack", re.IGNORECASE),
        re.compile(r"stroke", re.IGNORECASE),
        re.compile(r"severe bleeding", re.IGNORECASE),
        re.compile(r"anaphylaxis", re.IGNORECASE),
        re.compile(r"overdose", re.IGNORECASE),
        re.compile(r"unconscious|passed out", re.IGNORECASE),
        re.compile(r"self[- ]?harm", re.IGNORECASE),
        re.compile(r"suicid", re.IGNORECASE),
        re.compile(r"kill(?:ing)? myself|end my life", re.IGNORECASE),
    ]

    _ELEVATED_KEYWORDS = (
        "severe", "emergency", "urgent", "critical", "hospitalize",
        "see a doctor", "visit a hospital", "seek immediate care", "life-threatening", "dangerous",
        "immediately", "admit", "specialist", "consult", "refer", "medical attention", "high risk",
        "serious", "worsening", "unresponsive", "collapse", "bleeding", "chest pain",
        "difficulty breathing", "loss of consciousness", "stroke", "heart attack", "sepsis",
        "infection", "uncontrolled", "acute", "hospital", "doctor", "clinic", "practitioner",
    )

    def classify(self, text: str) -> Severity:
        cleaned = (text or "").strip()
        if not cleaned:
            return Severity.LOW
        for pattern in self._URGENT_PATTERNS:
            if pattern.search(cleaned):
                return Severity.URGENT
        lowered = cleaned.lower()
        if any(keyword in lowered for keyword in self._ELEVATED_KEYWORDS):
            return Severity.ELEVATED
        return Severity.LOW


_DEFAULT_CLASSIFIER = KeywordSeverityClassifier()


def classify_severity(text: str, classifier: SeverityClassifier | None = None) -> Severity:
    return (classifier or _DEFAULT_CLASSIFIER).classify(text)
