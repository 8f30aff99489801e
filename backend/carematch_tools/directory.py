from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Iterable

from .schemas import Clinic, HealthcareCentre

DATA_PATH = Path(__file__).resolve().parent / "data" / "healthcare_centres.json"

SPECIALTY_KEYWORDS = (
    ("eye", "Eye"),
    ("psychiatr", "Neuro-Psychiatric"),
    ("orthop", "Orthopaedic"),
    ("fistula", "Obstetric Fistula"),
    ("ear", "Ear"),
    ("cancer", "Oncology"),
    ("maternity", "Maternity"),
    ("teaching", "Teaching Hospital"),
)

DIRECT_REQUEST_PHRASES = (
    "what clinic",
    "what hospital",
    "what healthcare practitioner",
    "suggest me for",
    "recommend a clinic",
    "recommend a hospital",
    "recommend a practitioner",
    "which hospital",
    "which clinic",
    "which practitioner",
    "where can i go for",
    "where should i go for",
    "can you suggest",
    "can you recommend",
)


def is_direct_centre_request(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in DIRECT_REQUEST_PHRASES)


def matched_specialty(text: str) -> str | None:
    lowered = (text or "").lower()
    for keyword, specialty in SPECIALTY_KEYWORDS:
        if re.search(rf"\b{keyword}", lowered):
            return specialty
    return None


def as_clinic(centre: HealthcareCentre) -> Clinic:
    return Clinic(
        id=centre.id,
        name=centre.name,
        address=centre.address,
        services=list(centre.services),
        accepts_walk_in=centre.accepts_walk_in,
    )


class HealthcareDirectory:
    """Read-only local directory of healthcare centres, loaded once from bundled JSON."""

    def __init__(self, centres: Iterable[HealthcareCentre] | None = None) -> None:
        if centres is None:
            raw = json.loads(DATA_PATH.read_text(encoding="utf-8"))
            centres = [HealthcareCentre.model_validate(row) for row in raw]
        self._centres: tuple[HealthcareCentre, ...] = tuple(centres)

    def __len__(self) -> int:
        return len(self._centres)

    def search(self, query: str) -> list[HealthcareCentre]:
        """Case-insensitive substring match of the whole query on name, address and category."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return [
            centre
            for centre in self._centres
            if needle in centre.name.lower() or needle in centre.address.lower() or needle in centre.category.lower()
        ]

    def by_category(self, category: str) -> list[HealthcareCentre]:
        wanted = category.lower()
        return [centre for centre in self._centres if centre.category.lower() == wanted]

    @staticmethod
    def _offers(centre: HealthcareCentre, specialty: str) -> bool:
        wanted = specialty.lower()
        if any(wanted in service.lower() for service in centre.services):
            return True
        return wanted in centre.category.lower() or wanted in centre.name.lower()

    def suggest(self, text: str, *, location: str | None = None, limit: int = 3) -> list[HealthcareCentre]:
        specialty = matched_specialty(text)
        candidates = list(self._centres)
        if specialty:
            candidates = [centre for centre in candidates if self._offers(centre, specialty)]
        place = (location or "").strip().lower()
        if place:
            located = [centre for centre in candidates if place in centre.address.lower()]
            if located or not specialty:
                candidates = located
        return candidates[:limit]
