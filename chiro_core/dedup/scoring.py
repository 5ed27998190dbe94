# chiro_core/dedup/scoring.py
"""
Pairwise similarity for duplicate-patient review.

Weights are additive and the total is clamped to [0, 100]:

    same date of birth                 +40
    first name exact / phonetic        +25 / +10   (only the higher fires)
    last name exact / phonetic         +30 / +15   (only the higher fires)
    same primary phone (digits only)   +35

A pair is worth showing a human once it reaches DEDUP_MATCH_THRESHOLD (25).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from django.conf import settings

from chiro_core.patients.phonetics import normalize_phone, soundex

WEIGHT_DOB = 40
WEIGHT_FIRST_EXACT = 25
WEIGHT_FIRST_PHONETIC = 10
WEIGHT_LAST_EXACT = 30
WEIGHT_LAST_PHONETIC = 15
WEIGHT_PHONE = 35

MAX_SCORE = 100
DEFAULT_THRESHOLD = 25

REASON_DOB = "Same date of birth"
REASON_FIRST_EXACT = "Same first name"
REASON_FIRST_PHONETIC = "Similar sounding first name"
REASON_LAST_EXACT = "Same last name"
REASON_LAST_PHONETIC = "Similar sounding last name"
REASON_PHONE = "Same phone number"


@dataclass(frozen=True)
class PatientSnapshot:
    """The fields scoring looks at, detached from the ORM."""

    patient_id: object
    first_name: str = ""
    last_name: str = ""
    date_of_birth: Optional[date] = None
    phone: str = ""
    first_name_soundex: str = ""
    last_name_soundex: str = ""

    @classmethod
    def build(
        cls,
        *,
        patient_id,
        first_name: str | None = None,
        last_name: str | None = None,
        date_of_birth: date | None = None,
        phone: str | None = None,
        first_name_soundex: str | None = None,
        last_name_soundex: str | None = None,
    ) -> "PatientSnapshot":
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        return cls(
            patient_id=patient_id,
            first_name=first_name,
            last_name=last_name,
            date_of_birth=date_of_birth,
            phone=normalize_phone(phone),
            # stored codes win; recompute only when a row predates them
            first_name_soundex=first_name_soundex or soundex(first_name),
            last_name_soundex=last_name_soundex or soundex(last_name),
        )

    @classmethod
    def from_patient(cls, patient) -> "PatientSnapshot":
        """
        Expects `demographics` selected and, ideally, the `primary_contacts`
        prefetch from patients.selectors (falls back to a query).
        """
        demo = getattr(patient, "demographics", None)
        contacts = getattr(patient, "primary_contacts", None)
        if contacts is None:
            contacts = list(patient.contacts.filter(is_primary=True)[:1])
        contact = contacts[0] if contacts else None

        return cls.build(
            patient_id=patient.id,
            first_name=getattr(demo, "first_name", ""),
            last_name=getattr(demo, "last_name", ""),
            date_of_birth=getattr(demo, "date_of_birth", None),
            phone=contact.best_phone if contact else "",
            first_name_soundex=getattr(demo, "first_name_soundex", ""),
            last_name_soundex=getattr(demo, "last_name_soundex", ""),
        )


@dataclass(frozen=True)
class MatchScore:
    score: int
    reasons: List[str] = field(default_factory=list)


def _same_text(a: str, b: str) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def _same_code(a: str, b: str) -> bool:
    return bool(a) and a == b


def score_pair(a: PatientSnapshot, b: PatientSnapshot) -> MatchScore:
    score = 0
    reasons: List[str] = []

    if a.date_of_birth is not None and a.date_of_birth == b.date_of_birth:
        score += WEIGHT_DOB
        reasons.append(REASON_DOB)

    if _same_text(a.first_name, b.first_name):
        score += WEIGHT_FIRST_EXACT
        reasons.append(REASON_FIRST_EXACT)
    elif _same_code(a.first_name_soundex, b.first_name_soundex):
        score += WEIGHT_FIRST_PHONETIC
        reasons.append(REASON_FIRST_PHONETIC)

    if _same_text(a.last_name, b.last_name):
        score += WEIGHT_LAST_EXACT
        reasons.append(REASON_LAST_EXACT)
    elif _same_code(a.last_name_soundex, b.last_name_soundex):
        score += WEIGHT_LAST_PHONETIC
        reasons.append(REASON_LAST_PHONETIC)

    if a.phone and a.phone == b.phone:
        score += WEIGHT_PHONE
        reasons.append(REASON_PHONE)

    return MatchScore(score=max(0, min(score, MAX_SCORE)), reasons=reasons)


def match_threshold() -> int:
    return int(getattr(settings, "DEDUP_MATCH_THRESHOLD", DEFAULT_THRESHOLD))


def is_reportable(score: int | MatchScore) -> bool:
    value = score.score if isinstance(score, MatchScore) else score
    return value >= match_threshold()
