# chiro_core/patients/phonetics.py
from __future__ import annotations

import re

_NON_LETTERS = re.compile(r"[^A-Z]")

_CLASSES = {
    **dict.fromkeys("BFPV", "1"),
    **dict.fromkeys("CGJKQSXZ", "2"),
    **dict.fromkeys("DT", "3"),
    "L": "4",
    **dict.fromkeys("MN", "5"),
    "R": "6",
}

CODE_LENGTH = 4


def soundex(name: str | None) -> str:
    """
    4-character phonetic code used for duplicate matching and name search.

    Variant notes (pinned by tests):
    - The first letter's own class seeds the adjacency memory, so "Pfister" -> P236.
    - Vowels and H/W/Y emit nothing and do NOT reset adjacency: consonants of the
      same class separated only by them collapse ("Jackson" -> J500, "Tymczak" -> T520).
    - Non-letters are dropped; an input with no letters yields "" (callers skip matching).
    """
    cleaned = _NON_LETTERS.sub("", (name or "").upper())
    if not cleaned:
        return ""

    result = cleaned[0]
    prev = _CLASSES.get(cleaned[0], "")

    for ch in cleaned[1:]:
        if len(result) >= CODE_LENGTH:
            break
        code = _CLASSES.get(ch, "")
        if code and code != prev:
            result += code
        prev = code or prev

    return result.ljust(CODE_LENGTH, "0")


_NON_DIGITS = re.compile(r"\D")


def normalize_phone(value: str | None) -> str:
    """Digits only, so "(555) 010-0100" and "555.010.0100" compare equal."""
    return _NON_DIGITS.sub("", value or "")
