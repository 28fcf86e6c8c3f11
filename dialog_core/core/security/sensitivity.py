"""Sensitivity classifier: flags queries that need confidential data.

Pure and deterministic: case-insensitive substring matching against a fixed
vocabulary. Overlapping terms count separately, so "release clause" matches
"release", "clause" and "release clause".
"""

from __future__ import annotations

from dialog_core.schemas.knowledge import SensitivityAssessment, SensitivityLevel

SENSITIVE_TERMS: tuple[str, ...] = (
    "salary",
    "wage",
    "contract",
    "transfer fee",
    "transfer",
    "fee",
    "bonus",
    "clause",
    "termination clause",
    "termination",
    "release clause",
    "release",
    "buy-out",
    "compensation",
    "financial",
    "confidential",
    "agreement",
    "deal",
    "payment",
    "earnings",
)

# Matches at or above this count are "high"
_HIGH_THRESHOLD = 3


def classify(query: str) -> SensitivityAssessment:
    lowered = query.lower()
    matched = tuple(term for term in SENSITIVE_TERMS if term in lowered)

    if not matched:
        level = SensitivityLevel.LOW
    elif len(matched) >= _HIGH_THRESHOLD:
        level = SensitivityLevel.HIGH
    else:
        level = SensitivityLevel.MEDIUM

    return SensitivityAssessment(
        requires_secure_data=bool(matched),
        level=level,
        matched_keywords=matched,
    )
