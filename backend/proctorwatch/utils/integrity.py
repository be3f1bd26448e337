from collections.abc import Iterable
from enum import Enum

from proctorwatch.schemas.session import ProctoringEvent


WEIGHTS = {
    "low": 2,
    "medium": 5,
    "high": 10,
}

MAX_SCORE = 100


class IntegrityTier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"

    @property
    def label(self) -> str:
        return TIER_LABELS[self]


TIER_LABELS = {
    IntegrityTier.EXCELLENT: "Excellent",
    IntegrityTier.GOOD: "Good",
    IntegrityTier.MODERATE: "Moderate Concerns",
    IntegrityTier.SIGNIFICANT: "Significant Issues",
}


def deduction(severity: str) -> int:
    return WEIGHTS[severity]


def score_severities(severities: Iterable[str]) -> int:
    total = sum(deduction(severity) for severity in severities)
    return max(0, MAX_SCORE - total)


def score_events(events: Iterable[ProctoringEvent]) -> int:
    return score_severities(event.severity for event in events)


def integrity_tier(score: int) -> IntegrityTier:
    if score >= 90:
        return IntegrityTier.EXCELLENT
    if score >= 70:
        return IntegrityTier.GOOD
    if score >= 50:
        return IntegrityTier.MODERATE
    return IntegrityTier.SIGNIFICANT
