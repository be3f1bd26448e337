from collections.abc import Mapping

from proctorwatch.utils.integrity import IntegrityTier


TIER_MESSAGES = {
    IntegrityTier.EXCELLENT: "Excellent interview integrity maintained throughout the session.",
    IntegrityTier.GOOD: "Good overall performance with minor integrity concerns.",
    IntegrityTier.MODERATE: "Moderate integrity issues detected. Review flagged events.",
    IntegrityTier.SIGNIFICANT: "Significant integrity concerns. Manual review strongly recommended.",
}

FOCUS_LOSS_ADVISORY = "Candidate frequently lost focus. Consider environment assessment."
OBJECT_ADVISORY = "Suspicious objects detected. Verify candidate workspace setup."
MULTIPLE_FACES_ADVISORY = "Multiple faces detected. Investigate potential unauthorized assistance."
HIGH_SEVERITY_ADVISORY = "Multiple high-severity events recorded. Detailed investigation required."

FOCUS_LOSS_LIMIT = 3
HIGH_SEVERITY_LIMIT = 2


def recommend(
    tier: IntegrityTier,
    events_by_type: Mapping[str, int],
    events_by_severity: Mapping[str, int],
) -> list[str]:
    """Advisories for a session, tier message first.

    Each rule is evaluated on its own; a rule that does not trigger is
    simply left out, so the result always holds at least the tier line.
    """
    recommendations = [TIER_MESSAGES[tier]]
    if events_by_type.get("focus_loss", 0) > FOCUS_LOSS_LIMIT:
        recommendations.append(FOCUS_LOSS_ADVISORY)
    if events_by_type.get("suspicious_object", 0) > 0:
        recommendations.append(OBJECT_ADVISORY)
    if events_by_type.get("multiple_faces", 0) > 0:
        recommendations.append(MULTIPLE_FACES_ADVISORY)
    if events_by_severity.get("high", 0) > HIGH_SEVERITY_LIMIT:
        recommendations.append(HIGH_SEVERITY_ADVISORY)
    return recommendations
