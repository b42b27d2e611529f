"""
MOC Studio
Risk scoring: probability × severity on a 5×5 matrix.

Pure functions, no database access. Range checking is the caller's job;
``validate_risk_value`` is the guard the lifecycle service runs at the
write boundary.

Tiers:
    1-4   → low
    5-9   → medium
    10-14 → high
    15-25 → critical
"""

from __future__ import annotations

from dataclasses import dataclass

from mocstudio.core.exceptions import ValidationError

RISK_MIN = 1
RISK_MAX = 5

RISK_TIERS = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class RiskAssessment:
    """Score and tier for one probability/severity pair."""
    probability: int
    severity: int
    score: int
    tier: str

    def to_dict(self) -> dict:
        return {
            "probability": self.probability,
            "severity": self.severity,
            "score": self.score,
            "tier": self.tier,
        }


def calculate_risk_score(probability: int, severity: int) -> int:
    """
    Calculate risk score: probability (1-5) × severity (1-5).
    Range: 1–25.
    """
    return probability * severity


def risk_tier(score: int) -> str:
    if score >= 15:
        return "critical"
    if score >= 10:
        return "high"
    if score >= 5:
        return "medium"
    return "low"


def assess_risk(probability: int, severity: int) -> RiskAssessment:
    score = calculate_risk_score(probability, severity)
    return RiskAssessment(
        probability=probability,
        severity=severity,
        score=score,
        tier=risk_tier(score),
    )


def validate_risk_value(name: str, value) -> int:
    """
    Coerce a probability/severity input to int and check it is in [1, 5].

    Raises:
        ValidationError: non-integer or out-of-range value.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", details={name: "invalid"})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", details={name: "invalid"})
    if str(number) != str(value).strip() and not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", details={name: "invalid"})
    if number < RISK_MIN or number > RISK_MAX:
        raise ValidationError(
            f"{name} must be between {RISK_MIN} and {RISK_MAX}",
            details={name: f"out of range: {value}"},
        )
    return number
