"""
Risk scoring
============

Shared scoring model for risks and threats. Likelihood and impact are
rated on a five level scale; the product of their weights gives a risk
score between 1 and 25, which maps back onto the same scale. Score and
level are always produced together by :func:`assess` so a record can
never carry one without the other.
"""

from __future__ import annotations

from typing import Iterable, Tuple

# Ordered from least to most severe
RISK_LEVELS = ("very-low", "low", "medium", "high", "very-high")

LEVEL_SCORES = {level: rank for rank, level in enumerate(RISK_LEVELS, start=1)}

# Upper bound (inclusive) of each level band, checked in order
SCORE_BANDS = (
    (4, "very-low"),
    (6, "low"),
    (12, "medium"),
    (16, "high"),
)

EMPTY_ASSESSMENT_LEVEL = "low"


def score(level: str) -> int:
    """Return the integer weight (1-5) of a risk level.

    Raises:
        ValueError: if ``level`` is not one of :data:`RISK_LEVELS`.
    """
    try:
        return LEVEL_SCORES[level]
    except KeyError:
        raise ValueError(f"Unknown risk level {level!r}; expected one of {', '.join(RISK_LEVELS)}")


def risk_score(likelihood: str, impact: str) -> int:
    return score(likelihood) * score(impact)


def level_from_score(value: int) -> str:
    """Map a risk score onto the five level scale."""
    for upper, level in SCORE_BANDS:
        if value <= upper:
            return level
    return "very-high"


def assess(likelihood: str, impact: str) -> Tuple[int, str]:
    """Return ``(risk_score, level)`` for a likelihood/impact pair."""
    value = risk_score(likelihood, impact)
    return value, level_from_score(value)


def overall_risk_level(scores: Iterable[int]) -> str:
    """Level of the worst score, or ``"low"`` when there are none."""
    scores = list(scores)
    if not scores:
        return EMPTY_ASSESSMENT_LEVEL
    return level_from_score(max(scores))


def risk_matrix() -> dict:
    """Full likelihood x impact grid of ``(score, level)`` pairs."""
    return {
        likelihood: {impact: assess(likelihood, impact) for impact in RISK_LEVELS}
        for likelihood in RISK_LEVELS
    }
