"""
Risk scoring model.

Scores are the product of likelihood and impact weights and always map
back onto the five level scale in non-decreasing order.
"""

import pytest

from cmmc_tracker import risk_scoring
from cmmc_tracker.risk_scoring import RISK_LEVELS


def test_score_weights():
    assert [risk_scoring.score(level) for level in RISK_LEVELS] == [1, 2, 3, 4, 5]


def test_unknown_level_raises():
    with pytest.raises(ValueError):
        risk_scoring.score("extreme")


def test_risk_score_is_product_of_weights():
    for likelihood in RISK_LEVELS:
        for impact in RISK_LEVELS:
            expected = risk_scoring.score(likelihood) * risk_scoring.score(impact)
            assert risk_scoring.risk_score(likelihood, impact) == expected
            assert 1 <= expected <= 25


@pytest.mark.parametrize("value,level", [
    (1, "very-low"), (4, "very-low"),
    (5, "low"), (6, "low"),
    (8, "medium"), (12, "medium"),
    (15, "high"), (16, "high"),
    (20, "very-high"), (25, "very-high"),
])
def test_level_bands(value, level):
    assert risk_scoring.level_from_score(value) == level


def test_level_is_monotonic_in_score():
    ranks = [RISK_LEVELS.index(risk_scoring.level_from_score(s)) for s in range(1, 26)]
    assert ranks == sorted(ranks)


def test_assess_returns_score_and_level_together():
    assert risk_scoring.assess("high", "high") == (16, "high")
    assert risk_scoring.assess("very-high", "very-high") == (25, "very-high")
    assert risk_scoring.assess("low", "medium") == (6, "low")


def test_overall_level_uses_maximum_not_average():
    # mean of (1, 25) would be medium
    assert risk_scoring.overall_risk_level([1, 25]) == "very-high"


def test_overall_level_empty_is_low():
    assert risk_scoring.overall_risk_level([]) == "low"


def test_risk_matrix_covers_every_pair():
    matrix = risk_scoring.risk_matrix()
    assert set(matrix) == set(RISK_LEVELS)
    assert matrix["medium"]["high"] == (12, "medium")
