"""Risk assessments and threat models keep score, level and overall level in step."""

import pytest

from cmmc_tracker.errors import NotFoundError
from cmmc_tracker.models import Risk, RiskAssessment, Threat, ThreatModel


@pytest.mark.asyncio
async def test_overall_level_is_worst_risk(services):
    register = services.risk_assessments
    assessment = await register.save(RiskAssessment(title="Annual CUI assessment"))
    assert assessment.overall_risk_level == "low"

    first = await register.add_risk(assessment.id, {"title": "Phishing", "likelihood": "high", "impact": "high"})
    second = await register.add_risk(assessment.id, Risk(title="Ransomware", likelihood="very-high", impact="very-high"))

    assert (first.risk_score, first.residual_risk) == (16, "high")
    assert (second.risk_score, second.residual_risk) == (25, "very-high")
    stored = await register.get_by_id(assessment.id)
    assert stored.overall_risk_level == "very-high"


@pytest.mark.asyncio
async def test_update_risk_rescores_and_ignores_derived_fields(services):
    register = services.risk_assessments
    assessment = await register.save(RiskAssessment(
        title="Quarterly",
        risks=[Risk(id="r1", title="Lost laptop", likelihood="low", impact="low")],
    ))
    assert assessment.risks[0].risk_score == 4
    assert assessment.overall_risk_level == "very-low"

    updated = await register.update_risk(assessment.id, "r1", impact="very-high", risk_score=1)
    assert (updated.risk_score, updated.residual_risk) == (10, "medium")
    assert (await register.get_by_id(assessment.id)).overall_risk_level == "medium"

    with pytest.raises(NotFoundError):
        await register.update_risk(assessment.id, "missing", impact="low")


@pytest.mark.asyncio
async def test_unknown_level_is_rejected(services):
    register = services.risk_assessments
    assessment = await register.save(RiskAssessment(title="Bad input"))
    with pytest.raises(ValueError):
        await register.add_risk(assessment.id, {"title": "Odd", "likelihood": "extreme"})


@pytest.mark.asyncio
async def test_remove_last_risk_resets_overall_level(services):
    register = services.risk_assessments
    assessment = await register.save(RiskAssessment(
        title="Small",
        risks=[Risk(id="r1", likelihood="very-high", impact="high")],
    ))
    assert assessment.overall_risk_level == "very-high"
    emptied = await register.remove_risk(assessment.id, "r1")
    assert emptied.overall_risk_level == "low"


@pytest.mark.asyncio
async def test_register_statistics(services):
    register = services.risk_assessments
    await register.save(RiskAssessment(title="A", risks=[
        Risk(likelihood="high", impact="high"),
        Risk(likelihood="low", impact="low"),
    ]))
    stats = await register.get_statistics()
    assert stats["total_risks"] == 2
    assert stats["risks_by_level"]["high"] == 1
    assert stats["risks_by_level"]["very-low"] == 1
    assert stats["average_risk_score"] == 10.0


@pytest.mark.asyncio
async def test_threat_model(services):
    models = services.threat_models
    model = await models.save(ThreatModel(title="CUI enclave", system_name="File share"))

    spoof = await models.add_threat(model.id, Threat(title="Credential theft", category="spoofing",
                                                     likelihood="medium", impact="high"))
    await models.add_threat(model.id, {"title": "Log wipe", "category": "repudiation",
                                       "likelihood": "low", "impact": "medium"})
    assert (spoof.risk_score, spoof.risk_level) == (12, "medium")

    stored = await models.get_by_id(model.id)
    assert stored.overall_risk_level == "medium"

    raised = await models.update_threat(model.id, spoof.id, likelihood="very-high")
    assert (raised.risk_score, raised.risk_level) == (20, "very-high")
    assert (await models.get_by_id(model.id)).overall_risk_level == "very-high"

    stats = await models.get_statistics()
    assert stats["threats_by_category"] == {"spoofing": 1, "repudiation": 1}

    await models.remove_threat(model.id, spoof.id)
    with pytest.raises(NotFoundError):
        await models.remove_threat(model.id, spoof.id)


def test_scores_are_derived_whenever_a_record_is_built():
    risk = Risk(likelihood="very-high", impact="very-high", risk_score=1, residual_risk="low")
    assert (risk.risk_score, risk.residual_risk) == (25, "very-high")

    threat = Threat.from_dict({"likelihood": "high", "impact": "low", "riskScore": 99, "riskLevel": "very-low"})
    assert (threat.risk_score, threat.risk_level) == (8, "medium")

    assert RiskAssessment(risks=[risk], overall_risk_level="very-low").overall_risk_level == "very-high"
    assert ThreatModel(threats=[threat]).overall_risk_level == "medium"

    with pytest.raises(ValueError):
        Risk(likelihood="extreme")
