"""
Risk assessments and threat models.

Both registers store a parent record holding a list of scored entries
(risks or threats). Every time an entry is added or changed its score
and level are recomputed together from likelihood and impact, and the
parent's ``overall_risk_level`` is recomputed from the worst entry.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from typing import Any, Dict, List, Union

from cmmc_tracker.errors import NotFoundError
from cmmc_tracker.models import Risk, RiskAssessment, Threat, ThreatModel, new_id
from cmmc_tracker import risk_scoring
from cmmc_tracker.repository import Repository, SearchFilters, format_date

logger = logging.getLogger(__name__)

STRIDE_CATEGORIES = (
    "spoofing", "tampering", "repudiation",
    "information-disclosure", "denial-of-service", "elevation-of-privilege",
)


def score_risk(risk: Risk) -> Risk:
    risk.risk_score, risk.residual_risk = risk_scoring.assess(risk.likelihood, risk.impact)
    return risk


def score_threat(threat: Threat) -> Threat:
    threat.risk_score, threat.risk_level = risk_scoring.assess(threat.likelihood, threat.impact)
    return threat


def _level_counts(levels: List[str]) -> Dict[str, int]:
    counts = Counter(levels)
    return {level: counts.get(level, 0) for level in risk_scoring.RISK_LEVELS}


@dataclasses.dataclass
class AssessmentFilters(SearchFilters):
    status: Any = None
    framework: Any = None
    overall_risk_level: Any = None


class RiskAssessmentService(Repository[RiskAssessment]):
    collection = "riskAssessments"
    model = RiskAssessment
    id_prefix = "assessment"
    text_fields = ("title", "description", "assessor")
    group_fields = ("status", "framework", "overall_risk_level")
    good_status = "approved"
    csv_columns = (
        ("ID", lambda a: a.id),
        ("Title", lambda a: a.title),
        ("Status", lambda a: a.status),
        ("Framework", lambda a: a.framework),
        ("Risks", lambda a: len(a.risks)),
        ("Overall Risk Level", lambda a: a.overall_risk_level),
        ("Assessor", lambda a: a.assessor),
        ("Assessment Date", lambda a: format_date(a.assessment_date)),
    )

    def prepare(self, item: RiskAssessment) -> None:
        for risk in item.risks:
            if not risk.id:
                risk.id = new_id("risk")
            score_risk(risk)
        item.overall_risk_level = risk_scoring.overall_risk_level(r.risk_score for r in item.risks)

    def extra_statistics(self, items: List[RiskAssessment]) -> Dict[str, Any]:
        risks = [r for a in items for r in a.risks]
        return {
            "total_risks": len(risks),
            "risks_by_level": _level_counts([r.residual_risk for r in risks]),
            "average_risk_score": sum(r.risk_score for r in risks) / len(risks) if risks else 0.0,
        }

    async def add_risk(self, assessment_id: str, risk: Union[Risk, Dict[str, Any]]) -> Risk:
        assessment = await self.require(assessment_id)
        if isinstance(risk, dict):
            risk = Risk.from_dict(risk)
        if not risk.id:
            risk.id = new_id("risk")
        score_risk(risk)
        updated = await self.update(assessment_id, risks=assessment.risks + [risk])
        logger.info("Added risk '%s' (%s) to assessment '%s'", risk.id, risk.residual_risk, assessment_id)
        return next(r for r in updated.risks if r.id == risk.id)

    async def update_risk(self, assessment_id: str, risk_id: str, **changes: Any) -> Risk:
        """Change fields of a risk; score and level are always recomputed."""
        assessment = await self.require(assessment_id)
        if not any(r.id == risk_id for r in assessment.risks):
            raise NotFoundError("risks", risk_id)
        for derived in ("risk_score", "residual_risk", "id"):
            changes.pop(derived, None)
        risks = [score_risk(dataclasses.replace(r, **changes)) if r.id == risk_id else r for r in assessment.risks]
        updated = await self.update(assessment_id, risks=risks)
        return next(r for r in updated.risks if r.id == risk_id)

    async def remove_risk(self, assessment_id: str, risk_id: str) -> RiskAssessment:
        assessment = await self.require(assessment_id)
        remaining = [r for r in assessment.risks if r.id != risk_id]
        if len(remaining) == len(assessment.risks):
            raise NotFoundError("risks", risk_id)
        return await self.update(assessment_id, risks=remaining)


class ThreatModelService(Repository[ThreatModel]):
    collection = "threatModels"
    model = ThreatModel
    id_prefix = "threat_model"
    text_fields = ("title", "description", "system_name")
    group_fields = ("status", "methodology", "overall_risk_level")
    good_status = "approved"
    csv_columns = (
        ("ID", lambda m: m.id),
        ("Title", lambda m: m.title),
        ("System", lambda m: m.system_name),
        ("Methodology", lambda m: m.methodology),
        ("Status", lambda m: m.status),
        ("Threats", lambda m: len(m.threats)),
        ("Overall Risk Level", lambda m: m.overall_risk_level),
    )

    def prepare(self, item: ThreatModel) -> None:
        for threat in item.threats:
            if not threat.id:
                threat.id = new_id("threat")
            score_threat(threat)
        item.overall_risk_level = risk_scoring.overall_risk_level(t.risk_score for t in item.threats)

    def extra_statistics(self, items: List[ThreatModel]) -> Dict[str, Any]:
        threats = [t for m in items for t in m.threats]
        return {
            "total_threats": len(threats),
            "threats_by_level": _level_counts([t.risk_level for t in threats]),
            "threats_by_category": self.count_by(threats, "category"),
        }

    async def add_threat(self, model_id: str, threat: Union[Threat, Dict[str, Any]]) -> Threat:
        threat_model = await self.require(model_id)
        if isinstance(threat, dict):
            threat = Threat.from_dict(threat)
        if not threat.id:
            threat.id = new_id("threat")
        score_threat(threat)
        updated = await self.update(model_id, threats=threat_model.threats + [threat])
        logger.info("Added threat '%s' (%s) to model '%s'", threat.id, threat.risk_level, model_id)
        return next(t for t in updated.threats if t.id == threat.id)

    async def update_threat(self, model_id: str, threat_id: str, **changes: Any) -> Threat:
        """Change fields of a threat; score and level are always recomputed."""
        threat_model = await self.require(model_id)
        if not any(t.id == threat_id for t in threat_model.threats):
            raise NotFoundError("threats", threat_id)
        for derived in ("risk_score", "risk_level", "id"):
            changes.pop(derived, None)
        threats = [
            score_threat(dataclasses.replace(t, **changes)) if t.id == threat_id else t
            for t in threat_model.threats
        ]
        updated = await self.update(model_id, threats=threats)
        return next(t for t in updated.threats if t.id == threat_id)

    async def remove_threat(self, model_id: str, threat_id: str) -> ThreatModel:
        threat_model = await self.require(model_id)
        remaining = [t for t in threat_model.threats if t.id != threat_id]
        if len(remaining) == len(threat_model.threats):
            raise NotFoundError("threats", threat_id)
        return await self.update(model_id, threats=remaining)
