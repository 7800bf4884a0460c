"""
Compliance reporting engine.

``ReportingEngine.generate_compliance_report`` collects the statistics of
every domain repository concurrently, derives an overall score and risk
level, lays the numbers out as display-agnostic sections and attaches a
fixed set of rule-based recommendations.

Reports move through ``draft -> generating -> completed`` or
``generating -> failed``. A statistics call that fails is replaced by
that repository's zeroed statistics so one unreadable domain never
fails the whole report.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from cmmc_tracker.calendar_events import CalendarRepository
from cmmc_tracker.controls import CONTROL_STATUSES, ControlsRepository
from cmmc_tracker.errors import InvalidTransitionError, ReportGenerationError
from cmmc_tracker.evidence import EvidenceRepository
from cmmc_tracker.models import DateRange, ReportData, utcnow
from cmmc_tracker.policies import PoliciesRepository
from cmmc_tracker.repository import Repository, SearchFilters, format_date
from cmmc_tracker.team import TeamService
from cmmc_tracker import export_reports

logger = logging.getLogger(__name__)

REPORT_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "draft": ("generating",),
    "generating": ("completed", "failed"),
    "completed": (),
    "failed": (),
}

# Fields computed by generation; callers may not edit them directly
DERIVED_REPORT_FIELDS = ("status", "summary", "sections", "recommendations", "generated_at", "error")

EXPORT_FORMATS = ("json", "html", "csv", "pdf", "xlsx")

# (upper bound exclusive, level), checked in order
RISK_THRESHOLDS = (
    (50, "critical"),
    (70, "high"),
    (85, "medium"),
)

COMPLIANCE_TARGET = 80
EVIDENCE_TARGET = 70
ENGAGEMENT_TARGET = 50

RECOMMEND_COMPLIANCE = (
    "Prioritize implementing outstanding controls and bringing policies to effective status "
    "to reach at least 80% compliance."
)
RECOMMEND_OVERDUE = "Address overdue compliance events and reschedule missed reviews and deadlines."
RECOMMEND_EVIDENCE = "Collect and approve evidence for implemented controls to raise evidence compliance above 70%."
RECOMMEND_RISK = "Conduct a focused risk assessment and create a remediation plan for the highest-risk gaps."
RECOMMEND_ENGAGEMENT = "Improve team engagement by reactivating members and assigning clear compliance responsibilities."
RECOMMEND_MAINTAIN = "Maintain current compliance levels and continue regular monitoring and reviews."


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def risk_level_for_score(score: float) -> str:
    for upper, level in RISK_THRESHOLDS:
        if score < upper:
            return level
    return "low"


def build_summary(stats: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Derive the report summary from per-domain statistics."""
    controls = stats["controls"]
    policies = stats["policies"]
    evidence = stats["evidence"]
    team = stats["team"]
    calendar = stats["calendar"]

    rates = [controls["compliance_rate"], policies["compliance_rate"], evidence["compliance_rate"]]
    overall_score = round_half_up(sum(rates) / len(rates))
    return {
        "overall_score": overall_score,
        "risk_level": risk_level_for_score(overall_score),
        "controls_compliance": controls["compliance_rate"],
        "policies_compliance": policies["compliance_rate"],
        "evidence_compliance": evidence["compliance_rate"],
        "total_controls": controls["total"],
        "implemented_controls": controls.get("implemented", 0),
        "overdue_reviews": controls.get("overdue_reviews", 0),
        "total_policies": policies["total"],
        "effective_policies": policies.get("effective", 0),
        "total_evidence": evidence["total"],
        "approved_evidence": evidence["by_status"].get("approved", 0),
        "team_members": team["total"],
        "team_engagement": team["engagement_rate"],
        "overdue_tasks": team["overdue_tasks"],
        "total_events": calendar["total"],
        "overdue_events": calendar["overdue"],
        "upcoming_events": calendar["upcoming"],
    }


def build_sections(summary: Dict[str, Any], stats: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Lay the aggregated numbers out as ordered report sections."""
    controls = stats["controls"]
    executive = (
        f"Overall compliance score is {summary['overall_score']}% "
        f"({summary['risk_level']} risk). "
        f"{summary['implemented_controls']} of {summary['total_controls']} controls are implemented, "
        f"{summary['effective_policies']} of {summary['total_policies']} policies are effective and "
        f"{summary['approved_evidence']} of {summary['total_evidence']} evidence items are approved. "
        f"There are {summary['overdue_events']} overdue calendar events."
    )
    by_status = controls["by_status"]
    domain_rows = [
        ["Controls", summary["total_controls"], summary["implemented_controls"], round(summary["controls_compliance"], 1)],
        ["Policies", summary["total_policies"], summary["effective_policies"], round(summary["policies_compliance"], 1)],
        ["Evidence", summary["total_evidence"], summary["approved_evidence"], round(summary["evidence_compliance"], 1)],
        ["Team Tasks", stats["team"]["total_tasks"], stats["team"]["completed_tasks"],
         round(stats["team"]["compliance_rate"], 1)],
        ["Calendar Events", stats["calendar"]["total"], stats["calendar"]["completed"],
         round(stats["calendar"]["compliance_rate"], 1)],
    ]
    return [
        {
            "id": "executive-summary",
            "title": "Executive Summary",
            "type": "text",
            "content": executive,
        },
        {
            "id": "control-status",
            "title": "Control Implementation Status",
            "type": "chart",
            "chart": {
                "type": "pie",
                "labels": list(CONTROL_STATUSES),
                "values": [by_status.get(status, 0) for status in CONTROL_STATUSES],
            },
        },
        {
            "id": "domain-status",
            "title": "Compliance by Domain",
            "type": "table",
            "columns": ["Domain", "Total", "Compliant", "Compliance Rate (%)"],
            "rows": domain_rows,
        },
        {
            "id": "key-metrics",
            "title": "Key Metrics",
            "type": "metrics",
            "metrics": [
                {"label": "Overall Score", "value": summary["overall_score"], "unit": "%"},
                {"label": "Risk Level", "value": summary["risk_level"], "unit": ""},
                {"label": "Overdue Reviews", "value": summary["overdue_reviews"], "unit": ""},
                {"label": "Overdue Events", "value": summary["overdue_events"], "unit": ""},
                {"label": "Overdue Tasks", "value": summary["overdue_tasks"], "unit": ""},
                {"label": "Team Engagement", "value": round(summary["team_engagement"], 1), "unit": "%"},
            ],
        },
    ]


def generate_recommendations(
    summary: Dict[str, Any],
    controls_stats: Dict[str, Any],
    policies_stats: Dict[str, Any],
    evidence_stats: Dict[str, Any],
) -> List[str]:
    """Apply the recommendation rules in their fixed order."""
    recommendations = []
    if controls_stats["compliance_rate"] < COMPLIANCE_TARGET or policies_stats["compliance_rate"] < COMPLIANCE_TARGET:
        recommendations.append(RECOMMEND_COMPLIANCE)
    if summary.get("overdue_events", 0) > 0:
        recommendations.append(RECOMMEND_OVERDUE)
    if evidence_stats["compliance_rate"] < EVIDENCE_TARGET:
        recommendations.append(RECOMMEND_EVIDENCE)
    if summary.get("risk_level") in ("high", "critical"):
        recommendations.append(RECOMMEND_RISK)
    if summary.get("team_members", 0) > 0 and summary.get("team_engagement", 0) < ENGAGEMENT_TARGET:
        recommendations.append(RECOMMEND_ENGAGEMENT)
    if not recommendations:
        recommendations.append(RECOMMEND_MAINTAIN)
    return recommendations


def _to_date_range(value: Any) -> Optional[DateRange]:
    if value is None or isinstance(value, DateRange):
        return value
    if isinstance(value, dict):
        return DateRange.from_dict(value)
    start, end = value
    return DateRange.from_dict({"start": start, "end": end})


@dataclass
class ReportFilters(SearchFilters):
    type: Any = None
    status: Any = None
    framework: Any = None
    generated_by: Optional[str] = None
    # Inclusive bounds on created_at
    created_range: Optional[DateRange] = None


class ReportsRepository(Repository[ReportData]):
    collection = "reports"
    model = ReportData
    id_prefix = "report"
    text_fields = ("title", "description")
    group_fields = ("type", "status", "framework")
    good_status = "completed"
    csv_columns = (
        ("ID", lambda r: r.id),
        ("Title", lambda r: r.title),
        ("Type", lambda r: r.type),
        ("Status", lambda r: r.status),
        ("Framework", lambda r: r.framework),
        ("Generated By", lambda r: r.generated_by),
        ("Generated At", lambda r: format_date(r.generated_at)),
        ("Overall Score", lambda r: r.summary.get("overall_score", "")),
        ("Risk Level", lambda r: r.summary.get("risk_level", "")),
        ("Downloads", lambda r: r.download_count),
    )

    def _field_matches(self, record: ReportData, name: str, expected: Any) -> bool:
        if name == "created_range":
            if record.created_at is None:
                return False
            if expected.start and record.created_at < expected.start:
                return False
            if expected.end and record.created_at > expected.end:
                return False
            return True
        if isinstance(expected, (list, tuple, set, frozenset)):
            return not expected or getattr(record, name, None) in expected
        return super()._field_matches(record, name, expected)


class ReportingEngine:
    """Builds, stores and exports compliance reports."""

    def __init__(
        self,
        reports: ReportsRepository,
        controls: ControlsRepository,
        policies: PoliciesRepository,
        evidence: EvidenceRepository,
        team: TeamService,
        calendar: CalendarRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reports = reports
        self.sources: Dict[str, Repository] = {
            "controls": controls,
            "policies": policies,
            "evidence": evidence,
            "team": team,
            "calendar": calendar,
        }
        self.clock = clock

    async def collect_statistics(self) -> Dict[str, Dict[str, Any]]:
        """Fetch every domain's statistics concurrently, zeroing failed branches."""
        names = list(self.sources)
        results = await asyncio.gather(
            *(self.sources[name].get_statistics() for name in names),
            return_exceptions=True,
        )
        stats: Dict[str, Dict[str, Any]] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning("Statistics for %s unavailable, using zeroed values: %s", name, result)
                stats[name] = self.sources[name].empty_statistics()
            elif isinstance(result, BaseException):
                raise result
            else:
                stats[name] = result
        return stats

    async def _transition(self, report: ReportData, status: str, **changes: Any) -> ReportData:
        if status not in REPORT_TRANSITIONS.get(report.status, ()):
            raise InvalidTransitionError(report.status, status)
        logger.debug("Report '%s' %s -> %s", report.id, report.status, status)
        return await self.reports.update(report.id, status=status, **changes)

    async def generate_compliance_report(
        self,
        title: str,
        description: str = "",
        date_range: Any = None,
        generated_by: str = "system",
    ) -> ReportData:
        """Generate and store a compliance report.

        Raises:
            ReportGenerationError: if aggregation fails; the stored report
                is left in the ``failed`` state with the error recorded.
        """
        report = await self.reports.save(ReportData(
            title=title,
            description=description,
            type="compliance",
            status="draft",
            date_range=_to_date_range(date_range),
            generated_by=generated_by,
        ))
        report = await self._transition(report, "generating")
        try:
            stats = await self.collect_statistics()
            summary = build_summary(stats)
            sections = build_sections(summary, stats)
            recommendations = generate_recommendations(
                summary, stats["controls"], stats["policies"], stats["evidence"]
            )
        except Exception as e:
            logger.exception("Report '%s' generation failed", report.id)
            await self._transition(report, "failed", error=str(e))
            raise ReportGenerationError(report.id, f"Failed to generate report '{title}': {e}") from e

        report = await self._transition(
            report,
            "completed",
            summary=summary,
            sections=sections,
            recommendations=recommendations,
            generated_at=self.clock(),
        )
        logger.info("Generated report '%s' (score %s, %s risk)", report.id, summary["overall_score"], summary["risk_level"])
        return report

    # ------------------------------------------------------------------
    # Report store
    # ------------------------------------------------------------------
    async def get_reports(self) -> List[ReportData]:
        return await self.reports.get_all()

    async def get_report(self, report_id: str) -> Optional[ReportData]:
        return await self.reports.get_by_id(report_id)

    async def search_reports(self, filters: Optional[ReportFilters] = None) -> List[ReportData]:
        return await self.reports.search(filters)

    async def update_report(self, report_id: str, **changes: Any) -> ReportData:
        """Edit descriptive fields of a report.

        Raises:
            NotFoundError: if the report does not exist.
            ValueError: if a generated field is being edited.
        """
        derived = sorted(set(changes).intersection(DERIVED_REPORT_FIELDS))
        if derived:
            raise ValueError(f"Report field(s) {', '.join(derived)} are computed during generation")
        return await self.reports.update(report_id, **changes)

    async def delete_report(self, report_id: str) -> None:
        await self.reports.delete(report_id)

    async def get_report_statistics(self) -> Dict[str, Any]:
        return await self.reports.get_statistics()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    async def export_report(self, report_id: str, fmt: str = "json") -> Union[str, bytes]:
        """Render a stored report and count the download.

        ``json``, ``html`` and ``csv`` return text; ``pdf`` and ``xlsx``
        return bytes.
        """
        fmt = fmt.lower()
        if fmt == "excel":
            fmt = "xlsx"
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")
        report = await self.reports.require(report_id)

        if fmt == "json":
            content: Union[str, bytes] = json.dumps(report.to_dict(), indent=2, ensure_ascii=False)
        elif fmt == "html":
            content = export_reports.report_to_html(report)
        elif fmt == "csv":
            content = export_reports.report_to_csv(report)
        elif fmt == "pdf":
            content = export_reports.report_to_pdf(report)
        else:
            content = export_reports.report_to_excel(report)

        await self.reports.update(report_id, download_count=report.download_count + 1)
        logger.info("Exported report '%s' as %s", report_id, fmt)
        return content

    async def export_reports_csv(self, reports: Optional[Sequence[ReportData]] = None) -> str:
        return await self.reports.export_csv(list(reports) if reports is not None else None)
