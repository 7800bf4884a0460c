"""
Security controls repository.

Tracks the implementation state of CMMC practices. A control counts as
compliant once it is ``implemented``. Reviews are due every
``DEFAULT_REVIEW_INTERVAL_DAYS`` unless a date is set explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from cmmc_tracker.models import Control
from cmmc_tracker.repository import Repository, SearchFilters, format_date

logger = logging.getLogger(__name__)

CONTROL_STATUSES = ("implemented", "partially-implemented", "not-implemented", "not-applicable")
PRIORITIES = ("low", "medium", "high", "critical")
DEFAULT_REVIEW_INTERVAL_DAYS = 90

DEFAULT_CONTROLS: List[Dict[str, Any]] = [
    {
        "id": "control_ac_001",
        "name": "Limit information system access to authorized users",
        "description": "Limit information system access to authorized users, processes acting on behalf "
                       "of authorized users, or devices (including other information systems).",
        "control_id": "AC.1.001",
        "category": "Access Control",
        "subcategory": "Access Control Policy and Procedures",
        "priority": "high",
        "owner": "IT Security Team",
        "risk_level": "high",
        "business_impact": "high",
        "related_controls": ["AC.1.002", "AC.1.003"],
        "implementation_guidance": "Implement user account management, authentication mechanisms "
                                   "and authorization policies.",
        "tags": ["access-control", "authentication", "authorization"],
    },
    {
        "id": "control_at_001",
        "name": "Provide basic security awareness training",
        "description": "Provide basic security awareness training to information system users, "
                       "including managers, senior executives and contractors.",
        "control_id": "AT.1.001",
        "category": "Awareness and Training",
        "subcategory": "Security Awareness and Training Policy and Procedures",
        "priority": "medium",
        "owner": "HR Department",
        "risk_level": "medium",
        "business_impact": "medium",
        "related_controls": ["AT.1.002"],
        "implementation_guidance": "Deliver a security awareness programme covering basic security "
                                   "concepts and organisational policies.",
        "tags": ["training", "awareness", "education"],
    },
]


@dataclass
class ControlFilters(SearchFilters):
    category: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    # Case-insensitive substring match
    owner: Optional[str] = None
    framework: Optional[str] = None
    risk_level: Optional[str] = None


class ControlsRepository(Repository[Control]):
    collection = "controls"
    model = Control
    id_prefix = "control"
    text_fields = ("name", "description", "control_id")
    group_fields = ("status", "priority", "category", "owner", "risk_level", "framework")
    good_status = "implemented"
    level_field = "risk_level"
    level_order = PRIORITIES
    csv_columns = (
        ("ID", lambda c: c.id),
        ("Control ID", lambda c: c.control_id),
        ("Name", lambda c: c.name),
        ("Category", lambda c: c.category),
        ("Framework", lambda c: c.framework),
        ("Status", lambda c: c.status),
        ("Priority", lambda c: c.priority),
        ("Owner", lambda c: c.owner),
        ("Risk Level", lambda c: c.risk_level),
        ("Last Reviewed", lambda c: format_date(c.last_reviewed)),
        ("Next Review", lambda c: format_date(c.next_review)),
        ("Evidence Count", lambda c: len(c.evidence)),
    )

    def _field_matches(self, record: Control, name: str, expected: Any) -> bool:
        if name == "owner":
            return str(expected).lower() in str(record.owner or "").lower()
        return super()._field_matches(record, name, expected)

    def prepare(self, item: Control) -> None:
        now = self.clock()
        if item.last_reviewed is None:
            item.last_reviewed = now
        if item.next_review is None:
            item.next_review = item.last_reviewed + timedelta(days=DEFAULT_REVIEW_INTERVAL_DAYS)
        if item.status == "implemented" and item.completion_date is None:
            item.completion_date = now

    def extra_statistics(self, items: List[Control]) -> Dict[str, Any]:
        now = self.clock()
        window_end = now + timedelta(days=self.config.review_window_days)
        by_status = self.count_by(items, "status")
        return {
            "implemented": by_status.get("implemented", 0),
            "partially_implemented": by_status.get("partially-implemented", 0),
            "not_implemented": by_status.get("not-implemented", 0),
            "not_applicable": by_status.get("not-applicable", 0),
            "overdue_reviews": sum(1 for c in items if c.next_review and c.next_review < now),
            "upcoming_reviews": sum(1 for c in items if c.next_review and now < c.next_review < window_end),
        }

    async def get_overdue_reviews(self) -> List[Control]:
        now = self.clock()
        return [c for c in await self.get_all() if c.next_review and c.next_review < now]

    async def mark_reviewed(self, item_id: str, interval_days: int = DEFAULT_REVIEW_INTERVAL_DAYS) -> Control:
        """Record a review now and schedule the next one."""
        now = self.clock()
        return await self.update(
            item_id,
            last_reviewed=now,
            next_review=now + timedelta(days=interval_days),
        )

    async def attach_evidence(self, item_id: str, evidence_id: str) -> Control:
        control = await self.require(item_id)
        if evidence_id in control.evidence:
            return control
        return await self.update(item_id, evidence=control.evidence + [evidence_id])

    async def detach_evidence(self, item_id: str, evidence_id: str) -> Control:
        control = await self.require(item_id)
        return await self.update(item_id, evidence=[e for e in control.evidence if e != evidence_id])

    async def seed_defaults(self) -> List[Control]:
        """Populate the starter Level 1 controls when the collection is empty."""
        if await self.get_all():
            return []
        seeded = []
        for data in DEFAULT_CONTROLS:
            seeded.append(await self.save(Control.from_dict(data)))
        logger.info("Seeded %d default controls", len(seeded))
        return seeded
