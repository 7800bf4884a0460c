"""
Evidence repository.

Evidence items document how a control is met. An item counts towards
compliance once a reviewer has ``approved`` it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cmmc_tracker.models import DateRange, EvidenceItem
from cmmc_tracker.repository import Repository, SearchFilters, format_date

logger = logging.getLogger(__name__)

EVIDENCE_TYPES = (
    "document", "screenshot", "configuration", "log", "test-result",
    "certificate", "policy", "procedure", "training-record", "audit-report",
)
EVIDENCE_STATUSES = ("draft", "pending-review", "approved", "rejected", "archived")
RISK_ORDER = ("low", "medium", "high", "critical")


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return "N/A"
    return f"{size / 1024:.2f} KB"


@dataclass
class EvidenceFilters(SearchFilters):
    type: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    control_id: Optional[str] = None
    framework: Optional[str] = None
    uploaded_by: Optional[str] = None
    # Inclusive bounds on upload_date
    upload_range: Optional[DateRange] = None


class EvidenceRepository(Repository[EvidenceItem]):
    collection = "evidence"
    model = EvidenceItem
    id_prefix = "evidence"
    group_fields = ("type", "category", "status", "control_id", "framework", "uploaded_by")
    good_status = "approved"
    level_field = "risk_level"
    level_order = RISK_ORDER
    csv_columns = (
        ("ID", lambda e: e.id),
        ("Name", lambda e: e.name),
        ("Type", lambda e: e.type),
        ("Category", lambda e: e.category),
        ("Control ID", lambda e: e.control_id),
        ("Status", lambda e: e.status),
        ("Uploaded By", lambda e: e.uploaded_by),
        ("Upload Date", lambda e: format_date(e.upload_date)),
        ("File Size", lambda e: format_file_size(e.file_size)),
        ("Compliance Status", lambda e: e.compliance_status),
        ("Risk Level", lambda e: e.risk_level),
    )

    def _field_matches(self, record: EvidenceItem, name: str, expected: Any) -> bool:
        if name == "upload_range":
            if record.upload_date is None:
                return False
            if expected.start and record.upload_date < expected.start:
                return False
            if expected.end and record.upload_date > expected.end:
                return False
            return True
        return super()._field_matches(record, name, expected)

    def prepare(self, item: EvidenceItem) -> None:
        if item.upload_date is None:
            item.upload_date = item.created_at

    def extra_statistics(self, items: List[EvidenceItem]) -> Dict[str, Any]:
        return {"total_size": sum(e.file_size or 0 for e in items)}

    async def get_for_control(self, control_id: str) -> List[EvidenceItem]:
        return await self.search(EvidenceFilters(control_id=control_id))

    async def review(self, item_id: str, approved: bool, reviewer: str, notes: str = "") -> EvidenceItem:
        """Record a review decision, approving or rejecting the item."""
        item = await self.update(
            item_id,
            status="approved" if approved else "rejected",
            reviewed_by=reviewer,
            review_date=self.clock(),
            review_notes=notes,
        )
        logger.info("Evidence '%s' %s by %s", item_id, item.status, reviewer)
        return item

    async def submit_for_review(self, item_id: str) -> EvidenceItem:
        return await self.update(item_id, status="pending-review")
