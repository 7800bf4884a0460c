"""
Security policy repository.

Policies move through a review lifecycle::

    draft -> review -> approved -> effective -> archived / superseded

A policy is compliant once it is ``effective``. When a policy becomes
effective its next review is scheduled from its review cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from cmmc_tracker.errors import InvalidTransitionError
from cmmc_tracker.models import Policy
from cmmc_tracker.repository import Repository, SearchFilters, format_date

logger = logging.getLogger(__name__)

POLICY_TYPES = (
    "governance", "operational", "technical", "compliance",
    "incident-response", "data-protection", "access-control", "risk-management",
)
RISK_ORDER = ("low", "medium", "high", "critical")

POLICY_TRANSITIONS: Dict[str, tuple] = {
    "draft": ("review",),
    "review": ("draft", "approved"),
    "approved": ("review", "effective"),
    "effective": ("review", "archived", "superseded"),
    "superseded": ("archived",),
    "archived": (),
}

REVIEW_CYCLE_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "semi-annually": 6,
    "annually": 12,
    "biennially": 24,
}

DEFAULT_POLICIES: List[Dict[str, Any]] = [
    {
        "id": "policy_access_control_001",
        "name": "Access Control Policy",
        "description": "Policy governing access control mechanisms and user authentication",
        "type": "access-control",
        "owner": "CISO",
        "nist_function": "protect",
        "risk_level": "critical",
        "business_impact": "high",
        "compliance_requirements": ["AC.1.001", "AC.1.002", "AC.1.003"],
        "tags": ["access-control", "authentication", "authorization"],
    },
    {
        "id": "policy_data_protection_001",
        "name": "Data Protection Policy",
        "description": "Policy for protecting sensitive data and information assets",
        "type": "data-protection",
        "owner": "Data Protection Officer",
        "nist_function": "protect",
        "risk_level": "critical",
        "business_impact": "critical",
        "compliance_requirements": ["MP.1.001", "MP.1.002"],
        "tags": ["data-protection", "encryption", "privacy"],
    },
    {
        "id": "policy_incident_response_001",
        "name": "Incident Response Policy",
        "description": "Policy for responding to security incidents and breaches",
        "type": "incident-response",
        "owner": "Security Operations",
        "nist_function": "respond",
        "risk_level": "high",
        "business_impact": "high",
        "compliance_requirements": ["IR.1.001", "IR.1.002"],
        "tags": ["incident-response", "breach"],
    },
]


@dataclass
class PolicyFilters(SearchFilters):
    status: Optional[str] = None
    type: Optional[str] = None
    nist_function: Optional[str] = None
    # Case-insensitive substring match
    owner: Optional[str] = None
    risk_level: Optional[str] = None


class PoliciesRepository(Repository[Policy]):
    collection = "policies"
    model = Policy
    id_prefix = "policy"
    group_fields = ("status", "type", "owner", "risk_level", "nist_function", "framework")
    good_status = "effective"
    level_field = "risk_level"
    level_order = RISK_ORDER
    csv_columns = (
        ("ID", lambda p: p.id),
        ("Name", lambda p: p.name),
        ("Description", lambda p: p.description),
        ("Type", lambda p: p.type),
        ("Status", lambda p: p.status),
        ("Version", lambda p: p.version),
        ("Owner", lambda p: p.owner),
        ("Framework", lambda p: p.framework),
        ("Risk Level", lambda p: p.risk_level),
        ("Business Impact", lambda p: p.business_impact),
        ("Effective Date", lambda p: format_date(p.effective_date)),
        ("Next Review", lambda p: format_date(p.next_review)),
    )

    def _field_matches(self, record: Policy, name: str, expected: Any) -> bool:
        if name == "owner":
            return str(expected).lower() in str(record.owner or "").lower()
        return super()._field_matches(record, name, expected)

    def prepare(self, item: Policy) -> None:
        if item.status == "effective":
            now = self.clock()
            if item.effective_date is None:
                item.effective_date = now
            if item.next_review is None:
                months = REVIEW_CYCLE_MONTHS.get(item.review_cycle, 12)
                item.next_review = (item.last_reviewed or item.effective_date) + relativedelta(months=months)

    def extra_statistics(self, items: List[Policy]) -> Dict[str, Any]:
        now = self.clock()
        return {
            "effective": sum(1 for p in items if p.status == "effective"),
            "pending_approval": sum(1 for p in items if p.status in ("draft", "review")),
            "overdue_reviews": sum(1 for p in items if p.next_review and p.next_review < now),
        }

    async def transition_status(self, item_id: str, status: str) -> Policy:
        """Move a policy to ``status`` if the lifecycle allows it.

        Raises:
            NotFoundError: if the policy does not exist.
            InvalidTransitionError: if ``status`` is not reachable.
        """
        policy = await self.require(item_id)
        if status not in POLICY_TRANSITIONS.get(policy.status, ()):
            raise InvalidTransitionError(policy.status, status)
        logger.info("Policy '%s' %s -> %s", item_id, policy.status, status)
        return await self.update(item_id, status=status)

    async def mark_reviewed(self, item_id: str) -> Policy:
        policy = await self.require(item_id)
        now = self.clock()
        months = REVIEW_CYCLE_MONTHS.get(policy.review_cycle, 12)
        return await self.update(item_id, last_reviewed=now, next_review=now + relativedelta(months=months))

    async def seed_defaults(self) -> List[Policy]:
        """Populate the starter policy set when the collection is empty."""
        if await self.get_all():
            return []
        seeded = [await self.save(Policy.from_dict(data)) for data in DEFAULT_POLICIES]
        logger.info("Seeded %d default policies", len(seeded))
        return seeded
