"""Policy lifecycle, review scheduling and statistics."""

import pytest
from dateutil.relativedelta import relativedelta

from cmmc_tracker.errors import InvalidTransitionError, NotFoundError
from cmmc_tracker.models import Policy
from cmmc_tracker.policies import PolicyFilters

from tests.conftest import FIXED_NOW


@pytest.mark.asyncio
async def test_lifecycle_to_effective_schedules_review(services):
    policies = services.policies
    policy = await policies.save(Policy(name="Access Control Policy", review_cycle="quarterly"))
    assert policy.status == "draft"

    for status in ("review", "approved", "effective"):
        policy = await policies.transition_status(policy.id, status)

    assert policy.effective_date == FIXED_NOW
    assert policy.next_review == FIXED_NOW + relativedelta(months=3)


@pytest.mark.asyncio
async def test_invalid_transition_raises(services):
    policy = await services.policies.save(Policy(name="Draft"))
    with pytest.raises(InvalidTransitionError):
        await services.policies.transition_status(policy.id, "effective")
    with pytest.raises(NotFoundError):
        await services.policies.transition_status("missing", "review")


@pytest.mark.asyncio
async def test_statistics_and_average_risk(services):
    policies = services.policies
    await policies.save(Policy(name="A", status="effective", risk_level="critical", type="technical"))
    await policies.save(Policy(name="B", status="draft", risk_level="low"))
    await policies.save(Policy(name="C", status="review", risk_level="medium"))
    await policies.save(Policy(name="D", status="effective", risk_level="high"))

    stats = await policies.get_statistics()
    assert stats["total"] == 4
    assert stats["compliance_rate"] == 50.0
    assert stats["effective"] == 2
    assert stats["pending_approval"] == 2
    # critical=3, low=0, medium=1, high=2
    assert stats["average_risk_level"] == pytest.approx(1.5)
    assert stats["by_type"] == {"technical": 1, "governance": 3}


@pytest.mark.asyncio
async def test_filters(services):
    policies = services.policies
    await policies.seed_defaults()

    protect = await policies.search(PolicyFilters(nist_function="protect"))
    assert len(protect) == 2
    assert [p.name for p in await policies.search(PolicyFilters(owner="ciso"))] == ["Access Control Policy"]
    assert [p.name for p in await policies.search(PolicyFilters(text="breach"))] == ["Incident Response Policy"]
    assert await policies.search(PolicyFilters(nist_function="protect", risk_level="high")) == []


@pytest.mark.asyncio
async def test_mark_reviewed_uses_review_cycle(services):
    policy = await services.policies.save(Policy(name="Annual", review_cycle="annually"))
    reviewed = await services.policies.mark_reviewed(policy.id)
    assert reviewed.last_reviewed == FIXED_NOW
    assert reviewed.next_review == FIXED_NOW + relativedelta(years=1)


@pytest.mark.asyncio
async def test_export_csv_header(services):
    await services.policies.save(Policy(name="Access Control Policy"))
    header = (await services.policies.export_csv()).split("\n")[0]
    assert header == (
        '"ID","Name","Description","Type","Status","Version","Owner","Framework",'
        '"Risk Level","Business Impact","Effective Date","Next Review"'
    )
