"""Team members, tasks, meetings and notifications."""

from datetime import timedelta

import pytest

from cmmc_tracker.errors import NotFoundError
from cmmc_tracker.models import TeamMeeting, TeamMember, TeamTask
from cmmc_tracker.team import TaskFilters, TeamFilters

from tests.conftest import FIXED_NOW


@pytest.mark.asyncio
async def test_statistics_combine_members_tasks_and_meetings(services):
    team = services.team
    await team.save(TeamMember(name="Alex", role="admin", department="IT", collaboration_score=80))
    await team.save(TeamMember(name="Sam", department="IT", status="inactive", collaboration_score=60))
    await team.tasks.save(TeamTask(title="Write policy", status="completed"))
    await team.tasks.save(TeamTask(title="Patch servers", due_date=FIXED_NOW - timedelta(days=1)))
    await team.tasks.save(TeamTask(title="Train staff", due_date=FIXED_NOW + timedelta(days=5)))
    await team.meetings.save(TeamMeeting(title="Kickoff", scheduled_date=FIXED_NOW + timedelta(days=2)))

    stats = await team.get_statistics()

    assert stats["total"] == 2
    assert stats["active_members"] == 1
    assert stats["engagement_rate"] == 50.0
    assert stats["by_department"] == {"IT": 2}
    assert stats["total_tasks"] == 3
    assert stats["completed_tasks"] == 1
    assert stats["overdue_tasks"] == 1
    assert stats["compliance_rate"] == pytest.approx(100 / 3)
    assert stats["upcoming_meetings"] == 1
    assert stats["average_collaboration_score"] == 70.0


@pytest.mark.asyncio
async def test_empty_team_statistics(services):
    stats = await services.team.get_statistics()
    assert stats["total"] == 0
    assert stats["engagement_rate"] == 0.0
    assert stats["compliance_rate"] == 0.0


@pytest.mark.asyncio
async def test_search_members_by_skill_and_role(services):
    team = services.team
    await team.save(TeamMember(name="Alex", role="admin", skills=["incident response"]))
    await team.save(TeamMember(name="Sam", role="contributor", skills=["auditing"]))

    assert [m.name for m in await team.search(TeamFilters(text="audit"))] == ["Sam"]
    assert [m.name for m in await team.search(TeamFilters(role="admin", status="active"))] == ["Alex"]


@pytest.mark.asyncio
async def test_completing_task_sets_progress(services):
    task = await services.team.tasks.save(TeamTask(title="Write policy"))
    done = await services.team.tasks.update(task.id, status="completed")
    assert done.progress == 100
    assert done.completed_date == FIXED_NOW


@pytest.mark.asyncio
async def test_assign_task_notifies_member(services):
    team = services.team
    member = await team.save(TeamMember(name="Alex", email="alex@example.com"))
    task = await team.tasks.save(TeamTask(title="Collect evidence", priority="high"))

    assigned = await team.assign_task(task.id, member.id)

    assert assigned.assigned_to == [member.id]
    assert [t.id for t in await team.tasks.search(TaskFilters(assigned_to=member.id))] == [task.id]
    unread = await team.get_unread_notifications(member.id)
    assert len(unread) == 1
    assert unread[0]["type"] == "task-assigned"
    assert unread[0]["priority"] == "high"

    await team.mark_notification_as_read(member.id, unread[0]["id"])
    assert await team.get_unread_notifications(member.id) == []


@pytest.mark.asyncio
async def test_notification_errors(services):
    team = services.team
    with pytest.raises(NotFoundError):
        await team.send_notification("missing", title="Hi", message="there")
    member = await team.save(TeamMember(name="Alex"))
    with pytest.raises(NotFoundError):
        await team.mark_notification_as_read(member.id, "nope")
    assert await team.get_unread_notifications("missing") == []


@pytest.mark.asyncio
async def test_overdue_tasks_and_upcoming_meetings(services):
    team = services.team
    late = await team.tasks.save(TeamTask(title="Late", due_date=FIXED_NOW - timedelta(hours=1)))
    await team.tasks.save(TeamTask(title="Done", status="completed", due_date=FIXED_NOW - timedelta(days=3)))
    later = await team.meetings.save(TeamMeeting(title="Later", scheduled_date=FIXED_NOW + timedelta(days=3)))
    sooner = await team.meetings.save(TeamMeeting(title="Sooner", scheduled_date=FIXED_NOW + timedelta(days=1)))
    await team.meetings.save(TeamMeeting(title="Past", scheduled_date=FIXED_NOW - timedelta(days=1)))

    assert [t.id for t in await team.get_overdue_tasks()] == [late.id]
    assert [m.id for m in await team.get_upcoming_meetings()] == [sooner.id, later.id]
