"""
Team management.

``TeamService`` is the repository for team members and owns two helper
repositories for the team's tasks and meetings. Its statistics combine
all three collections: ``engagement_rate`` is the share of active
members and ``compliance_rate`` the share of completed tasks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from cmmc_tracker.config import AppConfig
from cmmc_tracker.data_store import DataStore
from cmmc_tracker.errors import NotFoundError
from cmmc_tracker.models import TeamMeeting, TeamMember, TeamTask, new_id, utcnow
from cmmc_tracker.repository import Repository, SearchFilters, format_date, percentage

logger = logging.getLogger(__name__)

MEMBER_STATUSES = ("active", "inactive", "pending", "suspended")
TASK_STATUSES = ("not-started", "in-progress", "completed", "on-hold", "cancelled")
NOTIFICATION_TYPES = (
    "task-assigned", "deadline-approaching", "task-completed", "policy-updated",
    "control-changed", "evidence-required", "meeting-scheduled", "system-alert",
)


@dataclass
class TeamFilters(SearchFilters):
    role: Optional[str] = None
    department: Optional[str] = None
    status: Optional[str] = None


@dataclass
class TaskFilters(SearchFilters):
    status: Optional[str] = None
    priority: Optional[str] = None
    type: Optional[str] = None
    # Member id; matches tasks assigned to that member
    assigned_to: Optional[str] = None


class TeamTasksRepository(Repository[TeamTask]):
    collection = "teamTasks"
    model = TeamTask
    id_prefix = "task"
    text_fields = ("title", "description")
    group_fields = ("status", "priority", "type")
    good_status = "completed"
    csv_columns = (
        ("ID", lambda t: t.id),
        ("Title", lambda t: t.title),
        ("Type", lambda t: t.type),
        ("Priority", lambda t: t.priority),
        ("Status", lambda t: t.status),
        ("Assigned To", lambda t: ", ".join(t.assigned_to)),
        ("Due Date", lambda t: format_date(t.due_date)),
        ("Progress", lambda t: f"{t.progress}%"),
    )

    def _field_matches(self, record: TeamTask, name: str, expected: Any) -> bool:
        if name == "assigned_to":
            return expected in record.assigned_to
        return super()._field_matches(record, name, expected)

    def prepare(self, item: TeamTask) -> None:
        if item.status == "completed":
            item.progress = 100
            if item.completed_date is None:
                item.completed_date = self.clock()

    def is_overdue(self, task: TeamTask, now: datetime) -> bool:
        return task.status not in ("completed", "cancelled") and task.due_date is not None and task.due_date < now


class TeamMeetingsRepository(Repository[TeamMeeting]):
    collection = "teamMeetings"
    model = TeamMeeting
    id_prefix = "meeting"
    text_fields = ("title", "description", "location")
    group_fields = ("status", "type")
    good_status = "completed"
    csv_columns = (
        ("ID", lambda m: m.id),
        ("Title", lambda m: m.title),
        ("Type", lambda m: m.type),
        ("Scheduled Date", lambda m: format_date(m.scheduled_date)),
        ("Duration", lambda m: m.duration),
        ("Organizer", lambda m: m.organizer),
        ("Status", lambda m: m.status),
    )


class TeamService(Repository[TeamMember]):
    collection = "teamMembers"
    model = TeamMember
    id_prefix = "member"
    text_fields = ("name", "email", "department", "organization")
    group_fields = ("role", "department", "status")
    csv_columns = (
        ("ID", lambda m: m.id),
        ("Name", lambda m: m.name),
        ("Email", lambda m: m.email),
        ("Role", lambda m: m.role),
        ("Department", lambda m: m.department),
        ("Status", lambda m: m.status),
        ("Join Date", lambda m: format_date(m.join_date)),
    )

    def __init__(
        self,
        store: DataStore,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(store, config, clock)
        self.tasks = TeamTasksRepository(store, config, clock)
        self.meetings = TeamMeetingsRepository(store, config, clock)

    def extra_text(self, record: TeamMember) -> List[str]:
        return list(record.skills or [])

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def compute_statistics(
        self,
        items: List[TeamMember],
        tasks: Sequence[TeamTask] = (),
        meetings: Sequence[TeamMeeting] = (),
    ) -> Dict[str, Any]:
        now = self.clock()
        total = len(items)
        active = sum(1 for m in items if m.status == "active")
        completed_tasks = sum(1 for t in tasks if t.status == "completed")
        return {
            "total": total,
            "active_members": active,
            "by_role": self.count_by(items, "role"),
            "by_department": self.count_by(items, "department"),
            "by_status": self.count_by(items, "status"),
            "engagement_rate": percentage(active, total),
            "total_tasks": len(tasks),
            "completed_tasks": completed_tasks,
            "overdue_tasks": sum(1 for t in tasks if self.tasks.is_overdue(t, now)),
            "compliance_rate": percentage(completed_tasks, len(tasks)),
            "total_meetings": len(meetings),
            "upcoming_meetings": sum(
                1 for m in meetings
                if m.status == "scheduled" and m.scheduled_date is not None and m.scheduled_date > now
            ),
            "average_collaboration_score": sum(m.collaboration_score for m in items) / total if total else 0.0,
            "average_compliance_score": sum(m.compliance_score for m in items) / total if total else 0.0,
        }

    def _statistics_from_store(self) -> Dict[str, Any]:
        return self.compute_statistics(
            self._records(),
            self.tasks._records(),
            self.meetings._records(),
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    async def assign_task(self, task_id: str, member_id: str) -> TeamTask:
        """Assign a task to a member and notify them."""
        member = await self.require(member_id)
        task = await self.tasks.require(task_id)
        if member_id not in task.assigned_to:
            task = await self.tasks.update(task_id, assigned_to=task.assigned_to + [member_id])
        await self.send_notification(
            member.id,
            title="Task assigned",
            message=f"You have been assigned '{task.title}'",
            type="task-assigned",
            priority=task.priority,
            action_required=True,
        )
        return task

    async def get_overdue_tasks(self) -> List[TeamTask]:
        now = self.clock()
        return [t for t in await self.tasks.get_all() if self.tasks.is_overdue(t, now)]

    async def get_upcoming_meetings(self) -> List[TeamMeeting]:
        now = self.clock()
        meetings = [
            m for m in await self.meetings.get_all()
            if m.status == "scheduled" and m.scheduled_date is not None and m.scheduled_date > now
        ]
        return sorted(meetings, key=lambda m: m.scheduled_date)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    async def send_notification(
        self,
        member_id: str,
        title: str,
        message: str,
        type: str = "system-alert",
        priority: str = "medium",
        action_required: bool = False,
        created_by: str = "system",
    ) -> Dict[str, Any]:
        member = await self.require(member_id)
        notification = {
            "id": new_id("notification"),
            "type": type,
            "title": title,
            "message": message,
            "priority": priority,
            "is_read": False,
            "action_required": action_required,
            "created_by": created_by,
            "created_at": self.clock().isoformat(),
        }
        await self.update(member_id, notifications=member.notifications + [notification])
        logger.info("Sent %s notification to member '%s'", type, member_id)
        return notification

    async def mark_notification_as_read(self, member_id: str, notification_id: str) -> None:
        member = await self.require(member_id)
        if not any(n.get("id") == notification_id for n in member.notifications):
            raise NotFoundError("notifications", notification_id)
        notifications = [
            dict(n, is_read=True) if n.get("id") == notification_id else n
            for n in member.notifications
        ]
        await self.update(member_id, notifications=notifications)

    async def get_unread_notifications(self, member_id: str) -> List[Dict[str, Any]]:
        member = await self.get_by_id(member_id)
        if member is None:
            return []
        return [n for n in member.notifications if not n.get("is_read")]
