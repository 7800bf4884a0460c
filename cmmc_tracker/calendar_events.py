"""
Compliance calendar.

Holds assessments, reviews, audits, deadlines and meetings. An event is
overdue when it has ended without being completed or cancelled.
Recurring events are stored once and expanded on demand into concrete
occurrences with ``dateutil.rrule``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule

from cmmc_tracker.models import CalendarEvent
from cmmc_tracker.repository import Repository, SearchFilters, format_date

logger = logging.getLogger(__name__)

EVENT_TYPES = ("assessment", "review", "training", "audit", "deadline", "meeting", "other")
EVENT_STATUSES = ("scheduled", "in-progress", "completed", "cancelled", "overdue")
CLOSED_STATUSES = ("completed", "cancelled")

FREQUENCIES = {
    "daily": DAILY,
    "weekly": WEEKLY,
    "monthly": MONTHLY,
    "yearly": YEARLY,
}

DEFAULT_UPCOMING_DAYS = 7
# How far ahead an open-ended recurrence is expanded
DEFAULT_EXPANSION_HORIZON = relativedelta(years=1)


@dataclass
class CalendarFilters(SearchFilters):
    """Calendar search filter.

    ``type``, ``priority`` and ``status`` accept a single value or a list
    of accepted values. ``assigned_to`` matches events assigned to any of
    the given people. ``starts_after``/``ends_before`` bound the event
    window.
    """
    type: Any = None
    priority: Any = None
    status: Any = None
    assigned_to: Optional[List[str]] = None
    starts_after: Optional[datetime] = None
    ends_before: Optional[datetime] = None


class CalendarRepository(Repository[CalendarEvent]):
    collection = "calendarEvents"
    model = CalendarEvent
    id_prefix = "event"
    text_fields = ("title", "description", "location", "notes")
    group_fields = ("type", "priority", "status")
    good_status = "completed"
    csv_columns = (
        ("ID", lambda e: e.id),
        ("Title", lambda e: e.title),
        ("Type", lambda e: e.type),
        ("Start", lambda e: format_date(e.start)),
        ("End", lambda e: format_date(e.end)),
        ("Priority", lambda e: e.priority),
        ("Status", lambda e: e.status),
        ("Assigned To", lambda e: ", ".join(e.assigned_to)),
        ("Recurring", lambda e: "Yes" if e.is_recurring else "No"),
    )

    def _field_matches(self, record: CalendarEvent, name: str, expected: Any) -> bool:
        if name == "assigned_to":
            return bool(set(record.assigned_to).intersection(expected))
        if name == "starts_after":
            return record.start is not None and record.start >= expected
        if name == "ends_before":
            return record.end is not None and record.end <= expected
        if isinstance(expected, (list, tuple, set, frozenset)):
            return not expected or getattr(record, name, None) in expected
        return super()._field_matches(record, name, expected)

    def prepare(self, item: CalendarEvent) -> None:
        if item.start is not None and item.end is None:
            item.end = item.start + timedelta(hours=1)
        if item.start and item.end and item.end < item.start:
            raise ValueError(f"Event '{item.title}' ends before it starts")

    @staticmethod
    def is_overdue(event: CalendarEvent, now: datetime) -> bool:
        return event.end is not None and event.end < now and event.status not in CLOSED_STATUSES

    def extra_statistics(self, items: List[CalendarEvent]) -> Dict[str, Any]:
        now = self.clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        # Weeks start on Sunday
        week_start = day_start - timedelta(days=(now.weekday() + 1) % 7)
        month_start = day_start.replace(day=1)
        return {
            "upcoming": sum(1 for e in items if e.start and e.start > now and e.status == "scheduled"),
            "overdue": sum(1 for e in items if self.is_overdue(e, now)),
            "completed": sum(1 for e in items if e.status == "completed"),
            "this_week": sum(1 for e in items if e.start and week_start <= e.start <= now),
            "this_month": sum(1 for e in items if e.start and month_start <= e.start <= now),
        }

    async def get_upcoming(self, days: int = DEFAULT_UPCOMING_DAYS) -> List[CalendarEvent]:
        now = self.clock()
        horizon = now + timedelta(days=days)
        events = [
            e for e in await self.get_all()
            if e.start and now <= e.start <= horizon and e.status == "scheduled"
        ]
        return sorted(events, key=lambda e: e.start)

    async def get_overdue(self) -> List[CalendarEvent]:
        now = self.clock()
        return [e for e in await self.get_all() if self.is_overdue(e, now)]

    async def get_in_range(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Events lying entirely within ``[start, end]``."""
        return await self.search(CalendarFilters(starts_after=start, ends_before=end))

    async def complete(self, item_id: str) -> CalendarEvent:
        return await self.update(item_id, status="completed")

    def expand_recurrence(self, event: CalendarEvent, until: Optional[datetime] = None) -> List[CalendarEvent]:
        """Return the concrete occurrences of ``event``.

        A non-recurring event yields itself. Occurrences keep the
        original duration and point back to the stored event through
        ``parent_event_id``. Open-ended rules stop at ``until`` or one
        year after the first occurrence.
        """
        if event.recurrence is None or event.start is None:
            return [event]
        rule = event.recurrence
        if rule.frequency not in FREQUENCIES:
            raise ValueError(f"Unsupported recurrence frequency {rule.frequency!r}")

        limit = until or (event.start + DEFAULT_EXPANSION_HORIZON)
        if rule.end_date is not None:
            limit = min(limit, rule.end_date)
        kwargs: Dict[str, Any] = {
            "dtstart": event.start,
            "interval": max(rule.interval, 1),
        }
        if rule.days_of_week:
            kwargs["byweekday"] = rule.days_of_week
        if rule.occurrences:
            kwargs["count"] = rule.occurrences
        else:
            kwargs["until"] = limit

        duration = (event.end - event.start) if event.end else timedelta(0)
        occurrences = []
        for index, start in enumerate(rrule(FREQUENCIES[rule.frequency], **kwargs)):
            if start > limit:
                break
            occurrences.append(dataclasses.replace(
                event,
                id=f"{event.id}_{index}",
                start=start,
                end=start + duration,
                recurrence=None,
                parent_event_id=event.id,
            ))
        return occurrences

    async def get_occurrences(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Every occurrence (recurrences expanded) starting within ``[start, end]``."""
        result = []
        for event in await self.get_all():
            for occurrence in self.expand_recurrence(event, until=end):
                if occurrence.start and start <= occurrence.start <= end:
                    result.append(occurrence)
        return sorted(result, key=lambda e: e.start)
