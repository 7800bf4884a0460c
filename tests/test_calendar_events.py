"""Calendar events: scheduling queries, statistics and recurrence expansion."""

from datetime import datetime, timedelta, timezone

import pytest

from cmmc_tracker.calendar_events import CalendarFilters
from cmmc_tracker.models import CalendarEvent, Recurrence

from tests.conftest import FIXED_NOW


def _at(days, hours=0):
    return FIXED_NOW + timedelta(days=days, hours=hours)


@pytest.mark.asyncio
async def test_end_defaults_to_one_hour(services):
    event = await services.calendar.save(CalendarEvent(title="Audit", start=_at(1)))
    assert event.end == _at(1, hours=1)


@pytest.mark.asyncio
async def test_end_before_start_is_rejected(services):
    with pytest.raises(ValueError):
        await services.calendar.save(CalendarEvent(title="Bad", start=_at(1), end=_at(0)))
    assert await services.calendar.get_all() == []


@pytest.mark.asyncio
async def test_upcoming_overdue_and_complete(services):
    calendar = services.calendar
    soon = await calendar.save(CalendarEvent(title="Review", type="review", start=_at(2)))
    await calendar.save(CalendarEvent(title="Far", start=_at(30)))
    missed = await calendar.save(CalendarEvent(title="Missed deadline", type="deadline", start=_at(-3)))

    assert [e.id for e in await calendar.get_upcoming()] == [soon.id]
    assert [e.id for e in await calendar.get_overdue()] == [missed.id]

    await calendar.complete(missed.id)
    assert await calendar.get_overdue() == []


@pytest.mark.asyncio
async def test_statistics(services):
    calendar = services.calendar
    # FIXED_NOW is Monday; the week started on Sunday
    await calendar.save(CalendarEvent(title="Sunday review", start=_at(-1), status="completed"))
    await calendar.save(CalendarEvent(title="Missed", start=_at(-5)))
    await calendar.save(CalendarEvent(title="Next", start=_at(1)))

    stats = await calendar.get_statistics()
    assert stats["total"] == 3
    assert stats["completed"] == 1
    assert stats["compliance_rate"] == pytest.approx(100 / 3)
    assert stats["upcoming"] == 1
    assert stats["overdue"] == 1
    assert stats["this_week"] == 1
    assert stats["this_month"] == 1


@pytest.mark.asyncio
async def test_filters_accept_lists_and_windows(services):
    calendar = services.calendar
    await calendar.save(CalendarEvent(title="Audit", type="audit", start=_at(1), assigned_to=["alex"]))
    await calendar.save(CalendarEvent(title="Training", type="training", start=_at(3), assigned_to=["sam"]))
    await calendar.save(CalendarEvent(title="Deadline", type="deadline", start=_at(10)))

    found = await calendar.search(CalendarFilters(type=["audit", "training"]))
    assert sorted(e.title for e in found) == ["Audit", "Training"]
    assert [e.title for e in await calendar.search(CalendarFilters(assigned_to=["sam"]))] == ["Training"]
    in_range = await calendar.get_in_range(_at(0), _at(5))
    assert sorted(e.title for e in in_range) == ["Audit", "Training"]


def test_weekly_recurrence_with_count(services):
    event = CalendarEvent(
        id="event_1",
        title="Weekly standup",
        start=datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc),
        end=datetime(2024, 6, 3, 9, 30, tzinfo=timezone.utc),
        recurrence=Recurrence(frequency="weekly", occurrences=3),
    )
    occurrences = services.calendar.expand_recurrence(event)

    assert [o.start.day for o in occurrences] == [3, 10, 17]
    assert all(o.end - o.start == timedelta(minutes=30) for o in occurrences)
    assert [o.id for o in occurrences] == ["event_1_0", "event_1_1", "event_1_2"]
    assert all(o.parent_event_id == "event_1" and o.recurrence is None for o in occurrences)


def test_recurrence_stops_at_end_date(services):
    event = CalendarEvent(
        id="event_2",
        title="Daily check",
        start=datetime(2024, 6, 1, tzinfo=timezone.utc),
        recurrence=Recurrence(frequency="daily", end_date=datetime(2024, 6, 4, tzinfo=timezone.utc)),
    )
    assert len(services.calendar.expand_recurrence(event)) == 4


def test_non_recurring_event_expands_to_itself(services):
    event = CalendarEvent(id="single", title="Once", start=FIXED_NOW)
    assert services.calendar.expand_recurrence(event) == [event]


@pytest.mark.asyncio
async def test_occurrences_in_window(services):
    await services.calendar.save(CalendarEvent(
        title="Monthly review",
        start=datetime(2024, 1, 15, 10, tzinfo=timezone.utc),
        recurrence=Recurrence(frequency="monthly"),
    ))
    await services.calendar.save(CalendarEvent(title="One-off", start=datetime(2024, 3, 1, tzinfo=timezone.utc)))

    window = await services.calendar.get_occurrences(
        datetime(2024, 3, 1, tzinfo=timezone.utc), datetime(2024, 4, 30, tzinfo=timezone.utc)
    )
    assert [(o.title, o.start.month) for o in window] == [("One-off", 3), ("Monthly review", 3), ("Monthly review", 4)]
