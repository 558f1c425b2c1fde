"""Finished-item history and completion counts for the habit and medication screens."""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from . import config
from .calendar_utils import normalize_to_day
from .db import CollectionStore
from .definitions import load_definitions
from .exceptions import ValidationError
from .materializer import habit_occurrence, medication_occurrence, medication_occurrences, task_item
from .models import InstanceRecord, ItemKind, MaterializedItem
from .recurrence import is_due

HISTORY_PAGE_SIZE = 30


@dataclass
class HistoryPage:
    total: int = 0
    items: list[MaterializedItem] = field(default_factory=list)


@dataclass
class DayCount:
    day: date
    completed: int
    total: int


def finished_items(store: CollectionStore) -> list[MaterializedItem]:
    """Every completed or skipped task and occurrence, most recent action first.

    Instance records whose definition is gone are left out.
    """
    items: list[MaterializedItem] = [
        task_item(task) for task in load_definitions(store, ItemKind.TASK) if task.is_completed or task.is_skipped
    ]

    habits = {habit.id: habit for habit in load_definitions(store, ItemKind.HABIT)}
    for record in store.load_collection(config.HABIT_INSTANCES, InstanceRecord):
        habit = habits.get(record.definition_id)
        if habit and (record.is_completed or record.is_skipped):
            items.append(habit_occurrence(habit, record.scheduled_date, record))

    medications = {medication.id: medication for medication in load_definitions(store, ItemKind.MEDICATION)}
    for record in store.load_collection(config.MEDICATION_INSTANCES, InstanceRecord):
        medication = medications.get(record.definition_id)
        if medication and (record.is_completed or record.is_skipped):
            items.append(medication_occurrence(medication, record.scheduled_date, record.sub_index, record))

    # Legacy tasks without a timestamp sort last
    return sorted(items, key=lambda item: item.action_timestamp or datetime.min, reverse=True)


def history(
    store: CollectionStore,
    kind: Optional[ItemKind] = None,
    search: Optional[str] = None,
    offset: int = 0,
    limit: int = HISTORY_PAGE_SIZE,
) -> HistoryPage:
    if offset < 0:
        raise ValidationError("offset", "must not be negative")
    if limit < 1:
        raise ValidationError("limit", "must be at least 1")

    items = finished_items(store)
    if kind is not None:
        items = [item for item in items if item.kind == kind.value]
    if search:
        needle = search.casefold()
        items = [item for item in items if needle in item.name.casefold() or needle in item.description.casefold()]
    return HistoryPage(total=len(items), items=items[offset:offset + limit])


# ─────────────────────────── HABITS ──────────────────────────────────────────

def habit_day_counts(store: CollectionStore, day: date | datetime) -> DayCount:
    """Completed habit occurrences on a day against the habits due that day."""
    day = normalize_to_day(day)
    habits = load_definitions(store, ItemKind.HABIT)
    known = {habit.id for habit in habits}
    completed = sum(
        1
        for record in store.load_collection(config.HABIT_INSTANCES, InstanceRecord)
        if record.scheduled_date == day and record.is_completed and record.definition_id in known
    )
    total = sum(1 for habit in habits if is_due(habit.recurrence, day))
    return DayCount(day=day, completed=completed, total=total)


def habit_calendar(store: CollectionStore, year: int, month: int) -> list[DayCount]:
    if not 1 <= year <= 9999:
        raise ValidationError("year", "must be between 1 and 9999")
    if not 1 <= month <= 12:
        raise ValidationError("month", "must be between 1 and 12")
    first = date(year, month, 1)
    last = first + relativedelta(day=31)
    return [habit_day_counts(store, first + relativedelta(days=offset)) for offset in range(last.day)]


def habit_summary(store: CollectionStore, now: Optional[datetime] = None) -> dict:
    today = habit_day_counts(store, now or datetime.now())
    return {
        "total": len(load_definitions(store, ItemKind.HABIT)),
        "due_today": today.total,
        "completed_today": today.completed,
    }


# ─────────────────────────── MEDICATIONS ─────────────────────────────────────

def medication_summary(store: CollectionStore, now: Optional[datetime] = None) -> dict:
    today = normalize_to_day(now or datetime.now())
    medications = load_definitions(store, ItemKind.MEDICATION)
    records = {record.id: record for record in store.load_collection(config.MEDICATION_INSTANCES, InstanceRecord)}
    doses = [dose for medication in medications for dose in medication_occurrences(medication, [today], records)]
    return {
        "total": len(medications),
        "doses_today": len(doses),
        "taken_today": sum(1 for dose in doses if dose.is_completed),
    }
