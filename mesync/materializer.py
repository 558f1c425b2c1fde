"""Project definitions and stored instance state onto a window of days."""
from datetime import date
from typing import Iterable, Sequence

from . import config
from .calendar_utils import at_time_of_day, normalize_to_day
from .db import CollectionStore
from .instance_key import instance_key
from .models import (
    Habit,
    HabitOccurrence,
    InstanceRecord,
    MaterializedItem,
    Medication,
    MedicationOccurrence,
    Task,
    TaskItem,
)
from .recurrence import is_due


def _index_records(store: CollectionStore, collection: str) -> dict[str, InstanceRecord]:
    return {record.id: record for record in store.load_collection(collection, InstanceRecord)}


def _state(record: InstanceRecord | None) -> dict:
    if record is None:
        return {}
    return {
        "is_completed": record.is_completed,
        "is_skipped": record.is_skipped,
        "completed_at": record.completed_at,
        "skipped_at": record.skipped_at,
        "action_timestamp": record.completed_at or record.skipped_at,
    }


def task_item(task: Task) -> TaskItem:
    return TaskItem(
        id=task.id,
        name=task.name,
        description=task.description,
        scheduled_at=task.due_date,
        is_completed=task.is_completed,
        is_skipped=task.is_skipped,
        completed_at=task.completed_at,
        skipped_at=task.skipped_at,
        action_timestamp=task.completed_at or task.skipped_at,
        definition_id=task.id,
        scheduled_date=normalize_to_day(task.due_date),
        task=task,
    )


def habit_occurrence(habit: Habit, day: date, record: InstanceRecord | None = None) -> HabitOccurrence:
    return HabitOccurrence(
        id=instance_key(habit.id, day, 1),
        name=habit.name,
        description=habit.description,
        scheduled_at=at_time_of_day(day, habit.remind_at),
        definition_id=habit.id,
        scheduled_date=day,
        sub_index=1,
        habit=habit,
        **_state(record),
    )


def habit_occurrences(
    habit: Habit, window: Iterable[date], records: dict[str, InstanceRecord]
) -> list[HabitOccurrence]:
    return [
        habit_occurrence(habit, day, records.get(instance_key(habit.id, day, 1)))
        for day in window
        if is_due(habit.recurrence, day)
    ]


def medication_occurrence(
    medication: Medication, day: date, dose: int, record: InstanceRecord | None = None
) -> MedicationOccurrence:
    """Dose N is due at reminder_times[N-1], or midnight when it has none."""
    reminder = medication.reminder_times[dose - 1] if dose <= len(medication.reminder_times) else None
    return MedicationOccurrence(
        id=instance_key(medication.id, day, dose),
        name=medication.name,
        description=medication.description or medication.instructions,
        scheduled_at=at_time_of_day(day, reminder),
        definition_id=medication.id,
        scheduled_date=day,
        sub_index=dose,
        medication=medication,
        **_state(record),
    )


def medication_occurrences(
    medication: Medication, window: Iterable[date], records: dict[str, InstanceRecord]
) -> list[MedicationOccurrence]:
    return [
        medication_occurrence(medication, day, dose, records.get(instance_key(medication.id, day, dose)))
        for day in window
        for dose in range(1, medication.times_per_day + 1)
    ]


def materialize(
    definitions: Sequence[Task | Habit | Medication],
    window: Sequence[date],
    store: CollectionStore,
) -> list[MaterializedItem]:
    """Return every item due in the window, sorted by scheduled time.

    Read-only. Ties keep the order of definitions, then days, then doses.
    """
    window = [normalize_to_day(day) for day in window]
    if not window:
        return []
    in_window = set(window)

    habit_records = _index_records(store, config.HABIT_INSTANCES)
    medication_records = _index_records(store, config.MEDICATION_INSTANCES)

    items: list[MaterializedItem] = []
    for definition in definitions:
        match definition:
            case Task():
                if normalize_to_day(definition.due_date) in in_window:
                    items.append(task_item(definition))
            case Habit():
                items.extend(habit_occurrences(definition, window, habit_records))
            case Medication():
                items.extend(medication_occurrences(definition, window, medication_records))
            case _:
                raise TypeError(f"Unsupported definition: {type(definition).__name__}")

    return sorted(items, key=lambda item: item.scheduled_at)
