"""Create, update and delete user definitions (tasks, habits, medications).

Every definition is validated before it reaches the store. Deleting a habit
or medication removes its instance records in the same call.
"""
from datetime import datetime, time
from typing import Optional

from . import config
from .calendar_utils import normalize_to_day
from .config import LOGGER
from .db import CollectionStore
from .exceptions import NotFoundError, ValidationError
from .models import Frequency, Habit, InstanceRecord, ItemKind, Medication, Task
from .recurrence import validate_rule

TASK_FILTERS = ("all", "today", "upcoming", "overdue")
TASK_SORTS = ("due_date", "priority", "name", "created")

DEFINITION_COLLECTIONS = {
    ItemKind.TASK: (config.TASKS, Task),
    ItemKind.HABIT: (config.HABITS, Habit),
    ItemKind.MEDICATION: (config.MEDICATIONS, Medication),
}

INSTANCE_COLLECTIONS = {
    ItemKind.HABIT: config.HABIT_INSTANCES,
    ItemKind.MEDICATION: config.MEDICATION_INSTANCES,
}


def load_definitions(store: CollectionStore, kind: ItemKind) -> list:
    collection, model = DEFINITION_COLLECTIONS[kind]
    return store.load_collection(collection, model)


def load_all_definitions(store: CollectionStore) -> list[Task | Habit | Medication]:
    return [
        *load_definitions(store, ItemKind.TASK),
        *load_definitions(store, ItemKind.HABIT),
        *load_definitions(store, ItemKind.MEDICATION),
    ]


def get_definition(store: CollectionStore, kind: ItemKind, definition_id: str):
    for definition in load_definitions(store, kind):
        if definition.id == definition_id:
            return definition
    raise NotFoundError(f"{kind.value} {definition_id} not found")


# ─────────────────────────── VALIDATION ──────────────────────────────────────

def _validate_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("name", "name is required")


def validate_task(task: Task) -> None:
    _validate_name(task.name)
    if (task.completed_at and task.skipped_at) or (task.is_completed and task.is_skipped):
        raise ValidationError("skipped_at", "a task cannot be both completed and skipped")


def validate_habit(habit: Habit) -> None:
    _validate_name(habit.name)
    validate_rule(habit.recurrence)


def validate_medication(medication: Medication) -> None:
    _validate_name(medication.name)
    if medication.times_per_day < 1:
        raise ValidationError("times_per_day", "must be at least 1")
    if len(medication.reminder_times) > medication.times_per_day:
        raise ValidationError("reminder_times", "more reminder times than doses per day")


VALIDATORS = {
    ItemKind.TASK: validate_task,
    ItemKind.HABIT: validate_habit,
    ItemKind.MEDICATION: validate_medication,
}


# ─────────────────────────── SAVE / DELETE ───────────────────────────────────

def _save(store: CollectionStore, kind: ItemKind, definition, now: Optional[datetime] = None):
    collection, _ = DEFINITION_COLLECTIONS[kind]
    VALIDATORS[kind](definition)

    now = now or datetime.now()
    with store.locked():
        existing = load_definitions(store, kind)
        previous = next((item for item in existing if item.id == definition.id), None)
        definition = definition.model_copy(
            update={
                "name": definition.name.strip(),
                "created_at": previous.created_at if previous else definition.created_at,
                "updated_at": now,
            }
        )

        if previous:
            items = [definition if item.id == definition.id else item for item in existing]
        else:
            items = [*existing, definition]
        store.save_collection(collection, items)
    LOGGER.info("%s %s %s", "Updated" if previous else "Created", kind.value, definition.id)
    return definition


def save_task(store: CollectionStore, task: Task, now: Optional[datetime] = None) -> Task:
    return _save(store, ItemKind.TASK, task, now)


def save_habit(store: CollectionStore, habit: Habit, now: Optional[datetime] = None) -> Habit:
    return _save(store, ItemKind.HABIT, habit, now)


def save_medication(
    store: CollectionStore, medication: Medication, now: Optional[datetime] = None
) -> Medication:
    return _save(store, ItemKind.MEDICATION, medication, now)


def _delete(store: CollectionStore, kind: ItemKind, definition_id: str) -> None:
    collection, _ = DEFINITION_COLLECTIONS[kind]
    with store.locked():
        existing = load_definitions(store, kind)
        remaining = [item for item in existing if item.id != definition_id]
        if len(remaining) == len(existing):
            raise NotFoundError(f"{kind.value} {definition_id} not found")

        store.save_collection(collection, remaining)

        # Cascade to the definition's instance records
        instance_collection = INSTANCE_COLLECTIONS.get(kind)
        removed = 0
        if instance_collection:
            records = store.load_collection(instance_collection, InstanceRecord)
            kept = [record for record in records if record.definition_id != definition_id]
            removed = len(records) - len(kept)
            if removed:
                store.save_collection(instance_collection, kept)
    LOGGER.info("Deleted %s %s and %s instance records", kind.value, definition_id, removed)


def delete_task(store: CollectionStore, task_id: str) -> None:
    _delete(store, ItemKind.TASK, task_id)


def delete_habit(store: CollectionStore, habit_id: str) -> None:
    _delete(store, ItemKind.HABIT, habit_id)


def delete_medication(store: CollectionStore, medication_id: str) -> None:
    _delete(store, ItemKind.MEDICATION, medication_id)


def purge_orphan_instances(store: CollectionStore) -> int:
    """Drop instance records whose definition no longer exists.

    Recovers from a delete whose cascade write failed.
    """
    purged = 0
    with store.locked():
        for kind, instance_collection in INSTANCE_COLLECTIONS.items():
            known = {definition.id for definition in load_definitions(store, kind)}
            records = store.load_collection(instance_collection, InstanceRecord)
            kept = [record for record in records if record.definition_id in known]
            if len(kept) != len(records):
                store.save_collection(instance_collection, kept)
                purged += len(records) - len(kept)
    if purged:
        LOGGER.info("Purged %s orphaned instance records", purged)
    return purged


def clear_all_data(store: CollectionStore) -> None:
    with store.locked():
        for collection in config.COLLECTIONS:
            store.save_collection(collection, [])
    LOGGER.info("All data cleared")


# ─────────────────────────── TASK LISTING ────────────────────────────────────

def list_tasks(
    store: CollectionStore,
    task_filter: str = "all",
    sort: str = "due_date",
    search: str | None = None,
    now: Optional[datetime] = None,
) -> list[Task]:
    if task_filter not in TASK_FILTERS:
        raise ValidationError("filter", f"must be one of {', '.join(TASK_FILTERS)}")
    if sort not in TASK_SORTS:
        raise ValidationError("sort", f"must be one of {', '.join(TASK_SORTS)}")

    now = now or datetime.now()
    today = normalize_to_day(now)
    tasks = load_definitions(store, ItemKind.TASK)

    if task_filter == "today":
        tasks = [t for t in tasks if normalize_to_day(t.due_date) == today]
    elif task_filter == "upcoming":
        tasks = [t for t in tasks if t.due_date > now]
    elif task_filter == "overdue":
        tasks = [t for t in tasks if t.due_date < now and not t.is_completed]

    if search:
        needle = search.casefold()
        tasks = [t for t in tasks if needle in t.name.casefold() or needle in t.description.casefold()]

    if sort == "due_date":
        tasks.sort(key=lambda t: t.due_date)
    elif sort == "priority":
        tasks.sort(key=lambda t: t.priority.sort_order)
    elif sort == "name":
        tasks.sort(key=lambda t: t.name.casefold())
    elif sort == "created":
        tasks.sort(key=lambda t: t.created_at)
    return tasks


# ─────────────────────────── HABIT / MEDICATION LISTING ──────────────────────

# Reminder-hour ranges as (start, end); night wraps past midnight
MEDICATION_PERIODS = {
    "morning": (5, 12),
    "afternoon": (12, 17),
    "evening": (17, 21),
    "night": (21, 5),
}


def _matches(needle: str | None, *fields: str) -> bool:
    if not needle:
        return True
    needle = needle.casefold()
    return any(needle in field.casefold() for field in fields)


def list_habits(
    store: CollectionStore,
    frequency: Frequency | None = None,
    search: str | None = None,
) -> list[Habit]:
    """Habits sorted by name, optionally narrowed to one frequency."""
    habits = load_definitions(store, ItemKind.HABIT)
    if frequency is not None:
        habits = [h for h in habits if h.recurrence.frequency == frequency]
    habits = [h for h in habits if _matches(search, h.name, h.description)]
    return sorted(habits, key=lambda h: h.name.casefold())


def in_period(at: time, period: str) -> bool:
    start, end = MEDICATION_PERIODS[period]
    if start < end:
        return start <= at.hour < end
    return at.hour >= start or at.hour < end


def list_medications(
    store: CollectionStore,
    period: str = "all",
    search: str | None = None,
) -> list[Medication]:
    """Medications sorted by name.

    A period keeps medications with at least one reminder time in it.
    """
    if period != "all" and period not in MEDICATION_PERIODS:
        raise ValidationError("period", f"must be one of all, {', '.join(MEDICATION_PERIODS)}")

    medications = load_definitions(store, ItemKind.MEDICATION)
    if period != "all":
        medications = [m for m in medications if any(in_period(at, period) for at in m.reminder_times)]
    medications = [m for m in medications if _matches(search, m.name, m.description, m.instructions)]
    return sorted(medications, key=lambda m: m.name.casefold())
