"""Completion and skip transitions for occurrences and tasks.

Marking an item with the action it already carries returns it to pending;
marking it with the other action replaces the first. Completed and skipped
are never set together. A pending occurrence has no instance record, so
reverting to pending deletes the record.

Every transition is saved before it is returned.
"""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from . import config
from .calendar_utils import normalize_to_day
from .config import LOGGER
from .db import CollectionStore
from .definitions import INSTANCE_COLLECTIONS, get_definition, load_definitions
from .exceptions import NotFoundError, ValidationError
from .instance_key import instance_key
from .models import InstanceRecord, ItemKind, Medication, Task


class Action(str, Enum):
    COMPLETE = "complete"
    SKIP = "skip"
    RESET = "reset"


def _apply(
    completed_at: Optional[datetime],
    skipped_at: Optional[datetime],
    action: Action,
    now: datetime,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Return the (completed_at, skipped_at) pair after an action."""
    if action == Action.COMPLETE:
        if completed_at is not None:
            return None, None
        return now, None
    if action == Action.SKIP:
        if skipped_at is not None:
            return None, None
        return None, now
    return None, None


def _check_sub_index(kind: ItemKind, definition, sub_index: int) -> None:
    if kind == ItemKind.MEDICATION:
        medication: Medication = definition
        if not 1 <= sub_index <= medication.times_per_day:
            raise ValidationError("sub_index", f"dose must be between 1 and {medication.times_per_day}")
    elif sub_index != 1:
        raise ValidationError("sub_index", "habits have a single occurrence per day")


def transition(
    store: CollectionStore,
    kind: ItemKind,
    definition_id: str,
    day: date | datetime,
    action: Action,
    sub_index: int = 1,
    now: Optional[datetime] = None,
) -> Optional[InstanceRecord]:
    """Apply an action to one occurrence. Returns the stored record, or None when pending."""
    if kind == ItemKind.TASK:
        raise ValidationError("kind", "tasks keep their state on the task record")

    now = now or datetime.now()
    day = normalize_to_day(day)
    key = instance_key(definition_id, day, sub_index)
    collection = INSTANCE_COLLECTIONS[kind]

    with store.locked():
        definition = get_definition(store, kind, definition_id)
        _check_sub_index(kind, definition, sub_index)

        records = store.load_collection(collection, InstanceRecord)
        current = next((record for record in records if record.id == key), None)
        completed_at, skipped_at = _apply(
            current.completed_at if current else None,
            current.skipped_at if current else None,
            action,
            now,
        )

        others = [record for record in records if record.id != key]
        if completed_at is None and skipped_at is None:
            if current is None:
                return None
            store.save_collection(collection, others)
            LOGGER.info("%s %s on %s #%s is pending", kind.value, definition_id, day, sub_index)
            return None

        updated = InstanceRecord(
            id=key,
            definition_id=definition_id,
            scheduled_date=day,
            sub_index=sub_index,
            completed_at=completed_at,
            skipped_at=skipped_at,
        )
        if current is None:
            records = [*records, updated]
        else:
            records = [updated if record.id == key else record for record in records]
        store.save_collection(collection, records)
        LOGGER.info(
            "%s %s on %s #%s is %s",
            kind.value,
            definition_id,
            day,
            sub_index,
            "completed" if completed_at else "skipped",
        )
    return updated


def mark_completed(store, kind, definition_id, day, sub_index=1, now=None):
    return transition(store, kind, definition_id, day, Action.COMPLETE, sub_index, now)


def mark_skipped(store, kind, definition_id, day, sub_index=1, now=None):
    return transition(store, kind, definition_id, day, Action.SKIP, sub_index, now)


def reset(store, kind, definition_id, day, sub_index=1, now=None):
    return transition(store, kind, definition_id, day, Action.RESET, sub_index, now)


# ─────────────────────────── TASKS ───────────────────────────────────────────

def task_transition(
    store: CollectionStore,
    task_id: str,
    action: Action,
    now: Optional[datetime] = None,
) -> Task:
    """Apply an action to a task and save it in one write."""
    now = now or datetime.now()
    with store.locked():
        tasks = load_definitions(store, ItemKind.TASK)
        task = next((item for item in tasks if item.id == task_id), None)
        if task is None:
            raise NotFoundError(f"task {task_id} not found")

        # Legacy records may carry the flag without a timestamp
        completed_at = task.completed_at or (now if task.is_completed else None)
        skipped_at = task.skipped_at or (now if task.is_skipped else None)
        completed_at, skipped_at = _apply(completed_at, skipped_at, action, now)

        updated = task.model_copy(
            update={
                "is_completed": completed_at is not None,
                "is_skipped": skipped_at is not None,
                "completed_at": completed_at,
                "skipped_at": skipped_at,
                "updated_at": now,
            }
        )
        store.save_collection(config.TASKS, [updated if item.id == task_id else item for item in tasks])
    LOGGER.info("task %s: %s", task_id, action.value)
    return updated


def mark_task_completed(store: CollectionStore, task_id: str, now: Optional[datetime] = None) -> Task:
    return task_transition(store, task_id, Action.COMPLETE, now)


def mark_task_skipped(store: CollectionStore, task_id: str, now: Optional[datetime] = None) -> Task:
    return task_transition(store, task_id, Action.SKIP, now)


def reset_task(store: CollectionStore, task_id: str, now: Optional[datetime] = None) -> Task:
    return task_transition(store, task_id, Action.RESET, now)


def apply_action(
    store: CollectionStore,
    kind: ItemKind,
    definition_id: str,
    action: Action,
    day: date | datetime | None = None,
    sub_index: int = 1,
    now: Optional[datetime] = None,
):
    """Route a user action to the task or occurrence transition."""
    if kind == ItemKind.TASK:
        return task_transition(store, definition_id, action, now)
    if day is None:
        raise ValidationError("day", "the occurrence date is required")
    return transition(store, kind, definition_id, day, action, sub_index, now)
