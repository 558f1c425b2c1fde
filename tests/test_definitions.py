from datetime import date, datetime, time

import pytest

from mesync import config
from mesync.definitions import (
    clear_all_data,
    delete_habit,
    delete_medication,
    delete_task,
    list_habits,
    list_medications,
    list_tasks,
    load_definitions,
    purge_orphan_instances,
    save_habit,
    save_medication,
    save_task,
)
from mesync.exceptions import NotFoundError, PersistenceError, ValidationError
from mesync.models import (
    Frequency,
    Habit,
    InstanceRecord,
    ItemKind,
    Medication,
    RecurrenceRule,
    Task,
    TaskPriority,
)
from mesync.state import mark_completed, mark_skipped


def daily_habit(name="Read") -> Habit:
    return Habit(name=name, recurrence=RecurrenceRule(frequency=Frequency.DAILY, anchor_date=datetime(2024, 3, 1, 8, 0)))


def test_save_habit_sets_timestamps(store):
    saved = save_habit(store, daily_habit(), now=datetime(2024, 3, 1, 12, 0))
    assert saved.updated_at == datetime(2024, 3, 1, 12, 0)

    renamed = saved.model_copy(update={"name": "  Read more  "})
    updated = save_habit(store, renamed, now=datetime(2024, 3, 2, 12, 0))
    assert updated.name == "Read more"
    assert updated.created_at == saved.created_at
    assert updated.updated_at == datetime(2024, 3, 2, 12, 0)
    assert [h.name for h in load_definitions(store, ItemKind.HABIT)] == ["Read more"]


def test_invalid_habit_is_not_persisted(store):
    habit = Habit(name="Gym", recurrence=RecurrenceRule(frequency=Frequency.WEEKLY, selected_weekdays=[]))
    with pytest.raises(ValidationError) as excinfo:
        save_habit(store, habit)
    assert excinfo.value.field == "recurrence.selected_weekdays"
    assert load_definitions(store, ItemKind.HABIT) == []


def test_blank_name_rejected(store):
    with pytest.raises(ValidationError) as excinfo:
        save_task(store, Task(name="   ", due_date=datetime(2024, 3, 1)))
    assert excinfo.value.field == "name"


def test_medication_needs_a_dose(store):
    with pytest.raises(ValidationError) as excinfo:
        save_medication(store, Medication(name="Vitamin D", times_per_day=0))
    assert excinfo.value.field == "times_per_day"

    with pytest.raises(ValidationError) as excinfo:
        save_medication(store, Medication(name="Vitamin D", times_per_day=1, reminder_times=[time(8), time(20)]))
    assert excinfo.value.field == "reminder_times"


def test_delete_habit_cascades_to_instances(store):
    habit = save_habit(store, daily_habit())
    other = save_habit(store, daily_habit("Stretch"))
    for day in (1, 2, 3):
        mark_completed(store, ItemKind.HABIT, habit.id, date(2024, 3, day))
    mark_skipped(store, ItemKind.HABIT, other.id, date(2024, 3, 1))

    delete_habit(store, habit.id)

    records = store.load_collection(config.HABIT_INSTANCES, InstanceRecord)
    assert [r.definition_id for r in records] == [other.id]
    assert [h.id for h in load_definitions(store, ItemKind.HABIT)] == [other.id]


def test_delete_medication_cascades_to_instances(store):
    medication = save_medication(store, Medication(name="Ibuprofen", times_per_day=2, reminder_times=[time(8), time(20)]))
    mark_completed(store, ItemKind.MEDICATION, medication.id, date(2024, 3, 1), 1)
    mark_completed(store, ItemKind.MEDICATION, medication.id, date(2024, 3, 1), 2)

    delete_medication(store, medication.id)

    assert store.load_collection(config.MEDICATION_INSTANCES, InstanceRecord) == []


def test_delete_unknown_definition(store):
    with pytest.raises(NotFoundError):
        delete_task(store, "missing")


def test_purge_orphan_instances(store):
    habit = save_habit(store, daily_habit())
    mark_completed(store, ItemKind.HABIT, habit.id, date(2024, 3, 1))
    orphan = InstanceRecord(id="orphan", definition_id="gone", scheduled_date=date(2024, 3, 1), completed_at=datetime(2024, 3, 1))
    records = store.load_collection(config.HABIT_INSTANCES, InstanceRecord)
    store.save_collection(config.HABIT_INSTANCES, [*records, orphan])

    assert purge_orphan_instances(store) == 1
    assert [r.definition_id for r in store.load_collection(config.HABIT_INSTANCES, InstanceRecord)] == [habit.id]
    assert purge_orphan_instances(store) == 0


def test_clear_all_data(store):
    save_habit(store, daily_habit())
    save_task(store, Task(name="Call mom", due_date=datetime(2024, 3, 1)))
    clear_all_data(store)
    assert load_definitions(store, ItemKind.HABIT) == []
    assert load_definitions(store, ItemKind.TASK) == []


def _seed_tasks(store):
    save_task(store, Task(name="Taxes", description="federal", priority=TaskPriority.URGENT, due_date=datetime(2024, 2, 20, 9, 0)))
    save_task(store, Task(name="buy milk", priority=TaskPriority.LOW, due_date=datetime(2024, 3, 1, 18, 0)))
    save_task(store, Task(name="Dentist", priority=TaskPriority.HIGH, due_date=datetime(2024, 3, 5, 10, 0)))
    save_task(store, Task(name="Old report", due_date=datetime(2024, 2, 25), is_completed=True, completed_at=datetime(2024, 2, 25)))


def test_list_tasks_filters(store):
    _seed_tasks(store)
    now = datetime(2024, 3, 1, 12, 0)
    assert [t.name for t in list_tasks(store, "today", now=now)] == ["buy milk"]
    assert [t.name for t in list_tasks(store, "upcoming", now=now)] == ["buy milk", "Dentist"]
    assert [t.name for t in list_tasks(store, "overdue", now=now)] == ["Taxes"]


def test_list_tasks_sorts_and_searches(store):
    _seed_tasks(store)
    now = datetime(2024, 3, 1, 12, 0)
    assert [t.name for t in list_tasks(store, sort="priority", now=now)] == ["Taxes", "Dentist", "Old report", "buy milk"]
    assert [t.name for t in list_tasks(store, sort="name", now=now)] == ["buy milk", "Dentist", "Old report", "Taxes"]
    assert [t.name for t in list_tasks(store, search="FEDERAL", now=now)] == ["Taxes"]


def test_list_tasks_rejects_unknown_sort(store):
    with pytest.raises(ValidationError):
        list_tasks(store, sort="color")


def test_failed_save_leaves_collection_unchanged(failing_store):
    saved = save_habit(failing_store, daily_habit())
    failing_store.failing = True
    with pytest.raises(PersistenceError):
        save_habit(failing_store, saved.model_copy(update={"name": "Read more"}))
    with pytest.raises(PersistenceError):
        delete_habit(failing_store, saved.id)
    assert [h.name for h in load_definitions(failing_store, ItemKind.HABIT)] == ["Read"]


def test_list_habits_by_frequency_and_search(store):
    save_habit(store, daily_habit("stretch"))
    save_habit(store, daily_habit("Read"))
    weekly = RecurrenceRule(frequency=Frequency.WEEKLY, selected_weekdays=[1], anchor_date=datetime(2024, 3, 1))
    save_habit(store, Habit(name="Gym", description="legs day", recurrence=weekly))

    assert [h.name for h in list_habits(store)] == ["Gym", "Read", "stretch"]
    assert [h.name for h in list_habits(store, Frequency.DAILY)] == ["Read", "stretch"]
    assert [h.name for h in list_habits(store, search="LEGS")] == ["Gym"]
    assert list_habits(store, Frequency.MONTHLY) == []


def _seed_medications(store):
    save_medication(store, Medication(name="Vitamin D", times_per_day=1, reminder_times=[time(8, 30)]))
    save_medication(store, Medication(name="Ibuprofen", times_per_day=2, reminder_times=[time(13), time(19)]))
    save_medication(store, Medication(name="Melatonin", instructions="with water", times_per_day=1, reminder_times=[time(23)]))
    save_medication(store, Medication(name="Iron", times_per_day=1, reminder_times=[time(4, 45)]))


@pytest.mark.parametrize(
    "period, expected",
    [
        ("all", ["Ibuprofen", "Iron", "Melatonin", "Vitamin D"]),
        ("morning", ["Vitamin D"]),
        ("afternoon", ["Ibuprofen"]),
        ("evening", ["Ibuprofen"]),
        ("night", ["Iron", "Melatonin"]),
    ],
)
def test_list_medications_by_period(store, period, expected):
    _seed_medications(store)
    assert [m.name for m in list_medications(store, period)] == expected


def test_list_medications_searches_instructions(store):
    _seed_medications(store)
    assert [m.name for m in list_medications(store, search="water")] == ["Melatonin"]


def test_list_medications_rejects_unknown_period(store):
    with pytest.raises(ValidationError) as excinfo:
        list_medications(store, "brunch")
    assert excinfo.value.field == "period"
