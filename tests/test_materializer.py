import json
from datetime import date, datetime, time

from mesync.calendar_utils import window_dates
from mesync.definitions import save_habit, save_medication, save_task
from mesync.materializer import materialize
from mesync.models import (
    Frequency,
    Habit,
    HabitOccurrence,
    ItemKind,
    Medication,
    MedicationOccurrence,
    RecurrenceRule,
    Task,
    TaskItem,
)
from mesync.state import mark_completed, mark_skipped

WINDOW = window_dates(date(2024, 3, 1), 3)  # Friday to Sunday


def habit(name="Read", frequency=Frequency.DAILY, anchor=datetime(2024, 3, 1, 8, 0), **kwargs) -> Habit:
    return Habit(name=name, recurrence=RecurrenceRule(frequency=frequency, anchor_date=anchor, **kwargs))


def test_materializes_every_kind(store):
    read = save_habit(store, habit())
    pills = save_medication(store, Medication(name="Ibuprofen", times_per_day=2, reminder_times=[time(9), time(21)]))
    rent = save_task(store, Task(name="Pay rent", due_date=datetime(2024, 3, 2, 12, 0)))
    later = save_task(store, Task(name="Later", due_date=datetime(2024, 3, 4, 12, 0)))

    items = materialize([rent, later, read, pills], WINDOW, store)

    assert len(items) == 1 + 3 + 6
    assert [i.scheduled_at for i in items] == sorted(i.scheduled_at for i in items)
    assert sum(isinstance(i, TaskItem) for i in items) == 1
    assert sum(isinstance(i, HabitOccurrence) for i in items) == 3
    doses = [i for i in items if isinstance(i, MedicationOccurrence)]
    assert [(i.scheduled_date, i.dose_number) for i in doses[:2]] == [(date(2024, 3, 1), 1), (date(2024, 3, 1), 2)]
    assert doses[1].scheduled_at == datetime(2024, 3, 1, 21, 0)
    assert items[0].scheduled_at == datetime(2024, 3, 1, 8, 0)
    assert all(not i.is_completed and not i.is_skipped for i in items)


def test_habit_scheduled_at_reminder_time(store):
    read = save_habit(store, habit(anchor=datetime(2024, 2, 1, 19, 45)))
    items = materialize([read], WINDOW, store)
    assert [i.scheduled_at for i in items] == [
        datetime(2024, 3, 1, 19, 45),
        datetime(2024, 3, 2, 19, 45),
        datetime(2024, 3, 3, 19, 45),
    ]
    assert items[0].habit.id == read.id


def test_dose_without_reminder_time_is_at_midnight(store):
    pills = save_medication(store, Medication(name="Iron", times_per_day=2, reminder_times=[time(9)]))
    items = materialize([pills], WINDOW[:1], store)
    assert [i.scheduled_at for i in items] == [datetime(2024, 3, 1, 0, 0), datetime(2024, 3, 1, 9, 0)]
    assert [i.sub_index for i in items] == [2, 1]


def test_merges_stored_state(store):
    read = save_habit(store, habit())
    pills = save_medication(store, Medication(name="Ibuprofen", times_per_day=2, reminder_times=[time(9), time(21)]))
    mark_completed(store, ItemKind.HABIT, read.id, date(2024, 3, 2), now=datetime(2024, 3, 2, 8, 5))
    mark_skipped(store, ItemKind.MEDICATION, pills.id, date(2024, 3, 1), 2, now=datetime(2024, 3, 1, 22, 0))

    items = materialize([read, pills], WINDOW, store)

    done = [i for i in items if i.is_completed]
    skipped = [i for i in items if i.is_skipped]
    assert [(i.definition_id, i.scheduled_date) for i in done] == [(read.id, date(2024, 3, 2))]
    assert done[0].action_timestamp == datetime(2024, 3, 2, 8, 5)
    assert [(i.definition_id, i.sub_index) for i in skipped] == [(pills.id, 2)]
    assert skipped[0].action_timestamp == datetime(2024, 3, 1, 22, 0)


def test_definition_without_due_dates_produces_nothing(store):
    wednesdays = save_habit(store, habit(frequency=Frequency.WEEKLY, selected_weekdays=[3]))
    assert materialize([wednesdays], WINDOW, store) == []


def test_empty_window_produces_nothing(store):
    read = save_habit(store, habit())
    assert materialize([read], [], store) == []


def test_single_occurrence_habit(store):
    dentist = save_habit(store, habit("Dentist", Frequency.NONE, anchor=datetime(2024, 3, 2, 15, 30)))
    items = materialize([dentist], WINDOW, store)
    assert [i.scheduled_at for i in items] == [datetime(2024, 3, 2, 15, 30)]


def test_ties_keep_definition_order(store):
    first = save_habit(store, habit("First"))
    second = save_habit(store, habit("Second"))
    items = materialize([second, first], WINDOW[:1], store)
    assert [i.name for i in items] == ["Second", "First"]


def test_same_input_same_output(store):
    read = save_habit(store, habit())
    pills = save_medication(store, Medication(name="Ibuprofen", times_per_day=3, reminder_times=[time(8), time(14), time(20)]))
    rent = save_task(store, Task(name="Pay rent", due_date=datetime(2024, 3, 1, 8, 0)))
    mark_completed(store, ItemKind.HABIT, read.id, date(2024, 3, 1), now=datetime(2024, 3, 1, 8, 1))

    first = [json.dumps(i.model_dump(mode="json")) for i in materialize([rent, read, pills], WINDOW, store)]
    second = [json.dumps(i.model_dump(mode="json")) for i in materialize([rent, read, pills], WINDOW, store)]
    assert first == second
