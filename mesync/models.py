from datetime import date, datetime, time
from enum import Enum
from typing import Literal, Optional, Union
from uuid import uuid4

from pydantic import field_validator
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid4())


class Frequency(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def sort_order(self) -> int:
        return _PRIORITY_ORDER[self]


_PRIORITY_ORDER = {
    TaskPriority.URGENT: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


class ItemKind(str, Enum):
    TASK = "task"
    HABIT = "habit"
    MEDICATION = "medication"


class LocalModel(SQLModel):
    """Stores every datetime as naive local time.

    Offset-aware input (e.g. a trailing ``Z``) is converted to the local zone
    so it keeps its local calendar day and compares with naive values.
    """

    @field_validator("*", mode="after")
    @classmethod
    def to_local_naive(cls, value):
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value


class RecurrenceRule(LocalModel):
    """When a habit occurs. Intervals are measured from the start of anchor_date's day."""
    frequency: Frequency = Field(default=Frequency.NONE)
    anchor_date: datetime = Field(default_factory=datetime.now)

    daily_interval: int = 1

    weekly_interval: int = 1
    # ISO weekdays, Monday=1..Sunday=7
    selected_weekdays: list[int] = Field(default_factory=list)

    monthly_interval: int = 1
    selected_day_of_month: int = 1

    # Days of the month, checked every month
    custom_days: list[int] = Field(default_factory=list)


# ─────────────────────────── DEFINITIONS ─────────────────────────────────────

class TaskBase(LocalModel):
    name: str = Field(max_length=200)
    description: str = ""
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: datetime


class Task(TaskBase):
    """A one-shot item. Its completion state lives on the record itself."""
    id: str = Field(default_factory=_new_id)
    is_completed: bool = False
    is_skipped: bool = False
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class HabitBase(LocalModel):
    name: str = Field(max_length=200)
    description: str = ""
    recurrence: RecurrenceRule = Field(default_factory=RecurrenceRule)


class Habit(HabitBase):
    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def remind_at(self) -> time:
        return self.recurrence.anchor_date.time().replace(second=0, microsecond=0)


class MedicationBase(LocalModel):
    name: str = Field(max_length=200)
    description: str = ""
    dosage: str = ""
    instructions: str = ""
    times_per_day: int = 1
    reminder_times: list[time] = Field(default_factory=list)


class Medication(MedicationBase):
    """Taken every day, once per dose. Dose N is due at reminder_times[N-1]."""
    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


Definition = Union[Task, Habit, Medication]


class InstanceRecord(LocalModel):
    """Completion or skip state for one occurrence. Absent means pending."""
    id: str
    definition_id: str
    scheduled_date: date
    sub_index: int = 1
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_skipped(self) -> bool:
        return self.skipped_at is not None


# ─────────────────────────── MATERIALIZED ITEMS ──────────────────────────────

class ItemBase(LocalModel):
    id: str
    name: str
    description: str = ""
    scheduled_at: datetime
    is_completed: bool = False
    is_skipped: bool = False
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    definition_id: str
    scheduled_date: date
    sub_index: int = 1
    # completed_at or skipped_at, whichever is set
    action_timestamp: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.is_completed or self.is_skipped


class TaskItem(ItemBase):
    kind: Literal["task"] = "task"
    task: Task


class HabitOccurrence(ItemBase):
    kind: Literal["habit"] = "habit"
    habit: Habit


class MedicationOccurrence(ItemBase):
    kind: Literal["medication"] = "medication"
    medication: Medication

    @property
    def dose_number(self) -> int:
        return self.sub_index


MaterializedItem = Union[TaskItem, HabitOccurrence, MedicationOccurrence]
