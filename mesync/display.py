from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional, Sequence

from dateutil.relativedelta import relativedelta

from . import config
from .calendar_utils import window_dates
from .models import MaterializedItem


def archive_cutoff(action_timestamp: datetime, cutoff: Optional[time] = None) -> datetime:
    """Cutoff time (02:00 by default) on the calendar day after the action."""
    cutoff = cutoff or config.ARCHIVE_CUTOFF
    return action_timestamp + relativedelta(
        days=+1, hour=cutoff.hour, minute=cutoff.minute, second=0, microsecond=0
    )


def is_visible_in_archive(item: MaterializedItem, now: datetime, cutoff: Optional[time] = None) -> bool:
    """Whether a finished item still shows in the recently finished list.

    Pending items are not governed by this policy and always return False.
    """
    if not item.is_finished:
        return False
    if item.action_timestamp is None:
        return True
    return now < archive_cutoff(item.action_timestamp, cutoff)


def active_window(now: datetime, days: Optional[int] = None) -> list[date]:
    return window_dates(now, config.WINDOW_DAYS if days is None else days)


@dataclass
class WindowView:
    window: list[date] = field(default_factory=list)
    active: list[MaterializedItem] = field(default_factory=list)
    finished: list[MaterializedItem] = field(default_factory=list)


def build_view(
    items: Sequence[MaterializedItem],
    now: datetime,
    window: Optional[list[date]] = None,
) -> WindowView:
    """Split materialized items into pending and recently finished.

    Finished items list completed before skipped, each by scheduled time.
    """
    active = [item for item in items if not item.is_finished]
    finished = [item for item in items if is_visible_in_archive(item, now)]
    finished.sort(key=lambda item: (not item.is_completed, item.scheduled_at))
    return WindowView(window=window or [], active=active, finished=finished)
