from datetime import date

from .calendar_utils import (
    day_distance,
    iso_weekday,
    month_distance,
    normalize_to_day,
    week_distance,
)
from .exceptions import ValidationError
from .models import Frequency, RecurrenceRule


def is_due(rule: RecurrenceRule, target: date) -> bool:
    """Return True if the rule produces an occurrence on the target day.

    Assumes the rule passed validate_rule. A monthly rule for a day the target
    month does not have (e.g. the 31st in February) skips that month.
    """
    anchor = normalize_to_day(rule.anchor_date)
    target = normalize_to_day(target)

    if rule.frequency == Frequency.NONE:
        return target == anchor

    # Nothing occurs before the rule starts
    if target < anchor:
        return False

    if rule.frequency == Frequency.DAILY:
        return day_distance(anchor, target) % rule.daily_interval == 0

    if rule.frequency == Frequency.WEEKLY:
        if iso_weekday(target) not in rule.selected_weekdays:
            return False
        return week_distance(anchor, target) % rule.weekly_interval == 0

    if rule.frequency == Frequency.MONTHLY:
        if target.day != rule.selected_day_of_month:
            return False
        return month_distance(anchor, target) % rule.monthly_interval == 0

    if rule.frequency == Frequency.CUSTOM:
        return target.day in rule.custom_days

    return False


def validate_rule(rule: RecurrenceRule, prefix: str = "recurrence") -> None:
    """Raise ValidationError naming the first invalid field of the rule."""
    for name in ("daily_interval", "weekly_interval", "monthly_interval"):
        if getattr(rule, name) < 1:
            raise ValidationError(f"{prefix}.{name}", "must be at least 1")

    if rule.frequency == Frequency.WEEKLY:
        if not rule.selected_weekdays:
            raise ValidationError(f"{prefix}.selected_weekdays", "select at least one weekday")
        if any(day < 1 or day > 7 for day in rule.selected_weekdays):
            raise ValidationError(f"{prefix}.selected_weekdays", "weekdays must be 1 (Monday) to 7 (Sunday)")

    if rule.frequency == Frequency.MONTHLY:
        if not 1 <= rule.selected_day_of_month <= 31:
            raise ValidationError(f"{prefix}.selected_day_of_month", "must be between 1 and 31")

    if rule.frequency == Frequency.CUSTOM:
        if not rule.custom_days:
            raise ValidationError(f"{prefix}.custom_days", "select at least one day of the month")
        if any(day < 1 or day > 31 for day in rule.custom_days):
            raise ValidationError(f"{prefix}.custom_days", "days must be between 1 and 31")
