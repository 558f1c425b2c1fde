"""
Application configuration loaded from environment variables.
"""
import logging
import os
import uuid
from datetime import time
from pathlib import Path

LOGGER = logging.getLogger("mesync")


def _parse_int(val: str | None, default: int, minimum: int = 1) -> int:
    """Parse an integer from string, return default if invalid or below minimum."""
    if not val:
        return default
    try:
        parsed = int(val)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_time(val: str | None, default: time) -> time:
    """Parse a time of day in HH:MM format."""
    if not val:
        return default
    try:
        hour, minute = (int(part) for part in val.split(":"))
        return time(hour, minute)
    except ValueError:
        return default


def _parse_uuid(val: str | None, default: uuid.UUID) -> uuid.UUID:
    if not val:
        return default
    try:
        return uuid.UUID(val)
    except ValueError:
        return default


# Storage
DATA_DIR = Path(os.getenv("MESYNC_DATA_DIR", "data"))

TASKS = "tasks"
HABITS = "habits"
HABIT_INSTANCES = "habit_instances"
MEDICATIONS = "medications"
MEDICATION_INSTANCES = "medication_instances"
COLLECTIONS = [TASKS, HABITS, HABIT_INSTANCES, MEDICATIONS, MEDICATION_INSTANCES]

# Rolling window shown on the home screen, starting today
WINDOW_DAYS = _parse_int(os.getenv("MESYNC_WINDOW_DAYS"), 3)

# Finished items stay visible until this time on the day after the action
ARCHIVE_CUTOFF = _parse_time(os.getenv("MESYNC_ARCHIVE_CUTOFF"), time(2, 0))

# Namespace for deterministic instance ids. Changing it orphans all stored state.
INSTANCE_NAMESPACE = _parse_uuid(
    os.getenv("MESYNC_INSTANCE_NAMESPACE"),
    uuid.UUID("12345678-1234-1234-1234-123456789012"),
)

LOG_LEVEL = os.getenv("MESYNC_LOG_LEVEL", "INFO").upper()
