import uuid
from datetime import date, datetime

from . import config
from .calendar_utils import normalize_to_day


def instance_key(
    definition_id: str,
    day: date | datetime,
    sub_index: int = 1,
    namespace: uuid.UUID | None = None,
) -> str:
    """Stable id for one occurrence of a definition.

    Both the materializer (reading state) and the state machine (writing
    state) must derive ids here, otherwise stored state is never found again.
    """
    name = f"{definition_id}_{normalize_to_day(day).isoformat()}_{sub_index}"
    return str(uuid.uuid5(namespace or config.INSTANCE_NAMESPACE, name))
