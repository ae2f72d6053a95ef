# app/services/daily_context.py
from datetime import datetime
from typing import List, Optional

from app.db.store import Store
from app.schemas.models import Appointment, CamelModel, Medication
from app.utils.local_time import cycle_day_index, local_today, utc_now


class DailyContext(CamelModel):
    cycle_day_index: int
    cycle_start_date: str
    medications: List[Medication]
    appointments: List[Appointment]


def get_daily_context(
    store: Store,
    cycle_id: str,
    timezone: str,
    now: Optional[datetime] = None,
) -> Optional[DailyContext]:
    """What the ACTIVE protocol schedules on the user's current civil day, or None."""
    protocol = store.get_protocol_for_cycle(cycle_id, status="ACTIVE")
    if protocol is None:
        return None

    today = local_today(now or utc_now(), timezone)
    day_index = cycle_day_index(protocol.cycle_start_date, today)

    return DailyContext(
        cycle_day_index=day_index,
        cycle_start_date=protocol.cycle_start_date.isoformat(),
        medications=[m for m in protocol.medications if m.active_on(day_index)],
        appointments=[a for a in protocol.appointments if a.day_offset == day_index],
    )
