"""
Protocol -> rolling window of task instances.

Regeneration is delete-then-recreate over the future portion of the cycle: all
tasks due at or after ``now`` and all plan days from today onwards are replaced,
past tasks are never touched. The whole write happens in one SQLite
transaction under a per-cycle lock, so two regenerations of the same cycle
cannot interleave.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Dict, Iterator, List, Mapping, Optional

from app.core.config import Settings
from app.core.errors import CycleNotFoundError, ProtocolNotFoundError
from app.db.store import Store, new_id
from app.schemas.models import (
    AppointmentMeta,
    CamelModel,
    CheckinMeta,
    MilestoneMeta,
    PlanDay,
    ProtocolPlan,
    ReminderMeta,
    Task,
    User,
)
from app.utils.local_time import (
    cycle_day_index,
    local_day_bounds,
    local_today,
    push_out_of_quiet_hours,
    resolve_due_instant,
    utc_now,
)

logger = logging.getLogger(__name__)

CHECKIN_LABEL = "How are you feeling today?"

class _CycleLock:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


# only cycles with a regeneration in progress or waiting have an entry
_cycle_locks: Dict[str, _CycleLock] = {}
_cycle_locks_guard = threading.Lock()


@contextmanager
def _cycle_lock(cycle_id: str) -> Iterator[None]:
    with _cycle_locks_guard:
        entry = _cycle_locks.setdefault(cycle_id, _CycleLock())
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _cycle_locks_guard:
            entry.holders -= 1
            if entry.holders == 0:
                del _cycle_locks[cycle_id]


class PlanGenerationResult(CamelModel):
    plan_days_created: int
    tasks_created: int


def build_window(
    protocol: ProtocolPlan,
    settings: Settings,
    user_timezone: str,
    quiet_hours: Optional[Mapping[str, str]],
    now: datetime,
) -> tuple:
    """Pure expansion step: (plan_days, tasks) for the window starting today."""
    today = local_today(now, user_timezone)
    cycle_start = protocol.cycle_start_date
    times = settings.reminder_times

    plan_days: List[PlanDay] = []
    tasks: List[Task] = []

    def emit(day: PlanDay, kind: str, label: str, due_at: datetime, meta) -> None:
        # future-only; an instant equal to now is still deliverable this tick
        if due_at < now:
            return
        tasks.append(Task(
            id=new_id("task"),
            cycle_id=protocol.cycle_id,
            plan_day_id=day.id,
            kind=kind,
            label=label,
            due_at=due_at,
            status="PENDING",
            meta=meta,
        ))

    for i in range(settings.plan_days_ahead):
        day_date = today + timedelta(days=i)
        day_index = cycle_day_index(cycle_start, day_date)

        day = PlanDay(
            id=new_id("day"),
            cycle_id=protocol.cycle_id,
            date=day_date,
            cycle_day_index=day_index,
            title=f"Day {day_index}",
        )
        plan_days.append(day)

        for med in protocol.medications:
            if not med.active_on(day_index):
                continue
            due_at = resolve_due_instant(day_date, med.time_of_day, med.exact_time, user_timezone, times)
            due_at = push_out_of_quiet_hours(due_at, quiet_hours, user_timezone)
            emit(day, "REMINDER", med.label(), due_at, ReminderMeta(
                medication_id=med.id,
                medication_name=med.name,
                dosage=med.dosage_text(),
                instructions=med.instructions,
            ))

        for appt in protocol.appointments:
            if appt.day_offset != day_index:
                continue
            # no named bucket for appointments: exact time, else the morning default
            due_at = resolve_due_instant(day_date, None, appt.exact_time, user_timezone, times)
            kind = "CRITICAL" if appt.critical else "APPOINTMENT"
            label = appt.type.replace("_", " ").title()
            if appt.fasting:
                label += " (fasting)"
            emit(day, kind, label, due_at, AppointmentMeta(
                kind=kind,
                appointment_id=appt.id,
                appointment_type=appt.type,
                exact_time=appt.exact_time,
                fasting=appt.fasting,
                critical=appt.critical,
                notes=appt.notes,
            ))

        for ms in protocol.milestones:
            if ms.day_offset != day_index:
                continue
            due_at = resolve_due_instant(day_date, "morning", None, user_timezone, times)
            emit(day, "INFO", ms.label or ms.type.replace("_", " ").title(), due_at, MilestoneMeta(
                milestone_id=ms.id,
                milestone_type=ms.type,
                details=ms.details,
            ))

        checkin_at = resolve_due_instant(day_date, None, settings.checkin_time, user_timezone, times)
        checkin_at = push_out_of_quiet_hours(checkin_at, quiet_hours, user_timezone)
        emit(day, "CHECKIN", CHECKIN_LABEL, checkin_at, CheckinMeta())

    return plan_days, tasks


def generate_plan_tasks(
    store: Store,
    settings: Settings,
    cycle_id: str,
    protocol_plan_id: str,
    user_timezone: str,
    quiet_hours: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> PlanGenerationResult:
    now = now or utc_now()

    with _cycle_lock(cycle_id):
        protocol = store.get_protocol(protocol_plan_id)
        if protocol is None or protocol.cycle_id != cycle_id:
            raise ProtocolNotFoundError(f"Protocol plan {protocol_plan_id} not found for cycle {cycle_id}")

        plan_days, tasks = build_window(protocol, settings, user_timezone, quiet_hours, now)
        today = local_today(now, user_timezone)
        bounds: Dict[date, tuple] = {pd.date: local_day_bounds(pd.date, user_timezone) for pd in plan_days}

        store.replace_future_plan(cycle_id, now, today, plan_days, tasks, bounds)

    logger.info(
        "plan regenerated cycle=%s protocol=%s days=%d tasks=%d",
        cycle_id, protocol_plan_id, len(plan_days), len(tasks),
    )
    return PlanGenerationResult(plan_days_created=len(plan_days), tasks_created=len(tasks))


def quiet_hours_for(user: Optional[User], settings: Settings) -> Dict[str, str]:
    if user is not None and user.quiet_hours is not None:
        return user.quiet_hours.model_dump()
    return settings.default_quiet_hours.model_dump()


def regenerate_for_cycle(
    store: Store,
    settings: Settings,
    cycle_id: str,
    protocol_plan_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PlanGenerationResult:
    """Resolve protocol, timezone and quiet hours for a cycle, then regenerate its window."""
    cycle = store.get_cycle(cycle_id)
    if cycle is None:
        raise CycleNotFoundError(f"Cycle not found: {cycle_id}")

    if protocol_plan_id is None:
        protocol = store.get_protocol_for_cycle(cycle_id, status="ACTIVE")
        if protocol is None:
            raise ProtocolNotFoundError(f"No active protocol for cycle {cycle_id}")
        protocol_plan_id = protocol.id

    user = store.get_user(cycle.user_id)
    return generate_plan_tasks(
        store,
        settings,
        cycle_id,
        protocol_plan_id,
        user.timezone if user else settings.default_timezone,
        quiet_hours=quiet_hours_for(user, settings),
        now=now,
    )
