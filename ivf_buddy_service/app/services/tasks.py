# app/services/tasks.py
from datetime import datetime
from typing import List, Optional

from app.db.store import Store
from app.schemas.models import Task
from app.utils.local_time import local_day_bounds, local_today, utc_now


def mark_task_done(store: Store, task_id: str) -> Task:
    """PENDING or SENT -> DONE. DONE stays DONE."""
    return store.mark_task_done(task_id)


def get_today_tasks(store: Store, cycle_id: str, timezone: str, now: Optional[datetime] = None) -> List[Task]:
    start, end = local_day_bounds(local_today(now or utc_now(), timezone), timezone)
    return store.list_tasks(cycle_id, start=start, end=end)


def get_upcoming_tasks(store: Store, cycle_id: str, limit: int = 5, now: Optional[datetime] = None) -> List[Task]:
    return store.list_tasks(cycle_id, start=now or utc_now(), status="PENDING", limit=limit)
