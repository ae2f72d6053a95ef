# app/services/quota.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.core.config import Settings
from app.db.store import Store
from app.schemas.models import User
from app.utils.local_time import local_day_bounds, local_today, utc_now


class DailyLimit(BaseModel):
    allowed: bool
    remaining: int


def _count_for_today(user: User, timezone: str, now: datetime) -> int:
    """The stored counter, or 0 when it belongs to an earlier civil day."""
    if user.last_msg_at is None:
        return 0
    if local_today(user.last_msg_at, timezone) < local_today(now, timezone):
        return 0
    return user.daily_msg_count


def check_daily_limit(
    store: Store,
    settings: Settings,
    user_id: str,
    timezone: str,
    now: Optional[datetime] = None,
) -> DailyLimit:
    user = store.get_user(user_id)
    if user is None:
        return DailyLimit(allowed=False, remaining=0)

    count = _count_for_today(user, timezone, now or utc_now())
    remaining = settings.max_daily_messages - count
    return DailyLimit(allowed=remaining > 0, remaining=max(0, remaining))


def increment_message_count(
    store: Store,
    user_id: str,
    timezone: str,
    now: Optional[datetime] = None,
) -> int:
    now = now or utc_now()
    user = store.get_user(user_id)
    if user is None:
        return 0

    count = _count_for_today(user, timezone, now) + 1
    store.set_message_count(user_id, count, now)
    return count


def consume_daily_message(
    store: Store,
    settings: Settings,
    user_id: str,
    timezone: str,
    now: Optional[datetime] = None,
) -> bool:
    """Gate and count in one conditional update, so concurrent sends cannot overshoot the cap."""
    now = now or utc_now()
    day_start, _ = local_day_bounds(local_today(now, timezone), timezone)
    return store.claim_message_slot(user_id, settings.max_daily_messages, day_start, now)
