# app/services/chat.py
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.core.config import Settings
from app.core.errors import CycleNotFoundError, UserNotFoundError
from app.db.store import Store
from app.schemas.models import ChatMessage
from app.services.buddy import BuddyService
from app.services.quota import consume_daily_message
from app.utils.local_time import utc_now

logger = logging.getLogger(__name__)


class SendMessageResult(BaseModel):
    user_message: Optional[ChatMessage] = None
    buddy_reply: ChatMessage
    limit_reached: bool = False


def limit_message(settings: Settings) -> str:
    return f"You've reached your daily message limit ({settings.max_daily_messages}). Check back tomorrow! 💛"


def send_user_message(
    store: Store,
    settings: Settings,
    buddy: BuddyService,
    user_id: str,
    cycle_id: str,
    content: str,
    now: Optional[datetime] = None,
) -> SendMessageResult:
    now = now or utc_now()
    user = store.get_user(user_id)
    if user is None:
        raise UserNotFoundError(f"User not found: {user_id}")
    cycle = store.get_cycle(cycle_id)
    if cycle is None or cycle.user_id != user_id:
        raise CycleNotFoundError(f"Cycle not found: {cycle_id}")

    if not consume_daily_message(store, settings, user_id, user.timezone, now=now):
        logger.info("daily message limit reached for user=%s", user_id)
        notice = store.create_chat_message(user_id, cycle_id, "SYSTEM", "INFO", limit_message(settings), at=now)
        return SendMessageResult(buddy_reply=notice, limit_reached=True)

    user_message = store.create_chat_message(user_id, cycle_id, "USER", "MESSAGE", content, at=now)

    reply = buddy.generate_reply(user_id, cycle_id, content, user.timezone, now=now)
    buddy_message = store.create_chat_message(
        user_id,
        cycle_id,
        "BUDDY",
        "MESSAGE",
        reply.message_text,
        meta={"tags": reply.tags, "escalate": reply.escalation},
        at=now,
    )
    return SendMessageResult(user_message=user_message, buddy_reply=buddy_message)
