# app/services/scheduler.py
"""
One scheduler tick: deliver every due PENDING task.

The chat-log entry is the record that a reminder happened; once it is written
the task moves to SENT whatever push and SMS did. A task whose chat write fails
stays PENDING and is picked up again on the next tick.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.core.config import Settings
from app.db.store import Store
from app.schemas.models import CamelModel, DueTask
from app.services.formatting import (
    CHAT_TYPE_BY_KIND,
    format_chat_message,
    format_push_payload,
    format_sms_message,
)
from app.services.push import PushService
from app.services.sms import SmsService
from app.utils.local_time import utc_now

logger = logging.getLogger(__name__)


class TickResult(CamelModel):
    processed: int = 0
    sms_sent: int = 0
    push_sent: int = 0
    chat_created: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


def _deliver(
    due: DueTask,
    store: Store,
    settings: Settings,
    sms: SmsService,
    push: PushService,
    now: datetime,
    result: TickResult,
) -> None:
    task, user = due.task, due.user

    try:
        store.create_chat_message(
            user_id=user.id,
            cycle_id=task.cycle_id,
            sender="SYSTEM",
            type=CHAT_TYPE_BY_KIND[task.kind],
            content=format_chat_message(task),
            meta={"taskId": task.id, "kind": task.kind},
            at=now,
        )
    except Exception as e:
        logger.exception("chat log write failed task=%s", task.id)
        result.failed += 1
        result.errors.append(f"Task {task.id}: chat log failed: {e}")
        return
    result.chat_created += 1

    if due.has_push_subscription:
        try:
            push_result = push.send_to_user(user.id, format_push_payload(task, settings.app_base_url))
            result.push_sent += push_result.sent
            result.errors.extend(f"Task {task.id} push: {err}" for err in push_result.errors)
        except Exception as e:
            logger.warning("push delivery failed task=%s: %s", task.id, e)
            result.errors.append(f"Task {task.id} push: {e}")

    if user.sms_consent and user.phone_e164:
        try:
            sms_result = sms.send(user_id=user.id, to_number=user.phone_e164, body=format_sms_message(task))
            if sms_result.success:
                result.sms_sent += 1
            else:
                result.errors.append(f"Task {task.id} sms: {sms_result.error}")
        except Exception as e:
            logger.warning("sms delivery failed task=%s: %s", task.id, e)
            result.errors.append(f"Task {task.id} sms: {e}")

    try:
        if not store.mark_task_sent(task.id, now):
            logger.info("task %s already left PENDING (overlapping tick)", task.id)
    except Exception as e:
        logger.exception("mark sent failed task=%s", task.id)
        result.failed += 1
        result.errors.append(f"Task {task.id}: mark sent failed: {e}")


def run_scheduler_tick(
    store: Store,
    settings: Settings,
    sms: SmsService,
    push: PushService,
    now: Optional[datetime] = None,
) -> TickResult:
    now = now or utc_now()
    result = TickResult()

    try:
        due_tasks = store.get_due_tasks(now, settings.deliverable_kinds, settings.tick_batch_limit)
    except Exception as e:
        logger.exception("due task query failed")
        result.errors.append(f"Scheduler error: {e}")
        return result

    result.processed = len(due_tasks)

    for due in due_tasks:
        _deliver(due, store, settings, sms, push, now, result)

    logger.info(
        "tick done processed=%d chat=%d push=%d sms=%d failed=%d errors=%d",
        result.processed, result.chat_created, result.push_sent, result.sms_sent,
        result.failed, len(result.errors),
    )
    return result
