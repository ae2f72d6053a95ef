# app/services/formatting.py
from typing import Dict, Optional

from app.schemas.models import AppointmentMeta, CheckinMeta, MilestoneMeta, ReminderMeta, Task

CHECKIN_SMS = (
    "💛 Quick check-in: How are you feeling today? "
    "Reply with a number 1-5 (1=rough, 5=great) and any notes."
)
CHECKIN_CHAT = "💛 Quick check-in: How are you feeling today? Tap a number 1-5 or tell me in your own words."

# chat_messages.type for each task kind
CHAT_TYPE_BY_KIND: Dict[str, str] = {
    "REMINDER": "REMINDER",
    "CHECKIN": "CHECKIN",
    "APPOINTMENT": "APPOINTMENT",
    "CRITICAL": "APPOINTMENT",
    "INFO": "INFO",
}


def _appointment_line(task: Task, meta: AppointmentMeta) -> str:
    at = f" at {meta.exact_time}" if meta.exact_time else ""
    if meta.critical:
        return f"⏰ TIME-CRITICAL: {task.label}{at}. Please be exactly on time."
    return f"📅 Appointment today: {task.label}{at}"


def format_chat_message(task: Task) -> str:
    meta = task.meta
    if isinstance(meta, ReminderMeta):
        body = f"💊 Time for {task.label}"
        if meta.instructions:
            body += f"\n{meta.instructions}"
        return body
    if isinstance(meta, AppointmentMeta):
        body = _appointment_line(task, meta)
        if meta.fasting:
            body += "\nRemember: nothing to eat or drink beforehand unless your clinic said otherwise."
        if meta.notes:
            body += f"\n{meta.notes}"
        return body
    if isinstance(meta, MilestoneMeta):
        body = f"✨ {task.label}"
        if meta.details:
            body += f"\n{meta.details}"
        return body
    if isinstance(meta, CheckinMeta):
        return CHECKIN_CHAT
    raise TypeError(f"Unhandled task meta: {type(meta).__name__}")


def format_sms_message(task: Task) -> str:
    meta = task.meta
    if isinstance(meta, ReminderMeta):
        body = f"💊 Reminder: {task.label}"
        if meta.instructions:
            body += f"\n{meta.instructions}"
        return body
    if isinstance(meta, AppointmentMeta):
        body = _appointment_line(task, meta)
        if meta.fasting:
            body += " Fasting required."
        return body
    if isinstance(meta, MilestoneMeta):
        return f"📋 {task.label}"
    if isinstance(meta, CheckinMeta):
        return CHECKIN_SMS
    raise TypeError(f"Unhandled task meta: {type(meta).__name__}")


def format_push_payload(task: Task, app_base_url: str) -> Dict[str, Optional[str]]:
    meta = task.meta
    if isinstance(meta, ReminderMeta):
        title = "💊 Medication reminder"
    elif isinstance(meta, AppointmentMeta):
        title = "⏰ Time-critical appointment" if meta.critical else "📅 Appointment today"
    elif isinstance(meta, MilestoneMeta):
        title = "✨ Cycle milestone"
    elif isinstance(meta, CheckinMeta):
        title = "💛 Daily check-in"
    else:
        raise TypeError(f"Unhandled task meta: {type(meta).__name__}")

    return {
        "title": title,
        "body": task.label if not isinstance(meta, CheckinMeta) else "How are you feeling today?",
        "url": f"{app_base_url.rstrip('/')}/chat",
        "tag": task.id,
    }
