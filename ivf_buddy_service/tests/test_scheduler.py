"""Tests for the delivery scheduler tick and per-kind formatting."""

from datetime import datetime, timedelta, timezone

import pytest

from app.db.store import new_id
from app.schemas.models import AppointmentMeta, CheckinMeta, MilestoneMeta, ReminderMeta, Task
from app.services.formatting import format_chat_message, format_push_payload, format_sms_message
from app.services.scheduler import run_scheduler_tick

FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


def add_task(store, cycle, kind, due_at, meta, label="Gonal-F 150 IU"):
    task = Task(
        id=new_id("task"),
        cycle_id=cycle.id,
        kind=kind,
        label=label,
        due_at=due_at,
        meta=meta,
    )
    # nothing is due after FAR_FUTURE, so this only inserts
    store.replace_future_plan(cycle.id, FAR_FUTURE, FAR_FUTURE.date(), [], [task], {})
    return task


def reminder_meta():
    return ReminderMeta(medication_id="med_1", medication_name="Gonal-F", dosage="150 IU")


@pytest.fixture
def quiet_user(make_user, make_cycle):
    """No push subscription, no SMS consent."""
    return make_cycle(make_user())


@pytest.fixture
def reachable_user(store, make_user, make_cycle):
    """Push subscription and SMS consent."""
    u = make_user(phone="+15551234567", sms_consent=True)
    store.upsert_push_subscription(u.id, "https://push.example/abc", "p256", "auth")
    return make_cycle(u)


class TestTickScenario:
    def test_two_tasks_mixed_channels(self, store, settings, sms, push, quiet_user, reachable_user, now, twilio_session):
        t1 = add_task(store, quiet_user, "REMINDER", now - timedelta(minutes=5), reminder_meta())
        t2 = add_task(store, reachable_user, "CHECKIN", now - timedelta(minutes=1), CheckinMeta(), label="How are you feeling today?")

        result = run_scheduler_tick(store, settings, sms, push, now=now)

        assert result.processed == 2
        assert result.chat_created == 2
        assert result.sms_sent == 1
        assert result.push_sent >= 1
        assert result.failed == 0
        assert store.get_task(t1.id).status == "SENT"
        assert store.get_task(t2.id).status == "SENT"
        assert twilio_session.calls[0]["data"]["To"] == "+15551234567"

    def test_result_serializes_camel_case(self, store, settings, sms, push, now):
        body = run_scheduler_tick(store, settings, sms, push, now=now).model_dump(by_alias=True)
        assert set(body) == {"processed", "smsSent", "pushSent", "chatCreated", "failed", "errors"}

    def test_sent_tasks_not_redelivered(self, store, settings, sms, push, reachable_user, now):
        add_task(store, reachable_user, "REMINDER", now, reminder_meta())

        run_scheduler_tick(store, settings, sms, push, now=now)
        second = run_scheduler_tick(store, settings, sms, push, now=now + timedelta(minutes=1))

        assert second.processed == 0


class TestSelection:
    def test_oldest_due_first_and_batch_limit(self, store, settings, sms, push, quiet_user, now):
        settings.tick_batch_limit = 2
        late = add_task(store, quiet_user, "REMINDER", now - timedelta(minutes=1), reminder_meta())
        oldest = add_task(store, quiet_user, "REMINDER", now - timedelta(hours=2), reminder_meta())
        middle = add_task(store, quiet_user, "REMINDER", now - timedelta(hours=1), reminder_meta())

        result = run_scheduler_tick(store, settings, sms, push, now=now)

        assert result.processed == 2
        assert store.get_task(oldest.id).status == "SENT"
        assert store.get_task(middle.id).status == "SENT"
        assert store.get_task(late.id).status == "PENDING"

    def test_future_tasks_ignored(self, store, settings, sms, push, quiet_user, now):
        add_task(store, quiet_user, "REMINDER", now + timedelta(seconds=1), reminder_meta())
        assert run_scheduler_tick(store, settings, sms, push, now=now).processed == 0

    def test_info_tasks_never_delivered(self, store, settings, sms, push, quiet_user, now):
        add_task(store, quiet_user, "INFO", now, MilestoneMeta(milestone_id="ms_1", milestone_type="STIM_START"))
        assert run_scheduler_tick(store, settings, sms, push, now=now).processed == 0

    def test_appointment_delivery_is_configurable(self, store, settings, sms, push, quiet_user, now):
        meta = AppointmentMeta(appointment_id="apt_1", appointment_type="MONITORING", exact_time="07:30")
        task = add_task(store, quiet_user, "APPOINTMENT", now, meta, label="Monitoring")

        settings.deliverable_kinds = ("REMINDER", "CHECKIN")
        assert run_scheduler_tick(store, settings, sms, push, now=now).processed == 0

        settings.deliverable_kinds = ("REMINDER", "CHECKIN", "APPOINTMENT", "CRITICAL")
        assert run_scheduler_tick(store, settings, sms, push, now=now).processed == 1
        assert store.get_task(task.id).status == "SENT"


class TestFailureIsolation:
    def test_chat_failure_leaves_task_pending(self, store, settings, sms, push, quiet_user, now, monkeypatch):
        task = add_task(store, quiet_user, "REMINDER", now, reminder_meta())

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "create_chat_message", broken)
        result = run_scheduler_tick(store, settings, sms, push, now=now)

        assert result.failed == 1
        assert result.chat_created == 0
        assert store.get_task(task.id).status == "PENDING"
        assert "chat log failed" in result.errors[0]

    def test_sms_failure_still_marks_sent(self, store, settings, sms, push, reachable_user, now, twilio_session):
        twilio_session.status_code = 500
        task = add_task(store, reachable_user, "REMINDER", now, reminder_meta())

        result = run_scheduler_tick(store, settings, sms, push, now=now)

        assert result.sms_sent == 0
        assert result.failed == 0
        assert any("sms" in e for e in result.errors)
        assert store.get_task(task.id).status == "SENT"

    def test_done_task_is_not_resurrected(self, store, settings, sms, push, quiet_user, now):
        task = add_task(store, quiet_user, "REMINDER", now, reminder_meta())
        store.mark_task_done(task.id)

        assert store.mark_task_sent(task.id, now) is False
        assert store.get_task(task.id).status == "DONE"


class TestFormatting:
    def _task(self, kind, meta, label="Gonal-F 150 IU"):
        return Task(id="task_1", cycle_id="cyc_1", kind=kind, label=label, due_at=datetime(2026, 1, 12, tzinfo=timezone.utc), meta=meta)

    def test_reminder(self):
        task = self._task("REMINDER", ReminderMeta(medication_id="m", medication_name="Gonal-F", instructions="Rotate sites"))
        assert format_sms_message(task) == "💊 Reminder: Gonal-F 150 IU\nRotate sites"
        assert format_chat_message(task).startswith("💊 Time for Gonal-F 150 IU")

    def test_critical_is_emphasized(self):
        meta = AppointmentMeta(kind="CRITICAL", appointment_id="a", appointment_type="RETRIEVAL", exact_time="06:45", critical=True)
        task = self._task("CRITICAL", meta, label="Retrieval")

        assert "TIME-CRITICAL" in format_sms_message(task)
        assert "06:45" in format_chat_message(task)
        assert format_push_payload(task, "https://app.example/")["url"] == "https://app.example/chat"

    def test_checkin(self):
        task = self._task("CHECKIN", CheckinMeta(), label="How are you feeling today?")
        assert "1-5" in format_sms_message(task)
        assert format_push_payload(task, "http://x")["tag"] == "task_1"
