# app/db/store.py
"""
SQLite-backed persistence for users, protocols, the plan/task tables and the
conversation log. One connection is shared by the process; a re-entrant lock
serializes access and ``transaction()`` groups multi-statement writes.
"""
from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from app.core.errors import TaskNotFoundError
from app.db.db_config import get_sqlite_connection, init_schema
from app.schemas.models import (
    Appointment,
    ChatMessage,
    CheckIn,
    ConversationState,
    Cycle,
    DueTask,
    Medication,
    Milestone,
    PlanDay,
    ProtocolPlan,
    PushSubscription,
    QuietHours,
    Task,
    User,
    task_meta_adapter,
)
from app.utils.local_time import from_iso, to_iso, utc_now


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _opt_iso(value: Optional[datetime]) -> Optional[str]:
    return to_iso(value) if value is not None else None


def _opt_dt(value: Optional[str]) -> Optional[datetime]:
    return from_iso(value) if value else None


class Store:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.RLock()

    @classmethod
    def open(cls, db_path: str) -> "Store":
        conn = get_sqlite_connection(db_path)
        init_schema(conn)
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            with self.conn:
                yield self.conn

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # ---------------------------
    # users / cycles
    # ---------------------------

    def upsert_user(self, user: User) -> User:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, timezone, quiet_hours, phone_e164, sms_consent,
                                   daily_msg_count, last_msg_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    timezone = excluded.timezone,
                    quiet_hours = excluded.quiet_hours,
                    phone_e164 = excluded.phone_e164,
                    sms_consent = excluded.sms_consent
                """,
                (
                    user.id,
                    user.timezone,
                    user.quiet_hours.model_dump_json() if user.quiet_hours else None,
                    user.phone_e164,
                    int(user.sms_consent),
                    user.daily_msg_count,
                    _opt_iso(user.last_msg_at),
                ),
            )
        return self.get_user(user.id)  # type: ignore[return-value]

    def _user_from_row(self, row: sqlite3.Row) -> User:
        qh = row["quiet_hours"]
        return User(
            id=row["id"],
            timezone=row["timezone"],
            quiet_hours=QuietHours.model_validate_json(qh) if qh else None,
            phone_e164=row["phone_e164"],
            sms_consent=bool(row["sms_consent"]),
            daily_msg_count=row["daily_msg_count"],
            last_msg_at=_opt_dt(row["last_msg_at"]),
        )

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._user_from_row(row) if row else None

    def get_user_by_phone(self, phone_e164: str) -> Optional[User]:
        row = self._fetchone("SELECT * FROM users WHERE phone_e164 = ?", (phone_e164,))
        return self._user_from_row(row) if row else None

    def set_sms_consent(self, user_id: str, consent: bool) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE users SET sms_consent = ? WHERE id = ?", (int(consent), user_id))

    def set_message_count(self, user_id: str, count: int, at: datetime) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE users SET daily_msg_count = ?, last_msg_at = ? WHERE id = ?",
                (count, to_iso(at), user_id),
            )

    def claim_message_slot(self, user_id: str, limit: int, day_start: datetime, at: datetime) -> bool:
        """Count one message against today's cap. False when the cap is already used up."""
        with self.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE users
                SET daily_msg_count = CASE
                        WHEN last_msg_at IS NULL OR last_msg_at < :day_start THEN 1
                        ELSE daily_msg_count + 1
                    END,
                    last_msg_at = :at
                WHERE id = :user_id
                  AND (last_msg_at IS NULL OR last_msg_at < :day_start OR daily_msg_count < :limit)
                  AND :limit > 0
                """,
                {"user_id": user_id, "limit": limit, "day_start": to_iso(day_start), "at": to_iso(at)},
            )
        return cur.rowcount > 0

    def create_cycle(self, cycle: Cycle) -> Cycle:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO cycles (id, user_id, start_date) VALUES (?, ?, ?)",
                (cycle.id, cycle.user_id, cycle.start_date.isoformat() if cycle.start_date else None),
            )
        return cycle

    def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        row = self._fetchone("SELECT * FROM cycles WHERE id = ?", (cycle_id,))
        if not row:
            return None
        start = row["start_date"]
        return Cycle(id=row["id"], user_id=row["user_id"], start_date=date.fromisoformat(start) if start else None)

    def get_cycles_for_user(self, user_id: str) -> List[Cycle]:
        rows = self._fetchall("SELECT id FROM cycles WHERE user_id = ? ORDER BY rowid DESC", (user_id,))
        return [c for c in (self.get_cycle(r["id"]) for r in rows) if c]

    def set_cycle_start(self, cycle_id: str, start: date) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE cycles SET start_date = ? WHERE id = ?", (start.isoformat(), cycle_id))

    # ---------------------------
    # protocol
    # ---------------------------

    def replace_protocol(self, plan: ProtocolPlan, structured_data: Optional[Dict[str, Any]] = None) -> ProtocolPlan:
        """Delete the cycle's existing protocol (children cascade) and insert plan."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM protocol_plans WHERE cycle_id = ?", (plan.cycle_id,))
            conn.execute(
                """
                INSERT INTO protocol_plans (id, cycle_id, status, source, cycle_start_date, notes, structured_data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    plan.id,
                    plan.cycle_id,
                    plan.status,
                    plan.source,
                    plan.cycle_start_date.isoformat(),
                    plan.notes,
                    json.dumps(structured_data, default=str) if structured_data is not None else None,
                ),
            )
            conn.executemany(
                """
                INSERT INTO medications (id, protocol_plan_id, name, dosage_amount, dosage_unit, dosage,
                                         frequency, route, start_day_offset, duration_days, time_of_day,
                                         exact_time, instructions)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (m.id, plan.id, m.name, m.dosage_amount, m.dosage_unit, m.dosage, m.frequency, m.route,
                     m.start_day_offset, m.duration_days, m.time_of_day, m.exact_time, m.instructions)
                    for m in plan.medications
                ],
            )
            conn.executemany(
                """
                INSERT INTO appointments (id, protocol_plan_id, type, day_offset, exact_time, notes, fasting, critical)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (a.id, plan.id, a.type, a.day_offset, a.exact_time, a.notes, int(a.fasting), int(a.critical))
                    for a in plan.appointments
                ],
            )
            conn.executemany(
                """
                INSERT INTO milestones (id, protocol_plan_id, type, day_offset, label, details)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [(ms.id, plan.id, ms.type, ms.day_offset, ms.label, ms.details) for ms in plan.milestones],
            )
        return self.get_protocol(plan.id)  # type: ignore[return-value]

    def get_protocol(self, protocol_plan_id: str) -> Optional[ProtocolPlan]:
        row = self._fetchone("SELECT * FROM protocol_plans WHERE id = ?", (protocol_plan_id,))
        if not row:
            return None

        meds = [
            Medication(**dict(r))
            for r in self._fetchall(
                "SELECT * FROM medications WHERE protocol_plan_id = ? ORDER BY start_day_offset, name",
                (protocol_plan_id,),
            )
        ]
        appts = []
        for r in self._fetchall(
            "SELECT * FROM appointments WHERE protocol_plan_id = ? ORDER BY day_offset", (protocol_plan_id,)
        ):
            d = dict(r)
            d["fasting"] = bool(d["fasting"])
            d["critical"] = bool(d["critical"])
            appts.append(Appointment(**d))
        milestones = [
            Milestone(**dict(r))
            for r in self._fetchall(
                "SELECT * FROM milestones WHERE protocol_plan_id = ? ORDER BY day_offset", (protocol_plan_id,)
            )
        ]

        return ProtocolPlan(
            id=row["id"],
            cycle_id=row["cycle_id"],
            status=row["status"],
            source=row["source"],
            cycle_start_date=date.fromisoformat(row["cycle_start_date"]),
            notes=row["notes"],
            medications=meds,
            appointments=appts,
            milestones=milestones,
        )

    def get_protocol_for_cycle(self, cycle_id: str, status: Optional[str] = None) -> Optional[ProtocolPlan]:
        if status:
            row = self._fetchone(
                "SELECT id FROM protocol_plans WHERE cycle_id = ? AND status = ?", (cycle_id, status)
            )
        else:
            row = self._fetchone("SELECT id FROM protocol_plans WHERE cycle_id = ?", (cycle_id,))
        return self.get_protocol(row["id"]) if row else None

    def set_protocol_status(self, protocol_plan_id: str, status: str) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE protocol_plans SET status = ? WHERE id = ?", (status, protocol_plan_id))

    def set_medication_exact_time(self, protocol_plan_id: str, medication_id: str, exact_time: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE medications SET exact_time = ? WHERE id = ? AND protocol_plan_id = ?",
                (exact_time, medication_id, protocol_plan_id),
            )
        return cur.rowcount > 0

    # ---------------------------
    # plan days / tasks
    # ---------------------------

    def replace_future_plan(
        self,
        cycle_id: str,
        now: datetime,
        today: date,
        plan_days: List[PlanDay],
        tasks: List[Task],
        day_bounds: Dict[date, tuple],
    ) -> None:
        """
        Drop every task due at or after ``now`` and every plan day from ``today``
        on, then insert the new window. Past tasks are left alone.
        """
        now_iso = to_iso(now)
        created_iso = to_iso(utc_now())
        with self.transaction() as conn:
            conn.execute("DELETE FROM tasks WHERE cycle_id = ? AND due_at >= ?", (cycle_id, now_iso))
            conn.execute("DELETE FROM plan_days WHERE cycle_id = ? AND date >= ?", (cycle_id, today.isoformat()))
            conn.executemany(
                """
                INSERT INTO plan_days (id, cycle_id, date, cycle_day_index, title, summary)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [(pd.id, cycle_id, pd.date.isoformat(), pd.cycle_day_index, pd.title, pd.summary) for pd in plan_days],
            )
            conn.executemany(
                """
                INSERT INTO tasks (id, cycle_id, plan_day_id, kind, label, due_at, status, meta, sent_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
                """,
                [
                    (t.id, cycle_id, t.plan_day_id, t.kind, t.label, to_iso(t.due_at), t.status,
                     t.meta.model_dump_json(), created_iso)
                    for t in tasks
                ],
            )
            # already-due tasks of today lost their plan day above; regroup them
            for pd in plan_days:
                start, end = day_bounds[pd.date]
                conn.execute(
                    """
                    UPDATE tasks SET plan_day_id = ?
                    WHERE cycle_id = ? AND plan_day_id IS NULL AND due_at >= ? AND due_at < ?
                    """,
                    (pd.id, cycle_id, to_iso(start), to_iso(end)),
                )

    def _task_from_row(self, row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            cycle_id=row["cycle_id"],
            plan_day_id=row["plan_day_id"],
            kind=row["kind"],
            label=row["label"],
            due_at=from_iso(row["due_at"]),
            status=row["status"],
            meta=task_meta_adapter.validate_json(row["meta"]),
            sent_at=_opt_dt(row["sent_at"]),
        )

    def get_task(self, task_id: str) -> Optional[Task]:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._task_from_row(row) if row else None

    def list_tasks(
        self,
        cycle_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Task]:
        sql = "SELECT * FROM tasks WHERE cycle_id = ?"
        params: List[Any] = [cycle_id]
        if start is not None:
            sql += " AND due_at >= ?"
            params.append(to_iso(start))
        if end is not None:
            sql += " AND due_at < ?"
            params.append(to_iso(end))
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY due_at ASC, rowid ASC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._task_from_row(r) for r in self._fetchall(sql, params)]

    def list_plan_days(self, cycle_id: str) -> List[PlanDay]:
        rows = self._fetchall("SELECT * FROM plan_days WHERE cycle_id = ? ORDER BY date", (cycle_id,))
        return [
            PlanDay(
                id=r["id"],
                cycle_id=r["cycle_id"],
                date=date.fromisoformat(r["date"]),
                cycle_day_index=r["cycle_day_index"],
                title=r["title"],
                summary=r["summary"],
            )
            for r in rows
        ]

    def get_due_tasks(self, now: datetime, kinds: Sequence[str], limit: int) -> List[DueTask]:
        if not kinds:
            return []
        placeholders = ",".join("?" for _ in kinds)
        rows = self._fetchall(
            f"""
            SELECT t.*, c.user_id AS owner_id,
                   EXISTS (SELECT 1 FROM push_subscriptions p WHERE p.user_id = c.user_id) AS has_push
            FROM tasks t
            JOIN cycles c ON c.id = t.cycle_id
            WHERE t.status = 'PENDING'
              AND t.kind IN ({placeholders})
              AND t.due_at <= ?
            ORDER BY t.due_at ASC, t.rowid ASC
            LIMIT ?
            """,
            (*kinds, to_iso(now), limit),
        )
        out: List[DueTask] = []
        for r in rows:
            user = self.get_user(r["owner_id"])
            if user is None:
                continue
            out.append(DueTask(task=self._task_from_row(r), user=user, has_push_subscription=bool(r["has_push"])))
        return out

    def mark_task_sent(self, task_id: str, at: datetime) -> bool:
        """PENDING -> SENT. False when another tick already moved it."""
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE tasks SET status = 'SENT', sent_at = ? WHERE id = ? AND status = 'PENDING'",
                (to_iso(at), task_id),
            )
        return cur.rowcount > 0

    def mark_task_done(self, task_id: str) -> Task:
        with self.transaction() as conn:
            cur = conn.execute("UPDATE tasks SET status = 'DONE' WHERE id = ?", (task_id,))
            if cur.rowcount == 0:
                raise TaskNotFoundError(task_id)
        return self.get_task(task_id)  # type: ignore[return-value]

    # ---------------------------
    # push subscriptions
    # ---------------------------

    def upsert_push_subscription(self, user_id: str, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
        with self.transaction() as conn:
            row = conn.execute("SELECT id FROM push_subscriptions WHERE endpoint = ?", (endpoint,)).fetchone()
            sub_id = row["id"] if row else new_id("sub")
            conn.execute(
                """
                INSERT INTO push_subscriptions (id, user_id, endpoint, p256dh, auth)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(endpoint) DO UPDATE SET
                    user_id = excluded.user_id, p256dh = excluded.p256dh, auth = excluded.auth
                """,
                (sub_id, user_id, endpoint, p256dh, auth),
            )
        return PushSubscription(id=sub_id, user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)

    def list_push_subscriptions(self, user_id: str) -> List[PushSubscription]:
        rows = self._fetchall("SELECT * FROM push_subscriptions WHERE user_id = ? ORDER BY rowid", (user_id,))
        return [PushSubscription(**dict(r)) for r in rows]

    def delete_push_subscription(self, subscription_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM push_subscriptions WHERE id = ?", (subscription_id,))

    # ---------------------------
    # chat / message log / conversation state
    # ---------------------------

    def create_chat_message(
        self,
        user_id: str,
        cycle_id: str,
        sender: str,
        type: str,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> ChatMessage:
        msg = ChatMessage(
            id=new_id("msg"),
            user_id=user_id,
            cycle_id=cycle_id,
            sender=sender,
            type=type,
            content=content,
            meta=meta or {},
            created_at=at or utc_now(),
        )
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO chat_messages (id, user_id, cycle_id, sender, type, content, meta, read, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (msg.id, user_id, cycle_id, sender, type, content, json.dumps(msg.meta), to_iso(msg.created_at)),
            )
        return msg

    def list_chat_messages(
        self,
        cycle_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ChatMessage]:
        sql = "SELECT * FROM chat_messages WHERE cycle_id = ?"
        params: List[Any] = [cycle_id]
        if start is not None:
            sql += " AND created_at >= ?"
            params.append(to_iso(start))
        if end is not None:
            sql += " AND created_at < ?"
            params.append(to_iso(end))
        sql += " ORDER BY created_at ASC, rowid ASC"
        out = []
        for r in self._fetchall(sql, params):
            d = dict(r)
            d["meta"] = json.loads(d["meta"]) if d["meta"] else {}
            d["read"] = bool(d["read"])
            d["created_at"] = from_iso(d["created_at"])
            out.append(ChatMessage(**d))
        return out

    def add_message_log(
        self,
        user_id: str,
        direction: str,
        channel: str,
        body: str,
        to_number: Optional[str] = None,
        from_number: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> str:
        log_id = new_id("log")
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO message_logs (id, user_id, direction, channel, to_number, from_number, body,
                                          provider_message_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (log_id, user_id, direction, channel, to_number, from_number, body,
                 provider_message_id, to_iso(utc_now())),
            )
        return log_id

    def list_message_logs(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self._fetchall("SELECT * FROM message_logs WHERE user_id = ? ORDER BY rowid", (user_id,))
        return [dict(r) for r in rows]

    def get_conversation_state(self, cycle_id: str) -> Optional[ConversationState]:
        row = self._fetchone("SELECT * FROM conversation_states WHERE cycle_id = ?", (cycle_id,))
        return ConversationState(**dict(row)) if row else None

    def save_conversation_state(self, state: ConversationState) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO conversation_states (cycle_id, user_id, summary) VALUES (?, ?, ?)
                ON CONFLICT(cycle_id) DO UPDATE SET summary = excluded.summary
                """,
                (state.cycle_id, state.user_id, state.summary),
            )

    # ---------------------------
    # check-ins
    # ---------------------------

    def create_check_in(self, check_in: CheckIn) -> CheckIn:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO check_ins (id, user_id, cycle_id, mood, symptoms, note, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (check_in.id, check_in.user_id, check_in.cycle_id, check_in.mood,
                 json.dumps(check_in.symptoms), check_in.note, check_in.source, to_iso(check_in.created_at)),
            )
        return check_in

    def recent_check_ins(self, cycle_id: str, limit: int = 3) -> List[CheckIn]:
        rows = self._fetchall(
            "SELECT * FROM check_ins WHERE cycle_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (cycle_id, limit),
        )
        out = []
        for r in rows:
            d = dict(r)
            d["symptoms"] = json.loads(d["symptoms"] or "[]")
            d["created_at"] = from_iso(d["created_at"])
            out.append(CheckIn(**d))
        return out
