# app/db/db_config.py

import sqlite3
from pathlib import Path


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id              TEXT PRIMARY KEY,
    timezone        TEXT NOT NULL DEFAULT 'America/Los_Angeles',
    quiet_hours     TEXT,
    phone_e164      TEXT,
    sms_consent     INTEGER NOT NULL DEFAULT 0,
    daily_msg_count INTEGER NOT NULL DEFAULT 0,
    last_msg_at     TEXT
);

CREATE TABLE IF NOT EXISTS cycles (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    start_date TEXT
);

CREATE TABLE IF NOT EXISTS protocol_plans (
    id               TEXT PRIMARY KEY,
    cycle_id         TEXT NOT NULL UNIQUE REFERENCES cycles(id) ON DELETE CASCADE,
    status           TEXT NOT NULL DEFAULT 'DRAFT',
    source           TEXT NOT NULL DEFAULT 'INTAKE',
    cycle_start_date TEXT NOT NULL,
    notes            TEXT,
    structured_data  TEXT
);

CREATE TABLE IF NOT EXISTS medications (
    id               TEXT PRIMARY KEY,
    protocol_plan_id TEXT NOT NULL REFERENCES protocol_plans(id) ON DELETE CASCADE,
    name             TEXT NOT NULL,
    dosage_amount    REAL,
    dosage_unit      TEXT,
    dosage           TEXT,
    frequency        TEXT NOT NULL DEFAULT 'once_daily',
    route            TEXT,
    start_day_offset INTEGER NOT NULL CHECK (start_day_offset >= 0),
    duration_days    INTEGER NOT NULL CHECK (duration_days >= 1),
    time_of_day      TEXT,
    exact_time       TEXT,
    instructions     TEXT
);

CREATE TABLE IF NOT EXISTS appointments (
    id               TEXT PRIMARY KEY,
    protocol_plan_id TEXT NOT NULL REFERENCES protocol_plans(id) ON DELETE CASCADE,
    type             TEXT NOT NULL,
    day_offset       INTEGER NOT NULL CHECK (day_offset >= 0),
    exact_time       TEXT,
    notes            TEXT,
    fasting          INTEGER NOT NULL DEFAULT 0,
    critical         INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS milestones (
    id               TEXT PRIMARY KEY,
    protocol_plan_id TEXT NOT NULL REFERENCES protocol_plans(id) ON DELETE CASCADE,
    type             TEXT NOT NULL,
    day_offset       INTEGER NOT NULL CHECK (day_offset >= 0),
    label            TEXT,
    details          TEXT
);

CREATE TABLE IF NOT EXISTS plan_days (
    id              TEXT PRIMARY KEY,
    cycle_id        TEXT NOT NULL REFERENCES cycles(id) ON DELETE CASCADE,
    date            TEXT NOT NULL,
    cycle_day_index INTEGER NOT NULL,
    title           TEXT NOT NULL,
    summary         TEXT
);
CREATE INDEX IF NOT EXISTS idx_plan_days_cycle_date ON plan_days (cycle_id, date);

CREATE TABLE IF NOT EXISTS tasks (
    id          TEXT PRIMARY KEY,
    cycle_id    TEXT NOT NULL REFERENCES cycles(id) ON DELETE CASCADE,
    plan_day_id TEXT REFERENCES plan_days(id) ON DELETE SET NULL,
    kind        TEXT NOT NULL,
    label       TEXT NOT NULL,
    due_at      TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'PENDING',
    meta        TEXT NOT NULL,
    sent_at     TEXT,
    created_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks (status, due_at);
CREATE INDEX IF NOT EXISTS idx_tasks_cycle_due ON tasks (cycle_id, due_at);

CREATE TABLE IF NOT EXISTS push_subscriptions (
    id       TEXT PRIMARY KEY,
    user_id  TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    endpoint TEXT NOT NULL UNIQUE,
    p256dh   TEXT NOT NULL,
    auth     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_messages (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL,
    cycle_id   TEXT NOT NULL,
    sender     TEXT NOT NULL,
    type       TEXT NOT NULL,
    content    TEXT NOT NULL,
    meta       TEXT,
    read       INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chat_cycle_created ON chat_messages (cycle_id, created_at);

CREATE TABLE IF NOT EXISTS message_logs (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT NOT NULL,
    direction           TEXT NOT NULL,
    channel             TEXT NOT NULL,
    to_number           TEXT,
    from_number         TEXT,
    body                TEXT NOT NULL,
    provider_message_id TEXT,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_states (
    cycle_id TEXT PRIMARY KEY,
    user_id  TEXT NOT NULL,
    summary  TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS check_ins (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL,
    cycle_id   TEXT NOT NULL,
    mood       INTEGER,
    symptoms   TEXT NOT NULL DEFAULT '[]',
    note       TEXT,
    source     TEXT NOT NULL DEFAULT 'APP',
    created_at TEXT NOT NULL
);
"""


def get_sqlite_connection(db_path: str) -> sqlite3.Connection:
    """
    Create and configure SQLite connection with recommended PRAGMA settings.
    ``":memory:"`` gives a private in-process database.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    # Performance & concurrency settings
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    conn.execute("PRAGMA foreign_keys=ON;")

    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA)
    conn.commit()


def get_checkpoint_connection(db_path: str) -> sqlite3.Connection:
    """Plain connection for the LangGraph checkpointer (no row factory)."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(db_path, check_same_thread=False)
