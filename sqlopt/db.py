from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (a bind-mounted volume,
    for instance), the journal file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "sqlopt.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              server_name TEXT,
              instance_name TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              operation TEXT NOT NULL, -- read|test|apply
              server_name TEXT,
              instance_name TEXT NOT NULL,
              option_name TEXT NOT NULL,
              desired_value INTEGER,
              observed_value INTEGER,
              outcome TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_runs_ts ON runs(ts);
            """
        )


def log_event(level: str, message: str, server_name: str | None = None, instance_name: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, server_name, instance_name, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), server_name, instance_name, message),
        )


@dataclass(frozen=True)
class RunRow:
    id: int
    ts: str
    operation: str
    server_name: str | None
    instance_name: str
    option_name: str
    desired_value: int | None
    observed_value: int | None
    outcome: str


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def record_run(
    operation: str,
    server_name: str | None,
    instance_name: str,
    option_name: str,
    outcome: str,
    desired_value: int | None = None,
    observed_value: int | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO runs (ts, operation, server_name, instance_name, option_name, desired_value, observed_value, outcome)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (utc_now(), operation, server_name, instance_name, option_name, desired_value, observed_value, outcome),
        )


def list_runs(limit: int = 100) -> list[RunRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, RunRow)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
