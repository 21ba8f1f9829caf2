from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings
from .state import DesiredState, HealthCheck, ResourceLimits


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    A bind-mounted file path that does not exist yet is created by Docker as a
    *directory*; in that case the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "gro.db")

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
            CREATE TABLE IF NOT EXISTS revisions (
              revision_id INTEGER PRIMARY KEY,
              resource TEXT NOT NULL,
              image_reference TEXT NOT NULL,
              replica_count INTEGER NOT NULL,
              request_cpu TEXT NOT NULL,
              request_memory TEXT NOT NULL,
              limit_cpu TEXT NOT NULL,
              limit_memory TEXT NOT NULL,
              health_path TEXT NOT NULL,
              health_initial_delay_s REAL NOT NULL,
              health_period_s REAL NOT NULL,
              internal_port INTEGER NOT NULL,
              published_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              resource TEXT,
              revision_id INTEGER,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_revisions_resource ON revisions(resource);
            """
        )


def log_event(level: str, message: str, resource: str | None = None, revision_id: int | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, resource, revision_id, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), resource, revision_id, message),
        )


@dataclass(frozen=True)
class RevisionRow:
    revision_id: int
    resource: str
    image_reference: str
    replica_count: int
    request_cpu: str
    request_memory: str
    limit_cpu: str
    limit_memory: str
    health_path: str
    health_initial_delay_s: float
    health_period_s: float
    internal_port: int
    published_at: str

    def to_desired(self) -> DesiredState:
        return DesiredState(
            resource=self.resource,
            image_reference=self.image_reference,
            replica_count=self.replica_count,
            requests=ResourceLimits(cpu=self.request_cpu, memory=self.request_memory),
            limits=ResourceLimits(cpu=self.limit_cpu, memory=self.limit_memory),
            health_check=HealthCheck(
                path=self.health_path,
                initial_delay_s=self.health_initial_delay_s,
                period_s=self.health_period_s,
            ),
            internal_port=self.internal_port,
            revision_id=self.revision_id,
        )


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def insert_revision(d: DesiredState) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO revisions (
              revision_id, resource, image_reference, replica_count,
              request_cpu, request_memory, limit_cpu, limit_memory,
              health_path, health_initial_delay_s, health_period_s,
              internal_port, published_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                d.revision_id,
                d.resource,
                d.image_reference,
                d.replica_count,
                d.requests.cpu,
                d.requests.memory,
                d.limits.cpu,
                d.limits.memory,
                d.health_check.path,
                d.health_check.initial_delay_s,
                d.health_check.period_s,
                d.internal_port,
                utc_now(),
            ),
        )


def list_revisions(resource: str | None = None) -> list[RevisionRow]:
    with connect() as conn:
        if resource:
            cur = conn.execute(
                "SELECT * FROM revisions WHERE resource=? ORDER BY revision_id",
                (resource,),
            )
        else:
            cur = conn.execute("SELECT * FROM revisions ORDER BY revision_id")
        return _rows_to_dataclass(cur.fetchall(), RevisionRow)


def latest_events(limit: int = 100, resource: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if resource:
            rows = conn.execute(
                "SELECT * FROM events WHERE resource=? ORDER BY id DESC LIMIT ?",
                (resource, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
