"""boathouse_sync.ledger

Job ledger: one sync_job row per synchronization run.

A run moves pending -> running -> {completed | failed | cancelled}.  The
row is written when the run enters `running` and closed exactly once;
closed rows are immutable, and close_job refuses to touch them.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

import psycopg
from psycopg.rows import dict_row

from boathouse_sync.pipeline import InvalidTransitionError, ProcessResult

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

JOB_STATUSES = ("running", "completed", "failed", "cancelled")
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})

_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "cancelled"}),
    "running": frozenset({"completed", "failed", "cancelled"}),
}


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------

def open_job(
    conn: psycopg.Connection,
    job_type: str,
    run_id: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Insert a sync_job row with status='running' and return its id."""
    row = conn.execute(
        """
        INSERT INTO sync_job (run_id, job_type, status, metadata)
        VALUES (%s, %s, 'running', %s)
        RETURNING id
        """,
        (run_id, job_type, json.dumps(metadata or {}, default=str)),
    ).fetchone()
    return int(row[0])


def close_job(
    conn: psycopg.Connection,
    job_id: int,
    status: str,
    counts: dict[str, int],
    duration_ms: int,
    error_message: str | None = None,
    error_details: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Mark a running sync_job finished.  Raises if it is already closed."""
    if status not in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"cannot close job {job_id} with status {status!r}")
    cur = conn.execute(
        """
        UPDATE sync_job
        SET status = %s,
            completed_at = now(),
            duration_ms = %s,
            records_processed = %s,
            records_created = %s,
            records_updated = %s,
            records_failed = %s,
            error_message = %s,
            error_details = %s,
            metadata = COALESCE(%s::jsonb, metadata)
        WHERE id = %s AND status = 'running'
        """,
        (
            status,
            duration_ms,
            counts.get("processed", 0),
            counts.get("created", 0),
            counts.get("updated", 0),
            counts.get("failed", 0),
            error_message,
            json.dumps(error_details, default=str) if error_details is not None else None,
            json.dumps(metadata, default=str) if metadata is not None else None,
            job_id,
        ),
    )
    if cur.rowcount != 1:
        raise InvalidTransitionError(f"sync_job {job_id} is not running; ledger rows are immutable once closed")


def recent_jobs(conn: psycopg.Connection, limit: int = 10) -> list[dict[str, Any]]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT id, run_id, job_type, status, started_at, completed_at,
                   duration_ms, records_processed, records_created,
                   records_updated, records_failed, error_message
            FROM sync_job
            ORDER BY started_at DESC, id DESC
            LIMIT %s
            """,
            (limit,),
        )
        return cur.fetchall()


def job_stats(conn: psycopg.Connection, days: int = 7) -> list[dict[str, Any]]:
    """Aggregate jobs of the last `days` days by job type and status."""
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT job_type,
                   status,
                   count(*)::int AS job_count,
                   avg(duration_ms)::int AS avg_duration_ms,
                   COALESCE(sum(records_processed), 0)::int AS records_processed,
                   COALESCE(sum(records_failed), 0)::int AS records_failed
            FROM sync_job
            WHERE started_at >= now() - make_interval(days => %s)
            GROUP BY job_type, status
            ORDER BY job_type, status
            """,
            (days,),
        )
        return cur.fetchall()


# ---------------------------------------------------------------------------
# SyncRun state machine
# ---------------------------------------------------------------------------

@dataclass
class SyncRun:
    """In-memory state of one run, mirrored into its sync_job row."""

    job_type: str
    run_id: str
    status: str = "pending"
    job_id: int | None = None
    processes: list[ProcessResult] = field(default_factory=list)
    _started: float | None = field(default=None, init=False, repr=False)

    def _transition(self, new_status: str) -> None:
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"sync run {self.run_id}: {self.status} -> {new_status} is not allowed"
            )
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def start(self, conn: psycopg.Connection, metadata: dict[str, Any] | None = None) -> int:
        self._transition("running")
        self._started = time.monotonic()
        self.job_id = open_job(conn, self.job_type, self.run_id, metadata)
        return self.job_id

    def counts(self) -> dict[str, int]:
        return {
            "processed": sum(p.records_processed for p in self.processes),
            "created": sum(p.records_created for p in self.processes),
            "updated": sum(p.records_updated for p in self.processes),
            "failed": sum(p.records_failed for p in self.processes),
        }

    def finish(
        self,
        conn: psycopg.Connection,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Close the run as completed, or failed if any process failed."""
        failed = [p for p in self.processes if not p.succeeded]
        if error_message is None and failed:
            error_message = "; ".join(
                f"{p.name}: {p.error_message}" for p in failed
            )
        new_status = "failed" if error_message else "completed"
        self._transition(new_status)
        duration_ms = int((time.monotonic() - (self._started or time.monotonic())) * 1000)
        error_details = None
        if new_status == "failed":
            error_details = {
                "failed_processes": [p.name for p in failed],
                "errors": {p.name: p.errors[:50] for p in failed},
            }
        close_job(
            conn,
            self.job_id,  # type: ignore[arg-type]
            new_status,
            self.counts(),
            duration_ms,
            error_message=error_message,
            error_details=error_details,
            metadata={
                "processes": [p.to_dict() for p in self.processes],
                **(metadata or {}),
            },
        )
        return new_status

    def cancel(self, conn: psycopg.Connection, reason: str) -> None:
        self._transition("cancelled")
        if self.job_id is None:
            return
        duration_ms = int((time.monotonic() - (self._started or time.monotonic())) * 1000)
        close_job(
            conn,
            self.job_id,  # type: ignore[arg-type]
            "cancelled",
            self.counts(),
            duration_ms,
            error_message=reason,
            metadata={"processes": [p.to_dict() for p in self.processes]},
        )
