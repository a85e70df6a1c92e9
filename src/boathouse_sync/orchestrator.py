"""boathouse_sync.orchestrator

Runs entity processes in dependency order and records each run in the
sync_job ledger.

Order is fixed: roster and equipment before sessions, sessions before
attendance, attendance before lineup.  Each process commits its own writes
before the next one starts; a failed process rolls back only its own
partial work.  The ledger row is committed when the run opens and again
when it closes, so it survives a process rollback.  Any exception raised
inside a process fails that process alone; a fatal error outside one
closes the ledger row as failed before it propagates.

Modes:
  full         every process; a failure is recorded and the run continues
  incremental  same pipeline under job type incremental_sync
  single       one named process; stops on failure
  test         full pipeline in dry-run mode (nothing but the ledger row
               is written)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import date
from typing import Any

import psycopg

from boathouse_sync import (
    age_categories,
    attendance,
    equipment,
    lineup,
    roster,
    sessions,
)
from boathouse_sync.layout import SheetLayout
from boathouse_sync.ledger import SyncRun, job_stats, recent_jobs
from boathouse_sync.pipeline import (
    EntityProcess,
    ExtractionError,
    InvalidTransitionError,
    ProcessResult,
    SyncContext,
    SyncSettings,
    run_process,
)
from boathouse_sync.sheets import SheetSource

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Process registry
# ---------------------------------------------------------------------------

PROCESS_BUILDERS: dict[str, Callable[[SyncContext], EntityProcess]] = {
    "roster": roster.build_process,
    "equipment": equipment.build_process,
    "age_categories": age_categories.build_process,
    "sessions": sessions.build_process,
    "attendance": attendance.build_process,
    "lineup": lineup.build_process,
}

PROCESS_ORDER = tuple(PROCESS_BUILDERS)

REQUIRED_TABLES = (
    "roster_member",
    "equipment_unit",
    "age_category",
    "schedule_session",
    "attendance_record",
    "lineup_assignment",
    "sync_job",
)


class Orchestrator:
    """Drives sync runs against one store and one sheet source.

    conn_factory is called once per run and must return a psycopg
    connection with autocommit off; the orchestrator owns commit, rollback
    and close.
    """

    def __init__(
        self,
        conn_factory: Callable[[], psycopg.Connection],
        source: SheetSource | None,
        layout: SheetLayout,
        settings: SyncSettings,
        run_id: str,
        today: date | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.conn_factory = conn_factory
        self.source = source
        self.layout = layout
        self.settings = settings
        self.run_id = run_id
        self.today = today or date.today()
        self.sleep = sleep

    # -----------------------------------------------------------------------
    # Run modes
    # -----------------------------------------------------------------------

    def run_full(self, job_type: str = "full_sync") -> SyncRun:
        return self._run(job_type, PROCESS_ORDER, self.settings, stop_on_failure=False)

    def run_incremental(self) -> SyncRun:
        return self.run_full(job_type="incremental_sync")

    def run_single(self, name: str) -> SyncRun:
        if name not in PROCESS_BUILDERS:
            raise ValueError(f"unknown process {name!r}; expected one of {list(PROCESS_ORDER)}")
        return self._run(f"{name}_sync", (name,), self.settings, stop_on_failure=True)

    def run_test(self) -> SyncRun:
        return self._run(
            "test_sync",
            PROCESS_ORDER,
            replace(self.settings, dry_run=True),
            stop_on_failure=False,
        )

    # -----------------------------------------------------------------------
    # Checks
    # -----------------------------------------------------------------------

    def validate_configuration(self) -> list[str]:
        """Check store and source reachability; return the problems found."""
        problems: list[str] = []
        try:
            conn = self.conn_factory()
        except psycopg.Error as exc:
            problems.append(f"database connection failed: {exc}")
        else:
            try:
                conn.execute("SELECT 1")
                for table in REQUIRED_TABLES:
                    row = conn.execute("SELECT to_regclass(%s)", (table,)).fetchone()
                    if row[0] is None:
                        problems.append(f"table {table!r} does not exist")
            except psycopg.Error as exc:
                problems.append(f"database check failed: {exc}")
            finally:
                conn.rollback()
                conn.close()

        try:
            titles = set(self.source.sheet_titles())
        except ExtractionError as exc:
            problems.append(f"sheet source unreachable: {exc}")
        else:
            for sheet in self.layout.sheet_names():
                if sheet not in titles:
                    problems.append(f"worksheet {sheet!r} not found in source")
        return problems

    def status(self, limit: int = 10, days: int = 7) -> dict[str, Any]:
        conn = self.conn_factory()
        try:
            return {
                "recent": recent_jobs(conn, limit),
                "stats": job_stats(conn, days),
            }
        finally:
            conn.rollback()
            conn.close()

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _run(
        self,
        job_type: str,
        names: tuple[str, ...],
        settings: SyncSettings,
        stop_on_failure: bool,
    ) -> SyncRun:
        run = SyncRun(job_type=job_type, run_id=self.run_id)
        conn = self.conn_factory()
        try:
            run.start(conn, metadata={
                "processes": list(names),
                "dry_run": settings.dry_run,
                "batch_size": settings.batch_size,
                "layout_version": self.layout.version,
                "layout_hash": self.layout.yaml_hash,
            })
            conn.commit()
            log.info("[%s] %s started (job %s)", self.run_id, job_type, run.job_id)

            try:
                for name in names:
                    result = self._run_process(conn, name, settings)
                    run.processes.append(result)
                    if not result.succeeded and stop_on_failure:
                        log.error("[%s] %s failed, stopping: %s", self.run_id, name, result.error_message)
                        break
            except KeyboardInterrupt:
                conn.rollback()
                run.cancel(conn, "interrupted by operator")
                conn.commit()
                raise

            status = run.finish(conn)
            conn.commit()
            log.info("[%s] %s %s", self.run_id, job_type, status)
            return run
        except Exception as exc:
            conn.rollback()
            if run.status == "running":
                self._close_failed(conn, run, exc)
            raise
        finally:
            conn.close()

    def _close_failed(self, conn: psycopg.Connection, run: SyncRun, exc: Exception) -> None:
        """Close a still-running ledger row as failed after a fatal error."""
        try:
            run.finish(conn, error_message=f"{type(exc).__name__}: {exc}")
            conn.commit()
        except (psycopg.Error, InvalidTransitionError):
            log.exception("[%s] could not close sync_job %s", self.run_id, run.job_id)

    def _run_process(
        self,
        conn: psycopg.Connection,
        name: str,
        settings: SyncSettings,
    ) -> ProcessResult:
        ctx = SyncContext(
            conn=conn,
            source=self.source,
            layout=self.layout,
            settings=settings,
            run_id=self.run_id,
            today=self.today,
        )
        process = PROCESS_BUILDERS[name](ctx)
        log.info("[%s] running %s", self.run_id, name)
        try:
            result = run_process(process, settings, sleep=self.sleep)
        except Exception as exc:
            conn.rollback()
            log.exception("[%s] %s aborted", self.run_id, name)
            result = ProcessResult(name=name)
            result.fail(f"{type(exc).__name__}: {exc}")
            return result

        if result.succeeded and not settings.dry_run:
            conn.commit()
        else:
            conn.rollback()
        return result
