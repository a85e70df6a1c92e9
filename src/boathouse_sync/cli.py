"""boathouse_sync.cli

Unified boathouse sync CLI.

    boathouse-sync --mode full --db-dsn postgresql://... \\
        --spreadsheet-id 1AbC... --credentials-path sa.json

    boathouse-sync --mode attendance --snapshot-dir ./snapshots --dry-run

Connection and source settings fall back to DB_DSN,
GOOGLE_SHEETS_SPREADSHEET_ID and GOOGLE_SHEETS_CREDENTIALS_PATH.
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from functools import partial
from pathlib import Path

import click
import psycopg

from boathouse_sync.layout import DEFAULT_LAYOUT_PATH, LayoutValidationError, load_layout
from boathouse_sync.ledger import SyncRun
from boathouse_sync.orchestrator import PROCESS_ORDER, Orchestrator
from boathouse_sync.pipeline import ExtractionError, SyncSettings
from boathouse_sync.shared import (
    RejectWriter,
    RunCounters,
    build_run_report,
    write_run_report,
)
from boathouse_sync.sheets import GoogleSheetsSource, SheetSource, SnapshotSource, dump_snapshot

RUN_MODES = ("full", "incremental", "test")
MODES = (*RUN_MODES, *PROCESS_ORDER, "validate", "status", "snapshot")


def _build_source(
    run_id: str,
    snapshot_dir: str | None,
    spreadsheet_id: str | None,
    credentials_path: str | None,
) -> SheetSource:
    if snapshot_dir:
        return SnapshotSource(Path(snapshot_dir))
    if not spreadsheet_id or not credentials_path:
        click.echo(
            f"[{run_id}] ERROR: provide --snapshot-dir, or --spreadsheet-id and "
            "--credentials-path (or GOOGLE_SHEETS_SPREADSHEET_ID / "
            "GOOGLE_SHEETS_CREDENTIALS_PATH).",
            err=True,
        )
        sys.exit(1)
    return GoogleSheetsSource(spreadsheet_id, Path(credentials_path))


def _echo_status(run_id: str, status: dict) -> None:
    click.echo(f"[{run_id}] Recent sync jobs:")
    if not status["recent"]:
        click.echo("  (none)")
    for job in status["recent"]:
        click.echo(
            f"  #{job['id']:<5} {job['job_type']:<18} {job['status']:<10}"
            f" started={job['started_at']:%Y-%m-%d %H:%M:%S}"
            f" duration_ms={job['duration_ms']}"
            f" processed={job['records_processed']}"
            f" failed={job['records_failed']}"
        )
    click.echo(f"[{run_id}] Last 7 days by job type:")
    for row in status["stats"]:
        click.echo(
            f"  {row['job_type']:<18} {row['status']:<10} jobs={row['job_count']}"
            f" avg_ms={row['avg_duration_ms']} processed={row['records_processed']}"
            f" failed={row['records_failed']}"
        )


def _report_run(
    run: SyncRun,
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_info: dict,
    rejects: RejectWriter,
) -> None:
    counters = RunCounters()
    for result in run.processes:
        counters.add(result)
        rejects.write_process_rejects(result)
    rejects.close()

    click.echo(build_run_report(counters, run.job_type, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {**source_info, "job_id": run.job_id, "job_status": run.status},
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if run.status == "failed":
        failed = [p.name for p in run.processes if not p.succeeded]
        click.echo(f"[{run_id}] Sync failed: {', '.join(failed)}", err=True)
        sys.exit(1)
    if dry_run:
        click.echo(f"[{run_id}] DRY RUN: rolled back.")
    else:
        click.echo(f"[{run_id}] Committed.")


@click.command()
@click.option(
    "--mode",
    default="full",
    type=click.Choice(list(MODES)),
    show_default=True,
    help="Sync mode: a pipeline run, a single entity process, or a utility",
)
@click.option("--db-dsn", envvar="DB_DSN", default=None, help="PostgreSQL DSN [env: DB_DSN]")
@click.option(
    "--spreadsheet-id",
    envvar="GOOGLE_SHEETS_SPREADSHEET_ID",
    default=None,
    help="Google Sheets spreadsheet key [env: GOOGLE_SHEETS_SPREADSHEET_ID]",
)
@click.option(
    "--credentials-path",
    envvar="GOOGLE_SHEETS_CREDENTIALS_PATH",
    default=None,
    type=click.Path(),
    help="Service account JSON [env: GOOGLE_SHEETS_CREDENTIALS_PATH]",
)
@click.option("--snapshot-dir", default=None, type=click.Path(), help="Read sheets from <dir>/<title>.json instead of Google")
@click.option("--snapshot-out", default=None, type=click.Path(), help="[snapshot] Directory to write <title>.json files to")
@click.option(
    "--layout-path",
    default=str(DEFAULT_LAYOUT_PATH),
    type=click.Path(),
    show_default=True,
    help="Sheet layout YAML",
)
@click.option("--batch-size", default=50, type=int, show_default=True)
@click.option("--retry-attempts", default=3, type=int, show_default=True)
@click.option("--retry-delay-ms", default=1000, type=int, show_default=True, help="Base backoff delay; doubles per attempt")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/sync_rejects.csv",
    type=click.Path(),
    show_default=True,
)
@click.option("--status-limit", default=10, type=int, show_default=True, help="[status] Number of recent jobs to list")
@click.option("--verbose", is_flag=True, default=False, help="Debug logging")
def main(
    mode: str,
    db_dsn: str | None,
    spreadsheet_id: str | None,
    credentials_path: str | None,
    snapshot_dir: str | None,
    snapshot_out: str | None,
    layout_path: str,
    batch_size: int,
    retry_attempts: int,
    retry_delay_ms: int,
    dry_run: bool,
    run_id: str | None,
    rejects_path: str,
    status_limit: int,
    verbose: bool,
) -> None:
    """Sync the club spreadsheet into PostgreSQL."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    if mode == "test":
        dry_run = True
    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    try:
        layout = load_layout(Path(layout_path))
    except (LayoutValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: layout {layout_path}: {exc}", err=True)
        sys.exit(1)

    if mode == "snapshot":
        if not snapshot_out:
            click.echo(f"[{run_id}] ERROR: --snapshot-out is required for snapshot mode.", err=True)
            sys.exit(1)
        source = _build_source(run_id, None, spreadsheet_id, credentials_path)
        try:
            written = dump_snapshot(source, layout.sheet_names(), Path(snapshot_out))
        except ExtractionError as exc:
            click.echo(f"[{run_id}] Snapshot failed: {exc}", err=True)
            sys.exit(1)
        for path in written:
            click.echo(f"[{run_id}] wrote {path}")
        return

    if not db_dsn:
        click.echo(f"[{run_id}] ERROR: --db-dsn (or DB_DSN) is required.", err=True)
        sys.exit(1)

    settings = SyncSettings(
        batch_size=batch_size,
        retry_attempts=retry_attempts,
        retry_delay_ms=retry_delay_ms,
        dry_run=dry_run,
    )
    source = None
    if mode != "status":
        source = _build_source(run_id, snapshot_dir, spreadsheet_id, credentials_path)
    orchestrator = Orchestrator(
        partial(psycopg.connect, db_dsn, autocommit=False),
        source,
        layout,
        settings,
        run_id,
    )

    if mode == "status":
        try:
            _echo_status(run_id, orchestrator.status(limit=status_limit))
        except psycopg.Error as exc:
            click.echo(f"[{run_id}] Status query failed: {exc}", err=True)
            sys.exit(1)
        return

    if mode == "validate":
        problems = orchestrator.validate_configuration()
        for problem in problems:
            click.echo(f"[{run_id}] {problem}", err=True)
        if problems:
            click.echo(f"[{run_id}] Configuration invalid ({len(problems)} problem(s)).", err=True)
            sys.exit(1)
        click.echo(f"[{run_id}] Configuration OK.")
        return

    source_info = {
        "source": snapshot_dir or spreadsheet_id,
        "layout_path": layout_path,
        "layout_hash": layout.yaml_hash,
    }
    try:
        if mode == "full":
            run = orchestrator.run_full()
        elif mode == "incremental":
            run = orchestrator.run_incremental()
        elif mode == "test":
            run = orchestrator.run_test()
        else:
            run = orchestrator.run_single(mode)
    except psycopg.OperationalError as exc:
        click.echo(f"[{run_id}] FATAL: database unavailable: {exc}", err=True)
        sys.exit(1)

    _report_run(run, run_id, started_at, mode, dry_run, source_info, RejectWriter(Path(rejects_path)))


if __name__ == "__main__":
    main()
