"""boathouse_sync.shared

Shared run utilities: RejectWriter, RunCounters, and the text and JSON
run reports written at the end of every command.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from boathouse_sync.pipeline import WARNINGS_IN_REPORT, ProcessResult


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def write_process_rejects(self, result: ProcessResult) -> int:
        """Append every rejected source row of one process; return the count."""
        for reject in result.rejects:
            self.write(
                {
                    "process": result.name,
                    "row_number": reject.row_number,
                    "raw": json.dumps(reject.raw, default=str) if reject.raw is not None else "",
                },
                reject.diagnostic or "",
            )
        return len(result.rejects)

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    processes_run: int = 0
    processes_failed: int = 0
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    records_failed: int = 0
    rows_rejected: int = 0
    members_deactivated: int = 0
    units_seeded: int = 0
    warnings: list[str] = field(default_factory=list)
    processes: list[dict[str, Any]] = field(default_factory=list)

    def add(self, result: ProcessResult) -> None:
        self.processes_run += 1
        if not result.succeeded:
            self.processes_failed += 1
        self.records_processed += result.records_processed
        self.records_created += result.records_created
        self.records_updated += result.records_updated
        self.records_unchanged += result.records_unchanged
        self.records_failed += result.records_failed
        self.rows_rejected += len(result.rejects)
        self.members_deactivated += result.stats.get("members_deactivated", 0)
        self.units_seeded += result.stats.get("units_seeded", 0)
        self.warnings.extend(f"{result.name}: {w}" for w in result.warnings)
        if result.error_message:
            self.warnings.append(f"{result.name}: FAILED: {result.error_message}")
        self.processes.append(result.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "processes_run": self.processes_run,
            "processes_failed": self.processes_failed,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "records_unchanged": self.records_unchanged,
            "records_failed": self.records_failed,
            "rows_rejected": self.rows_rejected,
            "members_deactivated": self.members_deactivated,
            "units_seeded": self.units_seeded,
            "warnings": self.warnings[:WARNINGS_IN_REPORT],
            "processes": self.processes,
        }


# ---------------------------------------------------------------------------
# Report builders
# ---------------------------------------------------------------------------

def build_run_report(counters: RunCounters, job_type: str, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        f"Sync Report: {job_type}",
        f"  dry_run: {dry_run}",
        "=" * 60,
    ]
    for proc in counters.processes:
        line = (
            f"  {proc['name']:<15} {proc['status']:<10}"
            f" processed={proc['records_processed']}"
            f" created={proc['records_created']}"
            f" updated={proc['records_updated']}"
            f" failed={proc['records_failed']}"
        )
        stats = proc.get("stats") or {}
        if stats:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(stats.items()))
        lines.append(line)
    lines += [
        "-" * 60,
        f"  records processed:   {counters.records_processed}",
        f"    → created:         {counters.records_created}",
        f"    → updated:         {counters.records_updated}",
        f"    → unchanged:       {counters.records_unchanged}",
        f"    → failed:          {counters.records_failed}",
        f"  rows rejected:       {counters.rows_rejected}",
        f"  members deactivated: {counters.members_deactivated}",
        f"Processes failed:      {counters.processes_failed}",
    ]
    if counters.warnings:
        lines.append(f"\nWarnings ({len(counters.warnings)}):")
        for w in counters.warnings[:20]:
            lines.append(f"  {w}")
        if len(counters.warnings) > 20:
            lines.append(f"  ... and {len(counters.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_info: dict[str, Any],
    counters: RunCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_info,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
