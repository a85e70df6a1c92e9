"""boathouse_sync.attendance

Attendance process: the member x session grid -> attendance_record.

Every configured block (coxswain rows, rower rows) has the member name in
one column and one cell per session column.  A cell becomes a record only
when it is non-empty; an empty cell means "no record", never "absent".

Roster activity pruning happens here, during transform: a member whose
rows carry no non-empty cell in any session column gets no records and is
flipped to inactive.  Only currently active members are touched, so the
flip happens exactly once; dry runs count the would-be deactivations
without writing.  A header block that yields no session columns fails the
process before any pruning.

Natural key: (session_id, member_id).  Sessions are matched by their
(date, start_time) key, never by column position.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from functools import partial
from typing import Any

import psycopg

from boathouse_sync.columns import cell_at
from boathouse_sync.loader import UpsertSpec, load_records, spec_upsert
from boathouse_sync.normalize import cell_text, is_empty_cell, normalize_name
from boathouse_sync.pipeline import (
    EntityProcess,
    LoadResult,
    RowResult,
    SyncContext,
    TransformResult,
    ValidationError,
    ValidationResult,
)
from boathouse_sync.session_headers import ParsedSession, parse_session_headers
from boathouse_sync.sheets import parse_a1_range

log = logging.getLogger(__name__)

STATUSES = ("Yes", "No", "Maybe")
BOAT_NOTE_PREFIX = "Boat assignment: "

_BOAT_PATTERNS = (
    re.compile(r"^\[\d+\]"),
    re.compile(
        r"\b(singles?|doubles?|quads?|eights?|pairs?|fours?|cox\w*|scull\w*|sweep\w*)\b",
        re.IGNORECASE,
    ),
)

ATTENDANCE_SPEC = UpsertSpec(
    table="attendance_record",
    key_fields=("session_id", "member_id"),
    mutable_fields=("status", "notes"),
)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Classification:
    status: str
    notes: str | None = None
    # set when the value was not recognised and defaulted to No
    warning: str | None = None


def is_boat_status(value: str) -> bool:
    return any(p.search(value) for p in _BOAT_PATTERNS)


def classify_attendance(value: Any) -> Classification | None:
    """Map one attendance cell to a status, or None when no record is due.

    >>> classify_attendance("[8] Knifton")
    Classification(status='Yes', notes='Boat assignment: [8] Knifton', warning=None)
    """
    text = cell_text(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered == "no":
        return Classification("No")
    if lowered == "maybe":
        return Classification("Maybe")
    if lowered == "yes":
        return Classification("Yes")
    if is_boat_status(text):
        return Classification("Yes", notes=f"{BOAT_NOTE_PREFIX}{text}")
    return Classification(
        "No", warning=f"unrecognised attendance value {text!r}, defaulted to No"
    )


# ---------------------------------------------------------------------------
# Row transform + pruning
# ---------------------------------------------------------------------------

@dataclass
class MemberRow:
    """One block row after classification, before member resolution."""

    name: str
    row_number: int | None
    cells: list[tuple[ParsedSession, Classification]]
    warnings: list[str]

    @property
    def has_activity(self) -> bool:
        return bool(self.cells)


def classify_member_row(
    row: Sequence[Any],
    sessions: Sequence[ParsedSession],
    name_column: int = 0,
    session_cell_offset: int = 4,
    row_number: int | None = None,
) -> MemberRow | RowResult:
    """Classify every session cell of one member row.

    Returns a RowResult for rows that produce nothing (blank) or are
    rejected (no name); otherwise a MemberRow.
    """
    if all(is_empty_cell(c) for c in row):
        return RowResult.skip(row_number)
    name = cell_text(cell_at(row, name_column))
    if not name:
        return RowResult.reject("no member name found", row_number, list(row))

    cells: list[tuple[ParsedSession, Classification]] = []
    warnings: list[str] = []
    for session in sessions:
        classified = classify_attendance(
            cell_at(row, session_cell_offset + session.column_index)
        )
        if classified is None:
            continue
        if classified.warning:
            message = f"{name} @ {session.session_date} {session.start_time}: {classified.warning}"
            log.warning("row %s: %s", row_number, message)
            warnings.append(message)
        cells.append((session, classified))
    return MemberRow(name=name, row_number=row_number, cells=cells, warnings=warnings)


def deactivate_members(conn: psycopg.Connection, member_ids: Sequence[int]) -> int:
    """Flip active members to inactive; already-inactive ones are untouched."""
    if not member_ids:
        return 0
    cur = conn.execute(
        """
        UPDATE roster_member
        SET active = false, updated_at = now()
        WHERE id = ANY(%s) AND active
        """,
        (list(member_ids),),
    )
    return cur.rowcount


def _member_index(conn: psycopg.Connection) -> dict[str, tuple[int, bool]]:
    return {
        row[0]: (int(row[1]), bool(row[2]))
        for row in conn.execute(
            "SELECT normalized_name, id, active FROM roster_member"
        ).fetchall()
    }


def _session_index(conn: psycopg.Connection) -> dict[tuple[date, str], int]:
    return {
        (row[0], row[1]): int(row[2])
        for row in conn.execute(
            "SELECT session_date, start_time, id FROM schedule_session"
        ).fetchall()
    }


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def extract(ctx: SyncContext) -> dict[str, Any]:
    layout = ctx.layout.attendance
    return {
        "headers": ctx.source.get_values(layout.sheet, layout.header_range),
        "blocks": [
            (block.label, block.range, ctx.source.get_values(layout.sheet, block.range))
            for block in layout.blocks
        ],
    }


def transform(ctx: SyncContext, raw: dict[str, Any]) -> TransformResult:
    layout = ctx.layout.attendance
    result = TransformResult()
    sessions = parse_session_headers(raw["headers"], ctx.layout.tokens, ctx.today)
    if not sessions:
        # every member row would look idle; refuse rather than prune the roster
        raise ValidationError([
            f"no session columns parsed from header range {layout.header_range}; "
            "attendance and roster pruning skipped"
        ])
    session_ids = _session_index(ctx.conn)
    members = _member_index(ctx.conn)

    unloaded = [s for s in sessions if s.key not in session_ids]
    for s in unloaded:
        result.warnings.append(f"session {s.session_date} {s.start_time} not loaded; its column is ignored")

    activity: dict[int, bool] = {}
    seen: set[tuple[int, int]] = set()
    for label, a1, grid in raw["blocks"]:
        first_row = parse_a1_range(a1).start_row + 1
        for offset, row in enumerate(grid):
            classified = classify_member_row(
                row, sessions, layout.name_column, layout.session_cell_offset, first_row + offset
            )
            if isinstance(classified, RowResult):
                result.add(classified)
                continue

            member = members.get(normalize_name(classified.name))
            if member is None:
                result.add(RowResult.reject(
                    f"{label}: member {classified.name!r} not on the roster",
                    classified.row_number,
                    list(row),
                ))
                continue
            member_id, _ = member
            activity[member_id] = activity.get(member_id, False) or classified.has_activity
            result.warnings.extend(classified.warnings)

            for session, status in classified.cells:
                session_id = session_ids.get(session.key)
                if session_id is None:
                    continue
                if (session_id, member_id) in seen:
                    result.warnings.append(
                        f"row {classified.row_number}: duplicate attendance for {classified.name!r} "
                        f"at {session.session_date} {session.start_time}, first occurrence kept"
                    )
                    continue
                seen.add((session_id, member_id))
                result.records.append({
                    "session_id": session_id,
                    "member_id": member_id,
                    "status": status.status,
                    "notes": status.notes,
                    "member_name": classified.name,
                    "session_key": f"{session.session_date} {session.start_time}",
                })

    currently_active = {mid for mid, active in members.values() if active}
    idle_active = sorted(
        member_id for member_id, active_in_sheet in activity.items()
        if not active_in_sheet and member_id in currently_active
    )
    if ctx.dry_run:
        result.stats["would_deactivate"] = len(idle_active)
    else:
        deactivated = deactivate_members(ctx.conn, idle_active)
        result.stats["members_deactivated"] = deactivated
        if deactivated:
            log.info("deactivated %d member(s) with no attendance activity", deactivated)
    return result


def validate(records: list[dict[str, Any]]) -> ValidationResult:
    result = ValidationResult()
    seen: set[tuple[Any, Any]] = set()
    for rec in records:
        key = (rec.get("session_id"), rec.get("member_id"))
        if None in key:
            result.errors.append(f"{rec.get('member_name')}: unresolved session or member")
            continue
        if key in seen:
            result.errors.append(f"duplicate attendance key {key}")
        seen.add(key)
        if rec.get("status") not in STATUSES:
            result.errors.append(f"{rec.get('member_name')}: invalid status {rec.get('status')!r}")
    return result


def load(ctx: SyncContext, records: list[dict[str, Any]]) -> LoadResult:
    return load_records(
        ctx.conn,
        records,
        spec_upsert(ATTENDANCE_SPEC),
        batch_size=ctx.settings.batch_size,
        describe=lambda r: f"attendance {r.get('member_name')!r} @ {r.get('session_key')}",
    )


def build_process(ctx: SyncContext) -> EntityProcess:
    return EntityProcess(
        name="attendance",
        extract=partial(extract, ctx),
        transform=partial(transform, ctx),
        validate=validate,
        load=partial(load, ctx),
    )
