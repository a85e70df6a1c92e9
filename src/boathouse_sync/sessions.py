"""boathouse_sync.sessions

Schedule session process: the attendance grid's 3-row header block ->
schedule_session.

Sessions are keyed by (session_date, start_time).  The positional ordinal
from the header parser is stored as source_ordinal for traceability only;
attendance and lineups join through the natural key.  Validation reports
any session whose stored id differs from its ordinal, since older
consumers of this table assumed the two were equal.
"""

from __future__ import annotations

from functools import partial
from typing import Any

from boathouse_sync.loader import UpsertSpec, load_records, spec_upsert
from boathouse_sync.pipeline import (
    EntityProcess,
    LoadResult,
    SyncContext,
    TransformResult,
    ValidationResult,
)
from boathouse_sync.session_headers import normalize_clock, parse_session_headers

SESSION_SPEC = UpsertSpec(
    table="schedule_session",
    key_fields=("session_date", "start_time"),
    mutable_fields=("end_time", "session_type", "location", "source_ordinal"),
)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def extract(ctx: SyncContext) -> list[list[Any]]:
    layout = ctx.layout.sessions
    return ctx.source.get_values(layout.sheet, layout.header_range)


def transform(ctx: SyncContext, header_rows: list[list[Any]]) -> TransformResult:
    layout = ctx.layout.sessions
    result = TransformResult()
    parsed = parse_session_headers(header_rows, ctx.layout.tokens, ctx.today)
    width = max((len(r) for r in header_rows[:3]), default=0)
    result.stats["columns_skipped"] = width - len(parsed)

    seen: set[tuple[Any, str]] = set()
    for session in parsed:
        if session.key in seen:
            result.warnings.append(
                f"column {session.column_index}: duplicate session "
                f"{session.session_date} {session.start_time}, first occurrence kept"
            )
            continue
        seen.add(session.key)
        result.records.append({
            "session_date": session.session_date,
            "start_time": session.start_time,
            "end_time": session.end_time,
            "session_type": layout.session_type,
            "location": layout.location,
            "source_ordinal": session.ordinal,
        })
    return result


def validate(ctx: SyncContext, records: list[dict[str, Any]]) -> ValidationResult:
    result = ValidationResult()
    for rec in records:
        if rec.get("session_date") is None or not rec.get("start_time"):
            result.errors.append(f"session {rec.get('source_ordinal')}: missing date or start time")
            continue
        if normalize_clock(rec["start_time"]) != rec["start_time"]:
            result.warnings.append(
                f"session {rec['session_date']}: start time {rec['start_time']!r} is not h:mm AM/PM"
            )

    stored = {
        (row[1], row[2]): row[0]
        for row in ctx.conn.execute(
            "SELECT id, session_date, start_time FROM schedule_session"
        ).fetchall()
    }
    for rec in records:
        session_id = stored.get((rec.get("session_date"), rec.get("start_time")))
        if session_id is not None and session_id != rec["source_ordinal"]:
            result.warnings.append(
                f"session {rec['session_date']} {rec['start_time']}: stored id {session_id} "
                f"differs from column ordinal {rec['source_ordinal']}"
            )
    return result


def load(ctx: SyncContext, records: list[dict[str, Any]]) -> LoadResult:
    return load_records(
        ctx.conn,
        records,
        spec_upsert(SESSION_SPEC),
        batch_size=ctx.settings.batch_size,
        describe=lambda r: f"session {r.get('session_date')} {r.get('start_time')}",
    )


def build_process(ctx: SyncContext) -> EntityProcess:
    return EntityProcess(
        name="sessions",
        extract=partial(extract, ctx),
        transform=partial(transform, ctx),
        validate=partial(validate, ctx),
        load=partial(load, ctx),
    )
