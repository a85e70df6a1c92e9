"""boathouse_sync.loader

Idempotent loader: find-or-create-or-update by natural key.

Each record is written inside its own SAVEPOINT so that one failing record
(FK violation, check constraint, bad value) is rolled back, counted and
skipped without aborting the batch or the enclosing transaction.
Batches and the records inside them are processed strictly in order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg
from psycopg import sql

from boathouse_sync.pipeline import LoadResult, batched

log = logging.getLogger(__name__)

Upsert = Callable[[psycopg.Connection, dict[str, Any]], str]


# ---------------------------------------------------------------------------
# UpsertSpec
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UpsertSpec:
    """Describes how one entity maps onto its table.

    key_fields          natural key; looked up with equality on every field
    mutable_fields      compared on every sync, updated only when different
    insert_only_fields  written on create, never touched afterwards
    """

    table: str
    key_fields: tuple[str, ...]
    mutable_fields: tuple[str, ...]
    insert_only_fields: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Single-record upsert
# ---------------------------------------------------------------------------

def find_id(
    conn: psycopg.Connection,
    spec: UpsertSpec,
    record: dict[str, Any],
) -> int | None:
    """Return the surrogate id of the row matching record's natural key."""
    where = sql.SQL(" AND ").join(
        sql.SQL("{} = %s").format(sql.Identifier(k)) for k in spec.key_fields
    )
    row = conn.execute(
        sql.SQL("SELECT id FROM {} WHERE {}").format(sql.Identifier(spec.table), where),
        [record[k] for k in spec.key_fields],
    ).fetchone()
    return int(row[0]) if row else None


def upsert_record(
    conn: psycopg.Connection,
    spec: UpsertSpec,
    record: dict[str, Any],
) -> str:
    """Insert, update or leave alone one record; return the outcome.

    Only mutable fields present in `record` are compared, so a field whose
    source column does not exist is never overwritten with NULL.

    Returns:
        "created", "updated" or "unchanged".
    """
    missing = [k for k in spec.key_fields if record.get(k) is None]
    if missing:
        raise ValueError(f"{spec.table}: natural key field(s) missing: {missing}")

    compare = [f for f in spec.mutable_fields if f in record]
    key_where = sql.SQL(" AND ").join(
        sql.SQL("{} = %s").format(sql.Identifier(k)) for k in spec.key_fields
    )
    select_cols = [sql.Identifier("id")] + [sql.Identifier(f) for f in compare]
    existing = conn.execute(
        sql.SQL("SELECT {} FROM {} WHERE {}").format(
            sql.SQL(", ").join(select_cols),
            sql.Identifier(spec.table),
            key_where,
        ),
        [record[k] for k in spec.key_fields],
    ).fetchone()

    if existing is None:
        insert_fields = [
            f for f in (*spec.key_fields, *compare, *spec.insert_only_fields)
            if f in record
        ]
        conn.execute(
            sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
                sql.Identifier(spec.table),
                sql.SQL(", ").join(sql.Identifier(f) for f in insert_fields),
                sql.SQL(", ").join(sql.Placeholder() for _ in insert_fields),
            ),
            [record[f] for f in insert_fields],
        )
        return "created"

    row_id = existing[0]
    changed = [
        f for f, current in zip(compare, existing[1:])
        if current != record[f]
    ]
    if not changed:
        return "unchanged"

    assignments = sql.SQL(", ").join(
        sql.SQL("{} = %s").format(sql.Identifier(f)) for f in changed
    )
    conn.execute(
        sql.SQL("UPDATE {} SET {}, updated_at = now() WHERE id = %s").format(
            sql.Identifier(spec.table), assignments,
        ),
        [record[f] for f in changed] + [row_id],
    )
    return "updated"


def spec_upsert(spec: UpsertSpec) -> Upsert:
    """Bind a spec so the result fits load_records' upsert signature."""
    def _upsert(conn: psycopg.Connection, record: dict[str, Any]) -> str:
        return upsert_record(conn, spec, record)
    return _upsert


# ---------------------------------------------------------------------------
# Batch loader
# ---------------------------------------------------------------------------

def load_records(
    conn: psycopg.Connection,
    records: Sequence[dict[str, Any]],
    upsert: Upsert,
    batch_size: int = 50,
    describe: Callable[[dict[str, Any]], str] | None = None,
) -> LoadResult:
    """Upsert records in ordered batches with per-record failure isolation.

    Caller manages the enclosing transaction.
    """
    result = LoadResult()
    for batch_no, batch in enumerate(batched(records, batch_size), start=1):
        log.debug("loading batch %d (%d record(s))", batch_no, len(batch))
        for idx, record in enumerate(batch):
            sp_name = f"load_{batch_no}_{idx}"
            conn.execute(f"SAVEPOINT {sp_name}")
            try:
                outcome = upsert(conn, record)
                conn.execute(f"RELEASE SAVEPOINT {sp_name}")
            except Exception as exc:
                conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
                label = describe(record) if describe else repr(record)
                result.failed += 1
                result.failures.append(f"load failed for {label}: {exc}")
                log.warning("load failed for %s: %s", label, exc)
                continue
            result.record(outcome)
    return result
