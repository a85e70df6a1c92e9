"""boathouse_sync.roster

Roster member process: the Rowers sheet -> roster_member.

The header row is resolved through the column resolver, so the sheet's
columns may move or be renamed within the configured candidates.  Name and
role are required; every other attribute is optional and left out of the
record entirely when its column is not found (so an absent column never
nulls a stored value).

Natural key: normalized_name.  `active` is written on insert only, so a
roster sync never revives a member the attendance pruner deactivated.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from functools import partial
from typing import Any

from boathouse_sync.columns import cell_at, resolve_columns
from boathouse_sync.loader import UpsertSpec, load_records, spec_upsert
from boathouse_sync.normalize import (
    VALID_ROLES,
    cell_text,
    is_empty_cell,
    is_valid_email,
    normalize_bow_in_dark,
    normalize_cox_capability,
    normalize_email,
    normalize_gender,
    normalize_name,
    normalize_port_starboard,
    normalize_role,
    normalize_sweep_scull,
    parse_decimal,
    parse_int,
)
from boathouse_sync.pipeline import (
    EntityProcess,
    LoadResult,
    RowResult,
    SyncContext,
    TransformResult,
    ValidationResult,
)
from boathouse_sync.sheets import parse_a1_range

# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

OPTIONAL_FIELDS: dict[str, Callable[[Any], Any]] = {
    "first_name": cell_text,
    "last_name": cell_text,
    "email": normalize_email,
    "phone": cell_text,
    "gender": normalize_gender,
    "birth_year": parse_int,
    "age": parse_int,
    "sweep_scull": normalize_sweep_scull,
    "port_starboard": normalize_port_starboard,
    "cox_capability": normalize_cox_capability,
    "bow_in_dark": normalize_bow_in_dark,
    "weight_kg": parse_decimal,
    "height_cm": parse_decimal,
    "experience_years": parse_int,
    "age_category": cell_text,
    "us_rowing_number": cell_text,
    "emergency_contact": cell_text,
    "emergency_contact_phone": cell_text,
}

ROSTER_SPEC = UpsertSpec(
    table="roster_member",
    key_fields=("normalized_name",),
    mutable_fields=("name", "role", *OPTIONAL_FIELDS),
    insert_only_fields=("active",),
)

_MAX_WEIGHT = Decimal(1000)
_MAX_AGE = 150


# ---------------------------------------------------------------------------
# Row transform
# ---------------------------------------------------------------------------

def transform_roster_row(
    row: Sequence[Any],
    columns: dict[str, int | None],
    row_number: int | None = None,
) -> RowResult:
    """Map one roster row to a roster_member record."""
    if all(is_empty_cell(c) for c in row):
        return RowResult.skip(row_number)

    name = cell_text(cell_at(row, columns.get("name")))
    raw_role = cell_at(row, columns.get("role"))
    role = normalize_role(raw_role)
    if not name or not role:
        return RowResult.reject(
            f"missing required fields: name={name!r}, role={cell_text(raw_role)!r}",
            row_number,
            list(row),
        )
    if role not in VALID_ROLES:
        return RowResult.reject(f"invalid role {role!r} for {name}", row_number, list(row))

    record: dict[str, Any] = {
        "name": name,
        "normalized_name": normalize_name(name),
        "role": role,
        "active": True,
    }
    for field, parse in OPTIONAL_FIELDS.items():
        idx = columns.get(field)
        if idx is None:
            continue
        record[field] = parse(cell_at(row, idx))
    return RowResult.ok(record, row_number)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def extract(ctx: SyncContext) -> list[list[Any]]:
    layout = ctx.layout.roster
    return ctx.source.get_values(layout.sheet, layout.range)


def transform(ctx: SyncContext, grid: list[list[Any]]) -> TransformResult:
    layout = ctx.layout.roster
    result = TransformResult()
    if len(grid) <= layout.header_row:
        result.warnings.append(f"sheet {layout.sheet!r} has no header row")
        return result

    columns = resolve_columns(grid[layout.header_row], layout.columns)
    missing = [f for f in layout.required if columns.get(f) is None]
    if missing:
        result.warnings.append(f"required column(s) not found in header: {missing}")
        return result
    unresolved = sorted(f for f, idx in columns.items() if idx is None)
    if unresolved:
        result.warnings.append(f"optional column(s) not found, omitted: {unresolved}")

    first_row = parse_a1_range(layout.range).start_row + layout.header_row + 2
    seen: set[str] = set()
    for offset, row in enumerate(grid[layout.header_row + 1:]):
        row_result = transform_roster_row(row, columns, first_row + offset)
        if row_result.record is not None:
            key = row_result.record["normalized_name"]
            if key in seen:
                result.warnings.append(
                    f"row {row_result.row_number}: duplicate member {row_result.record['name']!r}, "
                    "first occurrence kept"
                )
                continue
            seen.add(key)
        result.add(row_result)
    return result


def validate(records: list[dict[str, Any]]) -> ValidationResult:
    result = ValidationResult()
    if not records:
        result.errors.append("no roster records to load")
    seen: set[str] = set()
    for i, member in enumerate(records, start=1):
        if not member.get("name"):
            result.errors.append(f"record {i}: missing required field 'name'")
        if member.get("role") not in VALID_ROLES:
            result.errors.append(f"record {i}: invalid role {member.get('role')!r}")
        key = member.get("normalized_name")
        if key in seen:
            result.errors.append(f"record {i}: duplicate natural key {key!r}")
        seen.add(key)

        email = member.get("email")
        if email and not is_valid_email(email):
            result.warnings.append(f"{member.get('name')}: invalid email format {email!r}")
        weight = member.get("weight_kg")
        if weight is not None and not (0 <= weight <= _MAX_WEIGHT):
            result.warnings.append(f"{member.get('name')}: unusual weight value {weight}")
        age = member.get("age")
        if age is not None and not (0 <= age <= _MAX_AGE):
            result.warnings.append(f"{member.get('name')}: unusual age value {age}")
    return result


def load(ctx: SyncContext, records: list[dict[str, Any]]) -> LoadResult:
    return load_records(
        ctx.conn,
        records,
        spec_upsert(ROSTER_SPEC),
        batch_size=ctx.settings.batch_size,
        describe=lambda r: f"member {r.get('name')!r}",
    )


def build_process(ctx: SyncContext) -> EntityProcess:
    return EntityProcess(
        name="roster",
        extract=partial(extract, ctx),
        transform=partial(transform, ctx),
        validate=validate,
        load=partial(load, ctx),
    )
