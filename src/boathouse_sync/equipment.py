"""boathouse_sync.equipment

Equipment unit process: the Boats sheet -> equipment_unit.

The boat list is positional (A: name, B: detailed type/status,
C: Type, D: min weight, E: max weight) with a few header/spacer rows on
top.  Rows whose detailed type names an ignorable status are skipped;
pseudo-header rows ("Eights" / "Eights") become named-class units that
generic boat assignments can attach to.

Natural key: name.  `status` is written on insert only.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from functools import partial
from typing import Any

from boathouse_sync.columns import cell_at
from boathouse_sync.loader import UpsertSpec, load_records, spec_upsert
from boathouse_sync.normalize import cell_text, parse_decimal
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
# Boat classes
# ---------------------------------------------------------------------------

BOAT_CLASSES = ("Single", "Double", "Pair", "Quad", "Four", "Eight")

# plural class names used as pseudo-header rows and generic assignments
CLASS_BY_PLURAL = {
    "Singles": "Single",
    "Doubles": "Double",
    "Pairs": "Pair",
    "Quads": "Quad",
    "Fours": "Four",
    "Eights": "Eight",
}

PSEUDO_HEADER_ROWS = ("Eights", "Fours", "Quads", "Pairs", "Singles")

# (class, name substrings, detailed-type substrings), checked in order
_CLASS_HINTS: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("Double", ("double", "2x"), ("2x", "[2]")),
    ("Quad", ("quad", "4x"), ("4x", "[q]")),
    ("Pair", ("pair", "2-"), ("2-", "[p]")),
    ("Four", ("four", "4+"), ("4+", "[4]")),
    ("Eight", ("eight", "8+"), ("8+", "[8]")),
    ("Single", ("single", "1x"), ("1x", "[1]")),
)

EQUIPMENT_SPEC = UpsertSpec(
    table="equipment_unit",
    key_fields=("name",),
    mutable_fields=("boat_class", "description", "min_weight_kg", "max_weight_kg"),
    insert_only_fields=("status",),
)

_MAX_WEIGHT = Decimal(1000)


def infer_boat_class(name: str, detailed_type: str | None, type_column: str | None) -> str | None:
    """Class from the Type column, else from name/detailed-type hints."""
    if type_column:
        for boat_class in BOAT_CLASSES:
            if type_column.strip().lower() == boat_class.lower():
                return boat_class
    if name in CLASS_BY_PLURAL:
        return CLASS_BY_PLURAL[name]
    name_l = name.lower()
    detail_l = (detailed_type or "").lower()
    for boat_class, name_hints, detail_hints in _CLASS_HINTS:
        if any(h in name_l for h in name_hints) or any(h in detail_l for h in detail_hints):
            return boat_class
    return None


# ---------------------------------------------------------------------------
# Row transform
# ---------------------------------------------------------------------------

def transform_equipment_row(
    row: Sequence[Any],
    ignorable_statuses: Sequence[str] = (),
    default_status: str = "Available",
    row_number: int | None = None,
) -> RowResult:
    name = cell_text(cell_at(row, 0))
    detailed = cell_text(cell_at(row, 1))
    if not name or not detailed:
        return RowResult.skip(row_number)
    if any(status in detailed for status in ignorable_statuses):
        return RowResult.skip(row_number)

    if name == detailed and name in PSEUDO_HEADER_ROWS:
        return RowResult.ok(
            {
                "name": name,
                "boat_class": CLASS_BY_PLURAL[name],
                "description": detailed,
                "min_weight_kg": None,
                "max_weight_kg": None,
                "status": default_status,
            },
            row_number,
        )

    boat_class = infer_boat_class(name, detailed, cell_text(cell_at(row, 2)))
    if boat_class is None:
        return RowResult.reject(
            f"cannot determine boat class for {name!r} ({detailed!r})",
            row_number,
            list(row),
        )
    return RowResult.ok(
        {
            "name": name,
            "boat_class": boat_class,
            "description": detailed,
            "min_weight_kg": parse_decimal(cell_at(row, 3)),
            "max_weight_kg": parse_decimal(cell_at(row, 4)),
            "status": default_status,
        },
        row_number,
    )


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def extract(ctx: SyncContext) -> list[list[Any]]:
    layout = ctx.layout.equipment
    return ctx.source.get_values(layout.sheet, layout.range)


def transform(ctx: SyncContext, grid: list[list[Any]]) -> TransformResult:
    layout = ctx.layout.equipment
    result = TransformResult()
    first_row = parse_a1_range(layout.range).start_row + layout.data_row_offset + 1
    seen: set[str] = set()
    for offset, row in enumerate(grid[layout.data_row_offset:]):
        row_result = transform_equipment_row(
            row, layout.ignorable_statuses, layout.default_status, first_row + offset
        )
        if row_result.record is not None:
            name = row_result.record["name"]
            if name in seen:
                result.warnings.append(
                    f"row {row_result.row_number}: duplicate boat {name!r}, first occurrence kept"
                )
                continue
            seen.add(name)
        result.add(row_result)
    return result


def validate(records: list[dict[str, Any]]) -> ValidationResult:
    result = ValidationResult()
    seen: set[str] = set()
    for i, boat in enumerate(records, start=1):
        name = boat.get("name")
        if not name:
            result.errors.append(f"record {i}: missing required field 'name'")
        if boat.get("boat_class") not in BOAT_CLASSES:
            result.errors.append(f"record {i}: invalid boat class {boat.get('boat_class')!r}")
        if name in seen:
            result.errors.append(f"record {i}: duplicate natural key {name!r}")
        seen.add(name)

        lo, hi = boat.get("min_weight_kg"), boat.get("max_weight_kg")
        if lo is not None and hi is not None and lo > hi:
            result.warnings.append(f"{name}: min_weight_kg ({lo}) is greater than max_weight_kg ({hi})")
        for label, value in (("min_weight_kg", lo), ("max_weight_kg", hi)):
            if value is not None and not (0 <= value <= _MAX_WEIGHT):
                result.warnings.append(f"{name}: unusual {label} value {value}")
    return result


def load(ctx: SyncContext, records: list[dict[str, Any]]) -> LoadResult:
    return load_records(
        ctx.conn,
        records,
        spec_upsert(EQUIPMENT_SPEC),
        batch_size=ctx.settings.batch_size,
        describe=lambda r: f"boat {r.get('name')!r}",
    )


def build_process(ctx: SyncContext) -> EntityProcess:
    return EntityProcess(
        name="equipment",
        extract=partial(extract, ctx),
        transform=partial(transform, ctx),
        validate=validate,
        load=partial(load, ctx),
    )
