"""boathouse_sync.age_categories

USRA masters age-category reference table, read from the side table on the
Boats sheet (Start Age | End Age | Category).

Natural key: category.
"""

from __future__ import annotations

from collections.abc import Sequence
from functools import partial
from typing import Any

from boathouse_sync.columns import cell_at, resolve_columns
from boathouse_sync.loader import UpsertSpec, load_records, spec_upsert
from boathouse_sync.normalize import cell_text, is_empty_cell, parse_int
from boathouse_sync.pipeline import (
    EntityProcess,
    LoadResult,
    RowResult,
    SyncContext,
    TransformResult,
    ValidationResult,
)
from boathouse_sync.sheets import parse_a1_range

AGE_CATEGORY_SPEC = UpsertSpec(
    table="age_category",
    key_fields=("category",),
    mutable_fields=("start_age", "end_age"),
)


def transform_category_row(
    row: Sequence[Any],
    columns: dict[str, int | None],
    row_number: int | None = None,
) -> RowResult:
    if all(is_empty_cell(c) for c in row):
        return RowResult.skip(row_number)
    category = cell_text(cell_at(row, columns.get("category")))
    start_age = parse_int(cell_at(row, columns.get("start_age")))
    end_age = parse_int(cell_at(row, columns.get("end_age")))
    if not category or start_age is None or end_age is None:
        return RowResult.reject(
            f"incomplete age category row: category={category!r} start={start_age} end={end_age}",
            row_number,
            list(row),
        )
    return RowResult.ok(
        {"category": category, "start_age": start_age, "end_age": end_age},
        row_number,
    )


def extract(ctx: SyncContext) -> list[list[Any]]:
    layout = ctx.layout.age_categories
    return ctx.source.get_values(layout.sheet, layout.range)


def transform(ctx: SyncContext, grid: list[list[Any]]) -> TransformResult:
    layout = ctx.layout.age_categories
    result = TransformResult()
    if len(grid) <= layout.header_row:
        result.warnings.append(f"{layout.sheet}!{layout.range} has no header row")
        return result
    columns = resolve_columns(grid[layout.header_row], layout.columns)
    missing = sorted(f for f, idx in columns.items() if idx is None)
    if missing:
        result.warnings.append(f"age category column(s) not found: {missing}")
        return result

    first_row = parse_a1_range(layout.range).start_row + layout.header_row + 2
    seen: set[str] = set()
    for offset, row in enumerate(grid[layout.header_row + 1:]):
        row_result = transform_category_row(row, columns, first_row + offset)
        if row_result.record is not None:
            category = row_result.record["category"]
            if category in seen:
                result.warnings.append(
                    f"row {row_result.row_number}: duplicate category {category!r}, first occurrence kept"
                )
                continue
            seen.add(category)
        result.add(row_result)
    return result


def validate(records: list[dict[str, Any]]) -> ValidationResult:
    result = ValidationResult()
    ordered = sorted(records, key=lambda r: r["start_age"])
    for rec in ordered:
        if rec["start_age"] < 0 or rec["end_age"] < 0:
            result.errors.append(f"{rec['category']}: negative age bound")
        if rec["start_age"] > rec["end_age"]:
            result.errors.append(
                f"{rec['category']}: start_age {rec['start_age']} > end_age {rec['end_age']}"
            )
    for prev, cur in zip(ordered, ordered[1:]):
        if cur["start_age"] <= prev["end_age"]:
            result.warnings.append(
                f"{prev['category']} ({prev['start_age']}-{prev['end_age']}) overlaps "
                f"{cur['category']} ({cur['start_age']}-{cur['end_age']})"
            )
    return result


def load(ctx: SyncContext, records: list[dict[str, Any]]) -> LoadResult:
    return load_records(
        ctx.conn,
        records,
        spec_upsert(AGE_CATEGORY_SPEC),
        batch_size=ctx.settings.batch_size,
        describe=lambda r: f"category {r.get('category')!r}",
    )


def build_process(ctx: SyncContext) -> EntityProcess:
    return EntityProcess(
        name="age_categories",
        extract=partial(extract, ctx),
        transform=partial(transform, ctx),
        validate=validate,
        load=partial(load, ctx),
    )
