"""boathouse_sync.lineup

Lineup reconciliation: boat-assignment notes on attendance -> lineup_assignment.

Lineups are not read from the sheet.  They are derived from attendance
records whose status is Yes and whose note carries a boat assignment
("Boat assignment: [8] Knifton", "Boat assignment: Eights").  Records are
grouped by (session, boat); each group resolves its equipment unit by name
and gets headcount, mass and age metrics.

Seat capacity comes from the unit's class, not the bracketed rower count:
coxed classes carry one extra seat.  Average mass is total mass divided by
seat capacity, so a partially filled boat shows a lower average.

Generic class assignments ("Eights") attach to a unit named after the
class.  When no such unit is on file one is seeded (outside dry runs) and
reported in the process stats.

Lineups are wholly derived from stored attendance, so after each load the
rows of attended sessions whose (session, boat) group no longer appears are
deleted.  Sessions with no attendance on file keep their lineups.

Natural key: (session_id, equipment_id).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Any

import psycopg
from psycopg.rows import dict_row

from boathouse_sync.attendance import BOAT_NOTE_PREFIX
from boathouse_sync.equipment import CLASS_BY_PLURAL
from boathouse_sync.loader import UpsertSpec, load_records, spec_upsert
from boathouse_sync.normalize import ROLE_COX
from boathouse_sync.pipeline import (
    EntityProcess,
    LoadResult,
    SyncContext,
    TransformResult,
    ValidationResult,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

# known truncated names in historical sheets
BOAT_NAME_ALIASES = {"Emp": "Empacher"}

GENERIC_ROWER_COUNTS = {
    "Singles": 1,
    "Doubles": 2,
    "Pairs": 2,
    "Quads": 4,
    "Fours": 4,
    "Eights": 8,
}

SEAT_CAPACITY = {
    "Eight": 9,
    "Four": 5,
    "Quad": 4,
    "Double": 2,
    "Pair": 2,
    "Single": 1,
}

LINEUP_TYPE = "Practice"

LINEUP_SPEC = UpsertSpec(
    table="lineup_assignment",
    key_fields=("session_id", "equipment_id"),
    mutable_fields=(
        "lineup_name",
        "lineup_type",
        "headcount",
        "seat_capacity",
        "total_weight_kg",
        "average_weight_kg",
        "average_age",
        "assignment_note",
        "notes",
    ),
)

_SPECIFIC_RE = re.compile(r"^\[(\d+)\]\s*(.+?)\s*$")

_TWO_PLACES = Decimal("0.01")
_ONE_PLACE = Decimal("0.1")
_MAX_AVERAGE_WEIGHT = Decimal(150)


def seat_capacity(boat_class: str | None) -> int | None:
    """Seats in a boat of this class, singular or plural name."""
    if not boat_class:
        return None
    boat_class = CLASS_BY_PLURAL.get(boat_class, boat_class)
    return SEAT_CAPACITY.get(boat_class)


# ---------------------------------------------------------------------------
# Boat-assignment parser
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BoatAssignment:
    boat_name: str
    rower_count: int
    generic: bool = False


def parse_boat_assignment(note: str | None) -> BoatAssignment | None:
    """Parse an attendance note into a boat assignment.

    Accepts the full note ("Boat assignment: [8] Knifton") or just the
    assignment text.  Returns None when neither grammar matches.

    >>> parse_boat_assignment("Boat assignment: [4] Carson")
    BoatAssignment(boat_name='Carson', rower_count=4, generic=False)
    """
    if not note:
        return None
    text = note.strip()
    if text.startswith(BOAT_NOTE_PREFIX.strip()):
        text = text[len(BOAT_NOTE_PREFIX.strip()):].strip()
    if not text:
        return None

    m = _SPECIFIC_RE.match(text)
    if m:
        name = BOAT_NAME_ALIASES.get(m.group(2), m.group(2))
        return BoatAssignment(boat_name=name, rower_count=int(m.group(1)))

    for plural, count in GENERIC_ROWER_COUNTS.items():
        if text.lower() == plural.lower():
            return BoatAssignment(boat_name=plural, rower_count=count, generic=True)
    return None


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@dataclass
class AssignedMember:
    """One attendee with a boat assignment, as read back from the store."""

    session_id: int
    member_id: int
    name: str
    role: str
    notes: str
    weight_kg: Decimal | None = None
    birth_year: int | None = None
    age: int | None = None


def member_age(member: AssignedMember, today: date) -> int | None:
    if member.birth_year:
        return today.year - member.birth_year
    return member.age


def assignment_note(headcount: int, rowers: int, coxswains: int, boat_class: str, capacity: int) -> str:
    note = (
        f"Auto-generated from {headcount} athletes "
        f"({rowers} rowers, {coxswains} coxswains) for {boat_class}"
    )
    if headcount > capacity:
        note += f" (Over-assigned: {headcount} athletes for {capacity} seats)"
    elif headcount < capacity:
        note += f" (Under-assigned: {headcount} athletes for {capacity} seats)"
    return note


def build_lineup(
    session_id: int,
    equipment_id: int,
    boat_name: str,
    boat_class: str,
    members: Sequence[AssignedMember],
    today: date,
    declared_rowers: int | None = None,
) -> dict[str, Any]:
    """Aggregate one (session, boat) group into a lineup_assignment record."""
    capacity = seat_capacity(boat_class)
    if capacity is None:
        raise ValueError(f"unknown boat class {boat_class!r} for {boat_name}")

    coxswains = sum(1 for m in members if m.role == ROLE_COX)
    rowers = len(members) - coxswains

    weights = [m.weight_kg for m in members if m.weight_kg is not None]
    total_weight = sum(weights, Decimal(0)).quantize(_TWO_PLACES) if weights else None
    average_weight = (
        (total_weight / capacity).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
        if total_weight is not None
        else None
    )

    ages = [
        a for a in (member_age(m, today) for m in members if m.role != ROLE_COX)
        if a is not None
    ]
    average_age = (
        (Decimal(sum(ages)) / len(ages)).quantize(_ONE_PLACE, rounding=ROUND_HALF_UP)
        if ages
        else None
    )

    notes = None
    if declared_rowers is not None and declared_rowers != rowers:
        notes = f"Declared {declared_rowers} rowers, {rowers} assigned"

    return {
        "session_id": session_id,
        "equipment_id": equipment_id,
        "lineup_name": f"{boat_name} - Session {session_id}",
        "lineup_type": LINEUP_TYPE,
        "headcount": len(members),
        "seat_capacity": capacity,
        "total_weight_kg": total_weight,
        "average_weight_kg": average_weight,
        "average_age": average_age,
        "assignment_note": assignment_note(len(members), rowers, coxswains, boat_class, capacity),
        "notes": notes,
    }


def group_assignments(
    members: Iterable[AssignedMember],
) -> tuple[dict[tuple[int, str], tuple[BoatAssignment, list[AssignedMember]]], list[str]]:
    """Group attendees by (session_id, boat name); collect unparseable notes."""
    groups: dict[tuple[int, str], tuple[BoatAssignment, list[AssignedMember]]] = {}
    warnings: list[str] = []
    for member in members:
        assignment = parse_boat_assignment(member.notes)
        if assignment is None:
            warnings.append(
                f"session {member.session_id}: unparseable boat assignment "
                f"{member.notes!r} for {member.name}, dropped"
            )
            continue
        key = (member.session_id, assignment.boat_name)
        if key not in groups:
            groups[key] = (assignment, [])
        groups[key][1].append(member)
    return groups, warnings


# ---------------------------------------------------------------------------
# Store access
# ---------------------------------------------------------------------------

def fetch_assigned_members(conn: psycopg.Connection) -> list[AssignedMember]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT a.session_id, a.member_id, a.notes,
                   m.name, m.role, m.weight_kg, m.birth_year, m.age
            FROM attendance_record a
            JOIN roster_member m ON m.id = a.member_id
            WHERE a.status = 'Yes' AND a.notes LIKE %s
            ORDER BY a.session_id, a.member_id
            """,
            (f"{BOAT_NOTE_PREFIX.strip()}%",),
        )
        return [AssignedMember(**row) for row in cur.fetchall()]


def fetch_units(conn: psycopg.Connection) -> dict[str, tuple[int, str]]:
    """name -> (id, boat_class) for every equipment unit."""
    return {
        row[0]: (int(row[1]), row[2])
        for row in conn.execute("SELECT name, id, boat_class FROM equipment_unit").fetchall()
    }


def seed_class_unit(conn: psycopg.Connection, plural: str) -> tuple[int, str]:
    """Create the named-class unit a generic assignment attaches to."""
    boat_class = CLASS_BY_PLURAL[plural]
    conn.execute(
        """
        INSERT INTO equipment_unit (name, boat_class, description, status)
        VALUES (%s, %s, %s, 'Available')
        ON CONFLICT (name) DO NOTHING
        """,
        (plural, boat_class, f"Named-class unit for generic {plural} assignments"),
    )
    row = conn.execute(
        "SELECT id, boat_class FROM equipment_unit WHERE name = %s", (plural,)
    ).fetchone()
    log.info("seeded named-class unit %r (%s)", plural, boat_class)
    return int(row[0]), row[1]


def prune_stale_lineups(conn: psycopg.Connection, records: Sequence[dict[str, Any]]) -> int:
    """Delete lineups of attended sessions whose (session, boat) group is gone."""
    cur = conn.execute(
        """
        DELETE FROM lineup_assignment l
        WHERE l.session_id IN (SELECT DISTINCT session_id FROM attendance_record)
          AND (l.session_id, l.equipment_id) NOT IN (
              SELECT * FROM unnest(%s::bigint[], %s::bigint[])
          )
        """,
        (
            [r["session_id"] for r in records],
            [r["equipment_id"] for r in records],
        ),
    )
    return cur.rowcount


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def extract(ctx: SyncContext) -> dict[str, Any]:
    return {
        "members": fetch_assigned_members(ctx.conn),
        "units": fetch_units(ctx.conn),
    }


def transform(ctx: SyncContext, raw: dict[str, Any]) -> TransformResult:
    result = TransformResult()
    units: dict[str, tuple[int, str]] = dict(raw["units"])
    groups, warnings = group_assignments(raw["members"])
    result.warnings.extend(warnings)
    unseeded: set[str] = set()

    for (session_id, boat_name), (assignment, members) in groups.items():
        unit = units.get(boat_name)
        if unit is None and assignment.generic:
            if ctx.dry_run:
                if boat_name not in unseeded:
                    unseeded.add(boat_name)
                    result.bump("would_seed")
                    result.warnings.append(f"named-class unit {boat_name!r} missing; would be seeded")
                continue
            unit = seed_class_unit(ctx.conn, boat_name)
            units[boat_name] = unit
            result.bump("units_seeded")
        if unit is None:
            result.warnings.append(
                f"session {session_id}: boat {boat_name!r} not found in equipment, "
                f"{len(members)} assignment(s) dropped"
            )
            continue
        equipment_id, boat_class = unit
        result.records.append(build_lineup(
            session_id,
            equipment_id,
            boat_name,
            boat_class,
            members,
            ctx.today,
            declared_rowers=None if assignment.generic else assignment.rower_count,
        ))
    return result


def validate(records: list[dict[str, Any]]) -> ValidationResult:
    result = ValidationResult()
    seen: set[tuple[Any, Any]] = set()
    for rec in records:
        key = (rec.get("session_id"), rec.get("equipment_id"))
        if None in key:
            result.errors.append(f"{rec.get('lineup_name')}: missing session or equipment")
            continue
        if key in seen:
            result.errors.append(f"duplicate lineup key {key}")
        seen.add(key)
        avg = rec.get("average_weight_kg")
        if avg is not None and not (0 <= avg <= _MAX_AVERAGE_WEIGHT):
            result.warnings.append(f"{rec['lineup_name']}: unusual average weight {avg}")
        age = rec.get("average_age")
        if age is not None and not (0 < age < 120):
            result.warnings.append(f"{rec['lineup_name']}: unusual average age {age}")
    return result


def load(ctx: SyncContext, records: list[dict[str, Any]]) -> LoadResult:
    loaded = load_records(
        ctx.conn,
        records,
        spec_upsert(LINEUP_SPEC),
        batch_size=ctx.settings.batch_size,
        describe=lambda r: f"lineup {r.get('lineup_name')!r}",
    )
    pruned = prune_stale_lineups(ctx.conn, records)
    if pruned:
        log.info("removed %d stale lineup(s)", pruned)
    return loaded


def build_process(ctx: SyncContext) -> EntityProcess:
    return EntityProcess(
        name="lineup",
        extract=partial(extract, ctx),
        transform=partial(transform, ctx),
        validate=validate,
        load=partial(load, ctx),
    )
