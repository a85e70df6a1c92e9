"""Integration test fixtures.

Applies the schema migrations against an ephemeral PostgreSQL database
provided by pytest-postgresql, and builds a small club spreadsheet
snapshot matching config/sheet_layout.yml.
"""

from __future__ import annotations

import json
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_core_tables.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return a psycopg connection with schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Spreadsheet snapshot
# ---------------------------------------------------------------------------

ROWERS = [
    ["Name", "Type", "Gender", "Email", "Birth Year", "Weight"],
    ["Cora Cox", "Cox", "F", "cora@example.test", "", 50],
    *[
        [f"Rower {n}", "Rower", "M", f"rower{n}@example.test", 1985, 70]
        for n in range(1, 8)
    ],
    ["Idle Ida", "Rower", "F", "ida@example.test", 1970, 60],
    ["Eve Eights", "Rower", "F", "eve@example.test", 1990, 65],
]

# A..E boats (data from row 6), H..J age categories (header on row 1)
BOATS = [
    ["", "", "", "", "", "", "", "Start Age", "End Age", "Category"],
    ["Boat List", "", "", "", "", "", "", 21, 26, "AA"],
    ["Name", "Type", "Class", "Min", "Max", "", "", 27, 35, "A"],
    [],
    [],
    ["Knifton", "Eight [8]", "Eight", 60, 90],
    ["Carson", "Quad [4x]", "Quad", "", ""],
    ["Old Tub", "HOCR loan", "", "", ""],
]

# sessions start in column E; rows 2-4 are the header block.
# Column F carries the error sentinel and is not a session.
ATTENDANCE = [
    ["Attendance"],
    ["", "", "", "", "January 6", "January 7", "January 8"],
    ["", "", "", "", "6:15 AM", "5:30 PM", "HOC"],
    ["", "", "", "", "", "#VALUE!", ""],
    [],
    ["Cora Cox", "", "", "", "[8] Knifton", "", "yes"],
    [], [], [], [], [], [], [], [],
    [],
    *[
        [f"Rower {n}", "", "", "", "[8] Knifton", "yes", "no"]
        for n in range(1, 7)
    ],
    ["Rower 7", "", "", "", "[8] Knifton"],
    ["Idle Ida"],
    ["Eve Eights", "", "", "", "Eights", "", "maybe"],
]


def write_snapshot(directory: Path, **overrides: list) -> Path:
    sheets = {"Rowers": ROWERS, "Boats": BOATS, "Attendance": ATTENDANCE, **overrides}
    directory.mkdir(parents=True, exist_ok=True)
    for title, grid in sheets.items():
        if grid is None:
            continue
        (directory / f"{title}.json").write_text(json.dumps(grid), encoding="utf-8")
    return directory


@pytest.fixture
def snapshot_dir(tmp_path):
    return write_snapshot(tmp_path / "snapshot")


@pytest.fixture
def make_snapshot(tmp_path):
    """Write a snapshot under tmp_path/<name>; pass Sheet=None to drop a sheet."""
    def _make(name: str, **overrides: list) -> Path:
        return write_snapshot(tmp_path / name, **overrides)
    return _make


@pytest.fixture
def attendance_grid():
    return [list(row) for row in ATTENDANCE]
