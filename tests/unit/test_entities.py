"""Unit tests for the roster, equipment, age-category and session row transforms."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from boathouse_sync import age_categories, equipment, roster, sessions
from boathouse_sync.layout import load_layout
from boathouse_sync.pipeline import SyncContext, SyncSettings

LAYOUT = load_layout()


def _ctx(stored_sessions=()):
    conn = MagicMock()
    conn.execute.return_value.fetchall.return_value = list(stored_sessions)
    return SyncContext(
        conn=conn,
        source=MagicMock(),
        layout=LAYOUT,
        settings=SyncSettings(),
        today=date(2025, 3, 1),
    )


# ---------------------------------------------------------------------------
# roster
# ---------------------------------------------------------------------------

ROSTER_HEADER = ["Name", "Type", "Sex (M/F)", "Email", "Birth Year", "Weight (kg)"]


class TestRosterRow:
    COLUMNS = {"name": 0, "role": 1, "gender": 2, "email": 3, "birth_year": 4, "weight_kg": 5, "phone": None}

    def test_full_row(self):
        result = roster.transform_roster_row(
            ["Jane  Doe", "rower", "Female", "Jane@X.org", 1985.0, "61.25"], self.COLUMNS, 2
        )
        assert result.record == {
            "name": "Jane Doe",
            "normalized_name": "jane doe",
            "role": "Rower",
            "active": True,
            "gender": "F",
            "email": "jane@x.org",
            "birth_year": 1985,
            "weight_kg": Decimal("61.25"),
        }

    def test_missing_column_omitted_not_nulled(self):
        result = roster.transform_roster_row(["Jane", "Cox"], self.COLUMNS)
        assert "phone" not in result.record
        assert result.record["email"] is None

    def test_blank_row_skipped(self):
        assert roster.transform_roster_row(["", None], self.COLUMNS).is_skip

    def test_missing_role_rejected(self):
        result = roster.transform_roster_row(["Jane", ""], self.COLUMNS, 4)
        assert "missing required fields" in result.diagnostic
        assert result.row_number == 4

    def test_unknown_role_rejected(self):
        assert "invalid role" in roster.transform_roster_row(["Jane", "Coach"], self.COLUMNS).diagnostic


class TestRosterTransform:
    def test_header_resolution_and_row_numbers(self):
        grid = [
            ROSTER_HEADER,
            ["Jane Doe", "Rower", "F"],
            ["", "Coach"],
            ["Joe Cox", "Coxswain"],
        ]
        result = roster.transform(_ctx(), grid)
        assert [r["name"] for r in result.records] == ["Jane Doe", "Joe Cox"]
        assert result.rejects[0].row_number == 3
        assert any("optional column(s) not found" in w for w in result.warnings)

    def test_duplicate_member_first_wins(self):
        grid = [ROSTER_HEADER, ["Jane Doe", "Rower"], ["jane  doe", "Cox"]]
        result = roster.transform(_ctx(), grid)
        assert [r["role"] for r in result.records] == ["Rower"]
        assert any("duplicate member" in w for w in result.warnings)

    def test_missing_required_column(self):
        result = roster.transform(_ctx(), [["Athlete Name", "Email"], ["Jane", "j@x.org"]])
        assert result.records == []
        assert any("required column" in w for w in result.warnings)

    def test_empty_sheet(self):
        result = roster.transform(_ctx(), [])
        assert result.records == []


class TestRosterValidate:
    def test_empty_is_error(self):
        assert not roster.validate([]).ok

    def test_soft_checks_are_warnings(self):
        rec = {
            "name": "Jane", "normalized_name": "jane", "role": "Rower",
            "email": "not-an-email", "weight_kg": Decimal("2000"), "age": 200,
        }
        result = roster.validate([rec])
        assert result.ok
        assert len(result.warnings) == 3


# ---------------------------------------------------------------------------
# equipment
# ---------------------------------------------------------------------------

class TestInferBoatClass:
    @pytest.mark.parametrize("name, detail, type_col, expected", [
        ("Knifton", "Eight", "Eight", "Eight"),
        ("Carson", "4x Hudson", None, "Quad"),
        ("Hudson 2x", "Shell", None, "Double"),
        ("Filippi", "[8] sweep", None, "Eight"),
        ("Fours", "Fours", None, "Four"),
        ("Mystery", "Shell", None, None),
    ])
    def test_inference(self, name, detail, type_col, expected):
        assert equipment.infer_boat_class(name, detail, type_col) == expected


class TestEquipmentRow:
    def test_boat(self):
        result = equipment.transform_equipment_row(["Knifton", "Eight [8]", "Eight", 60, "85.5"])
        assert result.record == {
            "name": "Knifton",
            "boat_class": "Eight",
            "description": "Eight [8]",
            "min_weight_kg": Decimal("60.00"),
            "max_weight_kg": Decimal("85.50"),
            "status": "Available",
        }

    def test_pseudo_header(self):
        result = equipment.transform_equipment_row(["Eights", "Eights"])
        assert result.record["boat_class"] == "Eight"
        assert result.record["min_weight_kg"] is None

    def test_ignorable_status_skipped(self):
        result = equipment.transform_equipment_row(["Coach Boat", "Coach launch"], ignorable_statuses=["Coach"])
        assert result.is_skip

    def test_spacer_row_skipped(self):
        assert equipment.transform_equipment_row(["", ""]).is_skip

    def test_unknown_class_rejected(self):
        assert equipment.transform_equipment_row(["Mystery", "Shell"]).diagnostic


class TestEquipmentTransform:
    def test_offset_and_duplicates(self):
        grid = [["Boats"], [], ["Name", "Type"], [], ["Knifton", "Eight [8]"], ["Knifton", "Eight [8]"]]
        result = equipment.transform(_ctx(), grid)
        assert [r["name"] for r in result.records] == ["Knifton"]
        assert any("duplicate boat" in w and "row 7" in w for w in result.warnings)

    def test_validate_weight_bounds(self):
        rec = {"name": "K", "boat_class": "Eight", "min_weight_kg": Decimal(90), "max_weight_kg": Decimal(80)}
        result = equipment.validate([rec])
        assert result.ok
        assert any("greater than" in w for w in result.warnings)


# ---------------------------------------------------------------------------
# age categories
# ---------------------------------------------------------------------------

class TestAgeCategories:
    def test_transform(self):
        grid = [["Start Age", "End Age", "Category"], [21, 26, "AA"], [27, 35, "A"], ["", "", ""]]
        result = age_categories.transform(_ctx(), grid)
        assert result.records == [
            {"category": "AA", "start_age": 21, "end_age": 26},
            {"category": "A", "start_age": 27, "end_age": 35},
        ]

    def test_incomplete_row_rejected(self):
        result = age_categories.transform_category_row([21, "", "AA"], {"start_age": 0, "end_age": 1, "category": 2})
        assert result.diagnostic.startswith("incomplete")

    def test_inverted_bounds_error(self):
        assert not age_categories.validate([{"category": "X", "start_age": 40, "end_age": 30}]).ok

    def test_overlap_warns(self):
        result = age_categories.validate([
            {"category": "A", "start_age": 27, "end_age": 35},
            {"category": "B", "start_age": 35, "end_age": 42},
        ])
        assert result.ok
        assert result.warnings


# ---------------------------------------------------------------------------
# sessions
# ---------------------------------------------------------------------------

HEADER_ROWS = [
    ["January 6", "January 7", "January 7"],
    ["6:15 AM", "5:30 PM", "5:30 PM"],
    ["#VALUE!", "", ""],
]


class TestSessions:
    def test_transform_skips_and_dedupes(self):
        result = sessions.transform(_ctx(), HEADER_ROWS)
        assert [(r["session_date"], r["start_time"], r["source_ordinal"]) for r in result.records] == [
            (date(2025, 1, 7), "5:30 PM", 1),
        ]
        assert result.stats["columns_skipped"] == 1
        assert any("duplicate session" in w for w in result.warnings)

    def test_records_carry_layout_metadata(self):
        rec = sessions.transform(_ctx(), HEADER_ROWS).records[0]
        assert rec["session_type"] == "Practice"
        assert rec["location"] == "Ladybird Lake"
        assert rec["end_time"] == "8:00 PM"

    def test_validate_reports_ordinal_divergence(self):
        ctx = _ctx(stored_sessions=[(5, date(2025, 1, 7), "5:30 PM")])
        records = sessions.transform(ctx, HEADER_ROWS).records
        result = sessions.validate(ctx, records)
        assert result.ok
        assert any("differs from column ordinal" in w for w in result.warnings)

    def test_validate_missing_date_is_error(self):
        result = sessions.validate(_ctx(), [{"session_date": None, "start_time": "6:15 AM", "source_ordinal": 1}])
        assert not result.ok
