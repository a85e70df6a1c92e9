"""Unit tests for attendance classification, row handling and roster pruning."""

from __future__ import annotations

import logging
from datetime import date
from unittest.mock import MagicMock

import pytest

from boathouse_sync.attendance import (
    Classification,
    build_process,
    classify_attendance,
    classify_member_row,
    deactivate_members,
    transform,
    validate,
)
from boathouse_sync.layout import AttendanceBlock, AttendanceLayout
from boathouse_sync.pipeline import (
    RowResult,
    SyncContext,
    SyncSettings,
    ValidationError,
    run_process,
)
from boathouse_sync.session_headers import ParsedSession, SessionTokens

JAN6 = ParsedSession(1, 0, date(2025, 1, 6), "6:15 AM", "8:00 AM")
JAN7 = ParsedSession(2, 1, date(2025, 1, 7), "5:30 PM", "8:00 PM")


# ---------------------------------------------------------------------------
# classify_attendance
# ---------------------------------------------------------------------------

class TestClassifyAttendance:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_is_no_record(self, value):
        assert classify_attendance(value) is None

    @pytest.mark.parametrize("raw, status", [
        ("yes", "Yes"),
        ("YES", "Yes"),
        ("No", "No"),
        ("maybe", "Maybe"),
        (" Maybe ", "Maybe"),
    ])
    def test_exact_tokens(self, raw, status):
        assert classify_attendance(raw) == Classification(status)

    def test_bracketed_seat_count(self):
        result = classify_attendance("[8] Knifton")
        assert result.status == "Yes"
        assert result.notes == "Boat assignment: [8] Knifton"
        assert result.warning is None

    @pytest.mark.parametrize("raw", ["Eights", "quad", "Singles", "cox", "Sculling", "sweep pair"])
    def test_boat_class_words(self, raw):
        result = classify_attendance(raw)
        assert result.status == "Yes"
        assert result.notes == f"Boat assignment: {raw}"

    def test_note_keeps_trimmed_raw_value(self):
        assert classify_attendance("  [4] Carson ").notes == "Boat assignment: [4] Carson"

    def test_unknown_defaults_to_no_with_warning(self):
        result = classify_attendance("late")
        assert result.status == "No"
        assert result.notes is None
        assert "late" in result.warning

    def test_yes_please_is_not_yes(self):
        # only exact tokens count; anything else goes through the patterns
        assert classify_attendance("yes please").status == "No"


# ---------------------------------------------------------------------------
# classify_member_row
# ---------------------------------------------------------------------------

class TestClassifyMemberRow:
    def test_blank_row_skipped(self):
        result = classify_member_row(["", None], [JAN6], session_cell_offset=1)
        assert isinstance(result, RowResult)
        assert result.is_skip

    def test_missing_name_rejected(self):
        result = classify_member_row(["", "yes"], [JAN6], session_cell_offset=1, row_number=9)
        assert isinstance(result, RowResult)
        assert result.diagnostic == "no member name found"
        assert result.row_number == 9

    def test_cells_follow_session_columns(self):
        row = ["Jane Doe", "yes", "[8] Knifton"]
        result = classify_member_row(row, [JAN6, JAN7], session_cell_offset=1)
        assert result.name == "Jane Doe"
        assert [(s.ordinal, c.status) for s, c in result.cells] == [(1, "Yes"), (2, "Yes")]
        assert result.has_activity

    def test_empty_cells_produce_nothing(self):
        result = classify_member_row(["Jane Doe", "", None], [JAN6, JAN7], session_cell_offset=1)
        assert result.cells == []
        assert not result.has_activity

    def test_ragged_row(self):
        result = classify_member_row(["Jane Doe", "no"], [JAN6, JAN7], session_cell_offset=1)
        assert len(result.cells) == 1

    def test_unrecognised_value_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="boathouse_sync.attendance"):
            result = classify_member_row(
                ["Jane Doe", "??"], [JAN6], session_cell_offset=1, row_number=7
            )
        assert result.cells[0][1].status == "No"
        assert len(result.warnings) == 1
        assert "Jane Doe" in result.warnings[0]
        assert "row 7" in caplog.text
        assert "unrecognised attendance value" in caplog.text


# ---------------------------------------------------------------------------
# deactivate_members
# ---------------------------------------------------------------------------

class TestDeactivateMembers:
    def test_no_ids_no_query(self):
        conn = MagicMock()
        assert deactivate_members(conn, []) == 0
        conn.execute.assert_not_called()

    def test_only_active_rows_updated(self):
        conn = MagicMock()
        conn.execute.return_value.rowcount = 2
        assert deactivate_members(conn, [3, 4]) == 2
        sql, params = conn.execute.call_args[0]
        assert "AND active" in sql
        assert params == ([3, 4],)


# ---------------------------------------------------------------------------
# transform (pruning)
# ---------------------------------------------------------------------------

def _ctx(members, sessions, dry_run=False):
    """SyncContext whose connection answers the two lookup queries."""
    conn = MagicMock()

    def execute(sql, params=None):
        cur = MagicMock()
        if "FROM roster_member" in sql and sql.lstrip().startswith("SELECT"):
            cur.fetchall.return_value = members
        elif "FROM schedule_session" in sql:
            cur.fetchall.return_value = sessions
        else:
            cur.rowcount = len(params[0]) if params else 0
        return cur

    conn.execute.side_effect = execute
    layout = MagicMock()
    layout.tokens = SessionTokens()
    layout.attendance = AttendanceLayout(
        sheet="Attendance",
        header_range="B1:C3",
        session_cell_offset=1,
        blocks=[AttendanceBlock("rowers", "A5:C10")],
        name_column=0,
    )
    return SyncContext(
        conn=conn,
        source=MagicMock(),
        layout=layout,
        settings=SyncSettings(dry_run=dry_run),
        today=date(2025, 3, 1),
    )


HEADERS = [
    ["January 6", "January 7"],
    ["6:15 AM", "5:30 PM"],
    [],
]
MEMBERS = [("jane doe", 1, True), ("idle ida", 2, True), ("gone gus", 3, False)]
SESSIONS = [(date(2025, 1, 6), "6:15 AM", 10), (date(2025, 1, 7), "5:30 PM", 11)]


def _update_calls(ctx):
    return [c for c in ctx.conn.execute.call_args_list if "UPDATE roster_member" in c[0][0]]


class TestTransform:
    def test_records_keyed_by_session_and_member(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        raw = {"headers": HEADERS, "blocks": [("rowers", "A5:C10", [["Jane Doe", "yes", "no"]])]}
        result = transform(ctx, raw)
        assert [(r["session_id"], r["member_id"], r["status"]) for r in result.records] == [
            (10, 1, "Yes"),
            (11, 1, "No"),
        ]

    def test_idle_member_pruned_and_no_records(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        grid = [["Jane Doe", "yes"], ["Idle Ida", "", ""]]
        result = transform(ctx, {"headers": HEADERS, "blocks": [("rowers", "A5:C10", grid)]})
        assert all(r["member_id"] != 2 for r in result.records)
        updates = _update_calls(ctx)
        assert len(updates) == 1
        assert updates[0][0][1] == ([2],)
        assert result.stats["members_deactivated"] == 1

    def test_already_inactive_member_not_touched(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        grid = [["Gone Gus"]]
        result = transform(ctx, {"headers": HEADERS, "blocks": [("rowers", "A5:C10", grid)]})
        assert _update_calls(ctx) == []
        assert result.stats["members_deactivated"] == 0

    def test_activity_in_any_block_keeps_member(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        raw = {
            "headers": HEADERS,
            "blocks": [
                ("coxswains", "A1:C3", [["Idle Ida", "", ""]]),
                ("rowers", "A5:C10", [["Idle Ida", "", "maybe"]]),
            ],
        }
        result = transform(ctx, raw)
        assert _update_calls(ctx) == []
        assert [r["status"] for r in result.records] == ["Maybe"]

    def test_dry_run_counts_without_writing(self):
        ctx = _ctx(MEMBERS, SESSIONS, dry_run=True)
        grid = [["Idle Ida"]]
        result = transform(ctx, {"headers": HEADERS, "blocks": [("rowers", "A5:C10", grid)]})
        assert _update_calls(ctx) == []
        assert result.stats == {"would_deactivate": 1}

    def test_unknown_member_rejected(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        grid = [["Stranger Sam", "yes"]]
        result = transform(ctx, {"headers": HEADERS, "blocks": [("rowers", "A5:C10", grid)]})
        assert result.records == []
        assert len(result.rejects) == 1
        assert result.rejects[0].row_number == 5

    def test_duplicate_member_row_first_wins(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        grid = [["Jane Doe", "yes"], ["jane doe", "no"]]
        result = transform(ctx, {"headers": HEADERS, "blocks": [("rowers", "A5:C10", grid)]})
        assert [r["status"] for r in result.records] == ["Yes"]
        assert any("duplicate attendance" in w for w in result.warnings)

    def test_session_not_loaded_is_ignored(self):
        ctx = _ctx(MEMBERS, SESSIONS[:1])
        grid = [["Jane Doe", "yes", "yes"]]
        result = transform(ctx, {"headers": HEADERS, "blocks": [("rowers", "A5:C10", grid)]})
        assert [r["session_id"] for r in result.records] == [10]
        assert any("not loaded" in w for w in result.warnings)

    @pytest.mark.parametrize("headers", [
        [],
        [["January 6", "January 7"], ["6:15 AM", "5:30 PM"], ["#VALUE!", "#VALUE!"]],
        [["Total", "Notes"], ["", ""], []],
    ])
    def test_no_parsed_sessions_fails_without_pruning(self, headers):
        ctx = _ctx(MEMBERS, SESSIONS)
        grid = [["Jane Doe", "", "", "", "Yes"], ["Idle Ida", "", "", "", "[8] Knifton"]]
        with pytest.raises(ValidationError) as excinfo:
            transform(ctx, {"headers": headers, "blocks": [("rowers", "A5:C10", grid)]})
        assert "B1:C3" in excinfo.value.errors[0]
        assert _update_calls(ctx) == []

    def test_no_parsed_sessions_fails_process(self):
        ctx = _ctx(MEMBERS, SESSIONS)
        ctx.source.get_values.side_effect = lambda sheet, a1: (
            [] if a1 == "B1:C3" else [["Jane Doe", "yes"], ["Idle Ida", "no"]]
        )
        result = run_process(build_process(ctx), ctx.settings, sleep=lambda _: None)
        assert result.status == "failed"
        assert "no session columns" in result.errors[0]
        assert _update_calls(ctx) == []


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------

class TestValidate:
    def test_ok(self):
        records = [{"session_id": 1, "member_id": 1, "status": "Yes"}]
        assert validate(records).ok

    def test_duplicate_key_is_error(self):
        rec = {"session_id": 1, "member_id": 1, "status": "Yes"}
        assert not validate([rec, dict(rec)]).ok

    def test_invalid_status_is_error(self):
        assert not validate([{"session_id": 1, "member_id": 1, "status": "Late"}]).ok

    def test_missing_ids_is_error(self):
        assert not validate([{"session_id": None, "member_id": 1, "status": "Yes"}]).ok
