"""Unit tests for boathouse_sync.session_headers."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from boathouse_sync.session_headers import (
    SessionTokens,
    end_time_for,
    normalize_clock,
    parse_combined_datetime,
    parse_date_label,
    parse_session_column,
    parse_session_headers,
)

TODAY = date(2025, 3, 1)
TOKENS = SessionTokens()


# ---------------------------------------------------------------------------
# clock helpers
# ---------------------------------------------------------------------------

class TestNormalizeClock:
    @pytest.mark.parametrize("raw", ["6:15 AM", "6:15am", "06:15:00 am", " 6:15  AM "])
    def test_canonical(self, raw):
        assert normalize_clock(raw) == "6:15 AM"

    def test_pm(self):
        assert normalize_clock("5:30pm") == "5:30 PM"

    @pytest.mark.parametrize("raw", ["18:00", "HOC", "13:00 PM", None, ""])
    def test_not_a_clock(self, raw):
        assert normalize_clock(raw) is None


class TestEndTimeFor:
    def test_morning(self):
        assert end_time_for("6:15 AM") == "8:00 AM"

    def test_evening(self):
        assert end_time_for("5:30 PM") == "8:00 PM"

    def test_unparseable_gets_evening(self):
        assert end_time_for("dusk") == "8:00 PM"

    def test_custom_tokens(self):
        tokens = SessionTokens(morning_end_time="7:45 AM")
        assert end_time_for("5:45 AM", tokens) == "7:45 AM"


# ---------------------------------------------------------------------------
# cell parsers
# ---------------------------------------------------------------------------

class TestParseCombinedDatetime:
    def test_us_format_with_seconds(self):
        assert parse_combined_datetime("1/6/2025 6:15:00") == (date(2025, 1, 6), "6:15 AM")

    def test_us_format_pm(self):
        assert parse_combined_datetime("1/6/2025 5:30 PM") == (date(2025, 1, 6), "5:30 PM")

    def test_iso(self):
        assert parse_combined_datetime("2025-01-06T18:00:00") == (date(2025, 1, 6), "6:00 PM")

    def test_datetime_object(self):
        assert parse_combined_datetime(datetime(2025, 1, 6, 6, 15)) == (date(2025, 1, 6), "6:15 AM")

    def test_date_only(self):
        assert parse_combined_datetime("1/6/2025") == (date(2025, 1, 6), None)

    def test_serial_with_time(self):
        # 45663 = 2025-01-06; .26041666 = 6:15
        assert parse_combined_datetime(45663.260416666664) == (date(2025, 1, 6), "6:15 AM")

    def test_serial_date_only(self):
        assert parse_combined_datetime(45663) == (date(2025, 1, 6), None)

    def test_garbage(self):
        assert parse_combined_datetime("not a date") is None

    def test_none(self):
        assert parse_combined_datetime(None) is None


class TestParseDateLabel:
    def test_full_month(self):
        assert parse_date_label("January 6", 2025) == date(2025, 1, 6)

    def test_abbreviated(self):
        assert parse_date_label("Sept 14", 2025) == date(2025, 9, 14)

    def test_with_weekday(self):
        assert parse_date_label("Mon Jan 6", 2025) == date(2025, 1, 6)

    def test_impossible_day(self):
        assert parse_date_label("February 30", 2025) is None

    def test_no_month(self):
        assert parse_date_label("Practice 6", 2025) is None


# ---------------------------------------------------------------------------
# parse_session_column
# ---------------------------------------------------------------------------

class TestParseSessionColumn:
    def test_error_sentinel_skips_column(self):
        assert parse_session_column("January 6", "6:15 AM", "#VALUE!", TOKENS, TODAY) is None

    def test_combined_cell_wins(self):
        result = parse_session_column("January 7", "5:30 PM", "1/6/2025 6:15:00", TOKENS, TODAY)
        assert result == (date(2025, 1, 6), "6:15 AM", "8:00 AM")

    def test_placeholder_combined_falls_back_to_label(self):
        result = parse_session_column("January 6", "5:30 PM", "HOC", TOKENS, TODAY)
        assert result == (date(2025, 1, 6), "5:30 PM", "8:00 PM")

    def test_label_year_is_current_year(self):
        result = parse_session_column("March 3", "6:15 AM", None, TOKENS, date(2026, 1, 1))
        assert result[0] == date(2026, 3, 3)

    def test_placeholder_time_gets_default(self):
        result = parse_session_column("January 6", "HOC", None, TOKENS, TODAY)
        assert result == (date(2025, 1, 6), "6:15 AM", "8:00 AM")

    def test_missing_time_gets_default(self):
        result = parse_session_column("January 6", None, None, TOKENS, TODAY)
        assert result[1] == "6:15 AM"

    def test_unparseable_time_kept_raw(self):
        result = parse_session_column("January 6", "sunrise", None, TOKENS, TODAY)
        assert result == (date(2025, 1, 6), "sunrise", "8:00 PM")

    def test_no_date_anywhere_skips(self):
        assert parse_session_column("Notes", "6:15 AM", None, TOKENS, TODAY) is None

    def test_date_only_combined_takes_time_cell(self):
        result = parse_session_column(None, "5:30 PM", "1/6/2025", TOKENS, TODAY)
        assert result == (date(2025, 1, 6), "5:30 PM", "8:00 PM")


# ---------------------------------------------------------------------------
# parse_session_headers
# ---------------------------------------------------------------------------

class TestParseSessionHeaders:
    def test_ordinals_skip_malformed_columns(self):
        header_rows = [
            ["January 6", "January 7", "Notes", "January 8"],
            ["6:15 AM", "5:30 PM", "", "HOC"],
            ["1/6/2025 6:15:00", "#VALUE!", "", "HOC"],
        ]
        sessions = parse_session_headers(header_rows, TOKENS, TODAY)
        assert [(s.ordinal, s.column_index) for s in sessions] == [(1, 0), (2, 3)]
        assert sessions[1].key == (date(2025, 1, 8), "6:15 AM")

    def test_ragged_rows(self):
        header_rows = [["January 6", "January 7"], ["6:15 AM"]]
        sessions = parse_session_headers(header_rows, TOKENS, TODAY)
        assert len(sessions) == 2
        assert sessions[1].start_time == "6:15 AM"

    def test_empty_block(self):
        assert parse_session_headers([], TOKENS, TODAY) == []
