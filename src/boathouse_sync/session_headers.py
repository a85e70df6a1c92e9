"""boathouse_sync.session_headers

Session header parser for the attendance grid.

The grid carries one practice session per column in a 3-row header block:

    row 0  date label        "January 6"
    row 1  time label        "6:15 AM"   (or the placeholder token)
    row 2  combined cell     "1/6/2025 6:15:00", a serial number, or an
                             error token left behind by a broken formula

Each column resolves to (date, start_time, end_time) or is skipped.
Ordinals count resolved columns only, left to right, starting at 1.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from boathouse_sync.columns import cell_at
from boathouse_sync.normalize import cell_text

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])$")
_DATE_LABEL_RE = re.compile(r"([A-Za-z]+)\.?\s+(\d{1,2})\b")

_MONTHS = {
    name: idx
    for idx, names in enumerate(
        [
            ("january", "jan"), ("february", "feb"), ("march", "mar"),
            ("april", "apr"), ("may",), ("june", "jun"), ("july", "jul"),
            ("august", "aug"), ("september", "sep", "sept"),
            ("october", "oct"), ("november", "nov"), ("december", "dec"),
        ],
        start=1,
    )
    for name in names
}

_COMBINED_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
)
_DATE_ONLY_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")

# Sheets serial dates count days from 1899-12-30.
_SERIAL_EPOCH = datetime(1899, 12, 30)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionTokens:
    error_sentinel: str = "#VALUE!"
    placeholder: str = "HOC"
    default_start_time: str = "6:15 AM"
    morning_end_time: str = "8:00 AM"
    evening_end_time: str = "8:00 PM"


@dataclass(frozen=True)
class ParsedSession:
    ordinal: int
    column_index: int
    session_date: date
    start_time: str
    end_time: str

    @property
    def key(self) -> tuple[date, str]:
        return (self.session_date, self.start_time)


# ---------------------------------------------------------------------------
# Clock helpers
# ---------------------------------------------------------------------------

def format_clock(value: time | datetime) -> str:
    """12-hour clock without a leading zero: 6:15 AM, 12:00 PM."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def normalize_clock(value: Any) -> str | None:
    """Canonicalise '6:15am', '6:15 AM', '06:15:00 am' -> '6:15 AM'.

    Returns None when the text is not a 12-hour clock time.
    """
    text = cell_text(value)
    if text is None:
        return None
    m = _CLOCK_RE.match(text)
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if not (1 <= hour <= 12) or minute > 59:
        return None
    return f"{hour}:{minute:02d} {m.group(3).upper()}"


def end_time_for(start_time: str, tokens: SessionTokens = SessionTokens()) -> str:
    """Morning starts end at the morning bound; everything else at the evening bound."""
    clock = normalize_clock(start_time)
    if clock is not None and clock.endswith("AM"):
        return tokens.morning_end_time
    return tokens.evening_end_time


# ---------------------------------------------------------------------------
# Cell parsers
# ---------------------------------------------------------------------------

def parse_combined_datetime(value: Any) -> tuple[date, str | None] | None:
    """Parse a combined date-time cell.

    Returns (date, clock) where clock is None for a date-only value, or
    None when the cell is not a date at all.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date(), format_clock(value)
    if isinstance(value, date):
        return value, None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        dt = _SERIAL_EPOCH + timedelta(days=float(value))
        dt = (dt + timedelta(seconds=30)).replace(second=0, microsecond=0)
        if float(value).is_integer():
            return dt.date(), None
        return dt.date(), format_clock(dt)

    text = cell_text(value)
    if text is None:
        return None
    for fmt in _COMBINED_FORMATS:
        try:
            dt = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return dt.date(), format_clock(dt)
    for fmt in _DATE_ONLY_FORMATS:
        try:
            return datetime.strptime(text, fmt).date(), None
        except ValueError:
            continue
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    return dt.date(), format_clock(dt)


def parse_date_label(value: Any, year: int) -> date | None:
    """Parse 'January 6' / 'Jan 6' / 'Mon Jan 6' into a date in `year`."""
    text = cell_text(value)
    if text is None:
        return None
    for m in _DATE_LABEL_RE.finditer(text):
        month = _MONTHS.get(m.group(1).lower())
        if month is None:
            continue
        try:
            return date(year, month, int(m.group(2)))
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Column + block parsers
# ---------------------------------------------------------------------------

def parse_session_column(
    date_cell: Any,
    time_cell: Any,
    combined_cell: Any,
    tokens: SessionTokens = SessionTokens(),
    today: date | None = None,
) -> tuple[date, str, str] | None:
    """Resolve one header column to (date, start_time, end_time), or None to skip."""
    today = today or date.today()
    combined = cell_text(combined_cell)
    if combined == tokens.error_sentinel:
        return None

    session_date: date | None = None
    start_time: str | None = None

    if combined is not None and combined != tokens.placeholder:
        parsed = parse_combined_datetime(combined_cell)
        if parsed is not None:
            session_date, start_time = parsed

    if session_date is None:
        session_date = parse_date_label(date_cell, today.year)
        if session_date is None:
            return None

    if start_time is None:
        raw_time = cell_text(time_cell)
        start_time = normalize_clock(raw_time) or raw_time

    if not start_time or start_time == tokens.placeholder:
        start_time = tokens.default_start_time

    return session_date, start_time, end_time_for(start_time, tokens)


def parse_session_headers(
    header_rows: Sequence[Sequence[Any]],
    tokens: SessionTokens = SessionTokens(),
    today: date | None = None,
) -> list[ParsedSession]:
    """Parse the whole 3-row header block into ordinal-numbered sessions."""
    rows = list(header_rows) + [[]] * (3 - len(header_rows))
    date_row, time_row, combined_row = rows[0], rows[1], rows[2]
    width = max((len(r) for r in rows[:3]), default=0)

    sessions: list[ParsedSession] = []
    for col in range(width):
        resolved = parse_session_column(
            cell_at(date_row, col),
            cell_at(time_row, col),
            cell_at(combined_row, col),
            tokens,
            today,
        )
        if resolved is None:
            continue
        session_date, start_time, end_time = resolved
        sessions.append(
            ParsedSession(
                ordinal=len(sessions) + 1,
                column_index=col,
                session_date=session_date,
                start_time=start_time,
                end_time=end_time,
            )
        )
    return sessions
