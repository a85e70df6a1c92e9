"""boathouse_sync.sheets

Sheet sources: anything that turns (sheet name, A1 range) into a 2-D grid.

  GoogleSheetsSource  live spreadsheet via gspread + a service account
  SnapshotSource      directory of <sheet title>.json grids, for offline
                      runs and tests

Both return rows with trailing empty cells and trailing empty rows
removed, which is how the Sheets API shapes value ranges.  Grids are
ragged; callers index through columns.cell_at().
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import gspread
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.service_account import Credentials
from gspread.utils import DateTimeOption, ValueRenderOption

from boathouse_sync.pipeline import ExtractionError

log = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]

_A1_ENDPOINT_RE = re.compile(r"^([A-Za-z]*)(\d*)$")

# HTTP statuses worth another attempt
_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})

# get_values(sheet, WHOLE_SHEET) returns the full used range
WHOLE_SHEET = ""


# ---------------------------------------------------------------------------
# A1 ranges
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class A1Range:
    """Zero-based, inclusive bounds; None end means open-ended."""

    start_row: int
    start_col: int
    end_row: int | None
    end_col: int | None


def column_index(letters: str) -> int:
    """'A' -> 0, 'Z' -> 25, 'AA' -> 26, 'GI' -> 190."""
    idx = 0
    for ch in letters.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"invalid column letters {letters!r}")
        idx = idx * 26 + (ord(ch) - ord("A") + 1)
    return idx - 1


def parse_a1_range(a1: str) -> A1Range:
    """Parse 'A6:GI14', 'A1:Z', 'H:J', 'E2' into an A1Range."""
    text = a1.strip()
    if "!" in text:
        text = text.split("!", 1)[1]
    parts = text.split(":")
    if len(parts) > 2 or not text:
        raise ValueError(f"invalid A1 range {a1!r}")

    def _endpoint(part: str) -> tuple[int | None, int | None]:
        m = _A1_ENDPOINT_RE.match(part.strip())
        if not m or not (m.group(1) or m.group(2)):
            raise ValueError(f"invalid A1 range {a1!r}")
        col = column_index(m.group(1)) if m.group(1) else None
        row = int(m.group(2)) - 1 if m.group(2) else None
        if row is not None and row < 0:
            raise ValueError(f"invalid A1 range {a1!r}")
        return row, col

    start_row, start_col = _endpoint(parts[0])
    if len(parts) == 1:
        if start_row is None or start_col is None:
            raise ValueError(f"invalid A1 range {a1!r}")
        return A1Range(start_row, start_col, start_row, start_col)

    end_row, end_col = _endpoint(parts[1])
    rng = A1Range(
        start_row=start_row or 0,
        start_col=start_col or 0,
        end_row=end_row,
        end_col=end_col,
    )
    if (rng.end_row is not None and rng.end_row < rng.start_row) or (
        rng.end_col is not None and rng.end_col < rng.start_col
    ):
        raise ValueError(f"invalid A1 range {a1!r}: end before start")
    return rng


def trim_grid(rows: list[list[Any]]) -> list[list[Any]]:
    """Drop trailing empty cells from each row and trailing empty rows."""
    out: list[list[Any]] = []
    for row in rows:
        cells = list(row)
        while cells and (cells[-1] is None or cells[-1] == ""):
            cells.pop()
        out.append(cells)
    while out and not out[-1]:
        out.pop()
    return out


def slice_grid(grid: list[list[Any]], a1: str) -> list[list[Any]]:
    """Apply an A1 range to a full-sheet grid."""
    rng = parse_a1_range(a1)
    row_stop = None if rng.end_row is None else rng.end_row + 1
    col_stop = None if rng.end_col is None else rng.end_col + 1
    return trim_grid([row[rng.start_col:col_stop] for row in grid[rng.start_row:row_stop]])


# ---------------------------------------------------------------------------
# Source protocol
# ---------------------------------------------------------------------------

class SheetSource(Protocol):
    def get_values(self, sheet_name: str, a1_range: str) -> list[list[Any]]: ...

    def sheet_titles(self) -> list[str]: ...


# ---------------------------------------------------------------------------
# Google Sheets
# ---------------------------------------------------------------------------

class GoogleSheetsSource:
    """Read-only access to one spreadsheet through a service account."""

    def __init__(self, spreadsheet_id: str, credentials_path: Path) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.credentials_path = credentials_path
        self._spreadsheet: gspread.Spreadsheet | None = None

    def _open(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            try:
                creds = Credentials.from_service_account_file(
                    str(self.credentials_path), scopes=SCOPES
                )
                client = gspread.authorize(creds)
                self._spreadsheet = client.open_by_key(self.spreadsheet_id)
            except (OSError, ValueError, RefreshError, gspread.exceptions.SpreadsheetNotFound) as exc:
                raise ExtractionError(
                    f"cannot open spreadsheet {self.spreadsheet_id}: {exc}",
                    retryable=False,
                ) from exc
            except gspread.exceptions.APIError as exc:
                raise _api_error(exc, f"open spreadsheet {self.spreadsheet_id}") from exc
            except (requests.RequestException, TransportError) as exc:
                raise ExtractionError(f"open spreadsheet {self.spreadsheet_id}: {exc}") from exc
        return self._spreadsheet

    def get_values(self, sheet_name: str, a1_range: str) -> list[list[Any]]:
        spreadsheet = self._open()
        log.debug("reading %s!%s", sheet_name, a1_range)
        try:
            worksheet = spreadsheet.worksheet(sheet_name)
            values = worksheet.get(
                a1_range or None,
                value_render_option=ValueRenderOption.unformatted,
                date_time_render_option=DateTimeOption.formatted_string,
            )
        except gspread.exceptions.WorksheetNotFound as exc:
            raise ExtractionError(f"worksheet {sheet_name!r} not found", retryable=False) from exc
        except gspread.exceptions.APIError as exc:
            raise _api_error(exc, f"read {sheet_name}!{a1_range}") from exc
        except (requests.RequestException, TransportError) as exc:
            raise ExtractionError(f"read {sheet_name}!{a1_range}: {exc}") from exc
        return trim_grid([list(row) for row in values])

    def sheet_titles(self) -> list[str]:
        spreadsheet = self._open()
        try:
            return [ws.title for ws in spreadsheet.worksheets()]
        except gspread.exceptions.APIError as exc:
            raise _api_error(exc, "list worksheets") from exc
        except (requests.RequestException, TransportError) as exc:
            raise ExtractionError(f"list worksheets: {exc}") from exc


def _api_error(exc: gspread.exceptions.APIError, action: str) -> ExtractionError:
    status = getattr(getattr(exc, "response", None), "status_code", None)
    retryable = status is None or status in _RETRYABLE_STATUS
    return ExtractionError(f"{action} failed (HTTP {status}): {exc}", retryable=retryable)


# ---------------------------------------------------------------------------
# Snapshot directory
# ---------------------------------------------------------------------------

class SnapshotSource:
    """Serve grids from <dir>/<sheet title>.json files.

    Each file holds the full sheet as a JSON list of rows, starting at A1.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._cache: dict[str, list[list[Any]]] = {}

    def _grid(self, sheet_name: str) -> list[list[Any]]:
        if sheet_name not in self._cache:
            path = self.directory / f"{sheet_name}.json"
            if not path.is_file():
                raise ExtractionError(
                    f"worksheet {sheet_name!r} not found in snapshot {self.directory}",
                    retryable=False,
                )
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise ExtractionError(f"cannot read snapshot {path}: {exc}", retryable=False) from exc
            if not isinstance(data, list) or not all(isinstance(r, list) for r in data):
                raise ExtractionError(f"snapshot {path} is not a list of rows", retryable=False)
            self._cache[sheet_name] = data
        return self._cache[sheet_name]

    def get_values(self, sheet_name: str, a1_range: str) -> list[list[Any]]:
        if a1_range == WHOLE_SHEET:
            return trim_grid(self._grid(sheet_name))
        try:
            return slice_grid(self._grid(sheet_name), a1_range)
        except ValueError as exc:
            raise ExtractionError(str(exc), retryable=False) from exc

    def sheet_titles(self) -> list[str]:
        if not self.directory.is_dir():
            raise ExtractionError(f"snapshot directory {self.directory} does not exist", retryable=False)
        return sorted(p.stem for p in self.directory.glob("*.json"))


def dump_snapshot(source: SheetSource, titles: list[str], out_dir: Path) -> list[Path]:
    """Write each sheet's full grid to <out_dir>/<title>.json."""
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for title in titles:
        grid = source.get_values(title, WHOLE_SHEET)
        path = out_dir / f"{title}.json"
        path.write_text(json.dumps(grid, indent=1, default=str), encoding="utf-8")
        log.info("snapshot %s: %d row(s) -> %s", title, len(grid), path)
        written.append(path)
    return written
