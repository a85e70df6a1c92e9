"""boathouse_sync.layout

Sheet-layout configuration loaded from YAML.

The layout file names the worksheets, their A1 ranges, the header
candidates for each logical roster/category field, and the tokens the
session header parser recognises.  It is validated on load; any missing
or mistyped key raises LayoutValidationError.

Usage:
    from boathouse_sync.layout import load_layout

    layout = load_layout(Path("config/sheet_layout.yml"))
    layout.roster.columns["gender"]   # ["Gender", "Sex"]
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from boathouse_sync.session_headers import SessionTokens
from boathouse_sync.sheets import parse_a1_range

DEFAULT_LAYOUT_PATH = Path(__file__).parent.parent.parent / "config" / "sheet_layout.yml"

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_SECTIONS = frozenset({
    "roster",
    "equipment",
    "age_categories",
    "sessions",
    "attendance",
    "tokens",
})

_REQUIRED_KEYS: dict[str, frozenset[str]] = {
    "roster": frozenset({"sheet", "range", "columns", "required"}),
    "equipment": frozenset({"sheet", "range", "data_row_offset"}),
    "age_categories": frozenset({"sheet", "range", "columns"}),
    "sessions": frozenset({"sheet", "header_range"}),
    "attendance": frozenset({"sheet", "header_range", "session_cell_offset", "blocks"}),
    "tokens": frozenset({
        "error_sentinel",
        "placeholder",
        "default_start_time",
        "morning_end_time",
        "evening_end_time",
    }),
}

REQUIRED_ROSTER_FIELDS = frozenset({"name", "role"})
REQUIRED_CATEGORY_FIELDS = frozenset({"start_age", "end_age", "category"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class LayoutValidationError(ValueError):
    """Raised when a layout YAML file fails schema validation."""


# ---------------------------------------------------------------------------
# Layout dataclasses
# ---------------------------------------------------------------------------

@dataclass
class RosterLayout:
    sheet: str
    range: str
    columns: dict[str, list[str]]
    required: list[str]
    header_row: int = 0


@dataclass
class EquipmentLayout:
    sheet: str
    range: str
    data_row_offset: int
    ignorable_statuses: list[str] = field(default_factory=list)
    default_status: str = "Available"


@dataclass
class AgeCategoryLayout:
    sheet: str
    range: str
    columns: dict[str, list[str]]
    header_row: int = 0


@dataclass
class SessionLayout:
    sheet: str
    header_range: str
    session_type: str = "Practice"
    location: str | None = None


@dataclass
class AttendanceBlock:
    label: str
    range: str


@dataclass
class AttendanceLayout:
    sheet: str
    header_range: str
    session_cell_offset: int
    blocks: list[AttendanceBlock]
    name_column: int = 0


@dataclass
class SheetLayout:
    version: str
    yaml_hash: str
    roster: RosterLayout
    equipment: EquipmentLayout
    age_categories: AgeCategoryLayout
    sessions: SessionLayout
    attendance: AttendanceLayout
    tokens: SessionTokens
    raw_yaml: str = field(repr=False, default="")

    def sheet_names(self) -> list[str]:
        names = [
            self.roster.sheet,
            self.equipment.sheet,
            self.age_categories.sheet,
            self.sessions.sheet,
            self.attendance.sheet,
        ]
        return list(dict.fromkeys(names))


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_layout(yaml_path: Path = DEFAULT_LAYOUT_PATH) -> SheetLayout:
    """Load, validate, and return a SheetLayout from a YAML file.

    Raises:
        LayoutValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise LayoutValidationError(f"{yaml_path}: invalid YAML: {exc}") from exc
    validate_layout(data)
    return build_layout(data, raw)


def build_layout(data: dict[str, Any], raw: str = "") -> SheetLayout:
    """Build a SheetLayout from an already validated mapping."""
    roster = data["roster"]
    equipment = data["equipment"]
    categories = data["age_categories"]
    sessions = data["sessions"]
    attendance = data["attendance"]
    tokens = data["tokens"]
    return SheetLayout(
        version=str(data.get("version", "1")),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        roster=RosterLayout(
            sheet=str(roster["sheet"]),
            range=str(roster["range"]),
            columns={k: [str(c) for c in v] for k, v in roster["columns"].items()},
            required=[str(f) for f in roster["required"]],
            header_row=int(roster.get("header_row", 0)),
        ),
        equipment=EquipmentLayout(
            sheet=str(equipment["sheet"]),
            range=str(equipment["range"]),
            data_row_offset=int(equipment["data_row_offset"]),
            ignorable_statuses=[str(s) for s in equipment.get("ignorable_statuses") or []],
            default_status=str(equipment.get("default_status", "Available")),
        ),
        age_categories=AgeCategoryLayout(
            sheet=str(categories["sheet"]),
            range=str(categories["range"]),
            columns={k: [str(c) for c in v] for k, v in categories["columns"].items()},
            header_row=int(categories.get("header_row", 0)),
        ),
        sessions=SessionLayout(
            sheet=str(sessions["sheet"]),
            header_range=str(sessions["header_range"]),
            session_type=str(sessions.get("session_type", "Practice")),
            location=sessions.get("location"),
        ),
        attendance=AttendanceLayout(
            sheet=str(attendance["sheet"]),
            header_range=str(attendance["header_range"]),
            session_cell_offset=int(attendance["session_cell_offset"]),
            blocks=[
                AttendanceBlock(label=str(b["label"]), range=str(b["range"]))
                for b in attendance["blocks"]
            ],
            name_column=int(attendance.get("name_column", 0)),
        ),
        tokens=SessionTokens(**{k: str(tokens[k]) for k in _REQUIRED_KEYS["tokens"]}),
        raw_yaml=raw,
    )


def _check_range(section: str, key: str, value: Any) -> None:
    if not isinstance(value, str):
        raise LayoutValidationError(f"{section}.{key} must be an A1 range string, got {value!r}.")
    try:
        parse_a1_range(value)
    except ValueError as exc:
        raise LayoutValidationError(f"{section}.{key}: {exc}") from exc


def _check_columns(section: str, columns: Any, required: frozenset[str]) -> None:
    if not isinstance(columns, dict) or not columns:
        raise LayoutValidationError(f"{section}.columns must be a non-empty mapping.")
    for fld, candidates in columns.items():
        if (
            not isinstance(candidates, list)
            or not candidates
            or not all(isinstance(c, str) and c.strip() for c in candidates)
        ):
            raise LayoutValidationError(
                f"{section}.columns.{fld} must be a non-empty list of header strings."
            )
    missing = required - set(columns)
    if missing:
        raise LayoutValidationError(f"{section}.columns missing fields: {sorted(missing)}")


def _check_non_negative_int(section: str, key: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise LayoutValidationError(f"{section}.{key} must be a non-negative integer, got {value!r}.")


def validate_layout(data: Any) -> None:
    """Raise LayoutValidationError if data does not match the layout schema.

    Validates:
      - required sections and keys present
      - every range parses as A1 notation
      - header candidate lists are non-empty lists of strings
      - roster columns cover name and role; category columns cover all three
      - offsets are non-negative integers
      - attendance blocks are non-empty and well formed
      - tokens are non-empty strings
    """
    if not isinstance(data, dict):
        raise LayoutValidationError("YAML root must be a mapping.")

    missing_sections = REQUIRED_SECTIONS - set(data.keys())
    if missing_sections:
        raise LayoutValidationError(f"Missing required sections: {sorted(missing_sections)}")

    for section, keys in _REQUIRED_KEYS.items():
        body = data[section]
        if not isinstance(body, dict):
            raise LayoutValidationError(f"Section '{section}' must be a mapping.")
        missing = keys - set(body.keys())
        if missing:
            raise LayoutValidationError(f"Section '{section}' missing keys: {sorted(missing)}")
        if "sheet" in keys and not (isinstance(body["sheet"], str) and body["sheet"].strip()):
            raise LayoutValidationError(f"{section}.sheet must be a non-empty string.")

    roster = data["roster"]
    _check_range("roster", "range", roster["range"])
    _check_columns("roster", roster["columns"], REQUIRED_ROSTER_FIELDS)
    _check_non_negative_int("roster", "header_row", roster.get("header_row", 0))
    required = roster["required"]
    if not isinstance(required, list) or not REQUIRED_ROSTER_FIELDS <= set(required):
        raise LayoutValidationError(
            f"roster.required must list at least {sorted(REQUIRED_ROSTER_FIELDS)}."
        )
    unknown = set(required) - set(roster["columns"])
    if unknown:
        raise LayoutValidationError(f"roster.required names unknown fields: {sorted(unknown)}")

    equipment = data["equipment"]
    _check_range("equipment", "range", equipment["range"])
    _check_non_negative_int("equipment", "data_row_offset", equipment["data_row_offset"])
    statuses = equipment.get("ignorable_statuses") or []
    if not isinstance(statuses, list) or not all(isinstance(s, str) for s in statuses):
        raise LayoutValidationError("equipment.ignorable_statuses must be a list of strings.")

    categories = data["age_categories"]
    _check_range("age_categories", "range", categories["range"])
    _check_columns("age_categories", categories["columns"], REQUIRED_CATEGORY_FIELDS)
    _check_non_negative_int("age_categories", "header_row", categories.get("header_row", 0))

    _check_range("sessions", "header_range", data["sessions"]["header_range"])

    attendance = data["attendance"]
    _check_range("attendance", "header_range", attendance["header_range"])
    _check_non_negative_int("attendance", "session_cell_offset", attendance["session_cell_offset"])
    _check_non_negative_int("attendance", "name_column", attendance.get("name_column", 0))
    blocks = attendance["blocks"]
    if not isinstance(blocks, list) or not blocks:
        raise LayoutValidationError("attendance.blocks must be a non-empty list.")
    for idx, block in enumerate(blocks):
        if not isinstance(block, dict) or not {"label", "range"} <= set(block):
            raise LayoutValidationError(f"attendance.blocks[{idx}] needs 'label' and 'range'.")
        _check_range(f"attendance.blocks[{idx}]", "range", block["range"])

    for key, value in data["tokens"].items():
        if not isinstance(value, str) or not value.strip():
            raise LayoutValidationError(f"tokens.{key} must be a non-empty string.")
