"""Normalization functions for spreadsheet cell values.

Cells arrive as str, int, float, bool, datetime or None.  All functions
accept any of those and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: cell_text / is_empty_cell
# ---------------------------------------------------------------------------

def cell_text(value: Any) -> str | None:
    """Render a raw cell as display text.

    Integral floats lose their trailing '.0' so a numeric cell 1985.0 and a
    text cell '1985' read the same.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return normalize_space(str(value))


def is_empty_cell(value: Any) -> bool:
    return cell_text(value) is None


# ---------------------------------------------------------------------------
# Rule 4: normalize_name  (roster natural key)
# ---------------------------------------------------------------------------

def normalize_name(value: Any) -> str | None:
    """Case-insensitive, whitespace-collapsed display name.

    Accents are folded so 'José' and 'Jose' resolve to the same member.
    Punctuation is kept: 'Jo-Ann' and 'JoAnn' stay distinct.
    """
    v = cell_text(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = re.sub(r"\s+", " ", v.casefold()).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 5: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: Any) -> str | None:
    """Lowercase and trim an email address."""
    v = cell_text(value)
    if v is None:
        return None
    return v.lower()


def is_valid_email(value: str | None) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(value))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Rule 6: parse_int / parse_decimal
# ---------------------------------------------------------------------------

def parse_decimal(value: Any, places: int = 2) -> Decimal | None:
    """Parse a decimal number, quantized to `places`, or None on failure.

    Values stored in numeric columns are compared against freshly parsed
    values on every sync, so they must round identically both ways.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        raw = repr(value)
    else:
        raw = cell_text(value)
        if raw is None:
            return None
    try:
        d = Decimal(raw)
        if not d.is_finite():
            return None
        return d.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # unparseable, or too many digits to quantize at this precision
        return None


def parse_int(value: Any) -> int | None:
    """Parse an integer; '1985', 1985 and 1985.0 all give 1985."""
    d = parse_decimal(value, places=0)
    if d is None:
        return None
    return int(d)


# ---------------------------------------------------------------------------
# Rule 7: enumeration normalizers (roster attributes)
# ---------------------------------------------------------------------------

ROLE_ROWER = "Rower"
ROLE_COX = "Cox"
ROLE_BOTH = "Rower & Coxswain"
VALID_ROLES = (ROLE_ROWER, ROLE_COX, ROLE_BOTH)

_ROLE_MAP = {
    "cox": ROLE_COX,
    "coxswain": ROLE_COX,
    "rower": ROLE_ROWER,
    "rower & coxswain": ROLE_BOTH,
    "rower and coxswain": ROLE_BOTH,
    "rower & cox": ROLE_BOTH,
    "both": ROLE_BOTH,
}

_GENDER_MAP = {"male": "M", "female": "F", "m": "M", "f": "F"}

_SWEEP_SCULL_MAP = {
    "sweep": "Sweep",
    "scull": "Scull",
    "sweep & scull": "Sweep & Scull",
    "sweep and scull": "Sweep & Scull",
}

_PORT_STARBOARD_MAP = {
    "starboard": "Starboard",
    "port": "Port",
    "prefer starboard": "Prefer Starboard",
    "prefer port": "Prefer Port",
    "either": "Either",
}

_COX_CAPABILITY_MAP = {"no": "No", "sometimes": "Sometimes", "only": "Only"}

_BOW_IN_DARK_MAP = {
    "yes": "Yes",
    "no": "No",
    "if i have to": "If I have to",
    "if i have too": "If I have to",
}


def _lookup(value: Any, mapping: dict[str, str]) -> str | None:
    v = cell_text(value)
    if v is None:
        return None
    return mapping.get(v.lower(), v)


def normalize_role(value: Any) -> str | None:
    return _lookup(value, _ROLE_MAP)


def normalize_gender(value: Any) -> str | None:
    return _lookup(value, _GENDER_MAP)


def normalize_sweep_scull(value: Any) -> str | None:
    return _lookup(value, _SWEEP_SCULL_MAP)


def normalize_port_starboard(value: Any) -> str | None:
    return _lookup(value, _PORT_STARBOARD_MAP)


def normalize_cox_capability(value: Any) -> str | None:
    return _lookup(value, _COX_CAPABILITY_MAP)


def normalize_bow_in_dark(value: Any) -> str | None:
    return _lookup(value, _BOW_IN_DARK_MAP)
