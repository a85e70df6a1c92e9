"""boathouse_sync.columns

Column resolver: locate logical fields in a header row by substring match.

Columns are scanned left to right; for each column the candidates are
tried in order and the first column with any hit wins.  There is no
scoring.  A field with no matching column resolves to None and callers
omit it rather than erroring.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from boathouse_sync.normalize import cell_text


def find_column_index(
    header_row: Sequence[Any],
    candidates: Sequence[str],
) -> int | None:
    """Return the zero-based index of the first header containing a candidate.

    >>> find_column_index(["Name", "Sex (M/F)"], ["Gender", "Sex"])
    1
    """
    wanted = [c.lower() for c in candidates if c]
    for idx, header in enumerate(header_row):
        text = cell_text(header)
        if text is None:
            continue
        lowered = text.lower()
        for candidate in wanted:
            if candidate in lowered:
                return idx
    return None


def resolve_columns(
    header_row: Sequence[Any],
    field_candidates: Mapping[str, Sequence[str]],
) -> dict[str, int | None]:
    """Resolve every logical field at once; unmatched fields map to None."""
    return {
        field: find_column_index(header_row, candidates)
        for field, candidates in field_candidates.items()
    }


def cell_at(row: Sequence[Any], index: int | None) -> Any:
    """Return row[index], or None for a missing index or a short (ragged) row."""
    if index is None or index < 0 or index >= len(row):
        return None
    return row[index]
