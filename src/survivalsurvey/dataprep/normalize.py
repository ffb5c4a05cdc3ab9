"""Turn heterogeneous feed records into one uniform submissions table."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

MISSING_SENTINEL = "---"

# Respondent name and phone identifiers; never kept past normalisation.
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "farmer_name",
        "name",
        "respondent_name",
        "phone_no",
        "phone_number",
        "alt_phone_no",
        "tno",
    }
)

__all__ = [
    "MISSING_SENTINEL",
    "SENSITIVE_FIELDS",
    "collapse_value",
    "drop_sensitive_columns",
    "normalize",
]


def collapse_value(value: Any) -> Any:
    """Reduce list values to their first element (``None`` for empty lists)."""
    if isinstance(value, list | tuple):
        return value[0] if len(value) > 0 else None
    return value


def _is_sensitive(column: str, denylist: Iterable[str]) -> bool:
    key = str(column).strip().lower()
    return any(key == str(entry).lower() for entry in denylist)


def drop_sensitive_columns(
    frame: pd.DataFrame, denylist: Iterable[str] = SENSITIVE_FIELDS
) -> pd.DataFrame:
    """Return ``frame`` without any denylisted column (case-insensitive names)."""
    denylist = tuple(denylist)
    sensitive = [column for column in frame.columns if _is_sensitive(column, denylist)]
    if sensitive:
        logger.debug("Dropping %d sensitive column(s)", len(sensitive))
    return frame.drop(columns=sensitive)


def normalize(
    records: Sequence[Mapping[str, Any]],
    *,
    denylist: Iterable[str] = SENSITIVE_FIELDS,
) -> pd.DataFrame:
    """Merge raw feed records into a single table.

    The column set is the union of all record keys in first-seen order; keys
    missing from a record become null. Denylisted columns are dropped,
    list values are collapsed to scalars, and the ``"---"`` sentinel becomes
    null everywhere.
    """

    denylist = tuple(denylist)
    columns: dict[str, None] = {}
    rows: list[dict[str, Any]] = []
    for record in records:
        row: dict[str, Any] = {}
        for key, value in record.items():
            if _is_sensitive(key, denylist):
                continue
            columns.setdefault(key, None)
            value = collapse_value(value)
            row[key] = None if isinstance(value, str) and value == MISSING_SENTINEL else value
        rows.append(row)

    frame = pd.DataFrame.from_records(rows, columns=list(columns))
    if len(frame.index) != len(rows):
        # from_records drops rows entirely when there are no columns
        frame = pd.DataFrame(index=pd.RangeIndex(len(rows)))
    logger.debug("Normalised %d records into %d columns", len(frame), len(frame.columns))
    return frame
