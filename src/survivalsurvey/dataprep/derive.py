"""Type coercion and derived analytic fields for survey submissions."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import numpy as np
import pandas as pd

from ..errors import MalformedRecord

DAY_LABELS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
NIGHT_START_HOUR = 19
NIGHT_END_HOUR = 6
SHORT_SURVEY_MINUTES = 5.0
LONG_SURVEY_MINUTES = 60.0
QUALITY_MIN_MINUTES = 5.0
QUALITY_MAX_MINUTES = 120.0

_LOCAL_PART = re.compile(
    r"^(?P<local>.+?[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)(?:Z|[+-]\d{2}(?::?\d{2})?)?$",
    re.IGNORECASE,
)

DERIVED_COLUMNS: tuple[str, ...] = (
    "date",
    "week",
    "month",
    "hour_started",
    "day_of_week",
    "is_weekend",
    "duration_minutes",
    "is_night_survey",
    "is_short_survey",
    "is_long_survey",
    "is_complete",
    "is_quality",
)

__all__ = [
    "DAY_LABELS",
    "DERIVED_COLUMNS",
    "NIGHT_START_HOUR",
    "NIGHT_END_HOUR",
    "SHORT_SURVEY_MINUTES",
    "LONG_SURVEY_MINUTES",
    "QUALITY_MIN_MINUTES",
    "QUALITY_MAX_MINUTES",
    "parse_timestamps",
    "parse_timestamp",
    "numeric_columns",
    "derive",
    "filter_completed",
]


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, datetime):
        return value.isoformat()
    return None


def _strip_offset(text: str | None) -> str | None:
    if text is None:
        return None
    match = _LOCAL_PART.match(text)
    return match.group("local") if match else text


def parse_timestamps(values: pd.Series, *, utc: bool = False) -> pd.Series:
    """Parse ISO-8601 timestamps into naive ``datetime64`` values.

    By default the wall-clock time recorded on the device is kept and any UTC
    offset is dropped, so ``08:00+03:00`` parses to ``08:00``. With ``utc``
    set, offset-aware inputs are converted to UTC instead. Naive inputs are
    returned as written either way. Anything unparsable (including non-string
    values) becomes ``NaT``.
    """

    if pd.api.types.is_datetime64_any_dtype(values):
        parsed = values
        if getattr(parsed.dt, "tz", None) is not None:
            if utc:
                parsed = parsed.dt.tz_convert("UTC")
            parsed = parsed.dt.tz_localize(None)
        return parsed
    text = values.map(_as_text).astype("object")
    if utc:
        parsed = pd.to_datetime(text, errors="coerce", utc=True, format="ISO8601")
        return parsed.dt.tz_localize(None)
    local = text.map(_strip_offset).astype("object")
    return pd.to_datetime(local, errors="coerce", format="ISO8601")


def parse_timestamp(value: Any, *, strict: bool = False) -> pd.Timestamp | None:
    """Scalar counterpart of :func:`parse_timestamps`.

    With ``strict`` set, a non-null value that fails to parse raises
    :class:`~survivalsurvey.errors.MalformedRecord` instead of returning ``None``.
    """

    parsed = parse_timestamps(pd.Series([value], dtype="object")).iloc[0]
    if pd.isna(parsed):
        if strict and value is not None and not (isinstance(value, float) and np.isnan(value)):
            raise MalformedRecord(f"Unparsable timestamp: {value!r}")
        return None
    return parsed


def numeric_columns(columns: Iterable[str], prefixes: Iterable[str]) -> list[str]:
    """Return the columns whose name starts with any of ``prefixes``."""
    prefixes = tuple(prefix for prefix in prefixes if prefix)
    return [str(column) for column in columns if prefixes and str(column).startswith(prefixes)]


def _column(frame: pd.DataFrame, name: str) -> pd.Series:
    if name in frame.columns:
        return frame[name]
    return pd.Series([None] * len(frame), index=frame.index, dtype="object")


def derive(
    frame: pd.DataFrame,
    *,
    planted_prefix: str = "planted_",
    survived_prefix: str = "survived_",
) -> pd.DataFrame:
    """Return a copy of ``frame`` with typed timestamps and derived columns.

    Every row receives every derived column. When ``completed_time`` fails to
    parse, the calendar fields are null and ``is_weekend`` is false; when either
    timestamp fails to parse, ``duration_minutes`` is NaN and the duration
    flags are false. ``consent`` and the ``planted_*``/``survived_*`` counts are
    coerced to floats with non-numeric values nulled.

    Calendar fields, ``hour_started`` and the night flag use the local wall
    clock; ``duration_minutes`` is measured between the UTC instants, so a
    start and end recorded under different offsets still give the true
    elapsed time.

    Running ``derive`` again on its own output yields identical columns.
    """

    result = frame.copy()
    completed_raw = _column(result, "completed_time")
    started_raw = _column(result, "started_time")
    completed = parse_timestamps(completed_raw)
    started = parse_timestamps(started_raw)
    result["completed_time"] = completed
    result["started_time"] = started

    date = completed.dt.normalize()
    weekday = date.dt.dayofweek
    result["date"] = date
    result["week"] = date - pd.to_timedelta(weekday, unit="D")
    result["month"] = date - pd.to_timedelta(date.dt.day - 1, unit="D")

    hour = started.dt.hour
    result["hour_started"] = hour.astype("Int64")
    codes = weekday.fillna(-1).astype(int).to_numpy()
    result["day_of_week"] = pd.Categorical.from_codes(
        codes, categories=list(DAY_LABELS), ordered=True
    )
    result["is_weekend"] = (weekday >= 5).astype(bool)

    elapsed = parse_timestamps(completed_raw, utc=True) - parse_timestamps(started_raw, utc=True)
    duration = elapsed.dt.total_seconds() / 60.0
    if "duration_minutes" in frame.columns:
        # stored timestamps have lost their offsets; keep the earlier duration
        stored = pd.to_numeric(frame["duration_minutes"], errors="coerce")
        duration = stored.where(stored.notna() & duration.notna(), duration)
    result["duration_minutes"] = duration.astype(float)
    result["is_night_survey"] = ((hour >= NIGHT_START_HOUR) | (hour < NIGHT_END_HOUR)).astype(bool)
    result["is_short_survey"] = (duration <= SHORT_SURVEY_MINUTES).astype(bool)
    result["is_long_survey"] = (duration >= LONG_SURVEY_MINUTES).astype(bool)
    result["is_complete"] = (completed.notna() & started.notna()).astype(bool)
    result["is_quality"] = duration.between(QUALITY_MIN_MINUTES, QUALITY_MAX_MINUTES).astype(bool)

    result["consent"] = pd.to_numeric(_column(result, "consent"), errors="coerce").astype(float)
    for column in numeric_columns(result.columns, (planted_prefix, survived_prefix)):
        result[column] = pd.to_numeric(result[column], errors="coerce").astype(float)
    return result


def filter_completed(frame: pd.DataFrame) -> pd.DataFrame:
    """Return a copy holding only the rows with ``consent == 1``."""
    if "consent" not in frame.columns:
        return frame.iloc[0:0].copy()
    consent = pd.to_numeric(frame["consent"], errors="coerce")
    return frame.loc[consent == 1].copy()
