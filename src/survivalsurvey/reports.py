"""Tabular summaries consumed by the report pages and the CLI.

All functions read the processed (or consented) snapshot as produced by
:func:`~survivalsurvey.dataprep.derive`; none of them re-derive fields.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any, Literal

import numpy as np
import pandas as pd

from .dataprep import DAY_LABELS, filter_completed

TrendFrequency = Literal["date", "week", "month"]

__all__ = [
    "TrendFrequency",
    "apply_filters",
    "executive_kpis",
    "enumerator_performance",
    "site_performance",
    "activity_heatmap",
    "survey_trend",
]


def _require(frame: pd.DataFrame, *columns: str) -> None:
    missing = [column for column in columns if column not in frame.columns]
    if missing:
        raise KeyError(f"Missing required columns: {missing}")


def _mean(series: pd.Series, digits: int = 1) -> float:
    values = pd.to_numeric(series, errors="coerce").dropna()
    if values.empty:
        return float("nan")
    return round(float(values.mean()), digits)


def _percent(part: int | float, whole: int | float) -> float:
    return round(float(part) / float(whole) * 100.0, 1) if whole else 0.0


def apply_filters(
    frame: pd.DataFrame,
    *,
    start: date | str | None = None,
    end: date | str | None = None,
    sites: Iterable[str] | None = None,
    woredas: Iterable[str] | None = None,
    enumerators: Iterable[str] | None = None,
) -> pd.DataFrame:
    """Apply the global date, site, woreda, and enumerator filters.

    Empty or ``None`` selections leave the corresponding dimension unfiltered.
    Date bounds are inclusive and compare against the ``date`` column.
    """

    mask = pd.Series(True, index=frame.index)
    if start is not None or end is not None:
        _require(frame, "date")
        dates = pd.to_datetime(frame["date"], errors="coerce")
        if start is not None:
            mask &= dates >= pd.Timestamp(start)
        if end is not None:
            mask &= dates <= pd.Timestamp(end)
    for column, selection in (("site", sites), ("woreda", woredas), ("username", enumerators)):
        if selection is None:
            continue
        values = list(selection)
        if not values:
            continue
        _require(frame, column)
        mask &= frame[column].isin(values)
    return frame.loc[mask].copy()


def executive_kpis(processed: pd.DataFrame) -> dict[str, Any]:
    """Headline indicators for the executive summary page."""

    completed = filter_completed(processed)
    total = len(processed)
    consent = (
        pd.to_numeric(processed["consent"], errors="coerce")
        if "consent" in processed.columns
        else pd.Series(np.nan, index=processed.index)
    )
    refusals = int((consent == 0).sum())

    def _share(flag: str) -> float:
        if flag not in completed.columns or completed.empty:
            return 0.0
        return _percent(int(completed[flag].astype(bool).sum()), len(completed))

    return {
        "total_submissions": total,
        "completed_surveys": len(completed),
        "refusals": refusals,
        "refusal_rate": _percent(refusals, total),
        "unique_enumerators": int(completed["username"].nunique())
        if "username" in completed.columns
        else 0,
        "unique_sites": int(completed["site"].nunique()) if "site" in completed.columns else 0,
        "avg_duration": _mean(completed.get("duration_minutes", pd.Series(dtype=float))),
        "short_survey_share": _share("is_short_survey"),
        "night_survey_share": _share("is_night_survey"),
    }


def enumerator_performance(completed: pd.DataFrame) -> pd.DataFrame:
    """Per-enumerator survey counts, durations, and quality flags."""

    _require(completed, "username", "duration_minutes", "is_short_survey", "is_night_survey")
    grouped = completed.groupby("username", dropna=False)
    table = pd.DataFrame(
        {
            "total_surveys": grouped.size(),
            "avg_duration": grouped["duration_minutes"].mean().round(1),
            "short_surveys": grouped["is_short_survey"].sum().astype(int),
            "night_surveys": grouped["is_night_survey"].sum().astype(int),
        }
    ).reset_index()
    table = table.sort_values(["total_surveys", "username"], ascending=[False, True])
    return table.reset_index(drop=True)


def site_performance(completed: pd.DataFrame) -> pd.DataFrame:
    """Per-site totals; ``completion_rate`` is the site's share of all completed surveys."""

    _require(completed, "site", "duration_minutes", "username")
    frame = completed
    if "hh_size" not in frame.columns:
        frame = frame.assign(hh_size=np.nan)
    frame = frame.assign(hh_size=pd.to_numeric(frame["hh_size"], errors="coerce"))
    grouped = frame.groupby("site", dropna=False)
    total = len(frame)
    counts = grouped.size()
    table = pd.DataFrame(
        {
            "total_surveys": counts,
            "avg_duration": grouped["duration_minutes"].mean().round(1),
            "completion_rate": (counts / total * 100.0).round(1) if total else counts * 0.0,
            "unique_enumerators": grouped["username"].nunique(),
            "avg_hh_size": grouped["hh_size"].mean().round(1),
        }
    ).reset_index()
    table = table.sort_values(["total_surveys", "site"], ascending=[False, True])
    return table.reset_index(drop=True)


def activity_heatmap(completed: pd.DataFrame) -> pd.DataFrame:
    """Survey counts by weekday (rows, Mon..Sun) and starting hour (columns, 0..23)."""

    _require(completed, "day_of_week", "hour_started")
    valid = completed.dropna(subset=["day_of_week", "hour_started"])
    if valid.empty:
        table = pd.DataFrame(0, index=list(DAY_LABELS), columns=range(24))
        table.index.name = "day_of_week"
        table.columns.name = "hour_started"
        return table
    days = pd.Categorical(valid["day_of_week"].astype(str), categories=list(DAY_LABELS))
    hours = valid["hour_started"].astype(int)
    table = pd.crosstab(days, hours.to_numpy(), dropna=False)
    table = table.reindex(index=list(DAY_LABELS), columns=range(24), fill_value=0)
    table.index.name = "day_of_week"
    table.columns.name = "hour_started"
    return table.astype(int)


def survey_trend(completed: pd.DataFrame, freq: TrendFrequency = "week") -> pd.DataFrame:
    """Number of surveys per day, week (starting Monday), or month."""

    if freq not in ("date", "week", "month"):
        raise ValueError(f"Unsupported trend frequency '{freq}'.")
    _require(completed, freq)
    periods = pd.to_datetime(completed[freq], errors="coerce").dropna()
    counts = periods.value_counts().sort_index()
    return pd.DataFrame({freq: counts.index, "surveys": counts.to_numpy(dtype=int)})
