"""Species survival summaries built from wide planted/survived count columns."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..core import SpeciesSummary

DEFAULT_PLANTED_PREFIX = "planted_"
DEFAULT_SURVIVED_PREFIX = "survived_"

__all__ = [
    "DEFAULT_PLANTED_PREFIX",
    "DEFAULT_SURVIVED_PREFIX",
    "SpeciesColumns",
    "SpeciesSchema",
    "aggregate_species",
    "aggregate_site_survival",
]


@dataclass(frozen=True, slots=True)
class SpeciesColumns:
    """Column names holding the planted and survived counts for one species."""

    species: str
    planted_column: str
    survived_column: str | None = None


@dataclass(frozen=True, slots=True)
class SpeciesSchema:
    """Species discovered in a table, sorted by name.

    Built once from the column names; aggregations then look columns up by
    species instead of re-parsing prefixes.
    """

    entries: tuple[SpeciesColumns, ...]
    planted_prefix: str = DEFAULT_PLANTED_PREFIX
    survived_prefix: str = DEFAULT_SURVIVED_PREFIX

    @classmethod
    def from_columns(
        cls,
        columns: Iterable[str],
        *,
        planted_prefix: str = DEFAULT_PLANTED_PREFIX,
        survived_prefix: str = DEFAULT_SURVIVED_PREFIX,
    ) -> SpeciesSchema:
        """Discover species from ``columns``; only planted-side species count."""
        if not planted_prefix or not survived_prefix:
            raise ValueError("Species prefixes must be non-empty.")
        planted: dict[str, str] = {}
        survived: dict[str, str] = {}
        # longest prefix wins when one prefix starts with the other
        prefixes = sorted(
            [(planted_prefix, planted), (survived_prefix, survived)],
            key=lambda item: len(item[0]),
            reverse=True,
        )
        for column in columns:
            name = str(column)
            for prefix, target in prefixes:
                if name.startswith(prefix):
                    species = name[len(prefix) :]
                    if species:
                        target.setdefault(species, name)
                    break
        entries = tuple(
            SpeciesColumns(species, planted[species], survived.get(species))
            for species in sorted(planted)
        )
        return cls(entries, planted_prefix, survived_prefix)

    @property
    def species(self) -> tuple[str, ...]:
        return tuple(entry.species for entry in self.entries)

    def get(self, species: str) -> SpeciesColumns:
        for entry in self.entries:
            if entry.species == species:
                return entry
        raise KeyError(f"Unknown species '{species}'. Available: {list(self.species)}")

    def __iter__(self) -> Iterator[SpeciesColumns]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def _column_total(frame: pd.DataFrame, column: str | None) -> float:
    if column is None or column not in frame.columns:
        return 0.0
    return float(pd.to_numeric(frame[column], errors="coerce").fillna(0.0).sum())


def aggregate_species(
    completed: pd.DataFrame,
    schema: SpeciesSchema | None = None,
    *,
    planted_prefix: str = DEFAULT_PLANTED_PREFIX,
    survived_prefix: str = DEFAULT_SURVIVED_PREFIX,
) -> list[SpeciesSummary]:
    """Sum planted/survived counts per species and compute survival rates.

    Parameters
    ----------
    completed:
        Consented submissions (see :func:`~survivalsurvey.dataprep.filter_completed`).
    schema:
        Pre-built species schema. Discovered from ``completed`` when omitted.
    planted_prefix, survived_prefix:
        Column prefixes used for discovery when ``schema`` is omitted.

    Returns
    -------
    list[SpeciesSummary]
        Species with a positive planted total, ordered by survival rate
        (descending) and then species name.
    """

    if schema is None:
        schema = SpeciesSchema.from_columns(
            completed.columns, planted_prefix=planted_prefix, survived_prefix=survived_prefix
        )
    summaries: list[SpeciesSummary] = []
    for entry in schema:
        planted = _column_total(completed, entry.planted_column)
        if planted <= 0:
            continue
        survived = _column_total(completed, entry.survived_column)
        summaries.append(SpeciesSummary.from_totals(entry.species, planted, survived))
    summaries.sort(key=lambda summary: (-summary.survival_rate, summary.species))
    return summaries


def aggregate_site_survival(
    completed: pd.DataFrame,
    schema: SpeciesSchema | None = None,
    *,
    site_column: str = "site",
    planted_prefix: str = DEFAULT_PLANTED_PREFIX,
    survived_prefix: str = DEFAULT_SURVIVED_PREFIX,
) -> pd.DataFrame:
    """Pool every species per site and report the combined survival rate."""

    if site_column not in completed.columns:
        raise KeyError(f"Missing site column '{site_column}'.")
    if schema is None:
        schema = SpeciesSchema.from_columns(
            completed.columns, planted_prefix=planted_prefix, survived_prefix=survived_prefix
        )

    planted_cols = [entry.planted_column for entry in schema]
    if not planted_cols:
        return pd.DataFrame(columns=["site", "total_planted", "total_survived", "survival_rate"])
    survived_cols = [
        entry.survived_column
        for entry in schema
        if entry.survived_column is not None and entry.survived_column in completed.columns
    ]
    counts = completed[planted_cols + survived_cols].apply(pd.to_numeric, errors="coerce")
    counts = counts.fillna(0.0)
    per_row = pd.DataFrame(
        {
            "site": completed[site_column],
            "total_planted": counts[planted_cols].sum(axis=1).astype(float),
            "total_survived": counts[survived_cols].sum(axis=1).astype(float),
        }
    )
    grouped = per_row.groupby("site", as_index=False, dropna=False)[
        ["total_planted", "total_survived"]
    ].sum()

    planted = grouped["total_planted"].to_numpy(dtype=float)
    survived = grouped["total_survived"].to_numpy(dtype=float)
    rates = np.divide(survived, planted, out=np.zeros_like(planted), where=planted > 0) * 100.0
    grouped = grouped.assign(survival_rate=rates)
    grouped = grouped.sort_values(["survival_rate", "site"], ascending=[False, True])
    return grouped.reset_index(drop=True)
