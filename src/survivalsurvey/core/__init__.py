"""Core dataclasses and shared type aliases for survivalsurvey modules."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeAlias

import pandas as pd

from ..errors import FetchError

RawValue: TypeAlias = str | int | float | bool | None | list[Any]
RawRecord: TypeAlias = Mapping[str, RawValue]


@dataclass(slots=True)
class FetchResult:
    """Outcome of one paginated fetch cycle.

    ``records`` always holds whatever was accumulated, even when ``error`` is
    set; callers must check :attr:`ok` (or call :meth:`unwrap`) before treating
    the records as a complete snapshot.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    requests: int = 0
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> list[dict[str, Any]]:
        """Return the records, raising the stored error for failed fetches."""
        if self.error is not None:
            raise self.error
        return self.records


@dataclass(frozen=True, slots=True)
class SpeciesSummary:
    """Planted/survived totals and derived rates for one tracked species."""

    species: str
    planted: float
    survived: float
    survival_rate: float
    loss_count: float
    loss_rate: float

    @classmethod
    def from_totals(cls, species: str, planted: float, survived: float) -> SpeciesSummary:
        """Build a summary, reporting 0 rates when nothing was planted."""
        planted = float(planted)
        survived = float(survived)
        loss_count = planted - survived
        if planted > 0:
            survival_rate = survived / planted * 100.0
            loss_rate = loss_count / planted * 100.0
        else:
            survival_rate = 0.0
            loss_rate = 0.0
        return cls(
            species=species,
            planted=planted,
            survived=survived,
            survival_rate=survival_rate,
            loss_count=loss_count,
            loss_rate=loss_rate,
        )


@dataclass(slots=True)
class DataSummary:
    """Metadata document persisted next to every snapshot."""

    raw_rows: int
    total_surveys: int
    completed_surveys: int
    date_start: str | None
    date_end: str | None
    unique_sites: int
    unique_enumerators: int
    avg_duration: float | None
    quality_rate: float | None
    last_updated: datetime

    def age_hours(self, now: datetime | None = None) -> float:
        """Hours elapsed since :attr:`last_updated`."""
        now = now or datetime.now(timezone.utc)
        return (now - self.last_updated).total_seconds() / 3600.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_rows": self.raw_rows,
            "total_surveys": self.total_surveys,
            "completed_surveys": self.completed_surveys,
            "date_range": {"start": self.date_start, "end": self.date_end},
            "unique_sites": self.unique_sites,
            "unique_enumerators": self.unique_enumerators,
            "avg_duration": self.avg_duration,
            "quality_rate": self.quality_rate,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> DataSummary:
        """Parse a summary document; naive timestamps are read as UTC."""
        last_updated = datetime.fromisoformat(str(payload["last_updated"]))
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        date_range = payload.get("date_range") or {}
        return cls(
            raw_rows=int(payload.get("raw_rows", 0)),
            total_surveys=int(payload.get("total_surveys", 0)),
            completed_surveys=int(payload.get("completed_surveys", 0)),
            date_start=date_range.get("start"),
            date_end=date_range.get("end"),
            unique_sites=int(payload.get("unique_sites", 0)),
            unique_enumerators=int(payload.get("unique_enumerators", 0)),
            avg_duration=payload.get("avg_duration"),
            quality_rate=payload.get("quality_rate"),
            last_updated=last_updated,
        )


def species_frame(summaries: Sequence[SpeciesSummary]) -> pd.DataFrame:
    """Return a tidy data frame with one row per species summary."""
    columns = ["species", "planted", "survived", "survival_rate", "loss_count", "loss_rate"]
    records = [{name: getattr(summary, name) for name in columns} for summary in summaries]
    return pd.DataFrame.from_records(records, columns=columns)


__all__ = [
    "RawValue",
    "RawRecord",
    "FetchResult",
    "SpeciesSummary",
    "DataSummary",
    "species_frame",
]
