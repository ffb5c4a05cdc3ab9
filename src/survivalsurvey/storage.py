"""Snapshot persistence with staleness checks and fetch-or-cache fallback.

A snapshot lives in a single directory::

    raw_data.parquet        raw_data.csv
    processed_data.parquet  processed_data.csv
    data_summary.json

Every file is staged as a ``.part`` sibling; only once all of them are written
are they moved into place, summary last. Readers never observe a half-written
table, and a fresh summary never describes files that were not committed;
its ``last_updated`` stamp drives :meth:`SnapshotStore.is_stale`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

from .core import DataSummary
from .dataprep import (
    SENSITIVE_FIELDS,
    build_processing_pipeline,
    filter_completed,
    normalize,
)
from .errors import FetchError, NoDataAvailable
from .ingest import DatasetSource, TransformPipeline
from .ingest.commcare import build_commcare_source

if TYPE_CHECKING:
    from .config import Settings
    from .ingest.commcare import HTTPSession

logger = logging.getLogger(__name__)

RAW_STEM = "raw_data"
PROCESSED_STEM = "processed_data"
SUMMARY_FILE = "data_summary.json"
DEFAULT_MAX_AGE_HOURS = 24.0

_ARROW_FRIENDLY = {"string", "empty", "integer", "floating", "boolean", "datetime", "date"}

__all__ = [
    "DEFAULT_MAX_AGE_HOURS",
    "SnapshotStore",
    "build_store",
    "summarize_snapshot",
]


def _stage(path: Path, writer: Callable[[Path], object]) -> Path:
    """Write ``path`` to a ``.part`` sibling and return the staged file."""
    tmp_path = path.with_suffix(path.suffix + ".part")
    if tmp_path.exists():
        tmp_path.unlink()
    try:
        writer(tmp_path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise
    return tmp_path


def _arrow_compatible(frame: pd.DataFrame) -> pd.DataFrame:
    """Cast mixed-type object columns so the frame can be written as parquet."""
    safe = frame.copy()
    for column in safe.columns:
        series = safe[column]
        if series.dtype != object:
            continue
        kind = pd.api.types.infer_dtype(series, skipna=True)
        if kind == "mixed-integer-float":
            safe[column] = pd.to_numeric(series, errors="coerce")
        elif kind not in _ARROW_FRIENDLY:
            safe[column] = series.astype("string")
    return safe


def _nunique(frame: pd.DataFrame, column: str) -> int:
    if column not in frame.columns:
        return 0
    return int(frame[column].nunique(dropna=True))


def summarize_snapshot(
    raw: pd.DataFrame, processed: pd.DataFrame, *, last_updated: datetime
) -> DataSummary:
    """Build the metadata document describing a processed snapshot."""

    date_start = date_end = None
    if "date" in processed.columns:
        dates = pd.to_datetime(processed["date"], errors="coerce").dropna()
        if not dates.empty:
            date_start = dates.min().date().isoformat()
            date_end = dates.max().date().isoformat()

    avg_duration = None
    if "duration_minutes" in processed.columns:
        durations = pd.to_numeric(processed["duration_minutes"], errors="coerce").dropna()
        if not durations.empty:
            avg_duration = round(float(durations.mean()), 2)

    quality_rate = None
    if "is_quality" in processed.columns:
        quality = processed["is_quality"].astype(bool)
        if "is_complete" in processed.columns:
            quality = quality[processed["is_complete"].astype(bool)]
        if not quality.empty:
            quality_rate = round(float(quality.mean()) * 100.0, 2)

    return DataSummary(
        raw_rows=len(raw),
        total_surveys=len(processed),
        completed_surveys=len(filter_completed(processed)),
        date_start=date_start,
        date_end=date_end,
        unique_sites=_nunique(processed, "site"),
        unique_enumerators=_nunique(processed, "username"),
        avg_duration=avg_duration,
        quality_rate=quality_rate,
        last_updated=last_updated,
    )


class SnapshotStore:
    """Persist raw/processed tables and serve them back to report pages.

    Parameters
    ----------
    root:
        Directory holding the snapshot files.
    source:
        Feed to fetch from when the snapshot is missing, stale, or a refresh is
        forced. Without one, the store only serves what is already on disk.
    pipeline:
        Steps applied to the normalised table; defaults to
        :func:`~survivalsurvey.dataprep.build_processing_pipeline`.
    max_age_hours:
        Default staleness threshold.
    denylist:
        Sensitive column names dropped during normalisation.
    clock:
        Returns the current aware UTC time; injectable for tests.
    """

    def __init__(
        self,
        root: str | Path,
        source: DatasetSource | None = None,
        pipeline: TransformPipeline | None = None,
        *,
        max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
        denylist: Iterable[str] = SENSITIVE_FIELDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.root = Path(root)
        self.source = source
        self.pipeline = pipeline or build_processing_pipeline(denylist=denylist)
        self.max_age_hours = max_age_hours
        self.denylist = tuple(denylist)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _path(self, stem: str, suffix: str) -> Path:
        return self.root / f"{stem}{suffix}"

    @property
    def summary_path(self) -> Path:
        return self.root / SUMMARY_FILE

    def has_snapshot(self) -> bool:
        return any(self._path(PROCESSED_STEM, suffix).exists() for suffix in (".parquet", ".csv"))

    def save(self, raw: pd.DataFrame, processed: pd.DataFrame) -> DataSummary:
        """Write both tables in parquet and CSV form, then the summary document.

        All five files are staged before any of them replaces the current
        snapshot, so a failed write leaves the previous snapshot untouched.
        Each rename is atomic; the set of renames is not, but the summary is
        renamed last, so an interrupted commit never carries a fresh
        ``last_updated`` stamp.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        summary = summarize_snapshot(raw, processed, last_updated=self.clock())
        payload = json.dumps(summary.to_dict(), indent=2)

        writers: list[tuple[Path, Callable[[Path], object]]] = []
        for stem, frame in ((RAW_STEM, raw), (PROCESSED_STEM, processed)):
            safe = _arrow_compatible(frame)
            writers.append((self._path(stem, ".parquet"), partial(safe.to_parquet, index=False)))
            writers.append((self._path(stem, ".csv"), partial(frame.to_csv, index=False)))
        write_summary = partial(Path.write_text, data=payload, encoding="utf-8")
        writers.append((self.summary_path, write_summary))

        staged: list[tuple[Path, Path]] = []
        try:
            for target, writer in writers:
                staged.append((_stage(target, writer), target))
        except Exception:
            for tmp_path, _ in staged:
                tmp_path.unlink(missing_ok=True)
            raise

        for tmp_path, target in staged:
            tmp_path.replace(target)

        logger.info(
            "Saved snapshot to %s (raw=%d, processed=%d, completed=%d)",
            self.root,
            summary.raw_rows,
            summary.total_surveys,
            summary.completed_surveys,
        )
        return summary

    def _load(self, stem: str, label: str) -> tuple[pd.DataFrame, bool]:
        parquet_path = self._path(stem, ".parquet")
        csv_path = self._path(stem, ".csv")
        if parquet_path.exists():
            try:
                return pd.read_parquet(parquet_path), False
            except (OSError, ValueError) as exc:
                logger.warning("Could not read %s (%s); trying CSV", parquet_path, exc)
        if csv_path.exists():
            logger.debug("Loading %s data from %s", label, csv_path)
            return pd.read_csv(csv_path, low_memory=False), True
        raise NoDataAvailable(f"No {label} snapshot found in {self.root}.")

    def load_processed(self) -> pd.DataFrame:
        """Return the processed snapshot; raises ``NoDataAvailable`` when absent."""
        frame, from_text = self._load(PROCESSED_STEM, "processed")
        if from_text:
            # CSV loses dtypes; the processing steps are idempotent
            frame = self.pipeline.run(frame)
        return frame

    def load_raw(self) -> pd.DataFrame:
        frame, _ = self._load(RAW_STEM, "raw")
        return frame

    def load_completed(self) -> pd.DataFrame:
        """Consented rows of the processed snapshot."""
        return filter_completed(self.load_processed())

    def load_summary(self) -> DataSummary | None:
        if not self.summary_path.exists():
            return None
        try:
            payload = json.loads(self.summary_path.read_text(encoding="utf-8"))
            return DataSummary.from_dict(payload)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable summary %s: %s", self.summary_path, exc)
            return None

    def is_stale(self, max_age_hours: float | None = None) -> bool:
        """True when no snapshot exists or it is older than the threshold."""
        threshold = self.max_age_hours if max_age_hours is None else max_age_hours
        summary = self.load_summary()
        if summary is None or not self.has_snapshot():
            return True
        return summary.age_hours(self.clock()) > threshold

    def refresh(self) -> pd.DataFrame:
        """Run a full fetch, normalise, derive, and save cycle.

        Raises the fetch error (see :mod:`survivalsurvey.errors`) when the feed
        could not be read completely; nothing is written in that case.
        """

        if self.source is None:
            raise RuntimeError("No dataset source configured for this snapshot store.")
        result = self.source.fetch()
        records = result.unwrap()
        raw = normalize(records, denylist=self.denylist)
        processed = self.pipeline.run(raw)
        self.save(raw, processed)
        return processed

    def _fetch_or_cache(self) -> pd.DataFrame:
        if self.source is None:
            logger.debug("No source configured; serving cached snapshot")
            return self.load_processed()
        try:
            return self.refresh()
        except FetchError as exc:
            fetch_error = exc
        logger.warning("Fetch failed (%s); falling back to cached snapshot", fetch_error)
        try:
            return self.load_processed()
        except NoDataAvailable:
            raise NoDataAvailable(
                f"Fetch failed and no cached snapshot exists in {self.root}."
            ) from fetch_error

    def ensure_available(self, force: bool = False) -> pd.DataFrame:
        """Return the processed snapshot, refreshing it when forced or stale.

        This is the single entry point for report pages. A failed fetch falls
        back to the last snapshot on disk; only when neither is available does
        ``NoDataAvailable`` reach the caller.
        """

        if force or self.is_stale():
            return self._fetch_or_cache()
        logger.debug("Serving cached snapshot from %s", self.root)
        return self.load_processed()


def build_store(settings: Settings, session: HTTPSession | None = None) -> SnapshotStore:
    """Wire a :class:`SnapshotStore` to the feed described by ``settings``."""

    pipeline = build_processing_pipeline(
        planted_prefix=settings.SURVEY_PLANTED_PREFIX,
        survived_prefix=settings.SURVEY_SURVIVED_PREFIX,
    )
    return SnapshotStore(
        settings.SURVEY_DATA_DIR,
        build_commcare_source(settings, session=session),
        pipeline,
        max_age_hours=settings.SURVEY_MAX_AGE_HOURS,
    )
