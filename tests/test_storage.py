from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest
import requests
from pydantic import SecretStr

from survivalsurvey.config import ServiceCredentials
from survivalsurvey.core import FetchResult
from survivalsurvey.dataprep import build_processing_pipeline, normalize
from survivalsurvey.errors import AuthenticationFailure, NoDataAvailable, UpstreamServerError
from survivalsurvey.ingest import DatasetSource
from survivalsurvey.ingest.commcare import fetch_all
from survivalsurvey.sample import create_sample_records
from survivalsurvey.storage import SnapshotStore, summarize_snapshot

NOW = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)
CREDENTIALS = ServiceCredentials(username="enumerator", api_key=SecretStr("s3cret-key"))


class Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _records() -> list[dict]:
    return [
        {
            "id": "1",
            "consent": 1,
            "username": "enum_1",
            "farmer_name": "Abebe",
            "site": "Core",
            "started_time": "2025-01-13T08:00:00Z",
            "completed_time": "2025-01-13T08:20:00Z",
            "planted_coffee": 10,
            "survived_coffee": 7,
        },
        {
            "id": "2",
            "consent": 0,
            "username": "enum_2",
            "site": ["Control"],
            "started_time": "2025-01-14T09:00:00Z",
            "completed_time": "2025-01-14T09:02:00Z",
            "hh_size": "---",
        },
    ]


def _source(results: list[FetchResult]) -> DatasetSource:
    queue = list(results)
    calls: list[int] = []

    def _fetch(source: DatasetSource) -> FetchResult:
        calls.append(1)
        return queue.pop(0)

    source = DatasetSource(name="fake", description="Fake feed", fetcher=_fetch)
    source.metadata["calls"] = calls
    return source


def _store(tmp_path, results: list[FetchResult] | None = None, clock: Clock | None = None):
    source = _source(results) if results is not None else None
    return SnapshotStore(tmp_path / "data", source, clock=clock or Clock())


def test_refresh_writes_all_snapshot_files(tmp_path) -> None:
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    processed = store.refresh()

    for name in (
        "raw_data.parquet",
        "raw_data.csv",
        "processed_data.parquet",
        "processed_data.csv",
        "data_summary.json",
    ):
        assert (store.root / name).exists()
    assert not list(store.root.glob("*.part"))
    assert len(processed) == 2
    assert "farmer_name" not in processed.columns
    assert "farmer_name" not in store.load_raw().columns

    payload = json.loads((store.root / "data_summary.json").read_text(encoding="utf-8"))
    assert payload["raw_rows"] == 2
    assert payload["completed_surveys"] == 1
    assert payload["date_range"] == {"start": "2025-01-13", "end": "2025-01-14"}
    assert payload["unique_sites"] == 2
    assert payload["unique_enumerators"] == 2
    assert payload["avg_duration"] == pytest.approx(11.0)
    assert payload["quality_rate"] == pytest.approx(50.0)
    assert payload["last_updated"].startswith("2025-02-01T12:00:00")


def test_load_processed_restores_derived_types(tmp_path) -> None:
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    store.refresh()
    loaded = store.load_processed()

    assert pd.api.types.is_datetime64_any_dtype(loaded["completed_time"])
    assert loaded.loc[0, "duration_minutes"] == pytest.approx(20.0)
    assert list(store.load_completed()["id"]) == ["1"]


def test_csv_fallback_rederives(tmp_path) -> None:
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    store.refresh()
    (store.root / "processed_data.parquet").unlink()

    loaded = store.load_processed()
    assert pd.api.types.is_datetime64_any_dtype(loaded["date"])
    assert loaded.loc[1, "day_of_week"] == "Tue"
    assert loaded["consent"].tolist() == [1.0, 0.0]


def test_missing_snapshot_raises(tmp_path) -> None:
    store = _store(tmp_path)
    with pytest.raises(NoDataAvailable):
        store.load_processed()
    assert store.load_summary() is None
    assert store.is_stale()


def test_staleness_follows_clock(tmp_path) -> None:
    clock = Clock()
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)], clock)
    store.refresh()

    assert not store.is_stale()
    clock.now = NOW + timedelta(hours=25)
    assert store.is_stale()
    assert not store.is_stale(max_age_hours=48)
    assert store.is_stale(max_age_hours=0)


def test_unreadable_summary_counts_as_stale(tmp_path) -> None:
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    store.refresh()
    store.summary_path.write_text("{not json", encoding="utf-8")
    assert store.load_summary() is None
    assert store.is_stale()


def test_ensure_available_serves_fresh_cache_without_fetching(tmp_path) -> None:
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    store.refresh()
    calls = store.source.metadata["calls"]

    frame = store.ensure_available()
    assert len(frame) == 2
    assert len(calls) == 1


def test_ensure_available_falls_back_to_cache(tmp_path) -> None:
    failure = FetchResult(records=_records()[:1], requests=2, error=UpstreamServerError("boom"))
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1), failure])
    store.refresh()
    before = (store.root / "data_summary.json").read_text(encoding="utf-8")

    frame = store.ensure_available(force=True)
    assert len(frame) == 2
    assert (store.root / "data_summary.json").read_text(encoding="utf-8") == before


class _FlakySession:
    """Serves one good page, then breaks mid-body on every later request."""

    def __init__(self, records: list[dict]):
        self.records = records
        self.calls = 0

    def get(self, url: str, **kwargs):
        self.calls += 1
        if self.calls > 1:
            raise requests.exceptions.ChunkedEncodingError("connection broken mid-body")
        response = requests.Response()
        response.status_code = 200
        response._content = json.dumps({"value": self.records}).encode()
        return response


def test_ensure_available_survives_broken_response_body(tmp_path) -> None:
    session = _FlakySession(_records())
    source = DatasetSource(
        name="commcare",
        description="Flaky feed",
        fetcher=lambda _: fetch_all("https://example.org/feed", CREDENTIALS, 10, session=session),
    )
    store = SnapshotStore(tmp_path / "data", source, clock=Clock())
    store.refresh()
    before = (store.root / "data_summary.json").read_text(encoding="utf-8")

    frame = store.ensure_available(force=True)
    assert len(frame) == 2
    assert session.calls == 2
    assert (store.root / "data_summary.json").read_text(encoding="utf-8") == before


def test_failed_save_leaves_previous_snapshot_untouched(tmp_path, monkeypatch) -> None:
    store = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    store.refresh()
    summary_before = (store.root / "data_summary.json").read_text(encoding="utf-8")
    processed_before = (store.root / "processed_data.csv").read_text(encoding="utf-8")
    raw_before = (store.root / "raw_data.parquet").read_bytes()

    original = pd.DataFrame.to_parquet
    written: list[object] = []

    def _second_write_fails(self, path, *args, **kwargs):
        written.append(path)
        if len(written) == 2:
            raise OSError("disk full")
        return original(self, path, *args, **kwargs)

    monkeypatch.setattr(pd.DataFrame, "to_parquet", _second_write_fails)
    store.clock = Clock(NOW + timedelta(days=1))
    records = create_sample_records(5, 7)
    raw = normalize(records)
    with pytest.raises(OSError, match="disk full"):
        store.save(raw, store.pipeline.run(raw))

    assert (store.root / "data_summary.json").read_text(encoding="utf-8") == summary_before
    assert (store.root / "processed_data.csv").read_text(encoding="utf-8") == processed_before
    assert (store.root / "raw_data.parquet").read_bytes() == raw_before
    assert list(store.root.glob("*.part")) == []


def test_ensure_available_without_cache_raises(tmp_path) -> None:
    error = AuthenticationFailure("rejected", status=401)
    store = _store(tmp_path, [FetchResult(error=error, requests=1)])

    with pytest.raises(NoDataAvailable) as excinfo:
        store.ensure_available()
    assert excinfo.value.__cause__ is error
    assert not (store.root / "processed_data.parquet").exists()


def test_ensure_available_without_source_uses_disk(tmp_path) -> None:
    writer = _store(tmp_path, [FetchResult(records=_records(), requests=1)])
    writer.refresh()
    reader = SnapshotStore(writer.root, clock=Clock(NOW + timedelta(days=3)))

    assert reader.is_stale()
    assert len(reader.ensure_available()) == 2


def test_refresh_without_source_is_an_error(tmp_path) -> None:
    with pytest.raises(RuntimeError):
        _store(tmp_path).refresh()


def test_sample_snapshot_round_trip(tmp_path) -> None:
    pipeline = build_processing_pipeline()
    store = SnapshotStore(tmp_path, pipeline=pipeline, clock=Clock())
    raw = normalize(create_sample_records(50, seed=7))
    summary = store.save(raw, pipeline.run(raw))

    assert summary.total_surveys == 50
    assert 0 < summary.completed_surveys <= 50
    assert store.load_summary() == summary
    assert len(store.load_processed()) == 50


def test_summarize_snapshot_handles_empty_tables() -> None:
    summary = summarize_snapshot(pd.DataFrame(), pd.DataFrame(), last_updated=NOW)
    assert summary.total_surveys == 0
    assert summary.completed_surveys == 0
    assert summary.date_start is None
    assert summary.avg_duration is None
    assert summary.quality_rate is None
