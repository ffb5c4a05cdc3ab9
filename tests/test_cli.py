from __future__ import annotations

import pandas as pd
import pytest
from typer.testing import CliRunner

from survivalsurvey import __version__
from survivalsurvey.cli import app
from survivalsurvey.config import get_settings
from survivalsurvey.core import FetchResult
from survivalsurvey.errors import AuthenticationFailure
from survivalsurvey.ingest import DatasetSource
from survivalsurvey.sample import create_sample_records
from survivalsurvey.storage import SnapshotStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.delenv("SURVEY_DATA_DIR", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def snapshot_dir(tmp_path):
    destination = tmp_path / "snapshot"
    result = runner.invoke(app, ["sample", str(destination), "--rows", "80", "--seed", "3"])
    assert result.exit_code == 0, result.stdout
    return destination


def test_version_option() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_sample_command_writes_snapshot(snapshot_dir) -> None:
    assert (snapshot_dir / "processed_data.parquet").exists()
    assert (snapshot_dir / "data_summary.json").exists()


def test_status_command_reports_summary(snapshot_dir) -> None:
    result = runner.invoke(app, ["status", "--data-dir", str(snapshot_dir)])
    assert result.exit_code == 0
    assert "total_surveys" in result.stdout
    assert "80" in result.stdout
    assert "stale" in result.stdout


def test_status_without_snapshot_fails(tmp_path) -> None:
    result = runner.invoke(app, ["status", "--data-dir", str(tmp_path / "missing")])
    assert result.exit_code == 1
    assert "No snapshot" in result.stdout


def test_species_command_writes_csv(snapshot_dir, tmp_path) -> None:
    output = tmp_path / "species.csv"
    result = runner.invoke(
        app, ["species", "--data-dir", str(snapshot_dir), "--output", str(output)]
    )
    assert result.exit_code == 0
    frame = pd.read_csv(output)
    assert "coffee" in set(frame["species"])
    assert list(frame.columns)[:3] == ["species", "planted", "survived"]
    rates = frame["survival_rate"].tolist()
    assert rates == sorted(rates, reverse=True)


def test_species_command_prints_table(snapshot_dir) -> None:
    result = runner.invoke(app, ["species", "--data-dir", str(snapshot_dir)])
    assert result.exit_code == 0
    assert "Species Survival" in result.stdout


def test_species_without_snapshot_exits_with_error(tmp_path) -> None:
    result = runner.invoke(app, ["species", "--data-dir", str(tmp_path / "missing")])
    assert result.exit_code == 1


def test_enumerators_and_sites_commands(snapshot_dir) -> None:
    enumerators = runner.invoke(app, ["enumerators", "--data-dir", str(snapshot_dir)])
    assert enumerators.exit_code == 0
    assert "Enumerator Performance" in enumerators.stdout

    sites = runner.invoke(app, ["sites", "--data-dir", str(snapshot_dir)])
    assert sites.exit_code == 0
    assert "Core" in sites.stdout


def _fake_store(tmp_path, result: FetchResult) -> SnapshotStore:
    source = DatasetSource(name="fake", description="Fake feed", fetcher=lambda _source: result)
    return SnapshotStore(tmp_path / "refreshed", source)


def test_refresh_command_success(monkeypatch, tmp_path) -> None:
    store = _fake_store(tmp_path, FetchResult(records=create_sample_records(12), requests=1))
    monkeypatch.setattr("survivalsurvey.cli.build_store", lambda settings: store)

    result = runner.invoke(app, ["refresh"])
    assert result.exit_code == 0
    assert "Snapshot refreshed" in result.stdout
    assert (store.root / "processed_data.parquet").exists()


def test_refresh_command_reports_fetch_failure(monkeypatch, tmp_path) -> None:
    error = AuthenticationFailure("Feed rejected the supplied credentials (HTTP 401).", status=401)
    store = _fake_store(tmp_path, FetchResult(error=error, requests=1))
    monkeypatch.setattr("survivalsurvey.cli.build_store", lambda settings: store)

    result = runner.invoke(app, ["refresh"])
    assert result.exit_code == 1
    assert "rejected" in result.stdout
    assert not store.root.exists()
