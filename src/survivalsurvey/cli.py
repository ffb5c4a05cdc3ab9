"""Typer-based CLI entry point."""

from __future__ import annotations

import logging
import math
import numbers
from pathlib import Path
from typing import Any

import pandas as pd
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import Settings, get_settings
from .core import species_frame
from .dataprep import aggregate_species, build_processing_pipeline, normalize
from .errors import SurveyDataError
from .reports import enumerator_performance, site_performance
from .sample import create_sample_records
from .storage import SnapshotStore, build_store

app = typer.Typer(help="Tree survival survey pipeline CLI.")
console = Console()
err_console = Console(stderr=True)

DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    help="Snapshot directory (defaults to SURVEY_DATA_DIR).",
    show_default=False,
)

MAX_AGE_OPTION = typer.Option(
    None,
    "--max-age-hours",
    help="Staleness threshold in hours (defaults to SURVEY_MAX_AGE_HOURS).",
    show_default=False,
)

SPECIES_OUTPUT_OPTION = typer.Option(
    None,
    "--output",
    "-o",
    help="Optional path to write the species table as CSV.",
    show_default=False,
)

SAMPLE_DESTINATION_ARGUMENT = typer.Argument(
    ...,
    help="Directory where the synthetic snapshot will be written.",
    file_okay=False,
    dir_okay=True,
    writable=True,
)

ROWS_OPTION = typer.Option(500, "--rows", min=0, help="Number of synthetic submissions.")
SEED_OPTION = typer.Option(123, "--seed", help="Random seed for the synthetic submissions.")

VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")
VERSION_OPTION = typer.Option(False, "--version", help="Show version and exit.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def cli_callback(  # noqa: B008
    ctx: typer.Context,
    verbose: bool = VERBOSE_OPTION,
    version: bool = VERSION_OPTION,
) -> None:
    if version:
        console.print(f"[bold green]survivalsurvey {__version__}[/bold green]")
        raise typer.Exit()
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None and not ctx.resilient_parsing:
        console.print(ctx.get_help())
        raise typer.Exit()


def _settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def _local_store(settings: Settings, data_dir: Path | None) -> SnapshotStore:
    """Store over the on-disk snapshot only; never fetches."""
    pipeline = build_processing_pipeline(
        planted_prefix=settings.SURVEY_PLANTED_PREFIX,
        survived_prefix=settings.SURVEY_SURVIVED_PREFIX,
    )
    return SnapshotStore(
        data_dir or settings.SURVEY_DATA_DIR,
        pipeline=pipeline,
        max_age_hours=settings.SURVEY_MAX_AGE_HOURS,
    )


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[red]{exc}[/red]")
    return typer.Exit(code=1)


def _format_metric(value: Any, digits: int = 1) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, numbers.Integral):
        return f"{int(value):,}"
    if isinstance(value, numbers.Real):
        val = float(value)
        if math.isnan(val) or math.isinf(val):
            return "-"
        return f"{val:,.{digits}f}"
    if value is pd.NA or value is pd.NaT:
        return "-"
    return str(value)


def _print_frame(frame: pd.DataFrame, title: str, *, digits: int = 1) -> None:
    table = Table(title=title, expand=True)
    for column in frame.columns:
        numeric = pd.api.types.is_numeric_dtype(frame[column])
        table.add_column(str(column), justify="right" if numeric else "left", no_wrap=True)
    for row in frame.itertuples(index=False):
        table.add_row(*(_format_metric(value, digits) for value in row))
    console.print(table)


@app.command()
def refresh(data_dir: Path | None = DATA_DIR_OPTION) -> None:  # noqa: B008
    """Fetch every submission from the forms API and rewrite the snapshot."""
    settings = _settings()
    if data_dir is not None:
        settings = settings.model_copy(update={"SURVEY_DATA_DIR": data_dir})
    store = build_store(settings)
    try:
        processed = store.refresh()
    except SurveyDataError as exc:
        raise _fail(exc) from exc
    summary = store.load_summary()
    completed = summary.completed_surveys if summary is not None else 0
    console.print(
        f"[green]Snapshot refreshed[/green] {store.root} "
        f"(submissions={len(processed)}, completed={completed})"
    )


@app.command()
def status(  # noqa: B008
    data_dir: Path | None = DATA_DIR_OPTION,
    max_age_hours: float | None = MAX_AGE_OPTION,
) -> None:
    """Show the snapshot summary and whether it is stale."""
    store = _local_store(_settings(), data_dir)
    summary = store.load_summary()
    if summary is None:
        console.print(f"[yellow]No snapshot found in {store.root}.[/yellow]")
        raise typer.Exit(code=1)
    stale = store.is_stale(max_age_hours)

    table = Table(title=f"Snapshot {store.root}")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    payload = summary.to_dict()
    date_range = payload.pop("date_range")
    for key, value in payload.items():
        table.add_row(key, _format_metric(value, 2))
    table.add_row("date_range", f"{date_range['start'] or '-'} .. {date_range['end'] or '-'}")
    table.add_row("age_hours", _format_metric(summary.age_hours(), 1))
    table.add_row("stale", "[red]yes[/red]" if stale else "[green]no[/green]")
    console.print(table)


@app.command()
def species(  # noqa: B008
    data_dir: Path | None = DATA_DIR_OPTION,
    output: Path | None = SPECIES_OUTPUT_OPTION,
) -> None:
    """Summarise planted and surviving counts per species."""
    settings = _settings()
    store = _local_store(settings, data_dir)
    try:
        completed = store.load_completed()
    except SurveyDataError as exc:
        raise _fail(exc) from exc
    summaries = aggregate_species(
        completed,
        planted_prefix=settings.SURVEY_PLANTED_PREFIX,
        survived_prefix=settings.SURVEY_SURVIVED_PREFIX,
    )
    frame = species_frame(summaries)
    if output is not None:
        frame.to_csv(output, index=False)
        console.print(f"[green]Species table written[/green] {output} (rows={len(frame)})")
        return
    if frame.empty:
        console.print("[yellow]No species with planted counts in the snapshot.[/yellow]")
        return
    _print_frame(frame, "Species Survival")


@app.command()
def enumerators(data_dir: Path | None = DATA_DIR_OPTION) -> None:  # noqa: B008
    """Per-enumerator survey counts and quality flags."""
    store = _local_store(_settings(), data_dir)
    try:
        completed = store.load_completed()
    except SurveyDataError as exc:
        raise _fail(exc) from exc
    _print_frame(enumerator_performance(completed), "Enumerator Performance")


@app.command()
def sites(data_dir: Path | None = DATA_DIR_OPTION) -> None:  # noqa: B008
    """Per-site survey counts, durations, and household sizes."""
    store = _local_store(_settings(), data_dir)
    try:
        completed = store.load_completed()
    except SurveyDataError as exc:
        raise _fail(exc) from exc
    _print_frame(site_performance(completed), "Site Performance")


@app.command()
def sample(  # noqa: B008
    destination: Path = SAMPLE_DESTINATION_ARGUMENT,
    rows: int = ROWS_OPTION,
    seed: int = SEED_OPTION,
) -> None:
    """Write a synthetic snapshot for offline demos."""
    settings = _settings()
    store = _local_store(settings, destination)
    records = create_sample_records(
        rows,
        seed,
        planted_prefix=settings.SURVEY_PLANTED_PREFIX,
        survived_prefix=settings.SURVEY_SURVIVED_PREFIX,
    )
    raw = normalize(records)
    summary = store.save(raw, store.pipeline.run(raw))
    console.print(
        f"[green]Sample snapshot written[/green] {destination} "
        f"(submissions={summary.total_surveys}, completed={summary.completed_surveys})"
    )


def main_entry() -> None:
    app()


def main() -> None:  # pragma: no cover - console entry
    main_entry()
