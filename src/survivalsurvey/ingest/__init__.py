"""Ingestion scaffolding for survivalsurvey.

This module defines lightweight abstractions that describe a remote survey
feed (`DatasetSource`) and the transformation pipelines (`TransformPipeline`)
that turn the normalised submissions table into the analysis-ready snapshot
consumed by report pages. The CommCare OData connector in
:mod:`survivalsurvey.ingest.commcare` builds on these primitives.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import pandas as pd

from ..core import FetchResult


class DatasetFetcher(Protocol):
    """Callable that pulls every record of a dataset source."""

    def __call__(self, source: DatasetSource) -> FetchResult:
        """Page through the feed and return the accumulated records."""
        ...


@dataclass(slots=True)
class DatasetSource:
    """Describe a remote survey feed that can be ingested.

    Parameters
    ----------
    name:
        Human-readable identifier for the feed.
    description:
        Short summary of the feed contents (form, project space, etc.).
    uri:
        Optional canonical endpoint URL.
    metadata:
        Arbitrary extra fields (paging style, page size, timeout).
        Never holds credentials.
    fetcher:
        Optional callable able to retrieve the feed records when invoked.
    """

    name: str
    description: str
    uri: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    fetcher: DatasetFetcher | None = None

    def fetch(self) -> FetchResult:
        """Return the feed records via the configured fetcher."""
        if self.fetcher is None:
            raise RuntimeError(f"No fetcher configured for dataset '{self.name}'.")
        return self.fetcher(self)


@dataclass(slots=True)
class TransformPipeline:
    """A sequence of callables that transform dataframes into report tables."""

    name: str
    steps: list[Callable[[pd.DataFrame], pd.DataFrame]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_step(self, step: Callable[[pd.DataFrame], pd.DataFrame]) -> None:
        """Append a transformation step to the pipeline."""
        self.steps.append(step)

    def run(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Apply every transformation step to the supplied dataframe."""
        result = frame.copy()
        for step in self.steps:
            result = step(result)
        return result


from . import commcare as commcare  # noqa: E402,F401

__all__ = [
    "DatasetFetcher",
    "DatasetSource",
    "TransformPipeline",
    "commcare",
]
