"""Top-level package exports for survivalsurvey."""

from __future__ import annotations

from importlib import metadata

__version__ = "0.1.0"

try:
    __version__ = metadata.version("survivalsurvey")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev fallback
    pass

from . import core as core  # noqa: F401
from . import dataprep as dataprep  # noqa: F401
from . import ingest as ingest  # noqa: F401
from .core import DataSummary, FetchResult, SpeciesSummary  # noqa: F401
from .dataprep import aggregate_species, derive, filter_completed, normalize  # noqa: F401
from .errors import (  # noqa: F401
    AuthenticationFailure,
    FetchError,
    MalformedRecord,
    NoDataAvailable,
    SurveyDataError,
    TransientNetworkFailure,
    UpstreamServerError,
)
from .ingest.commcare import fetch_all, fetch_with_retry  # noqa: F401
from .storage import SnapshotStore, build_store  # noqa: F401

__all__ = [
    "__version__",
    "core",
    "dataprep",
    "ingest",
    "DataSummary",
    "FetchResult",
    "SpeciesSummary",
    "SnapshotStore",
    "build_store",
    "fetch_all",
    "fetch_with_retry",
    "normalize",
    "derive",
    "filter_completed",
    "aggregate_species",
    "SurveyDataError",
    "FetchError",
    "AuthenticationFailure",
    "TransientNetworkFailure",
    "UpstreamServerError",
    "NoDataAvailable",
    "MalformedRecord",
]
