"""Cleaning, derivation, and aggregation steps for survey submission tables."""

from __future__ import annotations

from collections.abc import Iterable

from ..ingest import TransformPipeline
from .derive import (  # noqa: F401
    DAY_LABELS,
    DERIVED_COLUMNS,
    derive,
    filter_completed,
    parse_timestamp,
    parse_timestamps,
)
from .normalize import (  # noqa: F401
    MISSING_SENTINEL,
    SENSITIVE_FIELDS,
    drop_sensitive_columns,
    normalize,
)
from .species import (  # noqa: F401
    SpeciesColumns,
    SpeciesSchema,
    aggregate_site_survival,
    aggregate_species,
)


def build_processing_pipeline(
    *,
    planted_prefix: str = "planted_",
    survived_prefix: str = "survived_",
    denylist: Iterable[str] = SENSITIVE_FIELDS,
) -> TransformPipeline:
    """Return the pipeline that turns a normalised table into a processed snapshot."""

    denylist = tuple(denylist)
    pipeline = TransformPipeline(
        name="survey-processing",
        metadata={
            "planted_prefix": planted_prefix,
            "survived_prefix": survived_prefix,
            "denylist": denylist,
        },
    )
    pipeline.add_step(lambda frame: drop_sensitive_columns(frame, denylist))
    pipeline.add_step(
        lambda frame: derive(
            frame, planted_prefix=planted_prefix, survived_prefix=survived_prefix
        )
    )
    return pipeline


__all__ = [
    "DAY_LABELS",
    "DERIVED_COLUMNS",
    "MISSING_SENTINEL",
    "SENSITIVE_FIELDS",
    "SpeciesColumns",
    "SpeciesSchema",
    "aggregate_site_survival",
    "aggregate_species",
    "build_processing_pipeline",
    "derive",
    "drop_sensitive_columns",
    "filter_completed",
    "normalize",
    "parse_timestamp",
    "parse_timestamps",
]
