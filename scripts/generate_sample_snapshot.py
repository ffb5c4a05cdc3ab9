#!/usr/bin/env python3
"""Write a synthetic survey snapshot for demos and documentation."""

from __future__ import annotations

import argparse
from pathlib import Path

from survivalsurvey.dataprep import build_processing_pipeline, normalize
from survivalsurvey.sample import create_sample_records
from survivalsurvey.storage import SnapshotStore


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("destination", type=Path, help="Output directory for the snapshot files.")
    parser.add_argument(
        "--rows",
        type=int,
        default=500,
        help="Number of synthetic submissions to generate.",
    )
    parser.add_argument("--seed", type=int, default=123, help="Random seed.")
    parser.add_argument(
        "--planted-prefix",
        default="planted_",
        help="Column prefix for planted counts.",
    )
    parser.add_argument(
        "--survived-prefix",
        default="survived_",
        help="Column prefix for survived counts.",
    )
    args = parser.parse_args()
    if args.rows < 0:
        parser.error("--rows must be non-negative")

    pipeline = build_processing_pipeline(
        planted_prefix=args.planted_prefix,
        survived_prefix=args.survived_prefix,
    )
    store = SnapshotStore(args.destination, pipeline=pipeline)
    records = create_sample_records(
        args.rows,
        args.seed,
        planted_prefix=args.planted_prefix,
        survived_prefix=args.survived_prefix,
    )
    raw = normalize(records)
    summary = store.save(raw, pipeline.run(raw))
    print(
        f"Snapshot written to {store.root} "
        f"(rows={summary.total_surveys}, completed={summary.completed_surveys})"
    )


if __name__ == "__main__":
    main()
