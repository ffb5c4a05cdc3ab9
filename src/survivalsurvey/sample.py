"""Synthetic feed records for offline demos and tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import numpy as np

SAMPLE_SITES = ("Core", "Extension", "Control")
SAMPLE_WOREDAS = ("Aneded", "Becho", "Dendi", "Jeldu")
SAMPLE_EDUCATION = ("None", "Primary", "Secondary", "Higher")
SAMPLE_SEX = ("Male", "Female")
# species -> (max planted per household, survival range)
SAMPLE_SPECIES: dict[str, tuple[int, tuple[float, float]]] = {
    "gesho": (50, (0.3, 0.9)),
    "dec": (30, (0.4, 0.8)),
    "grev": (25, (0.5, 0.9)),
    "moringa": (40, (0.2, 0.7)),
    "coffee": (100, (0.6, 0.95)),
    "papaya": (20, (0.3, 0.8)),
    "wanza": (35, (0.4, 0.85)),
}
DEFAULT_ANCHOR = datetime(2025, 1, 15, 12, 0, 0)

__all__ = ["SAMPLE_SPECIES", "create_sample_records"]


def _iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def create_sample_records(
    n: int = 500,
    seed: int = 123,
    *,
    anchor: datetime = DEFAULT_ANCHOR,
    planted_prefix: str = "planted_",
    survived_prefix: str = "survived_",
) -> list[dict[str, Any]]:
    """Generate ``n`` feed-shaped records, deterministic for a given ``seed``.

    Records carry a denylisted ``farmer_name`` and occasional ``"---"`` and
    list-wrapped values, so they exercise the whole normalisation path.
    Completion times fall within the 30 days before ``anchor``.
    """

    if n < 0:
        raise ValueError("n must be non-negative")
    rng = np.random.default_rng(seed)
    records: list[dict[str, Any]] = []
    for index in range(n):
        completed = anchor - timedelta(seconds=float(rng.uniform(0, 30 * 24 * 3600)))
        duration = timedelta(minutes=float(rng.uniform(2, 90)))
        record: dict[str, Any] = {
            "id": f"sample-{index:05d}",
            "consent": int(rng.choice([0, 1], p=[0.1, 0.9])),
            "username": f"enum_{int(rng.integers(1, 21))}",
            "farmer_name": f"Farmer {index}",
            "site": str(rng.choice(SAMPLE_SITES)),
            "woreda": [str(rng.choice(SAMPLE_WOREDAS))],
            "completed_time": _iso(completed),
            "started_time": _iso(completed - duration),
            "hh_size": int(rng.integers(1, 13)),
            "education_level": str(rng.choice(SAMPLE_EDUCATION)),
            "age": int(rng.integers(18, 81)),
            "sex": str(rng.choice(SAMPLE_SEX)),
        }
        for species, (max_planted, (low, high)) in SAMPLE_SPECIES.items():
            planted = int(rng.integers(0, max_planted + 1))
            record[f"{planted_prefix}{species}"] = planted
            record[f"{survived_prefix}{species}"] = int(round(planted * rng.uniform(low, high)))
        if rng.random() < 0.05:
            record["hh_size"] = "---"
        records.append(record)
    return records
