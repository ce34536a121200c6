"""Writers for the baryon ledger and the run summary.

The ledger goes to Parquet with per-column units kept in the schema
metadata; the summary is plain JSON.  Parent directories are created on
demand.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

_MASS_COLUMNS = (
    "mstars",
    "mstars_burst_galaxymergers",
    "mstars_burst_diskinstabilities",
    "mcold",
    "mhot_halo",
    "mcold_halo",
    "mejected_halo",
    "mBH",
    "mHI",
    "mH2",
    "mDM",
    "baryon_lost",
)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _units() -> dict[str, str]:
    units = {"snapshot": "index"}
    for name in _MASS_COLUMNS:
        units[name] = "Msun/h"
        units[f"{name}_metals"] = "Msun/h"
    units.update(
        {
            "SFR_disk": "Msun/h Gyr^-1",
            "SFR_bulge": "Msun/h Gyr^-1",
            "major_mergers": "count",
            "minor_mergers": "count",
            "disk_instabil": "count",
        }
    )
    return units


def write_parquet(df: pd.DataFrame, path: Path, *, compression: str = "snappy") -> None:
    """Write ``df`` to ``path`` with ``pyarrow``, storing known column units as metadata."""
    path = Path(path)
    _ensure_parent(path)
    units = {key: value for key, value in _units().items() if key in df.columns}
    table = pa.Table.from_pandas(df, preserve_index=False)
    metadata = dict(table.schema.metadata or {})
    metadata[b"units"] = json.dumps(units, sort_keys=True).encode("utf-8")
    table = table.replace_schema_metadata(metadata)
    compression_arg = None if compression == "none" else compression
    pq.write_table(table, path, compression=compression_arg)


def read_units(path: Path) -> dict[str, str]:
    """Return the unit metadata stored by :func:`write_parquet`."""

    schema = pq.read_schema(Path(path))
    raw = (schema.metadata or {}).get(b"units")
    if raw is None:
        return {}
    return json.loads(raw.decode("utf-8"))


def write_summary(summary: Mapping[str, Any], path: Path) -> None:
    """Dump ``summary`` as indented JSON with sorted keys."""

    path = Path(path)
    _ensure_parent(path)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(summary, fh, indent=2, sort_keys=True)
