"""Snapshot-wide baryon ledger.

One :class:`BaryonTotals` entry is appended per evolved snapshot.  Entries
are computed as per-halo partial sums and reduced with ``+`` so that the
ledger never sees unsynchronised increments from worker threads.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, fields
from typing import Dict, List

import pandas as pd

from .components import BaryonBase

logger = logging.getLogger(__name__)

_RESERVOIRS = (
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
)


@dataclass
class BaryonTotals:
    """Population totals of one snapshot."""

    snapshot: int
    mstars: BaryonBase = field(default_factory=BaryonBase)
    mstars_burst_galaxymergers: BaryonBase = field(default_factory=BaryonBase)
    mstars_burst_diskinstabilities: BaryonBase = field(default_factory=BaryonBase)
    mcold: BaryonBase = field(default_factory=BaryonBase)
    mhot_halo: BaryonBase = field(default_factory=BaryonBase)
    mcold_halo: BaryonBase = field(default_factory=BaryonBase)
    mejected_halo: BaryonBase = field(default_factory=BaryonBase)
    mBH: BaryonBase = field(default_factory=BaryonBase)
    mHI: BaryonBase = field(default_factory=BaryonBase)
    mH2: BaryonBase = field(default_factory=BaryonBase)
    mDM: BaryonBase = field(default_factory=BaryonBase)
    SFR_disk: float = 0.0
    SFR_bulge: float = 0.0
    major_mergers: int = 0
    minor_mergers: int = 0
    disk_instabil: int = 0

    def __add__(self, other: "BaryonTotals") -> "BaryonTotals":
        if not isinstance(other, BaryonTotals):
            return NotImplemented
        if other.snapshot != self.snapshot:
            raise ValueError(
                f"Cannot combine baryon totals of snapshots {self.snapshot} and {other.snapshot}"
            )
        result = BaryonTotals(snapshot=self.snapshot)
        for name in _RESERVOIRS:
            setattr(result, name, getattr(self, name) + getattr(other, name))
        result.SFR_disk = self.SFR_disk + other.SFR_disk
        result.SFR_bulge = self.SFR_bulge + other.SFR_bulge
        result.major_mergers = self.major_mergers + other.major_mergers
        result.minor_mergers = self.minor_mergers + other.minor_mergers
        result.disk_instabil = self.disk_instabil + other.disk_instabil
        return result

    def as_record(self) -> Dict[str, float]:
        """Flatten into a single row, splitting reservoirs into mass and metals."""

        row: Dict[str, float] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, BaryonBase):
                row[f.name] = value.mass
                row[f"{f.name}_metals"] = value.mass_metals
            else:
                row[f.name] = value
        return row


class TotalBaryon:
    """Ledger of :class:`BaryonTotals` plus the baryons lost per snapshot."""

    def __init__(self) -> None:
        self.entries: List[BaryonTotals] = []
        self.baryon_total_lost: Dict[int, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, totals: BaryonTotals) -> None:
        with self._lock:
            self.entries.append(totals)

    def record_lost(self, snapshot: int, mass: float) -> None:
        """Store the baryon mass carried by subhalos without descendant."""

        with self._lock:
            self.baryon_total_lost[snapshot] = mass

    def latest(self) -> BaryonTotals:
        if not self.entries:
            raise IndexError("baryon ledger is empty")
        return self.entries[-1]

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for entry in self.entries:
            row = entry.as_record()
            row["baryon_lost"] = self.baryon_total_lost.get(entry.snapshot, 0.0)
            rows.append(row)
        return pd.DataFrame(rows)


__all__ = ["BaryonTotals", "TotalBaryon"]
