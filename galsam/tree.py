"""Arena of halos and subhalos addressed by stable ids.

Descendant relations are kept as ids on :class:`~galsam.components.Subhalo`
and resolved here, so no record ever owns the record it points to.  The
catalog can be built from an in-memory columnar table with
:func:`build_catalog`; reading tree files is left to the caller.
"""
from __future__ import annotations

import logging
import warnings
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .components import Halo, Subhalo, SubhaloType
from .errors import TreeError
from .warnings import TreeWarning

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = (
    "id",
    "host_id",
    "descendant_id",
    "snapshot",
    "is_main_progenitor",
    "is_central",
    "mvir",
    "vcirc",
)

# descendant_id values at or below this mark a subhalo without descendant
NO_DESCENDANT = -1


class HaloCatalog:
    """Registry of every halo and subhalo across snapshots."""

    def __init__(self) -> None:
        self._halos: Dict[int, Halo] = {}
        self._subhalos: Dict[int, Subhalo] = {}
        self._by_snapshot: Dict[int, List[int]] = {}

    def __len__(self) -> int:
        return len(self._halos)

    def add_halo(self, halo: Halo) -> None:
        if halo.id in self._halos:
            raise TreeError(f"Duplicate halo id {halo.id}")
        for subhalo in halo.subhalos:
            if subhalo.id in self._subhalos:
                raise TreeError(f"Duplicate subhalo id {subhalo.id}")
            self._subhalos[subhalo.id] = subhalo
        self._halos[halo.id] = halo
        self._by_snapshot.setdefault(halo.snapshot, []).append(halo.id)

    def halo(self, halo_id: int) -> Halo:
        try:
            return self._halos[halo_id]
        except KeyError:
            raise TreeError(f"Unknown halo id {halo_id}") from None

    def subhalo(self, subhalo_id: int) -> Subhalo:
        try:
            return self._subhalos[subhalo_id]
        except KeyError:
            raise TreeError(f"Unknown subhalo id {subhalo_id}") from None

    def descendant(self, subhalo: Subhalo) -> Optional[Subhalo]:
        """Return the descendant of ``subhalo`` or ``None`` when it has none."""

        if subhalo.descendant_id is None:
            return None
        return self._subhalos.get(subhalo.descendant_id)

    def host_halo(self, subhalo: Subhalo) -> Halo:
        return self.halo(subhalo.host_halo_id)

    def halos_at(self, snapshot: int) -> List[Halo]:
        return [self._halos[hid] for hid in self._by_snapshot.get(snapshot, [])]

    def snapshots(self) -> List[int]:
        return sorted(self._by_snapshot)


def _derive_last_snapshot_identified(subhalos: Dict[int, Subhalo]) -> None:
    """Follow main-progenitor links to the last snapshot a subhalo is seen.

    A subhalo keeps its identity along its descendant chain as long as it
    is the main progenitor of each descendant.
    """

    for subhalo in sorted(subhalos.values(), key=lambda s: s.snapshot, reverse=True):
        last = subhalo.snapshot
        if subhalo.main_progenitor and subhalo.descendant_id in subhalos:
            last = subhalos[subhalo.descendant_id].last_snapshot_identified
        subhalo.last_snapshot_identified = last


def build_catalog(table: pd.DataFrame) -> HaloCatalog:
    """Build a :class:`HaloCatalog` from a columnar subhalo table.

    The table holds one row per subhalo.  Subhalos are grouped into halos
    by ``host_id`` after a stable sort; every host id must belong to a
    single snapshot, which is checked explicitly rather than inferred
    from the id scheme of the tree builder.

    Parameters
    ----------
    table:
        Columns listed in :data:`REQUIRED_COLUMNS` plus optional ``vvir``,
        ``concentration``, ``lambda`` and ``last_snapshot_identified``.
        ``descendant_id`` values of ``-1`` (or NaN) mark subhalos without
        descendant.  ``is_main_progenitor`` flags the subhalo as the main
        progenitor of its descendant.
    """

    missing = [col for col in REQUIRED_COLUMNS if col not in table.columns]
    if missing:
        raise TreeError(f"Subhalo table is missing columns: {', '.join(missing)}")
    if table.empty:
        return HaloCatalog()

    if table["id"].duplicated().any():
        raise TreeError("Subhalo table contains duplicated ids")

    snapshots_per_host = table.groupby("host_id")["snapshot"].nunique()
    bad_hosts = snapshots_per_host[snapshots_per_host > 1]
    if not bad_hosts.empty:
        raise TreeError(
            "Host ids shared across snapshots: "
            + ", ".join(str(h) for h in bad_hosts.index[:10])
        )

    ordered = table.sort_values("host_id", kind="stable")
    has_last = "last_snapshot_identified" in ordered.columns

    subhalos: Dict[int, Subhalo] = {}
    halos: List[Halo] = []
    current: Optional[Halo] = None
    for row in ordered.to_dict("records"):
        desc = row["descendant_id"]
        desc_id: Optional[int]
        if desc is None or (isinstance(desc, float) and np.isnan(desc)) or int(desc) <= NO_DESCENDANT:
            desc_id = None
        else:
            desc_id = int(desc)
        vcirc = float(row["vcirc"])
        subhalo = Subhalo(
            id=int(row["id"]),
            snapshot=int(row["snapshot"]),
            host_halo_id=int(row["host_id"]),
            descendant_id=desc_id,
            subhalo_type=SubhaloType.CENTRAL if bool(row["is_central"]) else SubhaloType.SATELLITE,
            main_progenitor=bool(row["is_main_progenitor"]),
            mvir=float(row["mvir"]),
            vcirc=vcirc,
            vvir=float(row.get("vvir", vcirc)),
            concentration=float(row.get("concentration", 0.0)),
            lambda_=float(row.get("lambda", 0.0)),
        )
        if has_last:
            subhalo.last_snapshot_identified = int(row["last_snapshot_identified"])
        subhalos[subhalo.id] = subhalo

        if current is None or current.id != subhalo.host_halo_id:
            current = Halo(id=subhalo.host_halo_id, snapshot=subhalo.snapshot)
            halos.append(current)
        current.add_subhalo(subhalo)

    dangling = [s.id for s in subhalos.values() if s.descendant_id is not None and s.descendant_id not in subhalos]
    if dangling:
        warnings.warn(
            f"{len(dangling)} subhalos point to descendants missing from the table "
            f"(e.g. {dangling[:5]}); they are treated as having no descendant.",
            TreeWarning,
        )
        for sid in dangling:
            subhalos[sid].descendant_id = None

    if not has_last:
        _derive_last_snapshot_identified(subhalos)

    catalog = HaloCatalog()
    for halo in halos:
        catalog.add_halo(halo)
    logger.info(
        "build_catalog: %d halos, %d subhalos over %d snapshots",
        len(halos),
        len(subhalos),
        len(catalog.snapshots()),
    )
    return catalog


def catalog_from_halos(halos: Iterable[Halo]) -> HaloCatalog:
    """Register already constructed halos in a fresh catalog."""

    catalog = HaloCatalog()
    for halo in halos:
        catalog.add_halo(halo)
    return catalog


__all__ = [
    "REQUIRED_COLUMNS",
    "NO_DESCENDANT",
    "HaloCatalog",
    "build_catalog",
    "catalog_from_halos",
]
