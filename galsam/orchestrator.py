"""Snapshot driver.

:class:`Simulation` walks the merger tree from ``min_snapshot`` to
``max_snapshot - 1``.  Every snapshot goes through the same stages:

1. populate central subhalos with freshly accreted hot gas and seed a
   central galaxy where gas is available but no galaxy exists yet;
2. evolve every galaxy (quiescent disk and, where bulge gas exists, a
   starburst), one halo per unit of work;
3. append the snapshot totals to the baryon ledger;
4. fold satellites seen for the last time into their centrals and hand
   galaxies and halo gas over to the descendants.
"""
from __future__ import annotations

import itertools
import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from . import constants
from .components import Baryon, Galaxy, GalaxyType, Halo, Subhalo
from .evolve_halos import merge_satellite_subhalos, track_total_baryons, transfer_galaxies_to_next_snapshot
from .io import writer
from .physics.physical_model import PhysicalModel, make_physical_model
from .schema import Config
from .total_baryon import TotalBaryon
from .tree import HaloCatalog, build_catalog

logger = logging.getLogger(__name__)

__all__ = ["SnapshotStats", "Simulation", "run_simulation"]


# ===========================================================================
# Data Classes for State Management
# ===========================================================================

@dataclass
class SnapshotStats:
    """Diagnostics of one evolved snapshot.

    Attributes
    ----------
    snapshot : int
        Snapshot that was evolved.
    redshift : float
        Redshift of the snapshot.
    delta_t : float
        Time until the next snapshot [Gyr].
    n_halos, n_galaxies : int
        Halos and galaxies evolved.
    galaxy_ode_evaluations, galaxy_starburst_ode_evaluations : int
        Evaluator calls of the quiescent and starburst channels.
    baryon_lost : float
        Baryon mass carried by subhalos without descendant.
    wall_time_s : float
        Wall-clock time spent on the snapshot.
    """

    snapshot: int
    redshift: float
    delta_t: float
    n_halos: int = 0
    n_galaxies: int = 0
    n_new_galaxies: int = 0
    n_starbursts: int = 0
    galaxy_ode_evaluations: int = 0
    galaxy_starburst_ode_evaluations: int = 0
    baryon_lost: float = 0.0
    wall_time_s: float = 0.0


# ===========================================================================
# Driver
# ===========================================================================

class Simulation:
    """Evolve the galaxies hosted by ``catalog`` through the configured snapshots."""

    def __init__(
        self,
        config: Config,
        catalog: HaloCatalog,
        physical_model: Optional[PhysicalModel] = None,
    ) -> None:
        self.config = config
        self.catalog = catalog
        self.physical_model = physical_model if physical_model is not None else make_physical_model(config)
        self.all_baryons = TotalBaryon()
        self.stats: List[SnapshotStats] = []
        self._galaxy_ids = itertools.count(1)
        self._id_lock = threading.Lock()

    @property
    def n_workers(self) -> int:
        return self.config.execution.n_workers

    def _next_galaxy_id(self) -> int:
        with self._id_lock:
            return next(self._galaxy_ids)

    # -----------------------------------------------------------------------
    # Stage 1: gas accretion and galaxy seeding
    # -----------------------------------------------------------------------

    def _accrete(self, halo: Halo, central: Subhalo) -> float:
        cooling = self.config.gas_cooling
        baryons = sum(subhalo.total_baryon_mass() for subhalo in halo.all_subhalos())
        accreted = max(0.0, cooling.baryon_fraction * halo.mvir - baryons)
        if accreted <= 0.0:
            return 0.0
        sam = 0.0
        if central.vvir > 0.0:
            rvir = constants.G_MPC_KMS2_MSUN * central.mvir / central.vvir**2
            sam = math.sqrt(2.0) * central.lambda_ * central.vvir * rvir
        central.hot_halo_gas += Baryon(accreted, accreted * cooling.pre_enrich_z, sam, 0.0)
        return accreted

    def populate_halos(self, snapshot: int) -> int:
        """Accrete gas onto central subhalos and seed missing central galaxies.

        Returns the number of galaxies created.
        """

        created = 0
        for halo in self.catalog.halos_at(snapshot):
            central = halo.central_subhalo()
            if central is None:
                continue
            self._accrete(halo, central)
            has_gas = central.hot_halo_gas.mass > 0.0 or central.cold_halo_gas.mass > 0.0
            if has_gas and central.central_galaxy() is None:
                galaxy = Galaxy(id=self._next_galaxy_id(), galaxy_type=GalaxyType.CENTRAL)
                galaxy.vmax = central.vcirc
                central.galaxies.append(galaxy)
                created += 1
        if created:
            logger.debug("snapshot %d: created %d central galaxies", snapshot, created)
        return created

    # -----------------------------------------------------------------------
    # Stage 2: galaxy evolution
    # -----------------------------------------------------------------------

    def _evolve_halo(self, halo: Halo, z: float, delta_t: float) -> tuple[int, int]:
        n_galaxies = 0
        n_bursts = 0
        for subhalo in halo.all_subhalos():
            for galaxy in subhalo.galaxies:
                if galaxy.galaxy_type == GalaxyType.CENTRAL and galaxy.vmax <= 0.0:
                    galaxy.vmax = subhalo.vcirc
                self.physical_model.evolve_galaxy(subhalo, galaxy, z, delta_t)
                if galaxy.bulge_gas.mass > 0.0:
                    from_merger = galaxy.interaction.mergers() > 0
                    self.physical_model.evolve_galaxy_starburst(subhalo, galaxy, z, delta_t, from_merger)
                    n_bursts += 1
                n_galaxies += 1
        return n_galaxies, n_bursts

    def evolve_galaxies(self, halos: List[Halo], snapshot: int) -> tuple[int, int]:
        """Evolve all galaxies of ``halos``; returns (galaxies, starbursts)."""

        z = self.config.simulation.redshifts[snapshot]
        delta_t = self.config.simulation.delta_t(snapshot)
        if self.n_workers > 1 and len(halos) > 1:
            with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                results = list(pool.map(lambda halo: self._evolve_halo(halo, z, delta_t), halos))
        else:
            results = [self._evolve_halo(halo, z, delta_t) for halo in halos]
        return sum(r[0] for r in results), sum(r[1] for r in results)

    # -----------------------------------------------------------------------
    # Snapshot loop
    # -----------------------------------------------------------------------

    def evolve_snapshot(self, snapshot: int) -> SnapshotStats:
        sim = self.config.simulation
        started = time.perf_counter()
        stats = SnapshotStats(snapshot=snapshot, redshift=sim.redshifts[snapshot], delta_t=sim.delta_t(snapshot))

        stats.n_new_galaxies = self.populate_halos(snapshot)
        halos = self.catalog.halos_at(snapshot)
        stats.n_halos = len(halos)
        stats.n_galaxies, stats.n_starbursts = self.evolve_galaxies(halos, snapshot)

        track_total_baryons(
            halos,
            snapshot,
            self.all_baryons,
            output_sf_histories=self.config.execution.output_sf_histories,
            mean_age=sim.mean_age(snapshot),
            deltat=stats.delta_t,
            n_workers=self.n_workers,
        )

        for halo in halos:
            merge_satellite_subhalos(halo, snapshot)
        stats.baryon_lost = transfer_galaxies_to_next_snapshot(
            self.catalog, snapshot, self.all_baryons, halos=halos, n_workers=self.n_workers
        )

        model = self.physical_model
        stats.galaxy_ode_evaluations = model.get_galaxy_ode_evaluations()
        stats.galaxy_starburst_ode_evaluations = model.get_galaxy_starburst_ode_evaluations()
        model.reset_ode_evaluations()
        stats.wall_time_s = time.perf_counter() - started

        logger.info(
            "snapshot %d (z=%.3f): %d halos, %d galaxies, %d starbursts, "
            "%d/%d ODE evaluations (disk/burst), %.2fs",
            snapshot,
            stats.redshift,
            stats.n_halos,
            stats.n_galaxies,
            stats.n_starbursts,
            stats.galaxy_ode_evaluations,
            stats.galaxy_starburst_ode_evaluations,
            stats.wall_time_s,
        )
        self.stats.append(stats)
        return stats

    def run(self) -> TotalBaryon:
        sim = self.config.simulation
        for snapshot in range(sim.min_snapshot, sim.max_snapshot):
            self.evolve_snapshot(snapshot)
        return self.all_baryons

    def summary(self) -> Dict[str, Any]:
        sim = self.config.simulation
        return {
            "min_snapshot": sim.min_snapshot,
            "max_snapshot": sim.max_snapshot,
            "n_workers": self.n_workers,
            "snapshots_evolved": len(self.stats),
            "galaxy_ode_evaluations": sum(s.galaxy_ode_evaluations for s in self.stats),
            "galaxy_starburst_ode_evaluations": sum(s.galaxy_starburst_ode_evaluations for s in self.stats),
            "baryon_total_lost": {str(k): v for k, v in sorted(self.all_baryons.baryon_total_lost.items())},
            "wall_time_s": sum(s.wall_time_s for s in self.stats),
        }


def run_simulation(
    config: Config,
    table: pd.DataFrame,
    outdir: Optional[Path] = None,
) -> Simulation:
    """Build the catalog from ``table``, run every snapshot and optionally write outputs.

    With ``outdir`` the ledger is written to ``baryon_totals.parquet`` and the
    run diagnostics to ``summary.json``.
    """

    simulation = Simulation(config, build_catalog(table))
    simulation.run()
    if outdir is not None:
        outdir = Path(outdir)
        writer.write_parquet(simulation.all_baryons.to_dataframe(), outdir / "baryon_totals.parquet")
        writer.write_summary(simulation.summary(), outdir / "summary.json")
        logger.info("run_simulation: outputs written to %s", outdir)
    return simulation
