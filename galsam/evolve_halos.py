"""Hand galaxies and halo gas over to the next snapshot and keep the ledger.

The transfer runs once per snapshot after every galaxy has been evolved.
Each subhalo passes its galaxies and halo reservoirs to its descendant;
the principal galaxy of a subhalo changes role depending on whether the
subhalo is the main progenitor of its descendant.  Subhalos without a
descendant contribute their baryons to the snapshot's lost tally, as
do satellites in their last snapshot that were never merged.

Work is partitioned by descendant subhalo, so two workers never touch
the same descendant.  The lost tally and the baryon ledger are reduced
from per-partition partial sums.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .components import Galaxy, GalaxyType, Halo, HistoryItem, Subhalo, SubhaloType
from .errors import TreeError
from .total_baryon import BaryonTotals, TotalBaryon
from .tree import HaloCatalog

logger = logging.getLogger(__name__)

__all__ = [
    "MolecularGas",
    "adjust_main_galaxy",
    "merge_satellite_subhalos",
    "transfer_galaxies_to_next_snapshot",
    "track_total_baryons",
]


class MolecularGas(NamedTuple):
    """Atomic and molecular gas of a galaxy in its disk and bulge."""

    m_atom: float = 0.0
    m_mol: float = 0.0
    m_atom_b: float = 0.0
    m_mol_b: float = 0.0


_NO_MOLGAS = MolecularGas()


def adjust_main_galaxy(parent: Subhalo, descendant: Subhalo) -> None:
    """Assign the new role of the principal galaxy of ``parent``.

    A subhalo that is not the main progenitor of its descendant cannot
    contribute its principal galaxy (CENTRAL or TYPE1, depending on the
    subhalo type) as the principal galaxy of the descendant.  Galaxies
    turning into orphans freeze the properties of the subhalo they leave.
    """

    if parent.subhalo_type == SubhaloType.CENTRAL:
        main_galaxy = parent.central_galaxy()
    else:
        main_galaxy = parent.type1_galaxy()
    if main_galaxy is None:
        return

    if descendant.subhalo_type == SubhaloType.CENTRAL:
        main_galaxy.galaxy_type = GalaxyType.CENTRAL if parent.main_progenitor else GalaxyType.TYPE2
    else:
        main_galaxy.galaxy_type = GalaxyType.TYPE1 if parent.main_progenitor else GalaxyType.TYPE2

    if main_galaxy.galaxy_type == GalaxyType.TYPE2:
        main_galaxy.concentration_type2 = parent.concentration
        main_galaxy.msubhalo_type2 = parent.mvir
        main_galaxy.lambda_type2 = parent.lambda_


def merge_satellite_subhalos(halo: Halo, snapshot: int) -> int:
    """Fold satellite subhalos seen for the last time into their central.

    Their galaxies become orphans of the central subhalo and their halo gas
    joins the central reservoirs.  Returns the number of merged subhalos.
    """

    central = halo.central_subhalo()
    if central is None:
        return 0
    merged = 0
    for subhalo in halo.all_subhalos():
        if subhalo is central or subhalo.subhalo_type != SubhaloType.SATELLITE:
            continue
        if subhalo.last_snapshot_identified != snapshot:
            continue
        main_galaxy = subhalo.type1_galaxy()
        if main_galaxy is not None:
            main_galaxy.galaxy_type = GalaxyType.TYPE2
            main_galaxy.concentration_type2 = subhalo.concentration
            main_galaxy.msubhalo_type2 = subhalo.mvir
            main_galaxy.lambda_type2 = subhalo.lambda_
        if subhalo.galaxies:
            subhalo.transfer_galaxies_to(central)
        central.cold_halo_gas += subhalo.cold_halo_gas
        central.hot_halo_gas += subhalo.hot_halo_gas
        central.ejected_galaxy_gas += subhalo.ejected_galaxy_gas
        subhalo.cold_halo_gas.restore_baryon()
        subhalo.hot_halo_gas.restore_baryon()
        subhalo.ejected_galaxy_gas.restore_baryon()
        merged += 1
    if merged:
        logger.debug("halo %d: merged %d satellite subhalos into central %d", halo.id, merged, central.id)
    return merged


def _reset_galaxies(subhalo: Subhalo) -> None:
    for galaxy in subhalo.galaxies:
        galaxy.reset_sfr()
        galaxy.interaction.restore_interaction_item()


def _transfer_partition(
    catalog: HaloCatalog, subhalos: Sequence[Subhalo]
) -> Tuple[int, int, float]:
    """Transfer one group of subhalos.

    Returns the number of subhalos without descendant, the number of
    unmerged satellites in their last snapshot and the baryon mass both
    leave behind.
    """

    without_descendant = 0
    unmerged = 0
    lost_mass = 0.0
    for subhalo in subhalos:
        _reset_galaxies(subhalo)

        # satellites in their last snapshot hand over everything in the merging step
        if (
            subhalo.subhalo_type == SubhaloType.SATELLITE
            and subhalo.last_snapshot_identified == subhalo.snapshot
        ):
            baryons = subhalo.total_baryon_mass()
            if subhalo.galaxies or baryons > 0.0:
                unmerged += 1
                lost_mass += baryons
            continue

        descendant = catalog.descendant(subhalo)
        if descendant is None:
            without_descendant += 1
            lost_mass += subhalo.total_baryon_mass()
            continue

        if subhalo.snapshot != descendant.snapshot - 1:
            raise TreeError(
                f"Descendant subhalo {descendant.id} (snapshot {descendant.snapshot}) of subhalo "
                f"{subhalo.id} (snapshot {subhalo.snapshot}) is not in the subsequent snapshot"
            )

        subhalo.check_subhalo_galaxy_composition()
        adjust_main_galaxy(subhalo, descendant)
        if subhalo.galaxies:
            subhalo.transfer_galaxies_to(descendant)

        descendant.cold_halo_gas += subhalo.cold_halo_gas
        descendant.hot_halo_gas += subhalo.hot_halo_gas
        descendant.ejected_galaxy_gas += subhalo.ejected_galaxy_gas
        if subhalo.main_progenitor:
            tracking = subhalo.cooling_subhalo_tracking
            descendant.cooling_subhalo_tracking.tcooling = tracking.tcooling
            descendant.cooling_subhalo_tracking.deltat = tracking.deltat
            descendant.cooling_subhalo_tracking.mass_cooled = tracking.mass_cooled
    return without_descendant, unmerged, lost_mass


def _partition_by_descendant(subhalos: Iterable[Subhalo]) -> List[List[Subhalo]]:
    groups: Dict[Optional[int], List[Subhalo]] = {}
    orphans: List[List[Subhalo]] = []
    for subhalo in subhalos:
        if subhalo.descendant_id is None:
            orphans.append([subhalo])
        else:
            groups.setdefault(subhalo.descendant_id, []).append(subhalo)
    return list(groups.values()) + orphans


def transfer_galaxies_to_next_snapshot(
    catalog: HaloCatalog,
    snapshot: int,
    all_baryons: TotalBaryon,
    halos: Optional[Sequence[Halo]] = None,
    n_workers: int = 1,
) -> float:
    """Move galaxies and halo gas of ``snapshot`` to their descendants.

    Parameters
    ----------
    catalog:
        Arena resolving descendant ids.
    snapshot:
        Snapshot whose subhalos are transferred.
    all_baryons:
        Ledger receiving the lost-baryon tally of the snapshot.
    halos:
        Halos to process; defaults to every halo of ``snapshot``.
    n_workers:
        Number of worker threads; partitions never share a descendant.

    Returns
    -------
    float
        Baryon mass carried by subhalos without descendant.
    """

    if halos is None:
        halos = catalog.halos_at(snapshot)
    subhalos = [subhalo for halo in halos for subhalo in halo.all_subhalos()]

    for subhalo in subhalos:
        descendant = catalog.descendant(subhalo)
        if descendant is not None and descendant.galaxy_count() != 0:
            raise TreeError(
                f"Descendant subhalo {descendant.id} of subhalo {subhalo.id} already owns "
                f"{descendant.galaxy_count()} galaxies before the transfer"
            )

    partitions = _partition_by_descendant(subhalos)
    if n_workers > 1 and len(partitions) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            partials = list(pool.map(lambda part: _transfer_partition(catalog, part), partitions))
    else:
        partials = [_transfer_partition(catalog, part) for part in partitions]

    without_descendant = sum(part[0] for part in partials)
    unmerged = sum(part[1] for part in partials)
    lost_mass = sum(part[2] for part in partials)

    for subhalo in subhalos:
        descendant = catalog.descendant(subhalo)
        if descendant is not None:
            descendant.check_subhalo_galaxy_composition()

    if without_descendant or unmerged:
        all_baryons.record_lost(snapshot, lost_mass)
    if without_descendant:
        logger.warning(
            "Found %d subhalos without descendant while transferring galaxies.", without_descendant
        )
    if unmerged:
        logger.warning(
            "Found %d satellite subhalos in their last snapshot that were never merged; "
            "their baryons are counted as lost.",
            unmerged,
        )
    return lost_mass


def _record_history(galaxy: Galaxy, snapshot: int, mean_age: float, deltat: float) -> None:
    formed = galaxy.sfr_total() * deltat
    galaxy.mean_stellar_age += formed * mean_age
    galaxy.total_stellar_mass_ever_formed += formed
    galaxy.history.append(
        HistoryItem(
            snapshot=snapshot,
            sfr_disk=galaxy.sfr_disk,
            sfr_bulge_mergers=galaxy.sfr_bulge_mergers,
            sfr_bulge_diskins=galaxy.sfr_bulge_diskins,
            sfr_z_disk=galaxy.sfr_z_disk,
            sfr_z_bulge_mergers=galaxy.sfr_z_bulge_mergers,
            sfr_z_bulge_diskins=galaxy.sfr_z_bulge_diskins,
        )
    )


def _halo_totals(
    halo: Halo,
    snapshot: int,
    molgas: Optional[Mapping[int, MolecularGas]],
    output_sf_histories: bool,
    mean_age: float,
    deltat: float,
) -> BaryonTotals:
    totals = BaryonTotals(snapshot=snapshot)
    totals.mDM.mass += halo.mvir
    for subhalo in halo.all_subhalos():
        totals.mhot_halo += subhalo.hot_halo_gas
        totals.mcold_halo += subhalo.cold_halo_gas
        totals.mejected_halo += subhalo.ejected_galaxy_gas

        for galaxy in subhalo.galaxies:
            totals.major_mergers += galaxy.interaction.major_mergers
            totals.minor_mergers += galaxy.interaction.minor_mergers
            totals.disk_instabil += galaxy.interaction.disk_instabilities

            if output_sf_histories:
                _record_history(galaxy, snapshot, mean_age, deltat)

            gas = molgas.get(galaxy.id, _NO_MOLGAS) if molgas is not None else _NO_MOLGAS
            totals.mHI.mass += gas.m_atom + gas.m_atom_b
            totals.mH2.mass += gas.m_mol + gas.m_mol_b

            totals.mcold.mass += galaxy.disk_gas.mass + galaxy.bulge_gas.mass
            totals.mcold.mass_metals += galaxy.disk_gas.mass_metals + galaxy.bulge_gas.mass_metals
            totals.mstars.mass += galaxy.disk_stars.mass + galaxy.bulge_stars.mass
            totals.mstars.mass_metals += galaxy.disk_stars.mass_metals + galaxy.bulge_stars.mass_metals
            totals.mstars_burst_galaxymergers += galaxy.galaxymergers_burst_stars
            totals.mstars_burst_diskinstabilities += galaxy.diskinstabilities_burst_stars

            totals.SFR_disk += galaxy.sfr_disk
            totals.SFR_bulge += galaxy.sfr_bulge_mergers + galaxy.sfr_bulge_diskins
            totals.mBH.mass += galaxy.smbh.mass
    return totals


def track_total_baryons(
    halos: Sequence[Halo],
    snapshot: int,
    all_baryons: TotalBaryon,
    *,
    molgas: Optional[Mapping[int, MolecularGas]] = None,
    output_sf_histories: bool = False,
    mean_age: float = 0.0,
    deltat: float = 0.0,
    n_workers: int = 1,
) -> BaryonTotals:
    """Append the population totals of ``snapshot`` to ``all_baryons``.

    ``molgas`` maps galaxy ids to their atomic and molecular gas; galaxies
    missing from it contribute nothing to HI and H2.  With
    ``output_sf_histories`` every galaxy also records a
    :class:`~galsam.components.HistoryItem` and accumulates its
    mass-weighted stellar age using ``mean_age`` and ``deltat``.
    """

    def halo_totals(halo: Halo) -> BaryonTotals:
        return _halo_totals(halo, snapshot, molgas, output_sf_histories, mean_age, deltat)

    if n_workers > 1 and len(halos) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            partials = list(pool.map(halo_totals, halos))
    else:
        partials = [halo_totals(halo) for halo in halos]

    totals = BaryonTotals(snapshot=snapshot)
    for partial in partials:
        totals = totals + partial
    all_baryons.append(totals)
    return totals
