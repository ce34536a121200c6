"""Galaxy hand-over between snapshots and the baryon ledger."""

from __future__ import annotations

import logging

import pytest

from galsam.components import Baryon, Galaxy, GalaxyType, Halo, Subhalo, SubhaloType
from galsam.errors import TreeError
from galsam.evolve_halos import (
    MolecularGas,
    adjust_main_galaxy,
    merge_satellite_subhalos,
    track_total_baryons,
    transfer_galaxies_to_next_snapshot,
)
from galsam.total_baryon import TotalBaryon
from galsam.tree import catalog_from_halos


def make_subhalo(sid, snapshot, host, descendant=None, *, central=True, main=True, mvir=1e11):
    return Subhalo(
        id=sid,
        snapshot=snapshot,
        host_halo_id=host,
        descendant_id=descendant,
        subhalo_type=SubhaloType.CENTRAL if central else SubhaloType.SATELLITE,
        main_progenitor=main,
        last_snapshot_identified=snapshot + 1,
        mvir=mvir,
        concentration=7.0,
        lambda_=0.04,
    )


def make_halo(hid, snapshot, *subhalos):
    halo = Halo(id=hid, snapshot=snapshot)
    for subhalo in subhalos:
        halo.add_subhalo(subhalo)
    return halo


def with_gas(subhalo, cold, hot, ejected):
    subhalo.cold_halo_gas = Baryon(cold, 0.01 * cold, sAM=0.1)
    subhalo.hot_halo_gas = Baryon(hot, 0.01 * hot, sAM=0.2)
    subhalo.ejected_galaxy_gas = Baryon(ejected, 0.01 * ejected, sAM=0.3)
    return subhalo


@pytest.mark.parametrize(
    "desc_central, main_progenitor, expected",
    [
        (True, True, GalaxyType.CENTRAL),
        (True, False, GalaxyType.TYPE2),
        (False, True, GalaxyType.TYPE1),
        (False, False, GalaxyType.TYPE2),
    ],
)
@pytest.mark.parametrize("parent_central", [True, False])
def test_adjust_main_galaxy_table(desc_central, main_progenitor, expected, parent_central):
    parent = make_subhalo(1, 0, 10, 2, central=parent_central, main=main_progenitor, mvir=3e10)
    galaxy_type = GalaxyType.CENTRAL if parent_central else GalaxyType.TYPE1
    galaxy = Galaxy(id=1, galaxy_type=galaxy_type)
    parent.galaxies.append(galaxy)
    descendant = make_subhalo(2, 1, 20, central=desc_central)

    adjust_main_galaxy(parent, descendant)

    assert galaxy.galaxy_type == expected
    if expected == GalaxyType.TYPE2:
        assert galaxy.concentration_type2 == 7.0
        assert galaxy.msubhalo_type2 == 3e10
        assert galaxy.lambda_type2 == 0.04
    else:
        assert galaxy.msubhalo_type2 == 0.0


def test_adjust_main_galaxy_leaves_orphans_alone():
    parent = make_subhalo(1, 0, 10, 2, main=False)
    orphan = Galaxy(id=1, galaxy_type=GalaxyType.TYPE2)
    parent.galaxies.append(orphan)
    adjust_main_galaxy(parent, make_subhalo(2, 1, 20))
    assert orphan.galaxy_type == GalaxyType.TYPE2
    assert orphan.msubhalo_type2 == 0.0


def two_into_one():
    main = with_gas(make_subhalo(1, 0, 10, 3, main=True), 1e8, 2e9, 3e8)
    minor = with_gas(make_subhalo(2, 0, 11, 3, main=False, mvir=2e10), 1e7, 5e8, 4e7)
    main.cooling_subhalo_tracking.mass_cooled = 42.0
    minor.cooling_subhalo_tracking.mass_cooled = 7.0
    main.galaxies.append(Galaxy(id=1))
    minor.galaxies.append(Galaxy(id=2))
    descendant = with_gas(make_subhalo(3, 1, 20), 0.0, 1e9, 0.0)
    halos = [make_halo(10, 0, main), make_halo(11, 0, minor), make_halo(20, 1, descendant)]
    return catalog_from_halos(halos), main, minor, descendant


@pytest.mark.parametrize("n_workers", [1, 4])
def test_two_progenitors_conserve_halo_gas(n_workers):
    catalog, main, minor, descendant = two_into_one()
    before = {
        name: sum(getattr(s, name).mass for s in (main, minor, descendant))
        for name in ("cold_halo_gas", "hot_halo_gas", "ejected_galaxy_gas")
    }
    ledger = TotalBaryon()

    lost = transfer_galaxies_to_next_snapshot(catalog, 0, ledger, n_workers=n_workers)

    assert lost == 0.0
    assert ledger.baryon_total_lost == {}
    for name, total in before.items():
        assert getattr(descendant, name).mass == pytest.approx(total)
    assert descendant.hot_halo_gas.mass_metals == pytest.approx(0.01 * (2e9 + 5e8 + 1e9))
    assert [g.id for g in descendant.galaxies] == [1, 2]
    assert [g.galaxy_type for g in descendant.galaxies] == [GalaxyType.CENTRAL, GalaxyType.TYPE2]
    assert main.galaxy_count() == minor.galaxy_count() == 0
    assert descendant.cooling_subhalo_tracking.mass_cooled == 42.0


def test_descendant_must_be_in_next_snapshot():
    parent = make_subhalo(1, 0, 10, 2)
    parent.galaxies.append(Galaxy(id=1))
    descendant = make_subhalo(2, 2, 20)
    catalog = catalog_from_halos([make_halo(10, 0, parent), make_halo(20, 2, descendant)])
    with pytest.raises(TreeError, match="subsequent snapshot"):
        transfer_galaxies_to_next_snapshot(catalog, 0, TotalBaryon())


def test_descendant_must_start_empty():
    catalog, _, _, descendant = two_into_one()
    descendant.galaxies.append(Galaxy(id=9))
    with pytest.raises(TreeError, match="already owns"):
        transfer_galaxies_to_next_snapshot(catalog, 0, TotalBaryon())


def test_bad_composition_is_rejected():
    catalog, main, _, _ = two_into_one()
    main.galaxies.append(Galaxy(id=5))
    with pytest.raises(TreeError, match="central"):
        transfer_galaxies_to_next_snapshot(catalog, 0, TotalBaryon())


def test_subhalos_without_descendant_are_tallied(caplog):
    lonely = with_gas(make_subhalo(1, 0, 10, None), 1.0, 2.0, 3.0)
    galaxy = Galaxy(id=1)
    galaxy.disk_stars.mass = 4.0
    lonely.galaxies.append(galaxy)
    catalog = catalog_from_halos([make_halo(10, 0, lonely)])
    ledger = TotalBaryon()

    with caplog.at_level(logging.WARNING, logger="galsam.evolve_halos"):
        lost = transfer_galaxies_to_next_snapshot(catalog, 0, ledger)

    assert lost == pytest.approx(10.0)
    assert ledger.baryon_total_lost == {0: pytest.approx(10.0)}
    assert "1 subhalos without descendant" in caplog.text
    assert lonely.galaxy_count() == 1


def test_satellites_in_last_snapshot_are_skipped():
    central = make_subhalo(1, 0, 10, 3)
    satellite = make_subhalo(2, 0, 10, 3, central=False, main=False)
    satellite.last_snapshot_identified = 0
    satellite.galaxies.append(Galaxy(id=7, galaxy_type=GalaxyType.TYPE1))
    satellite.hot_halo_gas = Baryon(5.0, 0.0)
    descendant = make_subhalo(3, 1, 20)
    catalog = catalog_from_halos([make_halo(10, 0, central, satellite), make_halo(20, 1, descendant)])

    merge_satellite_subhalos(catalog.halo(10), 0)
    ledger = TotalBaryon()
    lost = transfer_galaxies_to_next_snapshot(catalog, 0, ledger)

    assert satellite.galaxy_count() == 0
    assert [g.id for g in descendant.galaxies] == [7]
    assert descendant.hot_halo_gas.mass == pytest.approx(5.0)
    assert lost == 0.0
    assert ledger.baryon_total_lost == {}


def test_unmerged_satellite_in_last_snapshot_counts_as_lost(caplog):
    satellite = make_subhalo(2, 0, 10, 3, central=False, main=False)
    satellite.last_snapshot_identified = 0
    galaxy = Galaxy(id=7, galaxy_type=GalaxyType.TYPE1)
    galaxy.disk_stars.mass = 1e9
    satellite.galaxies.append(galaxy)
    satellite.hot_halo_gas = Baryon(5.0, 0.0)
    descendant = make_subhalo(3, 1, 20)
    halo = make_halo(10, 0, satellite)
    catalog = catalog_from_halos([halo, make_halo(20, 1, descendant)])
    ledger = TotalBaryon()

    assert merge_satellite_subhalos(halo, 0) == 0
    with caplog.at_level(logging.WARNING, logger="galsam.evolve_halos"):
        lost = transfer_galaxies_to_next_snapshot(catalog, 0, ledger)

    assert descendant.galaxy_count() == 0
    assert lost == pytest.approx(1e9 + 5.0)
    assert ledger.baryon_total_lost == {0: pytest.approx(1e9 + 5.0)}
    assert "never merged" in caplog.text


def test_star_formation_and_interactions_reset_on_transfer():
    catalog, main, _, descendant = two_into_one()
    galaxy = main.galaxies[0]
    galaxy.sfr_disk = 3.0
    galaxy.sfr_z_bulge_mergers = 1.0
    galaxy.interaction.major_mergers = 2
    transfer_galaxies_to_next_snapshot(catalog, 0, TotalBaryon())
    assert galaxy.sfr_total() == 0.0
    assert galaxy.sfr_z_bulge_mergers == 0.0
    assert galaxy.interaction.mergers() == 0


def test_merge_satellite_subhalos_feeds_central():
    central = with_gas(make_subhalo(1, 0, 10, 3), 1.0, 10.0, 1.0)
    central.galaxies.append(Galaxy(id=1))
    satellite = with_gas(make_subhalo(2, 0, 10, 3, central=False, main=False, mvir=5e9), 2.0, 4.0, 1.0)
    satellite.last_snapshot_identified = 0
    satellite.galaxies.append(Galaxy(id=2, galaxy_type=GalaxyType.TYPE1))
    halo = make_halo(10, 0, central, satellite)

    assert merge_satellite_subhalos(halo, 0) == 1

    assert satellite.galaxy_count() == 0
    assert satellite.hot_halo_gas.mass == 0.0
    assert central.hot_halo_gas.mass == pytest.approx(14.0)
    assert central.cold_halo_gas.mass == pytest.approx(3.0)
    orphan = central.galaxies[1]
    assert orphan.galaxy_type == GalaxyType.TYPE2
    assert orphan.msubhalo_type2 == 5e9
    central.check_subhalo_galaxy_composition()


def populated_halo(snapshot=0):
    central = with_gas(make_subhalo(1, snapshot, 10), 1.0, 10.0, 2.0)
    galaxy = Galaxy(id=1)
    galaxy.disk_stars = Baryon(5.0, 0.1)
    galaxy.bulge_stars = Baryon(1.0, 0.05)
    galaxy.disk_gas = Baryon(3.0, 0.03)
    galaxy.smbh.mass = 0.2
    galaxy.sfr_disk = 2.0
    galaxy.sfr_bulge_mergers = 0.5
    galaxy.galaxymergers_burst_stars.mass = 0.7
    galaxy.interaction.minor_mergers = 1
    central.galaxies.append(galaxy)
    return make_halo(10, snapshot, central), galaxy


def test_track_total_baryons_sums_population():
    halo, galaxy = populated_halo()
    second, _ = populated_halo()
    second.id = 11
    ledger = TotalBaryon()

    totals = track_total_baryons(
        [halo, second],
        0,
        ledger,
        molgas={galaxy.id: MolecularGas(1.0, 2.0, 0.5, 0.25)},
    )

    assert len(ledger) == 1
    assert ledger.latest() is totals
    assert totals.mstars.mass == pytest.approx(12.0)
    assert totals.mstars.mass_metals == pytest.approx(0.3)
    assert totals.mcold.mass == pytest.approx(6.0)
    assert totals.mhot_halo.mass == pytest.approx(20.0)
    assert totals.mcold_halo.mass == pytest.approx(2.0)
    assert totals.mejected_halo.mass == pytest.approx(4.0)
    assert totals.mBH.mass == pytest.approx(0.4)
    assert totals.mDM.mass == pytest.approx(2e11)
    assert totals.mstars_burst_galaxymergers.mass == pytest.approx(1.4)
    assert totals.SFR_disk == pytest.approx(4.0)
    assert totals.SFR_bulge == pytest.approx(1.0)
    assert totals.minor_mergers == 2
    # both galaxies share id 1, so both pick up the molecular gas entry
    assert totals.mHI.mass == pytest.approx(3.0)
    assert totals.mH2.mass == pytest.approx(4.5)


def test_track_total_baryons_threaded_matches_serial():
    halos = [populated_halo()[0] for _ in range(6)]
    for i, halo in enumerate(halos):
        halo.id = 100 + i
    serial = track_total_baryons(halos, 0, TotalBaryon())
    threaded = track_total_baryons(halos, 0, TotalBaryon(), n_workers=3)
    assert serial.as_record() == threaded.as_record()


def test_star_formation_histories():
    halo, galaxy = populated_halo(snapshot=4)
    track_total_baryons([halo], 4, TotalBaryon(), output_sf_histories=True, mean_age=2.0, deltat=0.5)
    assert len(galaxy.history) == 1
    item = galaxy.history[0]
    assert item.snapshot == 4
    assert item.sfr_disk == 2.0
    assert item.sfr_bulge_mergers == 0.5
    assert galaxy.total_stellar_mass_ever_formed == pytest.approx(2.5 * 0.5)
    assert galaxy.mean_stellar_age == pytest.approx(2.5 * 0.5 * 2.0)
