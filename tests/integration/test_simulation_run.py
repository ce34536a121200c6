"""End-to-end evolution of a small merger tree."""

from __future__ import annotations

import json

import pandas as pd
import pytest

from galsam.components import GalaxyType
from galsam.config_utils import parse_config
from galsam.orchestrator import Simulation, run_simulation
from galsam.tree import build_catalog

RESERVOIRS = ("mstars", "mcold", "mhot_halo", "mcold_halo", "mejected_halo")


def run(config_data, table, n_workers=1):
    config_data["execution"] = {"n_workers": n_workers}
    cfg = parse_config(config_data)
    simulation = Simulation(cfg, build_catalog(table))
    simulation.run()
    return simulation


def test_multi_snapshot_run(config_data, toy_tree_table):
    simulation = run(config_data, toy_tree_table)
    df = simulation.all_baryons.to_dataframe()

    assert list(df["snapshot"]) == [0, 1]
    assert (df["mstars"] > 0.0).all()
    assert df.loc[1, "mstars"] > df.loc[0, "mstars"]
    for name in RESERVOIRS:
        assert (df[name] >= 0.0).all()
        assert (df[f"{name}_metals"] <= df[name]).all()
    assert df.loc[0, "mDM"] == pytest.approx(1.7e11)

    assert [s.snapshot for s in simulation.stats] == [0, 1]
    assert simulation.stats[0].n_new_galaxies == 3
    assert simulation.stats[1].n_new_galaxies == 0
    assert all(s.galaxy_ode_evaluations > 0 for s in simulation.stats)
    assert simulation.physical_model.get_galaxy_ode_evaluations() == 0


def test_galaxies_end_in_final_descendant(config_data, toy_tree_table):
    simulation = run(config_data, toy_tree_table)
    final = simulation.catalog.subhalo(21)
    types = sorted(g.galaxy_type for g in final.galaxies)
    assert types == [GalaxyType.CENTRAL, GalaxyType.TYPE2]
    orphan = next(g for g in final.galaxies if g.galaxy_type == GalaxyType.TYPE2)
    assert orphan.msubhalo_type2 == pytest.approx(5e10)
    for galaxy in final.galaxies:
        assert galaxy.stellar_mass() > 0.0
        assert galaxy.disk_stars.mass_metals <= galaxy.disk_stars.mass


def test_baryons_are_accounted_for(config_data, toy_tree_table):
    simulation = run(config_data, toy_tree_table)
    fb = simulation.config.gas_cooling.baryon_fraction
    final = simulation.catalog.subhalo(21)
    # the final halo holds the baryon share of its virial mass
    assert final.total_baryon_mass() == pytest.approx(fb * 2.1e11, rel=1e-6)
    lost = simulation.all_baryons.baryon_total_lost
    assert set(lost) == {0}
    assert lost[0] == pytest.approx(fb * 2e10, rel=1e-6)


def test_threaded_run_matches_serial(config_data, toy_tree_table):
    serial = run(dict(config_data), toy_tree_table.copy(), n_workers=1)
    threaded = run(dict(config_data), toy_tree_table.copy(), n_workers=4)
    pd.testing.assert_frame_equal(
        serial.all_baryons.to_dataframe(), threaded.all_baryons.to_dataframe()
    )
    assert serial.all_baryons.baryon_total_lost == threaded.all_baryons.baryon_total_lost


def test_run_simulation_writes_outputs(config_data, toy_tree_table, tmp_path):
    config_data["execution"] = {"output_sf_histories": True}
    simulation = run_simulation(parse_config(config_data), toy_tree_table, outdir=tmp_path)

    ledger = pd.read_parquet(tmp_path / "baryon_totals.parquet")
    assert list(ledger["snapshot"]) == [0, 1]
    summary = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert summary["snapshots_evolved"] == 2
    assert summary["galaxy_ode_evaluations"] > 0
    assert set(summary["baryon_total_lost"]) == {"0"}

    central = simulation.catalog.subhalo(21).central_galaxy()
    assert [item.snapshot for item in central.history] == [0, 1]
    assert central.total_stellar_mass_ever_formed > 0.0


def test_cli_runs_from_files(config_data, toy_tree_table, tmp_path):
    import logging

    from galsam.run import main

    config_path = tmp_path / "config.yml"
    config_path.write_text(json.dumps(config_data), encoding="utf-8")
    tree_path = tmp_path / "tree.csv"
    toy_tree_table.to_csv(tree_path, index=False)
    outdir = tmp_path / "out"

    root = logging.getLogger()
    previous = root.level
    try:
        main(
            [
                "--config", str(config_path),
                "--tree", str(tree_path),
                "--outdir", str(outdir),
                "--override", "execution.n_workers=2",
                "--quiet",
            ]
        )
    finally:
        root.setLevel(previous)
        logging.captureWarnings(False)

    summary = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    assert summary["n_workers"] == 2
    assert (outdir / "baryon_totals.parquet").exists()
