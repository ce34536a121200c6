from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from galsam.config_utils import parse_config  # noqa: E402

BASE_CONFIG: Dict[str, Any] = {
    "stellar_feedback": {
        "model": "GALFORM",
        "beta_disk": 2.0,
        "v_sn": 200.0,
    },
    "recycling": {"recycle": 0.46, "yield": 0.03},
    "gas_cooling": {"pre_enrich_z": 1e-7, "tcooling_gyr": 1.0, "baryon_fraction": 0.157},
    "star_formation": {"nu_sf": 0.5},
    "numerics": {"ode_solver_precision": 0.05},
    "simulation": {
        "redshifts": [3.0, 2.0, 1.0],
        "ages_gyr": [2.0, 3.0, 4.5],
    },
}


@pytest.fixture()
def config_data() -> Dict[str, Any]:
    """Fresh copy of a minimal valid configuration mapping."""

    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture()
def config(config_data):
    return parse_config(config_data)


def _toy_tree_rows() -> list[dict]:
    # snapshot 0: three isolated centrals, two of them merge into subhalo 11
    # snapshot 1: central 11 with a satellite (12) seen for the last time
    # snapshot 2: the final central 21
    common = {"vvir": 100.0, "concentration": 8.0, "lambda": 0.03}
    return [
        dict(common, id=1, host_id=100, descendant_id=11, snapshot=0, is_main_progenitor=True,
             is_central=True, mvir=1e11, vcirc=120.0),
        dict(common, id=2, host_id=101, descendant_id=11, snapshot=0, is_main_progenitor=False,
             is_central=True, mvir=5e10, vcirc=90.0),
        dict(common, id=3, host_id=102, descendant_id=-1, snapshot=0, is_main_progenitor=False,
             is_central=True, mvir=2e10, vcirc=70.0),
        dict(common, id=11, host_id=200, descendant_id=21, snapshot=1, is_main_progenitor=True,
             is_central=True, mvir=2e11, vcirc=140.0),
        dict(common, id=12, host_id=200, descendant_id=21, snapshot=1, is_main_progenitor=False,
             is_central=False, mvir=1e10, vcirc=60.0),
        dict(common, id=21, host_id=300, descendant_id=-1, snapshot=2, is_main_progenitor=False,
             is_central=True, mvir=2.5e11, vcirc=150.0),
    ]


@pytest.fixture()
def toy_tree_table() -> pd.DataFrame:
    """Six subhalos over three snapshots, including a merger and a lost branch."""

    return pd.DataFrame(_toy_tree_rows())
