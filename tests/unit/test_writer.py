from __future__ import annotations

import json

import pandas as pd

from galsam.components import BaryonBase
from galsam.io import writer
from galsam.total_baryon import BaryonTotals, TotalBaryon


def test_write_parquet_stores_units(tmp_path):
    ledger = TotalBaryon()
    ledger.append(BaryonTotals(snapshot=0, mstars=BaryonBase(1e9, 1e7), SFR_disk=0.5))
    path = tmp_path / "out" / "baryon_totals.parquet"

    writer.write_parquet(ledger.to_dataframe(), path)

    df = pd.read_parquet(path)
    assert df.loc[0, "mstars"] == 1e9
    units = writer.read_units(path)
    assert units["mstars"] == "Msun/h"
    assert units["SFR_disk"] == "Msun/h Gyr^-1"
    assert "unknown" not in units


def test_write_summary(tmp_path):
    path = tmp_path / "nested" / "summary.json"
    writer.write_summary({"b": 1, "a": [1, 2]}, path)
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": [1, 2], "b": 1}
