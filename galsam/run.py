"""Command line entry point for a galaxy evolution run."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .config_utils import configure_logging, load_config
from .errors import ConfigurationError
from .orchestrator import run_simulation

logger = logging.getLogger(__name__)

__all__ = ["read_subhalo_table", "main"]


def read_subhalo_table(path: Path) -> pd.DataFrame:
    """Read the columnar subhalo table from a Parquet or CSV file."""

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in {".parquet", ".pq"}:
        return pd.read_parquet(path)
    if suffix == ".csv":
        return pd.read_csv(path)
    raise ConfigurationError(f"Unsupported subhalo table format '{suffix}' for {path}")


def main(argv: Optional[List[str]] = None) -> None:
    """Command line entry point."""

    parser = argparse.ArgumentParser(description="Evolve galaxy baryons along a merger tree")
    parser.add_argument("--config", type=Path, required=True, help="Path to YAML configuration")
    parser.add_argument(
        "--tree",
        type=Path,
        required=True,
        help="Subhalo table (Parquet or CSV) with one row per subhalo and snapshot",
    )
    parser.add_argument("--outdir", type=Path, default=Path("out"), help="Directory receiving the outputs")
    parser.add_argument(
        "--override",
        action="append",
        nargs="+",
        metavar="PATH=VALUE",
        help="Apply configuration overrides using dotted paths; e.g. --override execution.n_workers=4",
    )
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and silence galsam warnings")
    args = parser.parse_args(argv)

    configure_logging(logging.WARNING if args.quiet else logging.INFO, suppress_warnings=args.quiet)
    overrides: List[str] = []
    for group in args.override or []:
        overrides.extend(group)
    cfg = load_config(args.config, overrides=overrides)
    table = read_subhalo_table(args.tree)
    simulation = run_simulation(cfg, table, outdir=args.outdir)
    logger.info("run finished: %d snapshots evolved", len(simulation.stats))


if __name__ == "__main__":  # pragma: no cover - standard CLI entrypoint
    main()
