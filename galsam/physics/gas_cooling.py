"""Cooling of hot halo gas onto galaxies."""
from __future__ import annotations

import logging

from ..components import Baryon, Galaxy, Subhalo
from ..schema import GasCooling as GasCoolingParameters

logger = logging.getLogger(__name__)

__all__ = ["GasCooling", "GasCoolingParameters"]


class GasCooling:
    """Hot halo gas cooling into the cold halo reservoir.

    A fraction ``min(1, delta_t / tcooling)`` of the hot gas cools during a
    step and joins the cold halo gas, carrying its metals and specific
    angular momentum.  The returned rate settles the whole cold halo
    reservoir onto the central galaxy within the step.
    """

    def __init__(self, parameters: GasCoolingParameters) -> None:
        self.parameters = parameters

    def cooling_rate(self, subhalo: Subhalo, galaxy: Galaxy, z: float, delta_t: float) -> float:
        hot = subhalo.hot_halo_gas
        tcool = self.parameters.tcooling_gyr
        mcool = 0.0
        if hot.mass > 0.0:
            fraction = min(1.0, delta_t / tcool)
            mcool = fraction * hot.mass
            cooled = Baryon(mcool, fraction * hot.mass_metals, hot.sAM, 0.0)
            subhalo.cold_halo_gas += cooled
            hot.mass -= cooled.mass
            hot.mass_metals -= cooled.mass_metals
            if hot.mass <= 0.0:
                hot.restore_baryon()

        tracking = subhalo.cooling_subhalo_tracking
        tracking.tcooling = tcool
        tracking.deltat = delta_t
        tracking.mass_cooled = mcool

        if subhalo.cold_halo_gas.mass <= 0.0:
            return 0.0
        return subhalo.cold_halo_gas.mass / delta_t
