"""Star formation rates of disks and starbursts."""
from __future__ import annotations

import logging
import threading
from typing import Tuple

from .. import constants
from ..schema import StarFormation as StarFormationParameters

logger = logging.getLogger(__name__)

__all__ = ["StarFormation", "StarFormationParameters"]


class StarFormation:
    """Star formation law used by the evolution equations.

    Quiescent disks convert cold gas into stars with a constant efficiency
    ``nu_sf``.  Starbursts consume the bulge gas over a timescale set by
    the dynamical time of the burst, bounded from below by
    ``burst_timescale_min``.
    """

    def __init__(self, parameters: StarFormationParameters) -> None:
        self.parameters = parameters
        self._intervals = 0
        self._lock = threading.Lock()

    def burst_timescale(self, rgas: float, vgal: float) -> float:
        """Duration of a starburst [Gyr]."""

        tmin = self.parameters.burst_timescale_min
        if rgas <= 0.0 or vgal <= 0.0:
            return tmin
        tdyn = rgas / vgal * constants.MPCKM2GYR
        return max(tmin, self.parameters.burst_dynamical_factor * tdyn)

    def star_formation_rate(
        self,
        mcold: float,
        mstars: float,
        rgas: float,
        rstars: float,
        zgas: float,
        z: float,
        burst: bool,
        vgal: float,
        jgas: float,
    ) -> Tuple[float, float]:
        """Return ``(sfr, jrate)``.

        ``sfr`` is in Msun/h/Gyr and ``jrate`` is the rate at which angular
        momentum is locked into stars, assuming stars form with the
        specific angular momentum ``jgas`` of the gas.
        """

        with self._lock:
            self._intervals += 1
        if mcold <= 0.0:
            return 0.0, 0.0
        if burst:
            sfr = mcold / self.burst_timescale(rgas, vgal)
        else:
            sfr = self.parameters.nu_sf * mcold
        return sfr, sfr * jgas

    def get_integration_intervals(self) -> int:
        return self._intervals

    def reset_integration_intervals(self) -> None:
        with self._lock:
            self._intervals = 0
