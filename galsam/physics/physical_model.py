"""Physical models coupling galaxies to the ODE solver.

A physical model translates the reservoirs of a galaxy and its subhalo
into a flat state vector, evolves the vector with :class:`ODESolver` and
writes the result back.  Two channels exist per galaxy and snapshot:

* quiescent evolution of the disk (:meth:`PhysicalModel.evolve_galaxy`)
* starbursts in the bulge (:meth:`PhysicalModel.evolve_galaxy_starburst`)

The concrete model fixes the length ``NC`` of the state vector and the
meaning of every index; the marshalling methods and the evaluator must
agree on that layout.
"""
from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, List, Sequence

import numpy as np

from .. import constants
from ..components import Baryon, Galaxy, GalaxyType, Subhalo
from ..errors import PhysicsError, StateVectorError
from ..schema import Config, GasCooling as GasCoolingParameters, Numerics, Recycling
from .gas_cooling import GasCooling
from .ode_solver import Evaluator, ODESolver
from .star_formation import StarFormation
from .stellar_feedback import StellarFeedback

logger = logging.getLogger(__name__)

__all__ = [
    "SolverParams",
    "PhysicalModel",
    "BasicPhysicalModel",
    "basic_physicalmodel_evaluator",
    "make_physical_model",
]


@dataclass(frozen=True)
class SolverParams:
    """Inputs shared by every evaluator call of one integration.

    Attributes
    ----------
    model:
        The physical model providing feedback, star formation and recycling.
    rgas, rstar:
        Scale radii of the gas and stars [Mpc/h].
    mcoolrate:
        Cooling rate onto the galaxy [Msun/h/Gyr].
    jcold_halo:
        Specific angular momentum of the cooling gas [Mpc/h km/s].
    delta_t:
        Macro step [Gyr].
    redshift:
        Redshift of the snapshot being evolved.
    vsubh, vgal:
        Virial velocity of the subhalo and circular velocity of the galaxy [km/s].
    burst:
        Whether this integration is a starburst.
    """

    model: "PhysicalModel"
    rgas: float
    rstar: float
    mcoolrate: float
    jcold_halo: float
    delta_t: float
    redshift: float
    vsubh: float
    vgal: float
    burst: bool


def _specific(moment: float, mass: float) -> float:
    return moment / mass if mass > 0.0 else 0.0


def _snap_reservoir(baryon: Baryon) -> None:
    """Zero negligible metals and empty negligible reservoirs."""

    if baryon.mass_metals < constants.TOLERANCE:
        baryon.mass_metals = 0.0
    if baryon.mass < constants.TOLERANCE:
        baryon.restore_baryon()


class PhysicalModel(ABC):
    """Base class of the physical models.

    Subclasses set ``NC``, the fixed number of ODE components, and
    implement the four marshalling methods.
    """

    NC: ClassVar[int] = 0

    def __init__(
        self,
        ode_solver_precision: float,
        evaluator: Evaluator,
        gas_cooling: GasCooling,
        numerics: Numerics | None = None,
    ) -> None:
        if not isinstance(self.NC, int) or self.NC <= 0:
            raise TypeError(f"{type(self).__name__} must define a positive number of ODE components")
        self.evaluator = evaluator
        self.ode_solver_precision = ode_solver_precision
        self.gas_cooling = gas_cooling
        self.numerics = numerics if numerics is not None else Numerics(ode_solver_precision=ode_solver_precision)
        self.galaxy_ode_evaluations = 0
        self.galaxy_starburst_ode_evaluations = 0
        self._counter_lock = threading.Lock()

    def get_solver(self, delta_t: float, y0: Sequence[float], params: SolverParams) -> ODESolver:
        if len(y0) != self.NC:
            raise StateVectorError(f"# initial values != ODE components: {len(y0)} != {self.NC}")
        return ODESolver(
            y0,
            0.0,
            delta_t,
            self.ode_solver_precision,
            self.evaluator,
            params,
            method=self.numerics.ode_method,
            atol=self.numerics.ode_solver_atol,
            max_steps=self.numerics.ode_max_steps,
            min_step_fraction=self.numerics.ode_min_step_fraction,
        )

    def _integrate(self, y0: Sequence[float], params: SolverParams) -> tuple[np.ndarray, int]:
        solver = self.get_solver(params.delta_t, y0, params)
        y1 = solver.evolve()
        if len(y1) != self.NC:
            raise StateVectorError(f"# evolved values != ODE components: {len(y1)} != {self.NC}")
        return y1, solver.num_evaluations()

    def evolve_galaxy(self, subhalo: Subhalo, galaxy: Galaxy, z: float, delta_t: float) -> None:
        """Evolve the disk of ``galaxy`` over one snapshot."""

        # only central galaxies receive cooling gas
        mcoolrate = 0.0
        if galaxy.galaxy_type == GalaxyType.CENTRAL:
            mcoolrate = self.gas_cooling.cooling_rate(subhalo, galaxy, z, delta_t)

        rgas = galaxy.disk_gas.rscale
        if rgas > 0.0:
            vgal = galaxy.disk_gas.sAM / rgas * constants.EAGLEJCONV
        else:
            # no gas disk yet: size set by the angular momentum of the cooling gas
            vmax = galaxy.vmax if galaxy.vmax > 0.0 else subhalo.vvir
            rgas = subhalo.cold_halo_gas.sAM / vmax * constants.EAGLEJCONV if vmax > 0.0 else 0.0
            vgal = vmax

        params = SolverParams(
            model=self,
            rgas=rgas,
            rstar=galaxy.disk_stars.rscale,
            mcoolrate=mcoolrate,
            jcold_halo=subhalo.cold_halo_gas.sAM,
            delta_t=delta_t,
            redshift=z,
            vsubh=subhalo.vvir,
            vgal=vgal,
            burst=False,
        )
        y0 = self.from_galaxy(subhalo, galaxy)
        y1, n_eval = self._integrate(y0, params)
        with self._counter_lock:
            self.galaxy_ode_evaluations += n_eval
        self.to_galaxy(y1, subhalo, galaxy, delta_t)

    def evolve_galaxy_starburst(
        self,
        subhalo: Subhalo,
        galaxy: Galaxy,
        z: float,
        delta_t: float,
        from_galaxy_merger: bool,
    ) -> None:
        """Evolve a starburst in the bulge of ``galaxy``.

        Cooling gas always settles in the disk, so the burst integration
        runs without cooling and without infalling angular momentum.
        ``from_galaxy_merger`` selects the budget the new stars go to.
        """

        rgas = galaxy.bulge_gas.rscale
        vgal = galaxy.bulge_gas.sAM / rgas if rgas > 0.0 else 0.0
        params = SolverParams(
            model=self,
            rgas=rgas,
            rstar=galaxy.bulge_stars.rscale,
            mcoolrate=0.0,
            jcold_halo=0.0,
            delta_t=delta_t,
            redshift=z,
            vsubh=subhalo.vvir,
            vgal=vgal,
            burst=True,
        )
        y0 = self.from_galaxy_starburst(subhalo, galaxy)
        y1, n_eval = self._integrate(y0, params)
        with self._counter_lock:
            self.galaxy_starburst_ode_evaluations += n_eval
        self.to_galaxy_starburst(y1, subhalo, galaxy, delta_t, from_galaxy_merger)

    @abstractmethod
    def from_galaxy(self, subhalo: Subhalo, galaxy: Galaxy) -> List[float]:
        """State vector of the quiescent disk integration."""

    @abstractmethod
    def to_galaxy(self, y: Sequence[float], subhalo: Subhalo, galaxy: Galaxy, delta_t: float) -> None:
        """Write the evolved disk state back."""

    @abstractmethod
    def from_galaxy_starburst(self, subhalo: Subhalo, galaxy: Galaxy) -> List[float]:
        """State vector of the starburst integration."""

    @abstractmethod
    def to_galaxy_starburst(
        self,
        y: Sequence[float],
        subhalo: Subhalo,
        galaxy: Galaxy,
        delta_t: float,
        from_galaxy_merger: bool,
    ) -> None:
        """Write the evolved bulge state back."""

    def get_galaxy_ode_evaluations(self) -> int:
        return self.galaxy_ode_evaluations

    def get_galaxy_starburst_ode_evaluations(self) -> int:
        return self.galaxy_starburst_ode_evaluations

    def reset_ode_evaluations(self) -> None:
        with self._counter_lock:
            self.galaxy_ode_evaluations = 0
            self.galaxy_starburst_ode_evaluations = 0


def basic_physicalmodel_evaluator(t: float, y: np.ndarray, f: np.ndarray, params: SolverParams) -> int:
    """Time derivatives of the 17 components of :class:`BasicPhysicalModel`.

    f[0]: stellar mass of the galaxy component.
    f[1]: cold gas mass of the galaxy component.
    f[2]: cold gas in the halo (the one cooling).
    f[3]: hot halo gas mass.
    f[4]: ejected gas mass.
    f[5]..f[9]: metals of each of the above.
    f[10]: stellar mass formed, before recycling.
    f[11]: metals locked in the stellar mass formed.
    f[12]..f[16]: angular momentum of the stars, cold gas, cooling gas,
    hot gas and ejected gas.
    """

    model = params.model
    R = model.recycling_parameters.recycle
    yield_ = model.recycling_parameters.yield_
    mcoolrate = params.mcoolrate

    zcold = model.gas_cooling_parameters.pre_enrich_z
    zhot = model.gas_cooling_parameters.pre_enrich_z
    jgas = 2.0 * params.vgal * params.rgas / constants.RDISK_HALF_SCALE

    if y[1] > 0.0 and y[6] > 0.0:
        zcold = y[6] / y[1]
        jgas = y[13] / y[1]
    if y[2] > 0.0 and y[7] > 0.0:
        zhot = y[7] / y[2]

    sfr, jrate = model.star_formation.star_formation_rate(
        y[1], y[0], params.rgas, params.rstar, zcold, params.redshift, params.burst, params.vgal, jgas
    )
    beta1, beta2, betaj1, betaj2 = model.stellar_feedback.outflow_rate(
        sfr, params.vsubh, params.vgal, params.redshift
    )

    rsub = 1.0 - R

    # mass
    f[0] = sfr * rsub
    f[1] = mcoolrate - (rsub + beta1) * sfr
    f[2] = -mcoolrate
    f[3] = (beta1 - beta2) * sfr
    f[4] = beta2 * sfr

    # metals
    f[5] = rsub * zcold * sfr
    f[6] = mcoolrate * zhot + sfr * (yield_ - (rsub + beta1) * zcold)
    f[7] = -mcoolrate * zhot
    f[8] = (beta1 - beta2) * zcold * sfr
    f[9] = beta2 * zcold * sfr

    f[10] = sfr
    f[11] = zcold * sfr

    # angular momentum
    f[12] = rsub * jrate
    f[13] = mcoolrate * params.jcold_halo - (rsub + betaj1) * jrate
    f[14] = -mcoolrate * params.jcold_halo
    f[15] = (betaj1 - betaj2) * jrate
    f[16] = betaj2 * jrate

    return 0


class BasicPhysicalModel(PhysicalModel):
    """Star formation, cooling, feedback, recycling and enrichment in 17 ODEs.

    y[0]: stellar mass, y[1]: cold gas mass, y[2]: cooling halo gas,
    y[3]: hot halo gas, y[4]: ejected gas, y[5..9]: metals of the same,
    y[10], y[11]: stellar mass and metals formed during the step,
    y[12..16]: angular momentum of stars, cold gas, cooling gas, hot gas
    and ejected gas.
    """

    NC = 17

    def __init__(
        self,
        ode_solver_precision: float,
        gas_cooling: GasCooling,
        stellar_feedback: StellarFeedback,
        star_formation: StarFormation,
        recycling_parameters: Recycling,
        gas_cooling_parameters: GasCoolingParameters,
        numerics: Numerics | None = None,
    ) -> None:
        super().__init__(ode_solver_precision, basic_physicalmodel_evaluator, gas_cooling, numerics)
        self.stellar_feedback = stellar_feedback
        self.star_formation = star_formation
        self.recycling_parameters = recycling_parameters
        self.gas_cooling_parameters = gas_cooling_parameters

    def reset_ode_evaluations(self) -> None:
        super().reset_ode_evaluations()
        self.star_formation.reset_integration_intervals()

    def get_star_formation_integration_intervals(self) -> int:
        return self.star_formation.get_integration_intervals()

    def from_galaxy(self, subhalo: Subhalo, galaxy: Galaxy) -> List[float]:
        return [
            galaxy.disk_stars.mass,
            galaxy.disk_gas.mass,
            subhalo.cold_halo_gas.mass,
            subhalo.hot_halo_gas.mass,
            subhalo.ejected_galaxy_gas.mass,
            galaxy.disk_stars.mass_metals,
            galaxy.disk_gas.mass_metals,
            subhalo.cold_halo_gas.mass_metals,
            subhalo.hot_halo_gas.mass_metals,
            subhalo.ejected_galaxy_gas.mass_metals,
            0.0,
            0.0,
            galaxy.disk_stars.angular_momentum(),
            galaxy.disk_gas.angular_momentum(),
            subhalo.cold_halo_gas.angular_momentum(),
            subhalo.hot_halo_gas.angular_momentum(),
            subhalo.ejected_galaxy_gas.angular_momentum(),
        ]

    def to_galaxy(self, y: Sequence[float], subhalo: Subhalo, galaxy: Galaxy, delta_t: float) -> None:
        if y[0] < galaxy.disk_stars.mass:
            raise PhysicsError("Galaxy decreased its stellar mass after disk star formation process.")

        galaxy.disk_stars.mass = y[0]
        galaxy.disk_gas.mass = y[1]
        subhalo.cold_halo_gas.mass = y[2]
        subhalo.hot_halo_gas.mass = y[3]
        subhalo.ejected_galaxy_gas.mass = y[4]

        galaxy.disk_stars.mass_metals = y[5]
        galaxy.disk_gas.mass_metals = y[6]
        subhalo.cold_halo_gas.mass_metals = y[7]
        subhalo.hot_halo_gas.mass_metals = y[8]
        subhalo.ejected_galaxy_gas.mass_metals = y[9]

        # average SFR and metallicity of the stars formed this step
        galaxy.sfr_disk += y[10] / delta_t
        galaxy.sfr_z_disk += y[11] / delta_t

        # angular momenta only replace the old ones when both are positive
        if y[12] > 0.0 and y[13] > 0.0:
            galaxy.disk_stars.sAM = _specific(y[12], galaxy.disk_stars.mass)
            galaxy.disk_gas.sAM = _specific(y[13], galaxy.disk_gas.mass)
            subhalo.cold_halo_gas.sAM = _specific(y[14], subhalo.cold_halo_gas.mass)
            subhalo.hot_halo_gas.sAM = _specific(y[15], subhalo.hot_halo_gas.mass)
            subhalo.ejected_galaxy_gas.sAM = _specific(y[16], subhalo.ejected_galaxy_gas.mass)

            vmax = galaxy.vmax if galaxy.vmax > 0.0 else subhalo.vvir
            if vmax <= 0.0:
                raise PhysicsError("Galaxy has no circular velocity to derive disk sizes from.")
            galaxy.disk_stars.rscale = galaxy.disk_stars.sAM / vmax * constants.EAGLEJCONV
            galaxy.disk_gas.rscale = galaxy.disk_gas.sAM / vmax * constants.EAGLEJCONV

            if galaxy.disk_stars.rscale <= constants.TOLERANCE and galaxy.disk_stars.mass > 0.0:
                raise PhysicsError(
                    f"Galaxy with extremely small size, rdisk_stars < {constants.TOLERANCE}, in physical model"
                )
            if math.isnan(galaxy.disk_gas.sAM) or math.isnan(galaxy.disk_gas.rscale):
                raise PhysicsError("rgas or sAM are NaN, cannot continue at physical model")

        reservoirs = (
            galaxy.disk_stars,
            galaxy.disk_gas,
            subhalo.cold_halo_gas,
            subhalo.hot_halo_gas,
            subhalo.ejected_galaxy_gas,
        )
        for baryon in reservoirs:
            _snap_reservoir(baryon)
        _check_metals(reservoirs)

    def from_galaxy_starburst(self, subhalo: Subhalo, galaxy: Galaxy) -> List[float]:
        # no cooling during bursts and angular momentum is not followed
        y = [0.0] * self.NC
        y[0] = galaxy.bulge_stars.mass
        y[1] = galaxy.bulge_gas.mass
        y[3] = subhalo.hot_halo_gas.mass
        y[4] = subhalo.ejected_galaxy_gas.mass
        y[5] = galaxy.bulge_stars.mass_metals
        y[6] = galaxy.bulge_gas.mass_metals
        y[8] = subhalo.hot_halo_gas.mass_metals
        y[9] = subhalo.ejected_galaxy_gas.mass_metals
        return y

    def to_galaxy_starburst(
        self,
        y: Sequence[float],
        subhalo: Subhalo,
        galaxy: Galaxy,
        delta_t: float,
        from_galaxy_merger: bool,
    ) -> None:
        if y[0] < galaxy.bulge_stars.mass:
            raise PhysicsError("Galaxy decreased its stellar mass after burst of star formation.")

        new_stars = y[0] - galaxy.bulge_stars.mass
        new_metals = y[5] - galaxy.bulge_stars.mass_metals
        if from_galaxy_merger:
            galaxy.galaxymergers_burst_stars.mass += new_stars
            galaxy.galaxymergers_burst_stars.mass_metals += new_metals
            galaxy.sfr_bulge_mergers += y[10] / delta_t
            galaxy.sfr_z_bulge_mergers += y[11] / delta_t
        else:
            galaxy.diskinstabilities_burst_stars.mass += new_stars
            galaxy.diskinstabilities_burst_stars.mass_metals += new_metals
            galaxy.sfr_bulge_diskins += y[10] / delta_t
            galaxy.sfr_z_bulge_diskins += y[11] / delta_t

        galaxy.bulge_stars.mass = y[0]
        galaxy.bulge_gas.mass = y[1]
        subhalo.hot_halo_gas.mass = y[3]
        subhalo.ejected_galaxy_gas.mass = y[4]

        galaxy.bulge_stars.mass_metals = y[5]
        galaxy.bulge_gas.mass_metals = y[6]
        subhalo.hot_halo_gas.mass_metals = y[8]
        subhalo.ejected_galaxy_gas.mass_metals = y[9]

        reservoirs = (
            galaxy.bulge_stars,
            galaxy.bulge_gas,
            subhalo.hot_halo_gas,
            subhalo.ejected_galaxy_gas,
        )
        for baryon in reservoirs:
            _snap_reservoir(baryon)
        _check_metals(reservoirs)


def _check_metals(reservoirs: Sequence[Baryon]) -> None:
    for baryon in reservoirs:
        if baryon.mass < baryon.mass_metals:
            raise PhysicsError(
                f"Galaxy has more mass in metals than total mass ({baryon.mass_metals:.6g} > {baryon.mass:.6g})."
            )


def make_physical_model(cfg: Config) -> BasicPhysicalModel:
    """Assemble the basic physical model from a validated configuration."""

    return BasicPhysicalModel(
        cfg.numerics.ode_solver_precision,
        GasCooling(cfg.gas_cooling),
        StellarFeedback(cfg.stellar_feedback),
        StarFormation(cfg.star_formation),
        cfg.recycling,
        cfg.gas_cooling,
        cfg.numerics,
    )
