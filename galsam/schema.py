"""Configuration schema for galaxy evolution runs.

This module defines Pydantic models that mirror the structure of the YAML
configuration files consumed by :func:`galsam.config_utils.load_config`.
Each block maps onto one physical collaborator (stellar feedback,
recycling, gas cooling, star formation) or onto the numerical and
execution settings of the snapshot driver.
"""
from __future__ import annotations

import logging
import math
import warnings
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from . import constants
from .errors import ConfigurationError
from .warnings import NumericalWarning

logger = logging.getLogger(__name__)

FEEDBACK_MODELS = ("FIRE", "GALFORM", "LGALAXIES", "LAGOS13", "LAGOS13Trunc", "GALFORMFIRE")


class StellarFeedback(BaseModel):
    """Parameters of the supernova-driven outflow model.

    ``model``, ``beta_disk`` and ``v_sn`` are required; the remaining
    parameters fall back to neutral values.
    """

    model: str = Field(..., description="One of FIRE, GALFORM, LGALAXIES, LAGOS13, LAGOS13Trunc, GALFORMFIRE")
    galaxy_scaling: bool = Field(
        False,
        description="Scale outflows with the galaxy velocity instead of the subhalo virial velocity.",
    )
    beta_disk: float = Field(..., description="Power-law index of the mass loading")
    v_sn: float = Field(..., gt=0.0, description="Characteristic supernova velocity [km/s]")
    eps_halo: float = Field(1.0, ge=0.0, description="Efficiency of energy coupling to the halo")
    eps_disk: float = Field(1.0, ge=0.0, description="Normalisation of the disk reheating loading")
    redshift_power: float = Field(0.0, description="Redshift exponent of the supernova velocity")
    vkin_sn: float = 0.0
    e_sn: float = Field(0.0, ge=0.0, description="Energy released per supernova [erg]")
    eta_cc: float = Field(0.0, ge=0.0, description="Core-collapse supernovae per unit stellar mass formed")
    epsilon_cc: float = Field(0.0, ge=0.0)
    beta_halo: float = 0.0

    @field_validator("model", mode="before")
    def _check_model(cls, value: Any) -> str:
        text = str(value).strip()
        if text not in FEEDBACK_MODELS:
            raise ConfigurationError(
                f"stellar_feedback.model option value invalid: {value}. "
                f"Supported values are {', '.join(FEEDBACK_MODELS)}"
            )
        return text

    @property
    def e_sn_msun_kms2(self) -> float:
        """Supernova energy coupled to the gas in Msun (km/s)^2."""

        return self.epsilon_cc * self.e_sn / constants.MSOLAR_G / constants.KILO**2


class Recycling(BaseModel):
    """Instantaneous recycling approximation."""

    model_config = ConfigDict(populate_by_name=True)

    recycle: float = Field(0.4588, ge=0.0, lt=1.0, description="Recycled fraction of newly formed stars")
    yield_: float = Field(0.0294, ge=0.0, alias="yield", description="Metal yield of newly formed stars")
    zsun: float = Field(0.018, gt=0.0)


class GasCooling(BaseModel):
    """Halo gas cooling and accretion settings."""

    pre_enrich_z: float = Field(1e-7, ge=0.0, description="Metallicity floor of pristine gas")
    tcooling_gyr: float = Field(1.0, gt=0.0, description="Cooling time of the hot halo gas [Gyr]")
    baryon_fraction: float = Field(0.157, ge=0.0, le=1.0)


class StarFormation(BaseModel):
    """Star formation efficiencies."""

    nu_sf: float = Field(0.5, ge=0.0, description="Quiescent star formation efficiency [Gyr^-1]")
    burst_timescale_min: float = Field(0.01, gt=0.0, description="Minimum starburst duration [Gyr]")
    burst_dynamical_factor: float = Field(10.0, gt=0.0)


class Numerics(BaseModel):
    """ODE solver controls."""

    ode_solver_precision: float = Field(0.05, gt=0.0, lt=1.0)
    ode_solver_atol: float = Field(1e-6, ge=0.0)
    ode_method: Literal["RK45", "RK23", "DOP853"] = "RK45"
    ode_max_steps: int = Field(100_000, ge=1)
    ode_min_step_fraction: float = Field(
        1e-12,
        ge=0.0,
        description="Sub-steps shorter than this fraction of the macro step count as stalled progress.",
    )

    @field_validator("ode_solver_atol")
    def _warn_zero_atol(cls, value: float) -> float:
        if value == 0.0:
            warnings.warn(
                "numerics.ode_solver_atol=0 leaves empty reservoirs under pure relative error "
                "control; expect forced completions.",
                NumericalWarning,
            )
        return value


class Execution(BaseModel):
    """Execution and bookkeeping switches."""

    n_workers: int = Field(1, ge=1)
    output_sf_histories: bool = False


class Simulation(BaseModel):
    """Snapshot time table supplied by the cosmology collaborator."""

    redshifts: List[float] = Field(..., min_length=2)
    ages_gyr: List[float] = Field(..., min_length=2)
    min_snapshot: int = Field(0, ge=0)
    max_snapshot: Optional[int] = None

    @model_validator(mode="after")
    def _check_tables(self) -> "Simulation":
        model = self
        if len(model.redshifts) != len(model.ages_gyr):
            raise ConfigurationError(
                f"simulation.redshifts ({len(model.redshifts)}) and simulation.ages_gyr "
                f"({len(model.ages_gyr)}) must have the same length"
            )
        for prev, cur in zip(model.ages_gyr, model.ages_gyr[1:]):
            if not (math.isfinite(cur) and cur > prev):
                raise ConfigurationError("simulation.ages_gyr must be strictly increasing")
        last = len(model.redshifts) - 1
        if model.max_snapshot is None:
            model.max_snapshot = last
        if not (model.min_snapshot < model.max_snapshot <= last):
            raise ConfigurationError(
                f"simulation snapshot window [{model.min_snapshot}, {model.max_snapshot}] "
                f"is not contained in the time table (last snapshot {last})"
            )
        return model

    def delta_t(self, snapshot: int) -> float:
        """Time elapsed between ``snapshot`` and ``snapshot + 1`` [Gyr]."""

        return self.ages_gyr[snapshot + 1] - self.ages_gyr[snapshot]

    def mean_age(self, snapshot: int) -> float:
        return 0.5 * (self.ages_gyr[snapshot] + self.ages_gyr[snapshot + 1])


class Config(BaseModel):
    """Top-level configuration object."""

    stellar_feedback: StellarFeedback
    recycling: Recycling = Recycling()
    gas_cooling: GasCooling = GasCooling()
    star_formation: StarFormation = StarFormation()
    numerics: Numerics = Numerics()
    execution: Execution = Execution()
    simulation: Simulation


__all__ = [
    "FEEDBACK_MODELS",
    "StellarFeedback",
    "Recycling",
    "GasCooling",
    "StarFormation",
    "Numerics",
    "Execution",
    "Simulation",
    "Config",
]
