"""Supernova-driven outflows.

The outflow model returns mass loadings relative to the star formation
rate: ``beta1`` for gas reheated into the hot halo and ``beta2`` for gas
ejected beyond the halo.  The families of models differ only in how the
loading normalisation scales with the host velocity and redshift.
"""
from __future__ import annotations

import logging
import warnings
from typing import Callable, Dict, NamedTuple

from .. import constants
from ..errors import ConfigurationError
from ..schema import StellarFeedback as StellarFeedbackParameters
from ..warnings import PhysicsWarning

logger = logging.getLogger(__name__)

__all__ = ["FeedbackLoading", "StellarFeedback", "StellarFeedbackParameters"]


class FeedbackLoading(NamedTuple):
    """Mass and angular-momentum loadings of the outflow."""

    beta1: float
    beta2: float
    betaj1: float
    betaj2: float


_NO_OUTFLOW = FeedbackLoading(0.0, 0.0, 0.0, 0.0)


def _truncated_index(p: StellarFeedbackParameters, v: float) -> float:
    return 1.0 if v > p.v_sn else p.beta_disk


def _fire(p: StellarFeedbackParameters, v: float, z: float) -> float:
    return (1.0 + z) ** p.redshift_power * (p.v_sn / v) ** _truncated_index(p, v)


def _lagos13(p: StellarFeedbackParameters, v: float, z: float) -> float:
    return (p.v_sn * (1.0 + z) ** p.redshift_power / v) ** p.beta_disk


def _lagos13_trunc(p: StellarFeedbackParameters, v: float, z: float) -> float:
    return (p.v_sn * (1.0 + z) ** p.redshift_power / v) ** _truncated_index(p, v)


def _galform(p: StellarFeedbackParameters, v: float, z: float) -> float:
    return (p.v_sn / v) ** p.beta_disk


def _lgalaxies(p: StellarFeedbackParameters, v: float, z: float) -> float:
    return 0.5 + (p.v_sn / v) ** p.beta_disk


def _galform_fire(p: StellarFeedbackParameters, v: float, z: float) -> float:
    return (1.0 + z) ** p.redshift_power * (p.v_sn / v) ** p.beta_disk


# loading normalisation as a function of (parameters, velocity, redshift)
_NORMALISATIONS: Dict[str, Callable[[StellarFeedbackParameters, float, float], float]] = {
    "FIRE": _fire,
    "LAGOS13": _lagos13,
    "LAGOS13Trunc": _lagos13_trunc,
    "GALFORM": _galform,
    "LGALAXIES": _lgalaxies,
    "GALFORMFIRE": _galform_fire,
}


class StellarFeedback:
    """Evaluate outflow loadings for one of the supported parametrisations."""

    def __init__(self, parameters: StellarFeedbackParameters) -> None:
        try:
            self._normalise = _NORMALISATIONS[parameters.model]
        except KeyError:
            raise ConfigurationError(
                f"stellar_feedback.model option value invalid: {parameters.model}. "
                f"Supported values are {', '.join(_NORMALISATIONS)}"
            ) from None
        self.parameters = parameters
        if parameters.eps_halo == 0.0:
            # eps_halo = 0 zeroes both loadings
            warnings.warn(
                "stellar_feedback: eps_halo is zero; outflows are disabled.",
                PhysicsWarning,
            )

    def _normalisation(self, v: float, z: float) -> float:
        return self._normalise(self.parameters, v, z)

    def outflow_rate(self, sfr: float, vsubh: float, vgal: float, z: float) -> FeedbackLoading:
        """Return the outflow loadings for the given star formation rate.

        ``vsubh`` is the virial velocity of the host subhalo and ``vgal`` the
        circular velocity of the galaxy; ``galaxy_scaling`` selects which one
        drives the outflow.  The reheating loading is always strictly larger
        than the ejection loading when any outflow happens.
        """

        v = vgal if self.parameters.galaxy_scaling else vsubh
        if sfr <= 0.0 or v <= 0.0:
            return _NO_OUTFLOW

        const_sn = self._normalisation(v, z)
        vsn = 1.9 * v**1.1

        b1 = self.parameters.eps_disk * const_sn
        eps_halo = self.parameters.eps_halo * const_sn * 0.5 * vsn**2
        energ_halo = 0.5 * v**2

        mreheat = b1 * sfr
        mejected = eps_halo / energ_halo * sfr - mreheat

        b2 = 0.0
        if mejected > 0.0:
            b2 = mejected / sfr
            if b2 >= b1:
                b2 = b1
                b1 += constants.EPS3
        else:
            # not enough energy to unbind gas: everything is reheated
            b1 = eps_halo / energ_halo

        # outflows carry the specific angular momentum of the gas they remove
        return FeedbackLoading(b1, b2, b1, b2)
