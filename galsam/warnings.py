"""Structured warning classes for the :mod:`galsam` package."""
from __future__ import annotations


class GalSamWarning(UserWarning):
    """Base warning class for galsam."""


class PhysicsWarning(GalSamWarning):
    """Physical parameter or regime warnings."""


class NumericalWarning(GalSamWarning):
    """Numerical stability or accuracy warnings."""


class TreeWarning(GalSamWarning):
    """Merger-tree bookkeeping warnings."""


__all__ = [
    "GalSamWarning",
    "PhysicsWarning",
    "NumericalWarning",
    "TreeWarning",
]
