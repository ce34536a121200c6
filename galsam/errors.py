"""Custom exceptions for the :mod:`galsam` package."""
from __future__ import annotations


class GalSamError(Exception):
    """Base exception for galaxy evolution errors."""


class ConfigurationError(GalSamError, ValueError):
    """Invalid or incomplete configuration detected before any evolution starts."""


class PhysicsError(GalSamError, ValueError):
    """Raised when an evolved reservoir ends up in a non-physical state."""


class StateVectorError(PhysicsError):
    """The marshalled state vector does not match the model dimension."""


class NumericalError(GalSamError, RuntimeError):
    """Unrecoverable failure of the ODE integration."""


class TreeError(GalSamError, ValueError):
    """Merger-tree invariants violated while building or walking the tree."""


__all__ = [
    "GalSamError",
    "ConfigurationError",
    "PhysicsError",
    "StateVectorError",
    "NumericalError",
    "TreeError",
]
