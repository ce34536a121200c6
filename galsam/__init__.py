"""Core package for semi-analytic galaxy evolution."""
from . import constants
from .errors import GalSamError

__all__ = ["constants", "GalSamError"]
