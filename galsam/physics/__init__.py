"""Physics modules for galaxy evolution."""
from . import gas_cooling, ode_solver, physical_model, star_formation, stellar_feedback
from .ode_solver import ODESolver
from .physical_model import BasicPhysicalModel, PhysicalModel, SolverParams, make_physical_model
from .stellar_feedback import FeedbackLoading, StellarFeedback

__all__ = [
    "gas_cooling",
    "ode_solver",
    "physical_model",
    "star_formation",
    "stellar_feedback",
    "ODESolver",
    "PhysicalModel",
    "BasicPhysicalModel",
    "SolverParams",
    "make_physical_model",
    "FeedbackLoading",
    "StellarFeedback",
]
