"""network_adjustment.core.solver

Least-squares solver: stochastic model, weight blocks, linearization,
normal equations, iteration and the ``solve`` entry point.
"""

from .adjustment import solve
from .audit import AuditLog
from .correlation import WeightBlock, build_weight_blocks
from .geometry import azimuth, horizontal_distance, wrap_2pi, wrap_pi
from .indexing import ParameterIndex, build_parameter_index
from .linearize import ReductionSettings, compute_observation, linearize
from .normal_equations import NormalEquations, SingularSystemError
from .robust import danish_weight, huber_weight, igg3_weight
from .stochastic import SigmaResolution, StochasticModelError, resolve_sigma

__all__ = [
    "solve",
    "AuditLog",
    "WeightBlock",
    "build_weight_blocks",
    "azimuth",
    "horizontal_distance",
    "wrap_2pi",
    "wrap_pi",
    "ParameterIndex",
    "build_parameter_index",
    "ReductionSettings",
    "compute_observation",
    "linearize",
    "NormalEquations",
    "SingularSystemError",
    "danish_weight",
    "huber_weight",
    "igg3_weight",
    "SigmaResolution",
    "StochasticModelError",
    "resolve_sigma",
]
