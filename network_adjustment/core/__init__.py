"""
Core module for network adjustment.

Pure Python and NumPy: no I/O, no global state. A parsed ``Network`` and
``AdjustmentOptions`` go in, an ``AdjustmentResult`` comes out.
"""

from .models import (
    Station,
    Instrument,
    Observation,
    ObservationType,
    SigmaSource,
    DistanceMode,
    DistanceObservation,
    AngleObservation,
    DirectionObservation,
    BearingObservation,
    ZenithObservation,
    GpsObservation,
    LevelingObservation,
    Sideshot,
    Network,
    UnresolvedStationError,
    AdjustmentOptions,
    ObservationOverride,
    RobustEstimator,
    CorrelationScope,
    DirectionReduction,
)

from .solver import solve, compute_observation, SingularSystemError, StochasticModelError

from .results import AdjustmentResult, SolvedObservation

from .geometry import ErrorEllipse

from .statistics import ChiSquareTestResult

from .validation import NetworkHealth, check_network

__all__ = [
    # Models
    "Station",
    "Instrument",
    "Observation",
    "ObservationType",
    "SigmaSource",
    "DistanceMode",
    "DistanceObservation",
    "AngleObservation",
    "DirectionObservation",
    "BearingObservation",
    "ZenithObservation",
    "GpsObservation",
    "LevelingObservation",
    "Sideshot",
    "Network",
    "UnresolvedStationError",
    "AdjustmentOptions",
    "ObservationOverride",
    "RobustEstimator",
    "CorrelationScope",
    "DirectionReduction",

    # Solver
    "solve",
    "compute_observation",
    "SingularSystemError",
    "StochasticModelError",

    # Results
    "AdjustmentResult",
    "SolvedObservation",
    "ErrorEllipse",
    "ChiSquareTestResult",

    # Validation
    "NetworkHealth",
    "check_network",
]
