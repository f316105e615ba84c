"""
Network Adjustment - least-squares adjustment of geodetic survey networks

Combines total-station angles, directions, distances, zenith angles and
bearings with GPS baseline vectors and leveling height differences, tied
to fixed control, in one weighted least-squares solve with full
statistical diagnostics.

Conventions:
- Angles: Radians internally, converted from/to degrees at I/O boundary
- Azimuth: North = 0, clockwise positive (standard surveying convention)
- Coordinates: Easting (X), Northing (Y) - right-handed system
- Distance: Meters; horizontal distances are ground distances
- Standard deviation: Meters for linear types, radians for angular types
- Station IDs: String type to allow alphanumeric station names
- Residuals: observed - computed
"""

__version__ = "1.0.0"

from .core.models import Station, Instrument, Network, Sideshot, AdjustmentOptions
from .core.models import (
    Observation,
    ObservationType,
    DistanceObservation,
    AngleObservation,
    DirectionObservation,
    BearingObservation,
    ZenithObservation,
    GpsObservation,
    LevelingObservation,
    UnresolvedStationError,
)
from .core.solver import solve, StochasticModelError
from .core.results import AdjustmentResult, SolvedObservation
from .core.geometry import ErrorEllipse
from .core.statistics import ChiSquareTestResult

__all__ = [
    # Version
    "__version__",

    # Models
    "Station",
    "Instrument",
    "Network",
    "Sideshot",
    "AdjustmentOptions",

    # Observations
    "Observation",
    "ObservationType",
    "DistanceObservation",
    "AngleObservation",
    "DirectionObservation",
    "BearingObservation",
    "ZenithObservation",
    "GpsObservation",
    "LevelingObservation",

    # Solver
    "solve",
    "UnresolvedStationError",
    "StochasticModelError",

    # Results
    "AdjustmentResult",
    "SolvedObservation",
    "ErrorEllipse",
    "ChiSquareTestResult",
]
