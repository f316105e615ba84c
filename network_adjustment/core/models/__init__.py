"""Data models for geodetic network adjustment."""

from .station import Station, HeightType
from .instrument import Instrument, InstrumentLibrary
from .observation import (
    ObservationType,
    SigmaSource,
    DistanceMode,
    Observation,
    DistanceObservation,
    AngleObservation,
    DirectionObservation,
    BearingObservation,
    ZenithObservation,
    GpsObservation,
    LevelingObservation,
    FIXED_SIGMA,
    arcseconds_to_radians,
    radians_to_arcseconds,
)
from .sideshot import Sideshot
from .network import Network, UnresolvedStationError
from .options import (
    AdjustmentOptions,
    ObservationOverride,
    RobustEstimator,
    CorrelationScope,
    DirectionReduction,
)

__all__ = [
    "Station",
    "HeightType",
    "Instrument",
    "InstrumentLibrary",
    "ObservationType",
    "SigmaSource",
    "DistanceMode",
    "Observation",
    "DistanceObservation",
    "AngleObservation",
    "DirectionObservation",
    "BearingObservation",
    "ZenithObservation",
    "GpsObservation",
    "LevelingObservation",
    "FIXED_SIGMA",
    "arcseconds_to_radians",
    "radians_to_arcseconds",
    "Sideshot",
    "Network",
    "UnresolvedStationError",
    "AdjustmentOptions",
    "ObservationOverride",
    "RobustEstimator",
    "CorrelationScope",
    "DirectionReduction",
]
