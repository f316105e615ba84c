"""
Observation classes for geodetic network adjustment.

Conventions:
- Angles: radians internally (conversion happens at the parser boundary)
- Azimuth: North = 0, clockwise positive
- Angle: measured clockwise at ``at_id`` from the ``from_id`` ray to the ``to_id`` ray
- Zenith angle: 0 at the zenith, π/2 on the horizon
- Distances and height differences: meters
- Standard deviations: meters for linear types, radians for angular types

Observation kinds form a closed set. Every consumer dispatches on the
concrete class and raises ``TypeError`` for anything it does not know, so
adding a kind forces every consumption site to be revisited.

Observations are frozen; overrides and reductions produce new instances.
"""

from __future__ import annotations

import math
from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Tuple


ARCSEC_PER_RADIAN = 180.0 * 3600.0 / math.pi

# Sigma assigned to observations that are fixed by definition.
FIXED_SIGMA = 1e-9


class ObservationType(Enum):
    """Enumeration of supported observation kinds."""
    DISTANCE = "distance"
    ANGLE = "angle"
    DIRECTION = "direction"
    BEARING = "bearing"
    ZENITH = "zenith"
    GPS = "gps"
    LEVELING = "leveling"


class SigmaSource(Enum):
    """Where an observation's standard deviation came from."""
    EXPLICIT = "explicit"    # given on the observation record
    OVERRIDE = "override"    # per-observation override in the configuration
    DEFAULT = "default"      # derived from the instrument
    FIXED = "fixed"          # fixed by definition, effectively no uncertainty


class DistanceMode(Enum):
    HORIZONTAL = "horizontal"
    SLOPE = "slope"


def arcseconds_to_radians(arcsec: float) -> float:
    return arcsec / ARCSEC_PER_RADIAN


def radians_to_arcseconds(rad: float) -> float:
    return rad * ARCSEC_PER_RADIAN


@dataclass(frozen=True)
class Observation(ABC):
    """
    Base class for all observation kinds.

    Attributes:
        id: Unique identifier (exclusion and override maps are keyed by it)
        instrument_code: Instrument used to derive a default sigma
        sigma: Explicit standard deviation, None to use the instrument
        fixed: Observation is fixed by definition (sigma source FIXED)
        source_line: Line of the input record, for traceability
        set_id: Measurement set the observation belongs to
    """

    obs_type: ClassVar[ObservationType]

    id: str
    instrument_code: str = ""
    sigma: Optional[float] = None
    fixed: bool = False
    source_line: Optional[int] = None
    set_id: str = ""

    def __post_init__(self):
        if not self.id:
            raise ValueError("Observation ID cannot be empty")
        if self.sigma is not None and self.sigma <= 0:
            raise ValueError(f"Standard deviation must be positive, got {self.sigma}")

    @property
    def stations(self) -> Tuple[str, ...]:
        """IDs of every station the observation references."""
        raise NotImplementedError

    @property
    def occupied_station(self) -> str:
        """Station the instrument was set up on."""
        raise NotImplementedError

    @property
    def is_angular(self) -> bool:
        return self.obs_type in (
            ObservationType.ANGLE,
            ObservationType.DIRECTION,
            ObservationType.BEARING,
            ObservationType.ZENITH,
        )

    @property
    def label(self) -> str:
        """Short "A-B" or "A-B-C" station label."""
        return "-".join(self.stations)

    def _check_pair(self, a: str, b: str) -> None:
        if not a or not b:
            raise ValueError(f"{self.obs_type.value} {self.id}: station IDs cannot be empty")
        if a == b:
            raise ValueError(f"{self.obs_type.value} {self.id}: stations cannot be the same ({a})")


@dataclass(frozen=True)
class DistanceObservation(Observation):
    """
    Distance between two stations.

    Horizontal distances are grid distances after the map scale factor is
    applied. Slope distances run from instrument height to target height.
    """

    obs_type: ClassVar[ObservationType] = ObservationType.DISTANCE

    from_id: str = ""
    to_id: str = ""
    value: float = 0.0
    mode: DistanceMode = DistanceMode.HORIZONTAL
    instrument_height: float = 0.0
    target_height: float = 0.0

    def __post_init__(self):
        super().__post_init__()
        self._check_pair(self.from_id, self.to_id)
        if isinstance(self.mode, str):
            object.__setattr__(self, "mode", DistanceMode(self.mode.lower()))
        if self.value <= 0:
            raise ValueError(f"Distance must be positive, got {self.value}")

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.from_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.from_id

    def __repr__(self) -> str:
        return f"DistanceObs({self.id}: {self.from_id}->{self.to_id}, {self.value:.4f}m)"


@dataclass(frozen=True)
class AngleObservation(Observation):
    """Horizontal angle at ``at_id``, clockwise from ``from_id`` to ``to_id``."""

    obs_type: ClassVar[ObservationType] = ObservationType.ANGLE

    at_id: str = ""
    from_id: str = ""
    to_id: str = ""
    value: float = 0.0

    def __post_init__(self):
        super().__post_init__()
        if not self.at_id or not self.from_id or not self.to_id:
            raise ValueError(f"angle {self.id}: station IDs cannot be empty")
        if len({self.at_id, self.from_id, self.to_id}) != 3:
            raise ValueError(f"angle {self.id}: at, from and to must be distinct stations")

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.at_id, self.from_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.at_id

    def __repr__(self) -> str:
        return f"AngleObs({self.id}: {self.from_id}<-{self.at_id}->{self.to_id}, {math.degrees(self.value):.6f}°)"


@dataclass(frozen=True)
class DirectionObservation(Observation):
    """
    Horizontal circle reading from ``at_id`` to ``to_id``.

    Readings of one set at one station share an orientation unknown, so a
    set ID reused at another setup gets its own orientation. ``face`` is
    1 or 2; face-2 readings differ from face-1 readings by π.
    """

    obs_type: ClassVar[ObservationType] = ObservationType.DIRECTION

    at_id: str = ""
    to_id: str = ""
    value: float = 0.0
    face: int = 1

    def __post_init__(self):
        super().__post_init__()
        self._check_pair(self.at_id, self.to_id)
        if self.face not in (1, 2):
            raise ValueError(f"direction {self.id}: face must be 1 or 2, got {self.face}")
        if not self.set_id:
            object.__setattr__(self, "set_id", f"SET_{self.at_id}")

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.at_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.at_id

    @property
    def orientation_key(self) -> Tuple[str, str]:
        """(set ID, occupied station) of the orientation unknown."""
        return (self.set_id, self.at_id)

    def __repr__(self) -> str:
        return f"DirectionObs({self.id}: {self.at_id}->{self.to_id}, set={self.set_id}, F{self.face})"


@dataclass(frozen=True)
class BearingObservation(Observation):
    """Grid azimuth from ``from_id`` to ``to_id`` (no orientation unknown)."""

    obs_type: ClassVar[ObservationType] = ObservationType.BEARING

    from_id: str = ""
    to_id: str = ""
    value: float = 0.0

    def __post_init__(self):
        super().__post_init__()
        self._check_pair(self.from_id, self.to_id)

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.from_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.from_id


@dataclass(frozen=True)
class ZenithObservation(Observation):
    """Zenith angle from instrument height at ``from_id`` to target height at ``to_id``."""

    obs_type: ClassVar[ObservationType] = ObservationType.ZENITH

    from_id: str = ""
    to_id: str = ""
    value: float = 0.0
    instrument_height: float = 0.0
    target_height: float = 0.0

    def __post_init__(self):
        super().__post_init__()
        self._check_pair(self.from_id, self.to_id)
        if not 0.0 < self.value < math.pi:
            raise ValueError(f"zenith {self.id}: value must be in (0, π), got {self.value}")

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.from_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.from_id


@dataclass(frozen=True)
class GpsObservation(Observation):
    """
    Planimetric GPS baseline vector (dE, dN) from ``from_id`` to ``to_id``.

    ``sigma`` is the easting sigma; ``sigma_northing`` defaults to it.
    ``correlation`` is the E/N correlation coefficient of the vector.
    """

    obs_type: ClassVar[ObservationType] = ObservationType.GPS

    from_id: str = ""
    to_id: str = ""
    d_easting: float = 0.0
    d_northing: float = 0.0
    sigma_northing: Optional[float] = None
    correlation: float = 0.0

    def __post_init__(self):
        super().__post_init__()
        self._check_pair(self.from_id, self.to_id)
        if self.sigma_northing is not None and self.sigma_northing <= 0:
            raise ValueError(f"gps {self.id}: sigma_northing must be positive")
        if not -1.0 < self.correlation < 1.0:
            raise ValueError(f"gps {self.id}: correlation must be in (-1, 1)")

    @property
    def value(self) -> Tuple[float, float]:
        return (self.d_easting, self.d_northing)

    @property
    def length(self) -> float:
        return math.hypot(self.d_easting, self.d_northing)

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.from_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.from_id

    def __repr__(self) -> str:
        return f"GpsObs({self.id}: {self.from_id}->{self.to_id}, dE={self.d_easting:.4f}, dN={self.d_northing:.4f})"


@dataclass(frozen=True)
class LevelingObservation(Observation):
    """Height difference H(to) - H(from) over a run of ``length_km`` kilometres."""

    obs_type: ClassVar[ObservationType] = ObservationType.LEVELING

    from_id: str = ""
    to_id: str = ""
    value: float = 0.0
    length_km: float = 0.0

    def __post_init__(self):
        super().__post_init__()
        self._check_pair(self.from_id, self.to_id)
        if self.length_km < 0:
            raise ValueError(f"leveling {self.id}: length cannot be negative")

    @property
    def stations(self) -> Tuple[str, ...]:
        return (self.from_id, self.to_id)

    @property
    def occupied_station(self) -> str:
        return self.from_id

    def __repr__(self) -> str:
        return f"LevelingObs({self.id}: {self.from_id}->{self.to_id}, {self.value:.4f}m)"


# Kinds whose equations involve easting/northing.
PLANIMETRIC_TYPES = (
    DistanceObservation,
    AngleObservation,
    DirectionObservation,
    BearingObservation,
    ZenithObservation,
    GpsObservation,
)


def equation_count(obs: Observation) -> int:
    """Number of rows an observation contributes to the design matrix."""
    if isinstance(obs, GpsObservation):
        return 2
    if isinstance(obs, (DistanceObservation, AngleObservation, DirectionObservation,
                        BearingObservation, ZenithObservation, LevelingObservation)):
        return 1
    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")


def involves_height(obs: Observation) -> bool:
    """True if the observation equation depends on station heights."""
    if isinstance(obs, (LevelingObservation, ZenithObservation)):
        return True
    if isinstance(obs, DistanceObservation):
        return obs.mode == DistanceMode.SLOPE
    if isinstance(obs, (AngleObservation, DirectionObservation, BearingObservation, GpsObservation)):
        return False
    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")


def involves_plan(obs: Observation) -> bool:
    """True if the observation equation depends on easting/northing."""
    if isinstance(obs, PLANIMETRIC_TYPES):
        return True
    if isinstance(obs, LevelingObservation):
        return False
    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")
