"""
Diagnostic records attached to an adjustment result.

Plain dataclasses with ``to_dict`` serializers. They are produced fresh by
every solve and carry no references back into the solver state.
Angular quantities that are reported for humans are in arc-seconds and the
field names say so.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..geometry.ellipse import ErrorEllipse


def json_safe(value: Any) -> Any:
    """Convert non-JSON-safe floats (nan/inf) to None."""
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value


def _safe_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: json_safe(v) for k, v in data.items()}


# ---------------------------------------------------------------------------
# Robust estimation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RobustIteration:
    """One IRLS re-weighting pass."""

    iteration: int
    mean_weight: float
    min_weight: float
    max_abs_standardized: float
    downweighted: int
    max_weight_change: float

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "iteration": self.iteration,
            "mean_weight": self.mean_weight,
            "min_weight": self.min_weight,
            "max_abs_standardized": self.max_abs_standardized,
            "downweighted": self.downweighted,
            "max_weight_change": self.max_weight_change,
        })


@dataclass
class RobustSummary:
    """Outcome of the robust re-weighting loop."""

    estimator: str
    description: str
    converged: bool
    iterations: List[RobustIteration] = field(default_factory=list)

    @property
    def final_downweighted(self) -> int:
        return self.iterations[-1].downweighted if self.iterations else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimator": self.estimator,
            "description": self.description,
            "converged": self.converged,
            "iterations": [it.to_dict() for it in self.iterations],
        }


# ---------------------------------------------------------------------------
# Correlated stochastic model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CorrelationSummary:
    """Shape of the correlated angular blocks (validation only)."""

    enabled: bool
    scope: str
    rho: float
    group_count: int = 0
    equation_count: int = 0
    pair_count: int = 0
    max_group_size: int = 0
    mean_abs_off_diagonal_weight: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "enabled": self.enabled,
            "scope": self.scope,
            "rho": self.rho,
            "group_count": self.group_count,
            "equation_count": self.equation_count,
            "pair_count": self.pair_count,
            "max_group_size": self.max_group_size,
            "mean_abs_off_diagonal_weight": self.mean_abs_off_diagonal_weight,
        })


# ---------------------------------------------------------------------------
# Traverse closures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TraverseLoop:
    """
    Closure of one loop of distance legs joined by observed angles.

    ``closure_ratio`` is N in 1:N (infinite for an exact closure).
    """

    stations: Tuple[str, ...]
    observation_ids: Tuple[str, ...]
    length: float
    delta_easting: float
    delta_northing: float
    linear_misclosure: float
    angular_misclosure_arcsec: float
    angular_tolerance_arcsec: float
    closure_ratio: float
    ppm: float
    passed: bool
    severity: float

    @property
    def legs(self) -> int:
        return len(self.stations)

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "stations": list(self.stations),
            "observation_ids": list(self.observation_ids),
            "legs": self.legs,
            "length_m": self.length,
            "delta_easting_m": self.delta_easting,
            "delta_northing_m": self.delta_northing,
            "linear_misclosure_m": self.linear_misclosure,
            "angular_misclosure_arcsec": self.angular_misclosure_arcsec,
            "angular_tolerance_arcsec": self.angular_tolerance_arcsec,
            "closure_ratio": self.closure_ratio,
            "ppm": self.ppm,
            "passed": self.passed,
            "severity": self.severity,
        })


@dataclass(frozen=True)
class TraverseSummary:
    closure_count: int
    total_distance: float
    worst_ppm: float
    max_ppm: float
    angular_tolerance_arcsec: float
    failed_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "closure_count": self.closure_count,
            "total_distance_m": self.total_distance,
            "worst_ppm": self.worst_ppm,
            "max_ppm": self.max_ppm,
            "angular_tolerance_arcsec": self.angular_tolerance_arcsec,
            "failed_count": self.failed_count,
        })


# ---------------------------------------------------------------------------
# Direction sets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DirectionSetSummary:
    """Reduction of one direction set."""

    set_id: str
    occupied_id: str
    mode: str
    raw_count: int
    reduced_count: int
    face1_count: int
    face2_count: int
    paired_targets: int
    rejected_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "set_id": self.set_id,
            "occupied_id": self.occupied_id,
            "mode": self.mode,
            "raw_count": self.raw_count,
            "reduced_count": self.reduced_count,
            "face1_count": self.face1_count,
            "face2_count": self.face2_count,
            "paired_targets": self.paired_targets,
            "rejected_count": self.rejected_count,
        }


@dataclass
class DirectionTargetSummary:
    """
    One reduced direction (set, occupied station, target).

    ``residual_arcsec`` and ``standardized`` are filled in after the
    adjustment; ``suspect_score`` combines spread, face-pair delta and |t|.
    """

    set_id: str
    occupied_id: str
    target_id: str
    observation_id: str
    raw_count: int
    face1_count: int
    face2_count: int
    reduced_value: float
    reduced_sigma: float
    raw_spread_arcsec: float
    raw_max_residual_arcsec: float
    face_pair_delta_arcsec: Optional[float] = None
    face1_spread_arcsec: Optional[float] = None
    face2_spread_arcsec: Optional[float] = None
    residual_arcsec: Optional[float] = None
    standardized: Optional[float] = None
    suspect_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "set_id": self.set_id,
            "occupied_id": self.occupied_id,
            "target_id": self.target_id,
            "observation_id": self.observation_id,
            "raw_count": self.raw_count,
            "face1_count": self.face1_count,
            "face2_count": self.face2_count,
            "reduced_value_rad": self.reduced_value,
            "reduced_sigma_rad": self.reduced_sigma,
            "raw_spread_arcsec": self.raw_spread_arcsec,
            "raw_max_residual_arcsec": self.raw_max_residual_arcsec,
            "face_pair_delta_arcsec": self.face_pair_delta_arcsec,
            "face1_spread_arcsec": self.face1_spread_arcsec,
            "face2_spread_arcsec": self.face2_spread_arcsec,
            "residual_arcsec": self.residual_arcsec,
            "standardized": self.standardized,
            "suspect_score": self.suspect_score,
        })


@dataclass(frozen=True)
class DirectionRepeatability:
    """Repeatability of one (occupied station, target) pair across sets."""

    occupied_id: str
    target_id: str
    set_count: int
    mean_raw_spread_arcsec: float
    max_raw_spread_arcsec: float
    max_face_pair_delta_arcsec: Optional[float]
    max_abs_standardized: Optional[float]
    suspect_score: float

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "occupied_id": self.occupied_id,
            "target_id": self.target_id,
            "set_count": self.set_count,
            "mean_raw_spread_arcsec": self.mean_raw_spread_arcsec,
            "max_raw_spread_arcsec": self.max_raw_spread_arcsec,
            "max_face_pair_delta_arcsec": self.max_face_pair_delta_arcsec,
            "max_abs_standardized": self.max_abs_standardized,
            "suspect_score": self.suspect_score,
        })


@dataclass(frozen=True)
class DirectionReject:
    """A direction reading or set that did not enter the adjustment."""

    set_id: str
    occupied_id: str
    reason: str
    detail: str
    target_id: Optional[str] = None
    observation_id: Optional[str] = None
    source_line: Optional[int] = None
    expected_face: Optional[int] = None
    actual_face: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "set_id": self.set_id,
            "occupied_id": self.occupied_id,
            "reason": self.reason,
            "detail": self.detail,
            "target_id": self.target_id,
            "observation_id": self.observation_id,
            "source_line": self.source_line,
            "expected_face": self.expected_face,
            "actual_face": self.actual_face,
        }


# ---------------------------------------------------------------------------
# Setups, suspects, what-if
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SetupSummary:
    """Aggregate of the observations taken from one occupied station."""

    station_id: str
    counts: Dict[str, int]
    orientation_rms_arcsec: Optional[float]
    rms_standardized: float
    max_abs_standardized: float
    local_fail_count: int
    worst_observation_id: Optional[str] = None
    worst_type: Optional[str] = None
    worst_stations: Optional[str] = None

    @property
    def observation_count(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "station_id": self.station_id,
            "counts": dict(self.counts),
            "observation_count": self.observation_count,
            "orientation_rms_arcsec": self.orientation_rms_arcsec,
            "rms_standardized": self.rms_standardized,
            "max_abs_standardized": self.max_abs_standardized,
            "local_fail_count": self.local_fail_count,
            "worst_observation_id": self.worst_observation_id,
            "worst_type": self.worst_type,
            "worst_stations": self.worst_stations,
        })


@dataclass(frozen=True)
class Suspect:
    """A ranked likely-blunder candidate."""

    rank: int
    observation_id: str
    obs_type: str
    stations: str
    standardized: float
    redundancy: float
    mdb: float
    local_failed: bool
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "rank": self.rank,
            "observation_id": self.observation_id,
            "obs_type": self.obs_type,
            "stations": self.stations,
            "standardized": self.standardized,
            "redundancy": self.redundancy,
            "mdb": self.mdb,
            "local_failed": self.local_failed,
            "score": self.score,
        })


@dataclass(frozen=True)
class WhatIfImpact:
    """Effect of re-solving the network without one observation."""

    observation_id: str
    obs_type: str
    success: bool
    converged: bool
    seuw_before: float
    seuw_after: Optional[float] = None
    max_abs_t_before: float = 0.0
    max_abs_t_after: Optional[float] = None
    chi_square_before: Optional[str] = None
    chi_square_after: Optional[str] = None
    max_coordinate_shift: Optional[float] = None
    shifted_station: Optional[str] = None
    score: float = 0.0
    message: str = ""

    @property
    def delta_seuw(self) -> Optional[float]:
        if self.seuw_after is None:
            return None
        return self.seuw_after - self.seuw_before

    @property
    def delta_max_abs_t(self) -> Optional[float]:
        if self.max_abs_t_after is None:
            return None
        return self.max_abs_t_after - self.max_abs_t_before

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "observation_id": self.observation_id,
            "obs_type": self.obs_type,
            "success": self.success,
            "converged": self.converged,
            "seuw_before": self.seuw_before,
            "seuw_after": self.seuw_after,
            "delta_seuw": self.delta_seuw,
            "max_abs_t_before": self.max_abs_t_before,
            "max_abs_t_after": self.max_abs_t_after,
            "delta_max_abs_t": self.delta_max_abs_t,
            "chi_square_before": self.chi_square_before,
            "chi_square_after": self.chi_square_after,
            "max_coordinate_shift_m": self.max_coordinate_shift,
            "shifted_station": self.shifted_station,
            "score": self.score,
            "message": self.message,
        })


# ---------------------------------------------------------------------------
# Sideshots, relative precision, per-type summary
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SideshotResult:
    """Computed coordinates of one sideshot."""

    id: str
    occupied_id: str
    target_id: str
    has_azimuth: bool
    azimuth_source: Optional[str] = None
    azimuth: Optional[float] = None
    horizontal_distance: Optional[float] = None
    easting: Optional[float] = None
    northing: Optional[float] = None
    height: Optional[float] = None
    sigma_easting: Optional[float] = None
    sigma_northing: Optional[float] = None
    sigma_height: Optional[float] = None
    source_line: Optional[int] = None
    note: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _safe_dict({
            "id": self.id,
            "occupied_id": self.occupied_id,
            "target_id": self.target_id,
            "has_azimuth": self.has_azimuth,
            "azimuth_source": self.azimuth_source,
            "azimuth_rad": self.azimuth,
            "horizontal_distance_m": self.horizontal_distance,
            "easting": self.easting,
            "northing": self.northing,
            "height": self.height,
            "sigma_easting": self.sigma_easting,
            "sigma_northing": self.sigma_northing,
            "sigma_height": self.sigma_height,
            "source_line": self.source_line,
            "note": self.note,
        })


@dataclass(frozen=True)
class RelativePrecision:
    """Precision of the coordinate difference between two stations."""

    from_id: str
    to_id: str
    distance: float
    azimuth: float
    sigma_distance: float
    sigma_azimuth_arcsec: float
    ellipse: ErrorEllipse
    observed: bool = True

    @property
    def ppm(self) -> float:
        if self.distance <= 0.0:
            return math.inf
        return self.sigma_distance / self.distance * 1e6

    def to_dict(self) -> Dict[str, Any]:
        data = _safe_dict({
            "from_id": self.from_id,
            "to_id": self.to_id,
            "distance_m": self.distance,
            "azimuth_rad": self.azimuth,
            "sigma_distance_m": self.sigma_distance,
            "sigma_azimuth_arcsec": self.sigma_azimuth_arcsec,
            "ppm": self.ppm,
            "observed": self.observed,
        })
        data["ellipse"] = self.ellipse.to_dict()
        return data


@dataclass(frozen=True)
class TypeSummary:
    """Residual statistics of one observation type."""

    obs_type: str
    count: int
    rms_standardized: float
    max_abs_standardized: float
    fail_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "obs_type": self.obs_type,
            "count": self.count,
            "rms_standardized": self.rms_standardized,
            "max_abs_standardized": self.max_abs_standardized,
            "fail_count": self.fail_count,
        }
