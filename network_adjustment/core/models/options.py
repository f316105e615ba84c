"""
Adjustment options for geodetic network adjustment.

This module defines the per-call configuration of ``solve``: iteration
control, statistical parameters, robust estimation, correlation of
angular observations, exclusions and overrides, and diagnostic settings.

Options are passed explicitly to every solve; nothing here is global.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union


class RobustEstimator(Enum):
    """
    Robust estimation methods for outlier handling.

    - NONE: Standard least squares
    - HUBER: Huber's M-estimator (soft downweighting)
    - DANISH: Danish method (aggressive downweighting)
    - IGG3: IGG-III method (three-part with hard rejection)
    """
    NONE = "none"
    HUBER = "huber"
    DANISH = "danish"
    IGG3 = "igg3"


class CorrelationScope(Enum):
    """
    How angular observations are grouped into correlated blocks.

    - NONE: diagonal weights
    - SETUP: one block per occupied station
    - SETUP_SET: one block per (occupied station, set)
    - SETUP_SET_TYPE: one block per (occupied station, set, observation type)
    """
    NONE = "none"
    SETUP = "setup"
    SETUP_SET = "set"
    SETUP_SET_TYPE = "set_type"


class DirectionReduction(Enum):
    """
    Treatment of repeated direction readings.

    - REDUCE: face-pair and average readings to one direction per target
    - RAW: keep every reading, reject readings on the set's opposite face
    """
    REDUCE = "reduce"
    RAW = "raw"


ObservedValue = Union[float, Tuple[float, float]]


@dataclass(frozen=True)
class ObservationOverride:
    """
    Replacement value and/or sigma for one observation.

    ``value`` is a float, or a (dE, dN) pair for GPS vectors.
    """

    value: Optional[ObservedValue] = None
    sigma: Optional[float] = None

    def __post_init__(self):
        if self.sigma is not None and self.sigma <= 0:
            raise ValueError(f"Override sigma must be positive, got {self.sigma}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ObservationOverride":
        value = data.get("value")
        if isinstance(value, (list, tuple)):
            value = (float(value[0]), float(value[1]))
        elif value is not None:
            value = float(value)
        sigma = data.get("sigma")
        return cls(value=value, sigma=float(sigma) if sigma is not None else None)

    def to_dict(self) -> Dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"value": value, "sigma": self.sigma}


def _coerce_enum(enum_cls, value, default):
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).lower())


@dataclass
class AdjustmentOptions:
    """
    Configuration options for the adjustment.

    Attributes:
        max_iterations: Maximum Gauss-Newton iterations (default: 10)
        convergence_threshold: Max coordinate increment in meters (default: 1e-6)
        confidence_level: Confidence of the global test and ellipses (default: 0.95)
        a_priori_variance: A priori variance of unit weight (default: 1.0)
        alpha_local: Two-sided significance of the local test (default: 0.001)
        mdb_power: Test power for the MDB (default: 0.80)
        use_a_posteriori_variance: Scale covariances by the estimated variance factor

        Robust estimation:
        robust_estimator: NONE, HUBER, DANISH or IGG3
        huber_c / danish_c / igg3_k0 / igg3_k1: tuning constants
        robust_max_iterations: Maximum IRLS passes (default: 10)
        robust_tol: Stop when the largest weight change is below this (default: 1e-3)

        Stochastic model:
        correlation_scope: Grouping of correlated angular observations
        correlation_rho: Shared correlation coefficient within a group
        excluded_observations: Observation IDs left out of the solve
        overrides: Observation ID -> ObservationOverride

        Reductions:
        direction_reduction: REDUCE (face-paired means) or RAW
        curvature_refraction: Apply (1-k)d²/2R to zenith angles
        refraction_coefficient: Coefficient k (default: 0.13)
        map_scale_factor: Grid scale applied to horizontal distances

        Diagnostics:
        condition_threshold: Scaled condition number that raises a warning
        traverse_max_ppm: Linear misclosure limit in ppm
        traverse_angular_tolerance_arcsec: Angular limit per sqrt(stations)
        traverse_max_legs: Longest loop searched for
        suspect_limit: Number of ranked suspects kept
        what_if_candidates: Suspects re-solved without themselves
        max_workers: Threads for what-if re-solves (1 = sequential)
        relative_precision_pairs: Station pairs, None for every observed pair
    """

    max_iterations: int = 10
    convergence_threshold: float = 1e-6  # meters
    confidence_level: float = 0.95
    a_priori_variance: float = 1.0
    alpha_local: float = 0.001
    mdb_power: float = 0.80
    use_a_posteriori_variance: bool = True

    robust_estimator: RobustEstimator = RobustEstimator.NONE
    huber_c: float = 1.5
    danish_c: float = 2.0
    igg3_k0: float = 1.5
    igg3_k1: float = 3.0
    robust_max_iterations: int = 10
    robust_tol: float = 1e-3

    correlation_scope: CorrelationScope = CorrelationScope.NONE
    correlation_rho: float = 0.25
    excluded_observations: FrozenSet[str] = frozenset()
    overrides: Dict[str, ObservationOverride] = field(default_factory=dict)

    direction_reduction: DirectionReduction = DirectionReduction.REDUCE
    curvature_refraction: bool = False
    refraction_coefficient: float = 0.13
    map_scale_factor: float = 1.0

    condition_threshold: float = 1e10
    traverse_max_ppm: float = 100.0
    traverse_angular_tolerance_arcsec: float = 10.0
    traverse_max_legs: int = 12
    suspect_limit: int = 20
    what_if_candidates: int = 5
    max_workers: int = 1
    relative_precision_pairs: Optional[List[Tuple[str, str]]] = None

    def __post_init__(self):
        """Validate options after initialization."""
        self.robust_estimator = _coerce_enum(RobustEstimator, self.robust_estimator, RobustEstimator.NONE)
        self.correlation_scope = _coerce_enum(CorrelationScope, self.correlation_scope, CorrelationScope.NONE)
        self.direction_reduction = _coerce_enum(DirectionReduction, self.direction_reduction,
                                                DirectionReduction.REDUCE)
        self.excluded_observations = frozenset(self.excluded_observations)

        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.convergence_threshold <= 0:
            raise ValueError("convergence_threshold must be positive")
        if not 0 < self.confidence_level < 1:
            raise ValueError("confidence_level must be between 0 and 1")
        if self.a_priori_variance <= 0:
            raise ValueError("a_priori_variance must be positive")
        if not 0 < self.alpha_local < 1:
            raise ValueError("alpha_local must be between 0 and 1")
        if not 0 < self.mdb_power < 1:
            raise ValueError("mdb_power must be between 0 and 1")
        if self.robust_max_iterations < 1:
            raise ValueError("robust_max_iterations must be at least 1")
        if self.huber_c <= 0 or self.danish_c <= 0:
            raise ValueError("robust tuning constants must be positive")
        if not 0 < self.igg3_k0 < self.igg3_k1:
            raise ValueError("igg3 thresholds must satisfy 0 < k0 < k1")
        # Equal-correlation blocks are positive definite only for rho in (-1/(n-1), 1).
        if not 0.0 <= self.correlation_rho < 1.0:
            raise ValueError("correlation_rho must be in [0, 1)")
        if self.map_scale_factor <= 0:
            raise ValueError("map_scale_factor must be positive")
        if self.condition_threshold <= 1:
            raise ValueError("condition_threshold must be greater than 1")
        if self.traverse_max_ppm <= 0 or self.traverse_angular_tolerance_arcsec <= 0:
            raise ValueError("traverse thresholds must be positive")
        if self.traverse_max_legs < 3:
            raise ValueError("traverse_max_legs must be at least 3")
        if self.suspect_limit < 0 or self.what_if_candidates < 0:
            raise ValueError("suspect_limit and what_if_candidates cannot be negative")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.overrides = {
            str(k): v if isinstance(v, ObservationOverride) else ObservationOverride.from_dict(v)
            for k, v in self.overrides.items()
        }

    @property
    def alpha(self) -> float:
        """Significance level of the global test."""
        return 1.0 - self.confidence_level

    @property
    def is_robust(self) -> bool:
        return self.robust_estimator != RobustEstimator.NONE

    def sandbox(self, excluded_id: str) -> "AdjustmentOptions":
        """
        Copy for a what-if re-solve that also excludes ``excluded_id``.

        Nested what-if analysis is switched off in the copy.
        """
        return replace(
            self,
            excluded_observations=self.excluded_observations | {excluded_id},
            overrides=dict(self.overrides),
            what_if_candidates=0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_iterations": self.max_iterations,
            "convergence_threshold": self.convergence_threshold,
            "confidence_level": self.confidence_level,
            "a_priori_variance": self.a_priori_variance,
            "alpha_local": self.alpha_local,
            "mdb_power": self.mdb_power,
            "use_a_posteriori_variance": self.use_a_posteriori_variance,
            "robust_estimator": self.robust_estimator.value,
            "huber_c": self.huber_c,
            "danish_c": self.danish_c,
            "igg3_k0": self.igg3_k0,
            "igg3_k1": self.igg3_k1,
            "robust_max_iterations": self.robust_max_iterations,
            "robust_tol": self.robust_tol,
            "correlation_scope": self.correlation_scope.value,
            "correlation_rho": self.correlation_rho,
            "excluded_observations": sorted(self.excluded_observations),
            "overrides": {k: v.to_dict() for k, v in self.overrides.items()},
            "direction_reduction": self.direction_reduction.value,
            "curvature_refraction": self.curvature_refraction,
            "refraction_coefficient": self.refraction_coefficient,
            "map_scale_factor": self.map_scale_factor,
            "condition_threshold": self.condition_threshold,
            "traverse_max_ppm": self.traverse_max_ppm,
            "traverse_angular_tolerance_arcsec": self.traverse_angular_tolerance_arcsec,
            "traverse_max_legs": self.traverse_max_legs,
            "suspect_limit": self.suspect_limit,
            "what_if_candidates": self.what_if_candidates,
            "max_workers": self.max_workers,
            "relative_precision_pairs": (
                [list(p) for p in self.relative_precision_pairs]
                if self.relative_precision_pairs is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AdjustmentOptions":
        """
        Create AdjustmentOptions from a dictionary.

        Unknown keys are ignored; missing keys take their defaults.
        """
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "excluded_observations" in kwargs:
            kwargs["excluded_observations"] = frozenset(kwargs["excluded_observations"])
        if kwargs.get("relative_precision_pairs") is not None:
            kwargs["relative_precision_pairs"] = [
                (str(a), str(b)) for a, b in kwargs["relative_precision_pairs"]
            ]
        return cls(**kwargs)

    @classmethod
    def default(cls) -> "AdjustmentOptions":
        return cls()

    @classmethod
    def robust(cls, estimator: Union[str, RobustEstimator] = RobustEstimator.HUBER,
               **kwargs: Any) -> "AdjustmentOptions":
        """Options with robust re-weighting switched on."""
        return cls(robust_estimator=estimator, **kwargs)

    def __repr__(self) -> str:
        return (
            f"AdjustmentOptions("
            f"max_iter={self.max_iterations}, "
            f"conv={self.convergence_threshold}, "
            f"robust={self.robust_estimator.value}, "
            f"corr={self.correlation_scope.value})"
        )
