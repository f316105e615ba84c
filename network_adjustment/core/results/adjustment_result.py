"""
Adjustment result classes for geodetic network adjustment.

This module defines the output data structures of ``solve``: adjusted
stations, solved observations, global statistics and the derived
diagnostics.

A ``SolvedObservation`` pairs the untouched source observation with the
values computed for it, so solving never writes into the input network.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..models.observation import Observation, ObservationType, SigmaSource
from ..models.options import ObservedValue
from ..models.station import Station
from ..statistics.tests import ChiSquareTestResult
from .diagnostics import (
    CorrelationSummary,
    DirectionReject,
    DirectionRepeatability,
    DirectionSetSummary,
    DirectionTargetSummary,
    RelativePrecision,
    RobustSummary,
    SetupSummary,
    SideshotResult,
    Suspect,
    TraverseLoop,
    TraverseSummary,
    TypeSummary,
    WhatIfImpact,
    json_safe,
)


def _value_to_json(value: Any) -> Any:
    if isinstance(value, tuple):
        return [json_safe(float(v)) for v in value]
    if value is None:
        return None
    return json_safe(float(value))


@dataclass(frozen=True)
class SolvedObservation:
    """
    Post-adjustment values of one observation.

    Scalar observations carry floats. GPS vectors carry (dE, dN) tuples for
    ``observed``, ``computed`` and ``residual`` and per-component tuples for
    the statistics; the scalar ``standardized_residual``, ``redundancy``,
    ``mdb`` and ``external_reliability`` then summarize both components
    (the larger |t|, the summed redundancy, the larger MDB and shift).

    Attributes:
        source: The observation as supplied (never modified)
        observed: Value used in the adjustment (override applied)
        computed: Value predicted from the adjusted coordinates
        residual: observed - computed (angles wrapped to (-π, π])
        standardized_residual: Baarda w-test statistic
        redundancy: Redundancy number r = (Qvv W)_ii
        local_test_passed: |t| within the local critical value
        mdb: Minimal detectable bias (inf when r = 0)
        external_reliability: Largest coordinate shift from an MDB-sized bias
        sigma: Standard deviation used (easting sigma for GPS)
        sigma_source: Where the sigma came from
        robust_weight: Final IRLS weight factor (1.0 without robust estimation)
        row: First design-matrix row
    """

    source: Observation
    observed: ObservedValue
    computed: ObservedValue
    residual: ObservedValue
    standardized_residual: float
    redundancy: float
    local_test_passed: bool
    mdb: float
    external_reliability: float
    sigma: float
    sigma_source: SigmaSource
    robust_weight: float = 1.0
    row: int = 0
    standardized_components: Tuple[float, ...] = ()
    redundancy_components: Tuple[float, ...] = ()
    mdb_components: Tuple[float, ...] = ()

    @property
    def id(self) -> str:
        return self.source.id

    @property
    def obs_type(self) -> ObservationType:
        return self.source.obs_type

    @property
    def label(self) -> str:
        return self.source.label

    @property
    def flagged(self) -> bool:
        return not self.local_test_passed

    @property
    def is_angular(self) -> bool:
        return self.source.is_angular

    def to_dict(self) -> Dict[str, Any]:
        return {
            "obs_id": self.id,
            "obs_type": self.obs_type.value,
            "stations": list(self.source.stations),
            "source_line": self.source.source_line,
            "observed": _value_to_json(self.observed),
            "computed": _value_to_json(self.computed),
            "residual": _value_to_json(self.residual),
            "standardized_residual": json_safe(self.standardized_residual),
            "standardized_components": [json_safe(t) for t in self.standardized_components],
            "redundancy": json_safe(self.redundancy),
            "redundancy_components": [json_safe(r) for r in self.redundancy_components],
            "local_test_passed": self.local_test_passed,
            "mdb": json_safe(self.mdb),
            "mdb_components": [json_safe(v) for v in self.mdb_components],
            "external_reliability": json_safe(self.external_reliability),
            "sigma": json_safe(self.sigma),
            "sigma_source": self.sigma_source.value,
            "robust_weight": json_safe(self.robust_weight),
        }


@dataclass
class AdjustmentResult:
    """
    Complete results from a least-squares adjustment.

    Attributes:
        success: False only when no solution could be computed at all
        converged: True if the iteration met the convergence threshold
        cancelled: True if the solve was stopped by its cancel event
        iterations: Number of Gauss-Newton iterations performed
        stations: Adjusted stations with sigmas and error ellipses
        observations: Solved observations in adjustment order
        seuw: Standard error of unit weight
        variance_factor: vᵀWv / dof (1.0 without redundancy)
        degrees_of_freedom: m - n
        chi_square_test: Global test of the variance factor
        condition_number: Scaled condition number of the normal matrix
        condition_warning: condition_number above the configured threshold
        covariance: Parameter covariance matrix (parameter_order rows)
        orientations: Direction-set orientation per (set_id, station_id)
        parameter_order: (station_id, 'E'|'N'|'H') or ('@', 'set_id@station_id') per row
        messages: Audit log
        error_message: Description of a failure
    """

    success: bool = True
    converged: bool = False
    cancelled: bool = False
    iterations: int = 0

    stations: Dict[str, Station] = field(default_factory=dict)
    observations: List[SolvedObservation] = field(default_factory=list)
    orientations: Dict[Tuple[str, str], float] = field(default_factory=dict)

    seuw: float = 1.0
    variance_factor: float = 1.0
    degrees_of_freedom: int = 0
    vtpv: float = 0.0
    chi_square_test: Optional[ChiSquareTestResult] = None
    condition_number: Optional[float] = None
    condition_warning: bool = False
    critical_value: float = 0.0

    covariance: Optional[np.ndarray] = None
    parameter_order: List[Tuple[str, str]] = field(default_factory=list)

    robust: Optional[RobustSummary] = None
    correlation: Optional[CorrelationSummary] = None
    traverse_loops: List[TraverseLoop] = field(default_factory=list)
    traverse_summary: Optional[TraverseSummary] = None
    direction_sets: List[DirectionSetSummary] = field(default_factory=list)
    direction_targets: List[DirectionTargetSummary] = field(default_factory=list)
    direction_repeatability: List[DirectionRepeatability] = field(default_factory=list)
    direction_rejects: List[DirectionReject] = field(default_factory=list)
    setups: List[SetupSummary] = field(default_factory=list)
    suspects: List[Suspect] = field(default_factory=list)
    what_if: List[WhatIfImpact] = field(default_factory=list)
    sideshots: List[SideshotResult] = field(default_factory=list)
    relative_precision: List[RelativePrecision] = field(default_factory=list)
    type_summary: List[TypeSummary] = field(default_factory=list)
    excluded_observations: List[str] = field(default_factory=list)

    messages: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    network_name: str = ""

    @property
    def max_abs_standardized(self) -> float:
        values = [abs(o.standardized_residual) for o in self.observations
                  if math.isfinite(o.standardized_residual)]
        return max(values) if values else 0.0

    @property
    def flagged_observations(self) -> List[str]:
        return [o.id for o in self.observations if o.flagged]

    @property
    def redundancy_sum(self) -> float:
        return float(sum(o.redundancy for o in self.observations))

    def get_observation(self, obs_id: str) -> SolvedObservation:
        """
        Raises:
            KeyError: If obs_id was not part of the adjustment
        """
        for obs in self.observations:
            if obs.id == obs_id:
                return obs
        raise KeyError(f"Observation '{obs_id}' not in results")

    def get_station(self, station_id: str) -> Station:
        if station_id not in self.stations:
            raise KeyError(f"Station '{station_id}' not in results")
        return self.stations[station_id]

    def station_covariance(self, station_id: str) -> Optional[np.ndarray]:
        """2x2 E/N covariance block of a station, None if not estimated."""
        if self.covariance is None:
            return None
        try:
            ie = self.parameter_order.index((station_id, "E"))
            in_ = self.parameter_order.index((station_id, "N"))
        except ValueError:
            return None
        return self.covariance[np.ix_([ie, in_], [ie, in_])]

    @classmethod
    def failure(cls, error_message: str, messages: Optional[List[str]] = None,
                **kwargs: Any) -> "AdjustmentResult":
        """Result of a solve that produced no solution."""
        msgs = list(messages or [])
        if error_message not in msgs:
            msgs.append(error_message)
        return cls(
            success=False,
            converged=False,
            error_message=error_message,
            messages=msgs,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize adjustment result to a JSON-safe dictionary."""
        return {
            "network_name": self.network_name,
            "adjustment": {
                "success": self.success,
                "converged": self.converged,
                "cancelled": self.cancelled,
                "iterations": self.iterations,
                "degrees_of_freedom": self.degrees_of_freedom,
                "vtpv": json_safe(self.vtpv),
                "variance_factor": json_safe(self.variance_factor),
                "seuw": json_safe(self.seuw),
                "condition_number": json_safe(self.condition_number),
                "condition_warning": self.condition_warning,
                "critical_value": self.critical_value,
                "error_message": self.error_message,
                "excluded_observations": list(self.excluded_observations),
            },
            "global_test": self.chi_square_test.to_dict() if self.chi_square_test else None,
            "stations": [s.to_dict() for s in self.stations.values()],
            "orientations": {
                f"{set_id}@{sid}": json_safe(v) for (set_id, sid), v in self.orientations.items()
            },
            "observations": [o.to_dict() for o in self.observations],
            "robust": self.robust.to_dict() if self.robust else None,
            "correlation": self.correlation.to_dict() if self.correlation else None,
            "traverse": {
                "summary": self.traverse_summary.to_dict() if self.traverse_summary else None,
                "loops": [t.to_dict() for t in self.traverse_loops],
            },
            "direction_sets": {
                "sets": [d.to_dict() for d in self.direction_sets],
                "targets": [d.to_dict() for d in self.direction_targets],
                "repeatability": [d.to_dict() for d in self.direction_repeatability],
                "rejects": [d.to_dict() for d in self.direction_rejects],
            },
            "setups": [s.to_dict() for s in self.setups],
            "suspects": [s.to_dict() for s in self.suspects],
            "what_if": [w.to_dict() for w in self.what_if],
            "sideshots": [s.to_dict() for s in self.sideshots],
            "relative_precision": [r.to_dict() for r in self.relative_precision],
            "type_summary": [t.to_dict() for t in self.type_summary],
            "messages": list(self.messages),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __repr__(self) -> str:
        return (
            f"AdjustmentResult(success={self.success}, converged={self.converged}, "
            f"iterations={self.iterations}, dof={self.degrees_of_freedom}, "
            f"seuw={self.seuw:.4f})"
        )
