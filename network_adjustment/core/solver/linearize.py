"""network_adjustment.core.solver.linearize

Observation equations: predicted values and Jacobian rows.

For each observation kind the predicted (computed) value is a function of
station coordinates (E, N, H) and, for directions, the orientation unknown
of the set. The misclosure is observed - computed with angular misclosures
wrapped to (-π, π]. Partials w.r.t. fixed components are dropped by the
parameter index.

Reductions:
  - Horizontal distances are ground distances; the grid distance between
    the coordinates is divided by the map scale factor.
  - Zenith angles may include the combined curvature/refraction effect
    (1 - k) d² / 2R, which lowers the apparent target.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..models.observation import (
    AngleObservation,
    BearingObservation,
    DirectionObservation,
    DistanceMode,
    DistanceObservation,
    GpsObservation,
    LevelingObservation,
    Observation,
    ZenithObservation,
)
from ..models.options import AdjustmentOptions, ObservedValue
from .geometry import (
    EARTH_RADIUS,
    angle_at_point,
    angle_partials,
    azimuth,
    azimuth_partials,
    curvature_refraction,
    distance_partials,
    horizontal_distance,
    slope_distance,
    slope_distance_partials,
    wrap_2pi,
    wrap_pi,
    zenith_angle,
    zenith_partials,
)
from .indexing import OrientationKey, ParameterIndex


Coordinates = Mapping[str, Tuple[float, float, float]]

# Jacobian entry key: (station_id, 'E'|'N'|'H') or ('@', (set_id, station_id))
PartialKey = Tuple[str, Union[str, OrientationKey]]
Orientations = Mapping[OrientationKey, float]


@dataclass(frozen=True)
class ReductionSettings:
    """Reductions applied inside the observation equations."""

    map_scale_factor: float = 1.0
    curvature_refraction: bool = False
    refraction_coefficient: float = 0.13

    @classmethod
    def from_options(cls, options: AdjustmentOptions) -> "ReductionSettings":
        return cls(
            map_scale_factor=options.map_scale_factor,
            curvature_refraction=options.curvature_refraction,
            refraction_coefficient=options.refraction_coefficient,
        )


@dataclass
class Equation:
    """One design-matrix row before indexing."""

    misclosure: float
    partials: List[Tuple[PartialKey, float]]


def _plan_terms(sid: str, d_e: float, d_n: float) -> List[Tuple[PartialKey, float]]:
    return [((sid, "E"), d_e), ((sid, "N"), d_n)]


def _zenith_geometry(obs: ZenithObservation, coords: Coordinates,
                     settings: ReductionSettings) -> Tuple[float, float, float]:
    """(horizontal distance, effective height difference, d(dh)/d(hd))."""
    e1, n1, h1 = coords[obs.from_id]
    e2, n2, h2 = coords[obs.to_id]
    hd = horizontal_distance(e1, n1, e2, n2)
    dh = (h2 + obs.target_height) - (h1 + obs.instrument_height)
    ddh_dhd = 0.0
    if settings.curvature_refraction:
        k = settings.refraction_coefficient
        dh -= curvature_refraction(hd, k)
        ddh_dhd = -(1.0 - k) * hd / EARTH_RADIUS
    return hd, dh, ddh_dhd


def _slope_geometry(obs: DistanceObservation, coords: Coordinates) -> Tuple[float, float, float]:
    e1, n1, h1 = coords[obs.from_id]
    e2, n2, h2 = coords[obs.to_id]
    dh = (h2 + obs.target_height) - (h1 + obs.instrument_height)
    return e2 - e1, n2 - n1, dh


def compute_observation(
    obs: Observation,
    coords: Coordinates,
    orientations: Optional[Orientations] = None,
    settings: Optional[ReductionSettings] = None,
) -> ObservedValue:
    """Predict the value of ``obs`` from station coordinates.

    Args:
        obs: any observation kind
        coords: station ID -> (E, N, H)
        orientations: (set ID, station) -> orientation (0 when missing)
        settings: reductions (defaults to none)
    """
    settings = settings or ReductionSettings()

    if isinstance(obs, DistanceObservation):
        if obs.mode == DistanceMode.SLOPE:
            return slope_distance(*_slope_geometry(obs, coords))
        e1, n1, _ = coords[obs.from_id]
        e2, n2, _ = coords[obs.to_id]
        return horizontal_distance(e1, n1, e2, n2) / settings.map_scale_factor

    if isinstance(obs, AngleObservation):
        e_at, n_at, _ = coords[obs.at_id]
        e_from, n_from, _ = coords[obs.from_id]
        e_to, n_to, _ = coords[obs.to_id]
        return angle_at_point(e_at, n_at, e_from, n_from, e_to, n_to)

    if isinstance(obs, DirectionObservation):
        e1, n1, _ = coords[obs.at_id]
        e2, n2, _ = coords[obs.to_id]
        omega = (orientations or {}).get(obs.orientation_key, 0.0)
        return wrap_2pi(azimuth(e1, n1, e2, n2) + omega)

    if isinstance(obs, BearingObservation):
        e1, n1, _ = coords[obs.from_id]
        e2, n2, _ = coords[obs.to_id]
        return azimuth(e1, n1, e2, n2)

    if isinstance(obs, ZenithObservation):
        hd, dh, _ = _zenith_geometry(obs, coords, settings)
        return zenith_angle(hd, dh)

    if isinstance(obs, GpsObservation):
        e1, n1, _ = coords[obs.from_id]
        e2, n2, _ = coords[obs.to_id]
        return (e2 - e1, n2 - n1)

    if isinstance(obs, LevelingObservation):
        return coords[obs.to_id][2] - coords[obs.from_id][2]

    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")


def observation_equations(
    obs: Observation,
    coords: Coordinates,
    orientations: Orientations,
    settings: ReductionSettings,
) -> Tuple[ObservedValue, List[Equation]]:
    """Computed value and design-matrix rows of one observation."""
    computed = compute_observation(obs, coords, orientations, settings)

    if isinstance(obs, DistanceObservation):
        if obs.mode == DistanceMode.SLOPE:
            de, dn, dh = _slope_geometry(obs, coords)
            pe, pn, ph = slope_distance_partials(de, dn, dh)
            partials = (
                _plan_terms(obs.from_id, -pe, -pn) + _plan_terms(obs.to_id, pe, pn)
                + [((obs.from_id, "H"), -ph), ((obs.to_id, "H"), ph)]
            )
        else:
            e1, n1, _ = coords[obs.from_id]
            e2, n2, _ = coords[obs.to_id]
            s = 1.0 / settings.map_scale_factor
            de1, dn1, de2, dn2 = distance_partials(e1, n1, e2, n2)
            partials = _plan_terms(obs.from_id, s * de1, s * dn1) + _plan_terms(obs.to_id, s * de2, s * dn2)
        return computed, [Equation(obs.value - computed, partials)]

    if isinstance(obs, AngleObservation):
        e_at, n_at, _ = coords[obs.at_id]
        e_from, n_from, _ = coords[obs.from_id]
        e_to, n_to, _ = coords[obs.to_id]
        de_f, dn_f, de_a, dn_a, de_t, dn_t = angle_partials(e_at, n_at, e_from, n_from, e_to, n_to)
        partials = (
            _plan_terms(obs.from_id, de_f, dn_f)
            + _plan_terms(obs.at_id, de_a, dn_a)
            + _plan_terms(obs.to_id, de_t, dn_t)
        )
        return computed, [Equation(wrap_pi(obs.value - computed), partials)]

    if isinstance(obs, DirectionObservation):
        e1, n1, _ = coords[obs.at_id]
        e2, n2, _ = coords[obs.to_id]
        de1, dn1, de2, dn2 = azimuth_partials(e1, n1, e2, n2)
        partials = _plan_terms(obs.at_id, de1, dn1) + _plan_terms(obs.to_id, de2, dn2)
        partials.append((("@", obs.orientation_key), 1.0))
        return computed, [Equation(wrap_pi(obs.value - computed), partials)]

    if isinstance(obs, BearingObservation):
        e1, n1, _ = coords[obs.from_id]
        e2, n2, _ = coords[obs.to_id]
        de1, dn1, de2, dn2 = azimuth_partials(e1, n1, e2, n2)
        partials = _plan_terms(obs.from_id, de1, dn1) + _plan_terms(obs.to_id, de2, dn2)
        return computed, [Equation(wrap_pi(obs.value - computed), partials)]

    if isinstance(obs, ZenithObservation):
        e1, n1, _ = coords[obs.from_id]
        e2, n2, _ = coords[obs.to_id]
        hd, dh, ddh_dhd = _zenith_geometry(obs, coords, settings)
        dz_dhd, dz_ddh = zenith_partials(hd, dh)
        dz_dhd += dz_ddh * ddh_dhd
        de1, dn1, de2, dn2 = distance_partials(e1, n1, e2, n2)
        partials = (
            _plan_terms(obs.from_id, dz_dhd * de1, dz_dhd * dn1)
            + _plan_terms(obs.to_id, dz_dhd * de2, dz_dhd * dn2)
            + [((obs.from_id, "H"), -dz_ddh), ((obs.to_id, "H"), dz_ddh)]
        )
        return computed, [Equation(wrap_pi(obs.value - computed), partials)]

    if isinstance(obs, GpsObservation):
        c_e, c_n = computed
        rows = [
            Equation(obs.d_easting - c_e, [((obs.from_id, "E"), -1.0), ((obs.to_id, "E"), 1.0)]),
            Equation(obs.d_northing - c_n, [((obs.from_id, "N"), -1.0), ((obs.to_id, "N"), 1.0)]),
        ]
        return computed, rows

    if isinstance(obs, LevelingObservation):
        partials = [((obs.from_id, "H"), -1.0), ((obs.to_id, "H"), 1.0)]
        return computed, [Equation(obs.value - computed, partials)]

    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")


@dataclass
class SparseRow:
    """Non-zero partials of one design-matrix row."""

    cols: np.ndarray
    values: np.ndarray


@dataclass
class Linearization:
    """Design rows, misclosures and predictions at one state.

    ``rows[i]`` holds only the parameters row i touches, so the normal
    equations are accumulated without a dense design matrix. ``A`` is
    assembled on first access for the post-fit statistics.
    """

    rows: List[SparseRow]
    misclosure: np.ndarray
    computed: List[ObservedValue]
    num_params: int
    _dense: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def A(self) -> np.ndarray:
        if self._dense is None:
            A = np.zeros((len(self.rows), self.num_params), dtype=float)
            for i, row in enumerate(self.rows):
                A[i, row.cols] = row.values
            self._dense = A
        return self._dense


def _column(index: ParameterIndex, key: PartialKey) -> Optional[int]:
    if key[0] == "@":
        return index.orientation_index.get(key[1])
    return index.coord_index.get(key)


def _sparse_row(index: ParameterIndex, partials: Sequence[Tuple[PartialKey, float]]) -> SparseRow:
    entries: Dict[int, float] = {}
    for key, partial in partials:
        j = _column(index, key)
        if j is not None:
            entries[j] = entries.get(j, 0.0) + float(partial)
    cols = sorted(entries)
    return SparseRow(
        cols=np.array(cols, dtype=int),
        values=np.array([entries[j] for j in cols], dtype=float),
    )


def linearize(
    prepared: Sequence,
    coords: Coordinates,
    orientations: Orientations,
    index: ParameterIndex,
    num_rows: int,
    settings: ReductionSettings,
) -> Linearization:
    """Build the design rows and misclosure vector w.

    Args:
        prepared: items with ``obs`` and ``row`` (first design-matrix row)
        coords: current station coordinates
        orientations: current direction-set orientations
        index: parameter index
        num_rows: total number of design-matrix rows
    """
    empty = SparseRow(cols=np.zeros(0, dtype=int), values=np.zeros(0, dtype=float))
    rows: List[SparseRow] = [empty] * num_rows
    w = np.zeros(num_rows, dtype=float)
    computed: List[ObservedValue] = []

    for item in prepared:
        value, equations = observation_equations(item.obs, coords, orientations, settings)
        computed.append(value)
        for k, eq in enumerate(equations):
            w[item.row + k] = eq.misclosure
            rows[item.row + k] = _sparse_row(index, eq.partials)

    return Linearization(rows=rows, misclosure=w, computed=computed, num_params=index.num_params)


def initial_orientations(
    directions: Sequence[DirectionObservation],
    coords: Coordinates,
) -> Dict[OrientationKey, float]:
    """Start value of each set orientation: circular mean of (reading - azimuth)."""
    sums: Dict[OrientationKey, List[float]] = {}
    for obs in directions:
        e1, n1, _ = coords[obs.at_id]
        e2, n2, _ = coords[obs.to_id]
        if e1 == e2 and n1 == n2:
            continue
        offset = obs.value - azimuth(e1, n1, e2, n2)
        acc = sums.setdefault(obs.orientation_key, [0.0, 0.0])
        acc[0] += math.sin(offset)
        acc[1] += math.cos(offset)

    result: Dict[OrientationKey, float] = {}
    for obs in directions:
        key = obs.orientation_key
        if key in result:
            continue
        s, c = sums.get(key, (0.0, 0.0))
        result[key] = wrap_pi(math.atan2(s, c)) if (s or c) else 0.0
    return result
