"""Tests for observation geometry, design-matrix rows and normal equations.

Jacobian rows are checked against central finite differences of
``compute_observation`` for every observation kind.
"""

from __future__ import annotations

import math
from collections import defaultdict

import numpy as np
import pytest

from network_adjustment.core.models import (
    AdjustmentOptions,
    AngleObservation,
    BearingObservation,
    CorrelationScope,
    DirectionObservation,
    DistanceObservation,
    GpsObservation,
    LevelingObservation,
    Station,
    ZenithObservation,
)
from network_adjustment.core.solver.correlation import build_weight_blocks
from network_adjustment.core.solver.geometry import (
    angle_at_point,
    azimuth,
    curvature_refraction,
    wrap_2pi,
    wrap_pi,
)
from network_adjustment.core.solver.indexing import build_parameter_index
from network_adjustment.core.solver.linearize import (
    ReductionSettings,
    compute_observation,
    initial_orientations,
    linearize,
    observation_equations,
)
from network_adjustment.core.solver.normal_equations import (
    NormalEquations,
    SingularSystemError,
    solve_normal_equations,
)
from network_adjustment.core.solver.problem import prepare_problem


COORDS = {
    "A": (1000.0, 2000.0, 100.0),
    "B": (1300.0, 2400.0, 130.0),
    "C": (900.0, 2500.0, 95.0),
}
ORIENTATIONS = {("S1", "A"): 0.7}
SETTINGS = ReductionSettings(map_scale_factor=0.9996, curvature_refraction=True,
                             refraction_coefficient=0.13)

OBSERVATIONS = [
    DistanceObservation(id="hd", from_id="A", to_id="B", value=500.0),
    DistanceObservation(id="sd", from_id="A", to_id="B", value=500.0, mode="slope",
                        instrument_height=1.5, target_height=1.8),
    AngleObservation(id="ang", at_id="A", from_id="B", to_id="C", value=1.0),
    DirectionObservation(id="dir", at_id="A", to_id="C", value=1.0, set_id="S1"),
    BearingObservation(id="brg", from_id="B", to_id="C", value=1.0),
    ZenithObservation(id="zen", from_id="A", to_id="B", value=1.5,
                      instrument_height=1.5, target_height=1.8),
    GpsObservation(id="gps", from_id="A", to_id="C", d_easting=-100.0, d_northing=500.0),
    LevelingObservation(id="lev", from_id="B", to_id="C", value=-35.0),
]


def _shifted(key, h):
    coords = dict(COORDS)
    orientations = dict(ORIENTATIONS)
    if key[0] == "@":
        orientations[key[1]] += h
    else:
        sid, comp = key
        e, n, ht = coords[sid]
        delta = {"E": (h, 0.0, 0.0), "N": (0.0, h, 0.0), "H": (0.0, 0.0, h)}[comp]
        coords[sid] = (e + delta[0], n + delta[1], ht + delta[2])
    return coords, orientations


def _numeric_partial(obs, key, row):
    h = 1e-6 if key[0] == "@" else 1e-3
    values = []
    for sign in (1.0, -1.0):
        coords, orientations = _shifted(key, sign * h)
        value = compute_observation(obs, coords, orientations, SETTINGS)
        values.append(value[row] if isinstance(value, tuple) else value)
    diff = values[0] - values[1]
    if obs.is_angular:
        diff = wrap_pi(diff)
    return diff / (2.0 * h)


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

class TestGeometry:

    @pytest.mark.parametrize("de, dn, expected", [
        (0.0, 1.0, 0.0),
        (1.0, 0.0, 90.0),
        (0.0, -1.0, 180.0),
        (-1.0, 0.0, 270.0),
        (1.0, 1.0, 45.0),
    ])
    def test_azimuth_quadrants(self, de, dn, expected):
        assert math.degrees(azimuth(0.0, 0.0, de, dn)) == pytest.approx(expected)

    def test_wrap(self):
        assert wrap_pi(math.pi) == pytest.approx(math.pi)
        assert wrap_pi(-math.pi) == pytest.approx(math.pi)
        assert wrap_pi(3 * math.pi / 2) == pytest.approx(-math.pi / 2)
        assert wrap_2pi(-0.1) == pytest.approx(2 * math.pi - 0.1)
        assert 0.0 <= wrap_2pi(2 * math.pi) < 2 * math.pi

    def test_angle_is_clockwise(self):
        # From north to east, measured clockwise, is 90°.
        angle = angle_at_point(0.0, 0.0, 0.0, 10.0, 10.0, 0.0)
        assert math.degrees(angle) == pytest.approx(90.0)
        assert math.degrees(angle_at_point(0.0, 0.0, 10.0, 0.0, 0.0, 10.0)) == pytest.approx(270.0)

    def test_curvature_refraction_magnitude(self):
        # About 6.8 cm over one kilometre with k = 0.13.
        assert curvature_refraction(1000.0, 0.13) == pytest.approx(0.0682, abs=1e-4)


# ---------------------------------------------------------------------------
# Observation equations
# ---------------------------------------------------------------------------

class TestJacobian:
    """Analytic partials agree with finite differences."""

    @pytest.mark.parametrize("obs", OBSERVATIONS, ids=lambda o: o.id)
    def test_partials_match_finite_differences(self, obs):
        _, equations = observation_equations(obs, COORDS, ORIENTATIONS, SETTINGS)
        keys = [(sid, comp) for sid in COORDS for comp in "ENH"] + [("@", ("S1", "A"))]

        for row, eq in enumerate(equations):
            analytic = defaultdict(float)
            for key, partial in eq.partials:
                analytic[key] += partial
            for key in keys:
                numeric = _numeric_partial(obs, key, row)
                assert analytic.get(key, 0.0) == pytest.approx(numeric, rel=1e-5, abs=1e-9), key

    def test_gps_has_two_rows(self):
        _, equations = observation_equations(OBSERVATIONS[6], COORDS, ORIENTATIONS, SETTINGS)
        assert len(equations) == 2
        assert equations[0].misclosure == pytest.approx(0.0)
        assert equations[1].misclosure == pytest.approx(0.0)

    def test_angular_misclosure_is_wrapped(self):
        az = azimuth(*COORDS["B"][:2], *COORDS["C"][:2])
        obs = BearingObservation(id="b", from_id="B", to_id="C", value=az + 2 * math.pi - 1e-6)
        _, equations = observation_equations(obs, COORDS, {}, ReductionSettings())
        assert equations[0].misclosure == pytest.approx(-1e-6, abs=1e-12)

    def test_map_scale_reduces_ground_distance(self):
        grid = math.hypot(300.0, 400.0)
        ground = compute_observation(OBSERVATIONS[0], COORDS, settings=SETTINGS)
        assert ground == pytest.approx(grid / 0.9996)

    def test_refraction_lowers_target(self):
        plain = compute_observation(OBSERVATIONS[5], COORDS, settings=ReductionSettings())
        reduced = compute_observation(OBSERVATIONS[5], COORDS, settings=SETTINGS)
        assert reduced > plain

    def test_coincident_stations_rejected(self):
        coords = dict(COORDS, C=COORDS["A"])
        obs = DistanceObservation(id="x", from_id="A", to_id="C", value=1.0)
        with pytest.raises(ValueError):
            observation_equations(obs, coords, {}, ReductionSettings())

    def test_unknown_kind_rejected(self):
        with pytest.raises(TypeError):
            compute_observation(object(), COORDS)

    def test_initial_orientation_is_circular_mean(self):
        az_b = azimuth(*COORDS["A"][:2], *COORDS["B"][:2])
        az_c = azimuth(*COORDS["A"][:2], *COORDS["C"][:2])
        readings = [
            DirectionObservation(id="r1", at_id="A", to_id="B", value=wrap_2pi(az_b - 0.2), set_id="S"),
            DirectionObservation(id="r2", at_id="A", to_id="C", value=wrap_2pi(az_c - 0.2), set_id="S"),
        ]
        assert initial_orientations(readings, COORDS)[("S", "A")] == pytest.approx(-0.2)


# ---------------------------------------------------------------------------
# Parameter index
# ---------------------------------------------------------------------------

class TestParameterIndex:

    def test_ordering(self):
        stations = {
            "P2": Station("P2", 0.0, 0.0),
            "P1": Station("P1", 1.0, 1.0),
            "K": Station.control("K", 2.0, 2.0),
            "BM": Station("BM", 0.0, 0.0, fixed_height=True),
            "H1": Station("H1", 5.0, 5.0),
        }
        observations = [
            DistanceObservation(id="d1", from_id="K", to_id="P1", value=1.0),
            DirectionObservation(id="r1", at_id="P2", to_id="P1", value=1.0, set_id="Z"),
            DirectionObservation(id="r2", at_id="K", to_id="P2", value=1.0, set_id="A"),
            LevelingObservation(id="l1", from_id="BM", to_id="H1", value=0.1),
        ]
        index = build_parameter_index(stations, observations)
        assert index.coord_order == [("H1", "H"), ("P1", "E"), ("P1", "N"), ("P2", "E"), ("P2", "N")]
        assert index.orientation_order == [("A", "K"), ("Z", "P2")]
        assert index.num_params == 7
        assert index.orientation_index[("Z", "P2")] == 6
        assert index.get("K", "E") is None
        assert index.parameter_group(6) == "@Z@P2"
        assert index.label(0) == "H1.H"


# ---------------------------------------------------------------------------
# Normal equations
# ---------------------------------------------------------------------------

class TestNormalEquations:

    def test_sparse_accumulation_matches_dense_product(self, quad_network):
        options = AdjustmentOptions(correlation_scope=CorrelationScope.SETUP, correlation_rho=0.3)
        problem = prepare_problem(quad_network, options)
        working = [p.obs for p in problem.observations]
        index = build_parameter_index(quad_network.stations, working)
        coords = {sid: (s.easting, s.northing, s.height) for sid, s in quad_network.stations.items()}
        lin = linearize(problem.observations, coords, {}, index, problem.num_rows, problem.settings)
        blocks, _ = build_weight_blocks(problem.observations, options.correlation_scope,
                                        options.correlation_rho)

        W = np.zeros((problem.num_rows, problem.num_rows))
        for b in blocks:
            W[np.ix_(b.rows, b.rows)] = b.weight

        normal = NormalEquations(index)
        normal.accumulate(lin.rows, lin.misclosure, blocks)
        np.testing.assert_allclose(normal.to_dense(), lin.A.T @ W @ lin.A, rtol=1e-10, atol=1e-6)
        np.testing.assert_allclose(normal.rhs, lin.A.T @ W @ lin.misclosure, rtol=1e-10, atol=1e-6)
        # Two free stations, both linked: C-C, D-D and C-D.
        assert normal.block_count == 3

    def test_solve_recovers_increment(self, quad_network):
        index = build_parameter_index(quad_network.stations, quad_network.observations)
        rng = np.random.default_rng(7)
        M = rng.normal(size=(10, index.num_params))
        N = M.T @ M
        dx_true = rng.normal(size=index.num_params)
        dx, cond = solve_normal_equations(N, N @ dx_true, index)
        np.testing.assert_allclose(dx, dx_true, rtol=1e-8)
        assert cond >= 1.0

    def test_undetermined_parameter(self, quad_network):
        index = build_parameter_index(quad_network.stations, quad_network.observations)
        N = np.eye(index.num_params)
        N[1, 1] = 0.0
        with pytest.raises(SingularSystemError, match="C.N"):
            solve_normal_equations(N, np.zeros(index.num_params), index)

    def test_rank_deficient(self, quad_network):
        index = build_parameter_index(quad_network.stations, quad_network.observations)
        v = np.ones(index.num_params)
        with pytest.raises(SingularSystemError):
            solve_normal_equations(np.outer(v, v), v, index)

    def test_condition_check_can_be_skipped(self, quad_network):
        index = build_parameter_index(quad_network.stations, quad_network.observations)
        rng = np.random.default_rng(11)
        M = rng.normal(size=(10, index.num_params))
        N = M.T @ M
        dx_true = rng.normal(size=index.num_params)
        dx, cond = solve_normal_equations(N, N @ dx_true, index, check_condition=False)
        assert cond is None
        np.testing.assert_allclose(dx, dx_true, rtol=1e-8)

    def test_rank_deficient_without_condition_check(self, quad_network):
        index = build_parameter_index(quad_network.stations, quad_network.observations)
        v = np.ones(index.num_params)
        with pytest.raises(SingularSystemError, match="positive definite"):
            solve_normal_equations(np.outer(v, v), v, index, check_condition=False)

    def test_rows_touch_only_their_stations(self, quad_network):
        options = AdjustmentOptions()
        problem = prepare_problem(quad_network, options)
        working = [p.obs for p in problem.observations]
        index = build_parameter_index(quad_network.stations, working)
        coords = {sid: (s.easting, s.northing, s.height) for sid, s in quad_network.stations.items()}
        lin = linearize(problem.observations, coords, {}, index, problem.num_rows, problem.settings)

        assert len(lin.rows) == problem.num_rows
        dense = np.zeros((problem.num_rows, index.num_params))
        for r, row in enumerate(lin.rows):
            assert row.cols.size <= 6
            assert np.all(np.diff(row.cols) > 0)
            dense[r, row.cols] = row.values
        np.testing.assert_array_equal(lin.A, dense)
        assert sum(row.cols.size for row in lin.rows) < problem.num_rows * index.num_params
