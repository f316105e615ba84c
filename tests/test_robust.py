"""Tests for robust estimation (IRLS)."""

from __future__ import annotations

import math

import numpy as np
import pytest

from network_adjustment import solve
from network_adjustment.core.models import (
    AdjustmentOptions,
    DistanceObservation,
    GpsObservation,
    Network,
    Station,
)
from network_adjustment.core.solver.problem import PreparedObservation
from network_adjustment.core.solver.robust import (
    compute_robust_weights,
    danish_weight,
    describe_method,
    get_weight_function,
    huber_weight,
    igg3_weight,
    iteration_record,
    observation_weight_factors,
)
from network_adjustment.core.solver.stochastic import resolve_sigma


# -----------------------------------------------------------------------------
# Weight function tests
# -----------------------------------------------------------------------------

class TestWeightFunctions:
    """Test robust weight functions."""

    def test_huber_weight_within_threshold(self):
        """Huber returns 1.0 for |w| <= c."""
        for w in [0.0, 0.5, 1.5, -1.0, -1.5]:
            assert huber_weight(w, 1.5) == 1.0

    def test_huber_weight_above_threshold(self):
        """Huber returns c/|w| for |w| > c."""
        assert huber_weight(3.0, 1.5) == pytest.approx(0.5)
        assert huber_weight(-2.5, 1.5) == pytest.approx(1.5 / 2.5)

    def test_danish_weight_above_threshold(self):
        # For w=4, weight = exp(-((4-2)/2)^2) = exp(-1)
        assert danish_weight(2.0, 2.0) == 1.0
        assert danish_weight(4.0, 2.0) == pytest.approx(math.exp(-1.0))

    def test_danish_weight_has_floor(self):
        assert danish_weight(1e3, 2.0) == 1e-10

    def test_igg3_weight_regions(self):
        """IGG-III: full weight, reduced weight, rejection."""
        assert igg3_weight(1.5, 1.5, 3.0) == 1.0
        expected = (1.5 / 2.0) * ((3.0 - 2.0) / (3.0 - 1.5)) ** 2
        assert igg3_weight(-2.0, 1.5, 3.0) == pytest.approx(expected)
        assert igg3_weight(3.0, 1.5, 3.0) == 1e-10
        assert igg3_weight(50.0, 1.5, 3.0) == 1e-10

    def test_igg3_weight_is_monotone(self):
        ws = np.linspace(0.0, 4.0, 41)
        weights = [igg3_weight(w) for w in ws]
        assert all(a >= b for a, b in zip(weights, weights[1:]))

    def test_compute_robust_weights_skips_non_finite(self):
        weights = compute_robust_weights(np.array([0.5, 3.0, np.nan, -np.inf]), huber_weight)
        np.testing.assert_allclose(weights, [1.0, 0.5, 1.0, 1.0])

    def test_get_weight_function(self):
        assert get_weight_function(AdjustmentOptions()) is None
        func = get_weight_function(AdjustmentOptions.robust("huber", huber_c=2.0))
        assert func(4.0) == pytest.approx(0.5)

    @pytest.mark.parametrize("method, text", [
        ("huber", "Huber (c=1.5)"),
        ("danish", "Danish (c=2.0)"),
        ("igg3", "IGG-III (k0=1.5, k1=3.0)"),
        ("none", "None (standard least squares)"),
    ])
    def test_describe_method(self, method, text):
        assert describe_method(AdjustmentOptions(robust_estimator=method)) == text


# -----------------------------------------------------------------------------
# Per-observation factors
# -----------------------------------------------------------------------------

class TestObservationFactors:

    def _prepared(self):
        dist = DistanceObservation(id="D", from_id="A", to_id="B", value=10.0, sigma=0.002)
        gps = GpsObservation(id="G", from_id="A", to_id="C", d_easting=1.0, d_northing=1.0, sigma=0.01)
        return [
            PreparedObservation(dist, dist, resolve_sigma(dist), 0, 1),
            PreparedObservation(gps, gps, resolve_sigma(gps), 1, 2),
        ]

    def test_gps_rows_share_the_worst_component(self):
        prepared = self._prepared()
        t = np.array([0.5, 0.2, -3.0])
        factors = observation_weight_factors(prepared, t, huber_weight)
        np.testing.assert_allclose(factors, [1.0, 0.5, 0.5])

    def test_iteration_record_counts_observations(self):
        prepared = self._prepared()
        factors = np.array([1.0, 0.5, 0.5])
        record = iteration_record(2, prepared, factors, np.ones(3), np.array([0.5, 0.2, -3.0]))
        assert record.iteration == 2
        assert record.downweighted == 1
        assert record.mean_weight == pytest.approx(0.75)
        assert record.min_weight == pytest.approx(0.5)
        assert record.max_abs_standardized == pytest.approx(3.0)
        assert record.max_weight_change == pytest.approx(0.5)


# -----------------------------------------------------------------------------
# IRLS adjustments
# -----------------------------------------------------------------------------

def _star_network(blunder: float = 0.05) -> Network:
    """Free station C observed by distances from six control stations 100 m away."""
    net = Network(name="star")
    for k in range(6):
        angle = math.radians(60.0 * k)
        net.add_station(Station.control(f"P{k}", 100.0 * math.sin(angle), 100.0 * math.cos(angle)))
    net.add_station(Station("C", 0.03, -0.02))
    for k in range(6):
        value = 100.0 + (blunder if k == 3 else 0.0)
        net.add_observation(DistanceObservation(
            id=f"d{k}", from_id=f"P{k}", to_id="C", value=value, sigma=0.005,
        ))
    return net


class TestRobustAdjustment:
    """A gross distance error is down-weighted but stays visible."""

    def test_standard_ls_has_no_robust_summary(self):
        result = solve(_star_network())
        assert result.robust is None
        assert all(o.robust_weight == 1.0 for o in result.observations)
        # Least squares spreads the blunder over C.
        assert abs(result.stations["C"].northing) > 0.01

    def test_exact_data_is_not_downweighted(self, reference_network):
        result = solve(reference_network, AdjustmentOptions.robust("huber"))
        assert result.robust.converged
        assert result.robust.final_downweighted == 0
        assert len(result.robust.iterations) == 1

    @pytest.mark.parametrize("method", ["huber", "danish", "igg3"])
    def test_blunder_downweighted(self, method):
        result = solve(_star_network(), AdjustmentOptions.robust(method))
        assert result.success
        assert result.robust.estimator == method
        assert result.robust.iterations
        sol = result.get_observation("d3")
        assert sol.robust_weight < 0.5
        assert sol.robust_weight == min(o.robust_weight for o in result.observations)
        assert abs(sol.standardized_residual) > result.critical_value
        assert not sol.local_test_passed
        assert result.robust.final_downweighted >= 1

    @pytest.mark.parametrize("method", ["danish", "igg3"])
    def test_redescending_methods_recover_truth(self, method):
        result = solve(_star_network(), AdjustmentOptions.robust(method))
        assert result.robust.converged
        assert result.stations["C"].easting == pytest.approx(0.0, abs=1e-4)
        assert result.stations["C"].northing == pytest.approx(0.0, abs=1e-4)
        assert result.get_observation("d3").residual == pytest.approx(0.05, abs=1e-3)

    def test_huber_on_reference_network(self, blundered_network):
        result = solve(blundered_network, AdjustmentOptions.robust("huber"))
        sol = result.get_observation("A3")
        assert sol.robust_weight < 0.5
        assert sol.robust_weight == min(o.robust_weight for o in result.observations)
        assert abs(sol.standardized_residual) > result.critical_value

    def test_robust_log(self):
        result = solve(_star_network(), AdjustmentOptions.robust("huber"))
        assert any(m.startswith("Robust estimation: Huber") for m in result.messages)
        assert any(m.startswith("IRLS pass 1:") for m in result.messages)
        assert any("down-weighted" in m for m in result.messages)

    def test_pass_limit(self):
        result = solve(_star_network(), AdjustmentOptions.robust("huber", robust_max_iterations=1))
        assert len(result.robust.iterations) == 1
        assert not result.robust.converged
        assert any("IRLS did not converge" in m for m in result.messages)

    def test_summary_serializes(self):
        data = solve(_star_network(), AdjustmentOptions.robust("danish")).to_dict()
        assert data["robust"]["estimator"] == "danish"
        assert data["robust"]["iterations"][0]["iteration"] == 1
