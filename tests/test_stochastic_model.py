"""Tests for sigma resolution, overrides and the block weight model."""

from __future__ import annotations

import math

import numpy as np
import pytest

from network_adjustment.core.models import (
    AngleObservation,
    CorrelationScope,
    DirectionObservation,
    DistanceObservation,
    FIXED_SIGMA,
    GpsObservation,
    Instrument,
    LevelingObservation,
    ObservationOverride,
    SigmaSource,
    ZenithObservation,
    arcseconds_to_radians,
)
from network_adjustment.core.models.observation import equation_count
from network_adjustment.core.solver.correlation import build_weight_blocks, effective_blocks
from network_adjustment.core.solver.problem import PreparedObservation
from network_adjustment.core.solver.stochastic import (
    SigmaResolution,
    StochasticModelError,
    apply_override,
    resolve_for,
    resolve_sigma,
)


@pytest.fixture
def total_station() -> Instrument:
    return Instrument(code="TS", edm_ppm=2.0, edm_constant=0.002, angle_sigma_arcsec=3.0)


@pytest.fixture
def gps_receiver() -> Instrument:
    return Instrument(code="GNSS", gps_sigma_xy=0.01)


def _prepared(observations, sigmas):
    items = []
    row = 0
    for obs, sigma in zip(observations, sigmas):
        size = equation_count(obs)
        items.append(PreparedObservation(obs, obs, sigma, row, size))
        row += size
    return items, row


# ---------------------------------------------------------------------------
# Instrument-derived sigmas
# ---------------------------------------------------------------------------

class TestInstrumentSigmas:

    def test_distance_ppm_and_constant_in_quadrature(self, total_station):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=1000.0, instrument_code="TS")
        res = resolve_sigma(obs, total_station)
        assert res.source == SigmaSource.DEFAULT
        assert res.sigma == pytest.approx(math.hypot(0.002, 0.002))

    @pytest.mark.parametrize("obs", [
        AngleObservation(id="A", at_id="A", from_id="B", to_id="C", value=1.0),
        DirectionObservation(id="R", at_id="A", to_id="B", value=1.0),
        ZenithObservation(id="Z", from_id="A", to_id="B", value=1.5),
    ])
    def test_angular_types_use_angle_sigma(self, obs, total_station):
        res = resolve_sigma(obs, total_station)
        assert res.sigma == pytest.approx(arcseconds_to_radians(3.0))

    def test_gps_sigma_on_both_axes(self, gps_receiver):
        obs = GpsObservation(id="G", from_id="A", to_id="B", d_easting=1.0, d_northing=2.0)
        res = resolve_sigma(obs, gps_receiver)
        assert res.sigma == pytest.approx(0.01)
        assert res.sigma_northing == pytest.approx(0.01)
        assert res.correlation == 0.0

    def test_leveling_sigma_per_root_km(self):
        inst = Instrument(code="LV", leveling_sigma_mm_per_km=0.7)
        obs = LevelingObservation(id="L", from_id="A", to_id="B", value=0.1, length_km=0.25)
        assert resolve_sigma(obs, inst).sigma == pytest.approx(0.00035)


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------

class TestPrecedence:
    """override > fixed > explicit > instrument default."""

    def test_explicit_beats_instrument(self, total_station):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=100.0, sigma=0.005)
        res = resolve_sigma(obs, total_station)
        assert res.sigma == 0.005
        assert res.source == SigmaSource.EXPLICIT

    def test_fixed_beats_explicit(self):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=100.0, sigma=0.005, fixed=True)
        res = resolve_sigma(obs)
        assert res.sigma == FIXED_SIGMA
        assert res.source == SigmaSource.FIXED

    def test_override_beats_everything(self, total_station):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=100.0, sigma=0.005, fixed=True)
        res = resolve_sigma(obs, total_station, ObservationOverride(sigma=0.02))
        assert res.sigma == 0.02
        assert res.source == SigmaSource.OVERRIDE

    def test_explicit_gps_keeps_covariance(self):
        obs = GpsObservation(id="G", from_id="A", to_id="B", sigma=0.01,
                             sigma_northing=0.02, correlation=0.3)
        res = resolve_sigma(obs)
        assert (res.sigma, res.sigma_northing, res.correlation) == (0.01, 0.02, 0.3)

    def test_resolve_for_looks_up_instrument(self, total_station):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=1000.0, instrument_code="TS")
        res = resolve_for(obs, {"TS": total_station})
        assert res.source == SigmaSource.DEFAULT


class TestUnresolvableSigma:

    def test_missing_instrument(self):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=100.0, instrument_code="XX")
        with pytest.raises(StochasticModelError, match="XX"):
            resolve_for(obs, {})

    def test_instrument_without_term(self, gps_receiver):
        obs = AngleObservation(id="A", at_id="A", from_id="B", to_id="C", value=1.0)
        with pytest.raises(StochasticModelError):
            resolve_sigma(obs, gps_receiver)

    def test_is_a_value_error(self):
        assert issubclass(StochasticModelError, ValueError)


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

class TestApplyOverride:

    def test_scalar_value_replaced_on_copy(self):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=100.0)
        working = apply_override(obs, ObservationOverride(value=100.5))
        assert working.value == 100.5
        assert obs.value == 100.0

    def test_gps_pair(self):
        obs = GpsObservation(id="G", from_id="A", to_id="B", d_easting=1.0, d_northing=2.0)
        working = apply_override(obs, ObservationOverride(value=(3.0, 4.0)))
        assert working.value == (3.0, 4.0)

    def test_gps_needs_pair(self):
        obs = GpsObservation(id="G", from_id="A", to_id="B", d_easting=1.0, d_northing=2.0)
        with pytest.raises(ValueError):
            apply_override(obs, ObservationOverride(value=3.0))

    def test_sigma_only_override_keeps_value(self):
        obs = LevelingObservation(id="L", from_id="A", to_id="B", value=0.1)
        assert apply_override(obs, ObservationOverride(sigma=0.001)) is obs


# ---------------------------------------------------------------------------
# Weight blocks
# ---------------------------------------------------------------------------

class TestWeightBlocks:
    """Block-diagonal weights: scalars, GPS 2x2, correlated angular groups."""

    def _setup_observations(self):
        sig = arcseconds_to_radians(2.0)
        observations = [
            AngleObservation(id="A1", at_id="S", from_id="P", to_id="Q", value=1.0, sigma=sig),
            DistanceObservation(id="D1", from_id="S", to_id="P", value=10.0, sigma=0.002),
            AngleObservation(id="A2", at_id="S", from_id="Q", to_id="R", value=1.0, sigma=sig),
            DirectionObservation(id="R1", at_id="S", to_id="P", value=0.3, sigma=sig, set_id="X"),
            GpsObservation(id="G1", from_id="S", to_id="P", sigma=0.01, sigma_northing=0.02,
                           correlation=0.5),
            AngleObservation(id="A3", at_id="T", from_id="P", to_id="Q", value=1.0, sigma=sig),
        ]
        sigmas = [resolve_sigma(o) for o in observations]
        return _prepared(observations, sigmas)

    def test_uncorrelated_blocks(self):
        items, m = self._setup_observations()
        blocks, summary = build_weight_blocks(items, CorrelationScope.NONE, 0.25)
        assert not summary.enabled
        assert sum(b.size for b in blocks) == m
        assert sorted(int(r) for b in blocks for r in b.rows) == list(range(m))

    def test_gps_block_is_inverse_covariance(self):
        items, _ = self._setup_observations()
        blocks, _ = build_weight_blocks(items)
        gps = next(b for b in blocks if b.size == 2)
        cov = np.array([[1e-4, 0.5 * 0.01 * 0.02], [0.5 * 0.01 * 0.02, 4e-4]])
        np.testing.assert_allclose(gps.cofactor, cov)
        np.testing.assert_allclose(gps.weight @ gps.cofactor, np.eye(2), atol=1e-9)

    def test_setup_scope_groups_angles_and_directions(self):
        items, _ = self._setup_observations()
        blocks, summary = build_weight_blocks(items, CorrelationScope.SETUP, 0.25)
        assert summary.enabled
        assert summary.group_count == 1
        assert summary.equation_count == 3
        assert summary.pair_count == 3
        group = next(b for b in blocks if b.key == ("S",))
        sig2 = arcseconds_to_radians(2.0) ** 2
        assert group.cofactor[0, 1] == pytest.approx(0.25 * sig2)
        np.testing.assert_allclose(group.weight @ group.cofactor, np.eye(3), atol=1e-6)

    def test_set_type_scope_splits_by_type(self):
        items, _ = self._setup_observations()
        _, summary = build_weight_blocks(items, CorrelationScope.SETUP_SET_TYPE, 0.25)
        # Angles A1/A2 share set "" and type; the direction is alone.
        assert summary.group_count == 1
        assert summary.equation_count == 2

    def test_zero_rho_disables_correlation(self):
        items, _ = self._setup_observations()
        _, summary = build_weight_blocks(items, CorrelationScope.SETUP, 0.0)
        assert not summary.enabled
        assert summary.rho == 0.0

    def test_fixed_observation_stays_alone(self):
        sig = arcseconds_to_radians(2.0)
        observations = [
            AngleObservation(id="A1", at_id="S", from_id="P", to_id="Q", value=1.0, sigma=sig),
            AngleObservation(id="A2", at_id="S", from_id="Q", to_id="R", value=1.0, sigma=sig),
            AngleObservation(id="A3", at_id="S", from_id="R", to_id="P", value=1.0, fixed=True),
        ]
        items, _ = _prepared(observations, [resolve_sigma(o) for o in observations])
        blocks, summary = build_weight_blocks(items, CorrelationScope.SETUP, 0.3)
        assert summary.equation_count == 2
        assert [b.size for b in blocks] == [2, 1]

    def test_robust_factors_scale_weight_and_cofactor(self):
        items, m = self._setup_observations()
        blocks, _ = build_weight_blocks(items)
        factors = np.ones(m)
        factors[0] = 0.25
        scaled = effective_blocks(blocks, factors)
        assert scaled[0].weight[0, 0] == pytest.approx(0.25 * blocks[0].weight[0, 0])
        assert scaled[0].cofactor[0, 0] == pytest.approx(4.0 * blocks[0].cofactor[0, 0])
        assert effective_blocks(blocks, np.ones(m)) == blocks

    def test_sigma_resolution_variance(self):
        assert SigmaResolution(sigma=0.003, source=SigmaSource.EXPLICIT).variance == pytest.approx(9e-6)
