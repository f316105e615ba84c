"""Tests for the data model: stations, instruments, observations, network, options."""

from __future__ import annotations

import math
from dataclasses import FrozenInstanceError

import pytest

from network_adjustment.core.models import (
    AdjustmentOptions,
    AngleObservation,
    CorrelationScope,
    DirectionObservation,
    DirectionReduction,
    DistanceMode,
    DistanceObservation,
    GpsObservation,
    HeightType,
    Instrument,
    LevelingObservation,
    Network,
    ObservationOverride,
    ObservationType,
    RobustEstimator,
    Sideshot,
    Station,
    UnresolvedStationError,
    ZenithObservation,
)


# ---------------------------------------------------------------------------
# Station
# ---------------------------------------------------------------------------

class TestStation:
    """Station construction and helpers."""

    def test_control_station_is_fixed(self):
        st = Station.control("1000", 5000.0, 5000.0, 100.0)
        assert st.is_fixed
        assert st.fixed_height
        assert not st.is_free

    def test_free_station(self):
        st = Station("2000", 1.0, 2.0)
        assert st.is_free
        assert st.height == 0.0

    def test_partially_fixed(self):
        st = Station("P", 1.0, 2.0, fixed_easting=True)
        assert st.is_partially_fixed
        assert not st.is_fixed

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            Station("", 0.0, 0.0)

    def test_negative_sigma_rejected(self):
        with pytest.raises(ValueError):
            Station("P", 0.0, 0.0, sigma_easting=-0.1)

    def test_height_type_from_string(self):
        st = Station("P", 0.0, 0.0, height_type="Ellipsoidal")
        assert st.height_type == HeightType.ELLIPSOIDAL

    def test_with_solution_returns_copy(self):
        st = Station("P", 1.0, 2.0, 3.0)
        solved = st.with_solution(1.5, 2.5, 3.5, sigma_easting=0.01)
        assert solved.easting == 1.5
        assert solved.sigma_easting == 0.01
        assert st.easting == 1.0
        assert st.sigma_easting is None

    def test_to_dict(self):
        data = Station("P", 1.0, 2.0, latitude=45.0, longitude=7.0).to_dict()
        assert data["id"] == "P"
        assert data["latitude"] == 45.0
        assert "error_ellipse" not in data


# ---------------------------------------------------------------------------
# Instrument
# ---------------------------------------------------------------------------

class TestInstrument:

    def test_negative_term_rejected(self):
        with pytest.raises(ValueError):
            Instrument(code="TS", edm_ppm=-1.0)

    def test_empty_code_rejected(self):
        with pytest.raises(ValueError):
            Instrument(code="")

    def test_from_dict_accepts_desc_alias(self):
        inst = Instrument.from_dict({"code": "TS1", "desc": "Total station", "edm_ppm": 2})
        assert inst.description == "Total station"
        assert inst.edm_ppm == 2.0
        assert Instrument.from_dict(inst.to_dict()) == inst


# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------

class TestObservations:
    """Construction-time validation of every observation kind."""

    def test_distance_requires_two_distinct_stations(self):
        with pytest.raises(ValueError):
            DistanceObservation(id="D", from_id="A", to_id="A", value=10.0)

    def test_distance_must_be_positive(self):
        with pytest.raises(ValueError):
            DistanceObservation(id="D", from_id="A", to_id="B", value=0.0)

    def test_distance_mode_from_string(self):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=1.0, mode="SLOPE")
        assert obs.mode == DistanceMode.SLOPE

    def test_sigma_must_be_positive(self):
        with pytest.raises(ValueError):
            DistanceObservation(id="D", from_id="A", to_id="B", value=1.0, sigma=0.0)

    def test_angle_requires_three_distinct_stations(self):
        with pytest.raises(ValueError):
            AngleObservation(id="A", at_id="A", from_id="B", to_id="B", value=1.0)

    def test_direction_default_set(self):
        obs = DirectionObservation(id="R1", at_id="A", to_id="B", value=0.5)
        assert obs.set_id == "SET_A"
        assert obs.face == 1

    def test_direction_face_checked(self):
        with pytest.raises(ValueError):
            DirectionObservation(id="R1", at_id="A", to_id="B", value=0.5, face=3)

    @pytest.mark.parametrize("value", [0.0, math.pi, -0.1, 4.0])
    def test_zenith_range(self, value):
        with pytest.raises(ValueError):
            ZenithObservation(id="Z", from_id="A", to_id="B", value=value)

    def test_gps_value_and_length(self):
        obs = GpsObservation(id="G", from_id="A", to_id="B", d_easting=3.0, d_northing=4.0)
        assert obs.value == (3.0, 4.0)
        assert obs.length == pytest.approx(5.0)

    def test_gps_correlation_range(self):
        with pytest.raises(ValueError):
            GpsObservation(id="G", from_id="A", to_id="B", correlation=1.0)

    def test_leveling_length_not_negative(self):
        with pytest.raises(ValueError):
            LevelingObservation(id="L", from_id="A", to_id="B", value=0.1, length_km=-1.0)

    def test_type_tags_and_labels(self):
        angle = AngleObservation(id="A1", at_id="B", from_id="A", to_id="C", value=1.0)
        assert angle.obs_type == ObservationType.ANGLE
        assert angle.is_angular
        assert angle.label == "B-A-C"
        assert angle.occupied_station == "B"
        lev = LevelingObservation(id="L", from_id="A", to_id="B", value=0.1)
        assert not lev.is_angular

    def test_observations_are_frozen(self):
        obs = DistanceObservation(id="D", from_id="A", to_id="B", value=1.0)
        with pytest.raises(FrozenInstanceError):
            obs.value = 2.0


class TestSideshotRecord:

    def test_angle_needs_backsight(self):
        with pytest.raises(ValueError):
            Sideshot(id="S", occupied_id="A", target_id="T", distance=10.0, horizontal_angle=0.5)

    def test_distance_positive(self):
        with pytest.raises(ValueError):
            Sideshot(id="S", occupied_id="A", target_id="T", distance=0.0)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

class TestNetwork:

    def test_duplicate_station_rejected(self):
        net = Network()
        net.add_station(Station("A", 0.0, 0.0))
        with pytest.raises(ValueError):
            net.add_station(Station("A", 1.0, 1.0))

    def test_duplicate_observation_rejected(self):
        net = Network()
        net.add_observation(DistanceObservation(id="D", from_id="A", to_id="B", value=1.0))
        with pytest.raises(ValueError):
            net.add_observation(DistanceObservation(id="D", from_id="A", to_id="C", value=1.0))

    def test_get_missing_station(self):
        with pytest.raises(KeyError):
            Network().get_station("X")

    def test_direction_sets_grouped(self):
        net = Network()
        net.add_observation(DirectionObservation(id="R1", at_id="A", to_id="B", value=0.1, set_id="S1"))
        net.add_observation(DirectionObservation(id="R2", at_id="A", to_id="C", value=0.2, set_id="S1"))
        net.add_observation(DirectionObservation(id="R3", at_id="A", to_id="B", value=0.1, set_id="S2"))
        sets = net.direction_sets()
        assert [o.id for o in sets["S1"]] == ["R1", "R2"]
        assert [o.id for o in sets["S2"]] == ["R3"]

    def test_unresolved_references(self):
        net = Network()
        net.add_station(Station("A", 0.0, 0.0))
        net.add_observation(DistanceObservation(id="D1", from_id="A", to_id="B", value=1.0))
        net.add_observation(DistanceObservation(id="D2", from_id="B", to_id="C", value=1.0))
        net.add_sideshot(Sideshot(id="S1", occupied_id="Q", target_id="T", distance=5.0))

        with pytest.raises(UnresolvedStationError) as info:
            net.check_references()
        assert info.value.missing == {"B": ["D1", "D2"], "C": ["D2"], "Q": ["S1"]}
        assert isinstance(info.value, ValueError)

    def test_referenced_station_ids(self, quad_network):
        assert quad_network.referenced_station_ids() == {"A", "B", "C", "D"}
        subset = [quad_network.get_observation("AB")]
        assert quad_network.referenced_station_ids(subset) == {"A", "B"}

    def test_summary(self, reference_network):
        summary = reference_network.summary()
        assert summary["num_stations"] == 10
        assert summary["num_fixed_stations"] == 3
        assert summary["observations_by_type"]["leveling"] == 12


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class TestAdjustmentOptions:

    def test_defaults(self):
        opts = AdjustmentOptions.default()
        assert opts.max_iterations == 10
        assert opts.robust_estimator == RobustEstimator.NONE
        assert opts.correlation_scope == CorrelationScope.NONE
        assert opts.direction_reduction == DirectionReduction.REDUCE
        assert opts.alpha == pytest.approx(0.05)
        assert not opts.is_robust

    def test_enum_coercion(self):
        opts = AdjustmentOptions(robust_estimator="IGG3", correlation_scope="setup",
                                 direction_reduction="raw")
        assert opts.robust_estimator == RobustEstimator.IGG3
        assert opts.correlation_scope == CorrelationScope.SETUP
        assert opts.direction_reduction == DirectionReduction.RAW

    @pytest.mark.parametrize("kwargs", [
        {"max_iterations": 0},
        {"confidence_level": 1.0},
        {"a_priori_variance": 0.0},
        {"mdb_power": 1.5},
        {"igg3_k0": 3.0, "igg3_k1": 2.0},
        {"correlation_rho": 1.0},
        {"map_scale_factor": 0.0},
        {"traverse_max_legs": 2},
        {"max_workers": 0},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            AdjustmentOptions(**kwargs)

    def test_overrides_from_dicts(self):
        opts = AdjustmentOptions(overrides={"G1": {"value": [1.0, 2.0], "sigma": 0.01}})
        assert opts.overrides["G1"] == ObservationOverride(value=(1.0, 2.0), sigma=0.01)

    def test_dict_round_trip(self):
        opts = AdjustmentOptions(robust_estimator="huber", excluded_observations={"D1"},
                                 relative_precision_pairs=[("A", "B")])
        restored = AdjustmentOptions.from_dict(opts.to_dict())
        assert restored.robust_estimator == RobustEstimator.HUBER
        assert restored.excluded_observations == frozenset({"D1"})
        assert restored.relative_precision_pairs == [("A", "B")]

    def test_from_dict_ignores_unknown_keys(self):
        opts = AdjustmentOptions.from_dict({"max_iterations": 5, "colour": "blue"})
        assert opts.max_iterations == 5

    def test_sandbox_leaves_original_untouched(self):
        opts = AdjustmentOptions(excluded_observations={"D1"}, what_if_candidates=3)
        box = opts.sandbox("A3")
        assert box.excluded_observations == frozenset({"D1", "A3"})
        assert box.what_if_candidates == 0
        assert opts.excluded_observations == frozenset({"D1"})
        assert opts.what_if_candidates == 3

    def test_robust_factory(self):
        opts = AdjustmentOptions.robust("danish", danish_c=2.5)
        assert opts.is_robust
        assert opts.danish_c == 2.5
