"""Tests for distributions, global/local tests, reliability and error ellipses."""

from __future__ import annotations

import math

import numpy as np
import pytest

from network_adjustment.core.geometry import ellipse_axes, error_ellipse_from_covariance
from network_adjustment.core.statistics import (
    chi2_cdf,
    chi2_interval,
    chi2_ppf,
    chi_square_global_test,
    local_test_critical_value,
    mdb_multiplier,
    mdb_values,
    normal_cdf,
    normal_ppf,
    scaled_condition_number,
)
from network_adjustment.core.statistics.reliability import block_redundancy


# ---------------------------------------------------------------------------
# Distributions
# ---------------------------------------------------------------------------

class TestDistributions:
    """Reference values from standard tables."""

    def test_normal_quantile(self):
        assert normal_ppf(0.975) == pytest.approx(1.959963984540054, rel=1e-9)
        assert normal_cdf(0.0) == pytest.approx(0.5)

    def test_normal_quantile_domain(self):
        with pytest.raises(ValueError):
            normal_ppf(1.0)

    @pytest.mark.parametrize("p, df, expected", [
        (0.95, 1, 3.841458820694124),
        (0.95, 2, 5.991464547107979),
        (0.975, 10, 20.483177350807388),
        (0.025, 10, 3.246972780236841),
        (0.99, 100, 135.80672317102676),
    ])
    def test_chi2_quantiles(self, p, df, expected):
        assert chi2_ppf(p, df) == pytest.approx(expected, rel=1e-6)

    def test_chi2_cdf_inverts_quantile(self):
        x = chi2_ppf(0.3, 7)
        assert chi2_cdf(x, 7) == pytest.approx(0.3, abs=1e-9)

    def test_chi2_cdf_edges(self):
        assert chi2_cdf(0.0, 5) == 0.0
        assert chi2_cdf(1e6, 5) == pytest.approx(1.0)

    def test_interval_is_ordered(self):
        lower, upper = chi2_interval(12, 0.05)
        assert 0.0 < lower < 12 < upper


# ---------------------------------------------------------------------------
# Global and local tests
# ---------------------------------------------------------------------------

class TestGlobalTest:

    def test_pass(self):
        res = chi_square_global_test(vtpv=10.0, dof=10, alpha=0.05)
        assert res.passed
        assert res.status == "pass"
        assert res.confidence_level == pytest.approx(0.95)
        assert res.variance_factor_lower < 1.0 < res.variance_factor_upper

    def test_fail_high(self):
        res = chi_square_global_test(vtpv=50.0, dof=10, alpha=0.05)
        assert not res.passed
        assert res.status == "fail-high"
        assert res.p_value < 0.05

    def test_fail_low(self):
        res = chi_square_global_test(vtpv=0.5, dof=10, alpha=0.05)
        assert res.status == "fail-low"

    def test_a_priori_variance_scales_statistic(self):
        res = chi_square_global_test(vtpv=20.0, dof=10, alpha=0.05, a_priori_variance=2.0)
        assert res.test_statistic == pytest.approx(10.0)

    def test_requires_redundancy(self):
        with pytest.raises(ValueError):
            chi_square_global_test(vtpv=1.0, dof=0, alpha=0.05)

    def test_to_dict_has_status(self):
        data = chi_square_global_test(vtpv=10.0, dof=10, alpha=0.05).to_dict()
        assert data["status"] == "pass"


class TestLocalTest:

    def test_critical_value(self):
        assert local_test_critical_value(0.001) == pytest.approx(3.2905, abs=1e-4)

    def test_mdb_multiplier(self):
        assert mdb_multiplier(0.001, 0.80) == pytest.approx(4.1321, abs=1e-3)

    def test_mdb_grows_as_redundancy_falls(self):
        sigmas = np.full(4, 0.003)
        r = np.array([1.0, 0.5, 0.1, 0.0])
        mdb = mdb_values(4.13, 1.0, sigmas, r)
        assert mdb[0] == pytest.approx(4.13 * 0.003)
        assert mdb[0] < mdb[1] < mdb[2]
        assert math.isinf(mdb[3])

    def test_block_redundancy_snaps_rounding_noise(self):
        r = block_redundancy(np.diag([1e-13, 1.0 - 1e-13, 0.4]), np.eye(3))
        assert r[0] == 0.0
        assert r[1] == 1.0
        assert r[2] == pytest.approx(0.4)


class TestConditionNumber:

    def test_units_do_not_matter(self):
        n = np.diag([1e12, 1.0, 1e-6])
        assert scaled_condition_number(n) == pytest.approx(1.0)

    def test_singular_is_infinite(self):
        assert math.isinf(scaled_condition_number(np.diag([1.0, 0.0])))


# ---------------------------------------------------------------------------
# Error ellipses
# ---------------------------------------------------------------------------

class TestErrorEllipse:
    """Orientation is an azimuth in [0, π); axes ordered and non-negative."""

    def test_major_axis_east(self):
        a, b, theta = ellipse_axes(4.0, 1.0, 0.0)
        assert (a, b) == (pytest.approx(2.0), pytest.approx(1.0))
        assert theta == pytest.approx(math.pi / 2)

    def test_major_axis_north(self):
        a, b, theta = ellipse_axes(1.0, 4.0, 0.0)
        assert a == pytest.approx(2.0)
        assert theta == pytest.approx(0.0)

    def test_diagonal_orientation(self):
        # Positive E/N covariance tilts the major axis towards azimuth 45°.
        _, _, theta = ellipse_axes(2.0, 2.0, 1.0)
        assert theta == pytest.approx(math.pi / 4)

    def test_isotropic_is_finite(self):
        a, b, theta = ellipse_axes(1e-6, 1e-6, 0.0)
        assert a == pytest.approx(b)
        assert math.isfinite(theta)

    @pytest.mark.parametrize("cov", [
        [[3e-6, -1e-6], [-1e-6, 2e-6]],
        [[1e-8, 0.0], [0.0, 5e-8]],
        [[2.0, 1.9], [1.9, 2.0]],
    ])
    def test_invariants(self, cov):
        ell = error_ellipse_from_covariance(cov, 0.95)
        assert ell.semi_major >= ell.semi_minor >= 0.0
        assert 0.0 <= ell.orientation < math.pi
        assert ell.semi_major ** 2 + ell.semi_minor ** 2 == pytest.approx(cov[0][0] + cov[1][1])

    def test_confidence_scale(self):
        ell = error_ellipse_from_covariance([[1.0, 0.0], [0.0, 1.0]], 0.95)
        assert ell.scale == pytest.approx(math.sqrt(5.991464547107979), rel=1e-6)
        assert ell.confidence_semi_major == pytest.approx(ell.scale)
        assert ell.is_circular
