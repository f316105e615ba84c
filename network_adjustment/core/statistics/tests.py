"""network_adjustment.core.statistics.tests

Hypothesis tests used after the adjustment.

Includes:
- Global chi-square test of the variance factor (two-sided), with the
  confidence interval of the variance factor
- Baarda local test critical value and the MDB non-centrality multiplier
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .distributions import chi2_cdf, chi2_interval, normal_ppf


@dataclass(frozen=True)
class ChiSquareTestResult:
    """
    Outcome of the global chi-square test.

    Attributes:
        test_statistic: v^T P v / sigma0_apriori^2
        critical_lower: chi2(alpha/2, dof)
        critical_upper: chi2(1 - alpha/2, dof)
        confidence_level: 1 - alpha
        passed: test_statistic within the critical bounds
        p_value: Two-sided p-value
        degrees_of_freedom: dof of the adjustment
        variance_factor_lower: Lower confidence bound of the variance factor
        variance_factor_upper: Upper confidence bound of the variance factor
    """

    test_statistic: float
    critical_lower: float
    critical_upper: float
    confidence_level: float
    passed: bool
    p_value: float
    degrees_of_freedom: int
    variance_factor_lower: float
    variance_factor_upper: float

    @property
    def status(self) -> str:
        if self.passed:
            return "pass"
        return "fail-low" if self.test_statistic < self.critical_lower else "fail-high"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_statistic": self.test_statistic,
            "critical_lower": self.critical_lower,
            "critical_upper": self.critical_upper,
            "confidence_level": self.confidence_level,
            "passed": self.passed,
            "status": self.status,
            "p_value": self.p_value,
            "degrees_of_freedom": self.degrees_of_freedom,
            "variance_factor_lower": self.variance_factor_lower,
            "variance_factor_upper": self.variance_factor_upper,
        }


def chi_square_global_test(
    vtpv: float,
    dof: int,
    alpha: float,
    a_priori_variance: float = 1.0,
) -> ChiSquareTestResult:
    """Run the global chi-square test.

    Test statistic:
        T = v^T P v / sigma0_apriori^2

    Decision (two-sided):
        chi2_{alpha/2, dof} <= T <= chi2_{1-alpha/2, dof}

    The variance factor s0^2 = v^T P v / dof has the interval
        [v^T P v / chi2_upper, v^T P v / chi2_lower] / sigma0_apriori^2
    """
    if dof <= 0:
        raise ValueError("dof must be positive")
    if a_priori_variance <= 0:
        raise ValueError("a_priori_variance must be positive")

    statistic = float(vtpv) / float(a_priori_variance)
    lower, upper = chi2_interval(dof, alpha)

    cdf = chi2_cdf(statistic, dof)
    p_value = min(1.0, 2.0 * min(cdf, 1.0 - cdf))

    return ChiSquareTestResult(
        test_statistic=statistic,
        critical_lower=lower,
        critical_upper=upper,
        confidence_level=1.0 - alpha,
        passed=bool(lower <= statistic <= upper),
        p_value=float(p_value),
        degrees_of_freedom=int(dof),
        variance_factor_lower=statistic / upper,
        variance_factor_upper=statistic / lower if lower > 0 else float("inf"),
    )


def local_test_critical_value(alpha_local: float) -> float:
    """Two-sided critical value k = Phi^{-1}(1 - alpha/2) of the w-test."""
    if not 0.0 < alpha_local < 1.0:
        raise ValueError("alpha_local must be in (0, 1)")
    return normal_ppf(1.0 - 0.5 * alpha_local)


def mdb_multiplier(alpha_local: float, power: float) -> float:
    """sqrt(lambda0) ~= k_alpha + k_beta of Baarda's B-method.

    With alpha = 0.001 and power = 0.80 this is 3.29 + 0.84 = 4.13.
    """
    if not 0.0 < power < 1.0:
        raise ValueError("power must be in (0, 1)")
    return local_test_critical_value(alpha_local) + normal_ppf(power)
