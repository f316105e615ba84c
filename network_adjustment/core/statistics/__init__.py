"""Statistics utilities for network adjustment.

Small, dependency-light helpers used after the solve:
- Distribution functions (normal, chi-square)
- Global chi-square test, Baarda local test constants
- Reliability measures (redundancy, MDB, external reliability)
- The post-fit statistics bundle

No SciPy dependency is required.
"""

from .distributions import normal_ppf, normal_cdf, chi2_cdf, chi2_ppf, chi2_interval
from .tests import (
    ChiSquareTestResult,
    chi_square_global_test,
    local_test_critical_value,
    mdb_multiplier,
)
from .reliability import block_redundancy, mdb_values, external_reliability
from .postfit import (
    PostFitStatistics,
    compute_postfit,
    scaled_condition_number,
    standardized_residuals,
)

__all__ = [
    "normal_ppf",
    "normal_cdf",
    "chi2_cdf",
    "chi2_ppf",
    "chi2_interval",
    "ChiSquareTestResult",
    "chi_square_global_test",
    "local_test_critical_value",
    "mdb_multiplier",
    "block_redundancy",
    "mdb_values",
    "external_reliability",
    "PostFitStatistics",
    "compute_postfit",
    "scaled_condition_number",
    "standardized_residuals",
]
