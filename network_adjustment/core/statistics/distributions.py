"""network_adjustment.core.statistics.distributions

Normal and chi-square distribution helpers (no SciPy).

- Normal quantile/CDF come from stdlib ``statistics.NormalDist``.
- The chi-square CDF is the regularized lower incomplete gamma function
  P(k/2, x/2), evaluated by its power series below a + 1 and by a
  Lentz continued fraction for the upper tail above it.
- The chi-square quantile starts from the Wilson-Hilferty approximation
  and is refined by Newton steps kept inside a shrinking bracket.

Accuracy is ample for network degrees of freedom from 1 to a few thousand.
"""

from __future__ import annotations

import math
from statistics import NormalDist
from typing import Tuple


_STANDARD_NORMAL = NormalDist()

_EPS = 1e-14
_MAX_TERMS = 2000
_TINY = 1e-300


def normal_ppf(p: float) -> float:
    """Standard normal quantile z with P(Z <= z) = p."""
    if not 0.0 < p < 1.0:
        raise ValueError(f"p must be in (0, 1), got {p}")
    return float(_STANDARD_NORMAL.inv_cdf(p))


def normal_cdf(z: float) -> float:
    return float(_STANDARD_NORMAL.cdf(z))


def _log_gamma_prefactor(a: float, x: float) -> float:
    # log(x^a e^-x / Gamma(a))
    return a * math.log(x) - x - math.lgamma(a)


def _lower_gamma_series(a: float, x: float) -> float:
    term = 1.0 / a
    total = term
    denom = a
    for _ in range(_MAX_TERMS):
        denom += 1.0
        term *= x / denom
        total += term
        if abs(term) < abs(total) * _EPS:
            break
    return total * math.exp(_log_gamma_prefactor(a, x))


def _upper_gamma_fraction(a: float, x: float) -> float:
    b = x + 1.0 - a
    c = 1.0 / _TINY
    d = 1.0 / b if abs(b) > _TINY else 1.0 / _TINY
    frac = d
    for i in range(1, _MAX_TERMS + 1):
        an = -i * (i - a)
        b += 2.0
        d = an * d + b
        d = _TINY if abs(d) < _TINY else d
        c = b + an / c
        c = _TINY if abs(c) < _TINY else c
        d = 1.0 / d
        step = d * c
        frac *= step
        if abs(step - 1.0) < _EPS:
            break
    return frac * math.exp(_log_gamma_prefactor(a, x))


def regularized_gamma_p(a: float, x: float) -> float:
    """Regularized lower incomplete gamma P(a, x), clipped to [0, 1]."""
    if a <= 0.0:
        raise ValueError("a must be positive")
    if x <= 0.0:
        return 0.0
    if x < a + 1.0:
        p = _lower_gamma_series(a, x)
    else:
        p = 1.0 - _upper_gamma_fraction(a, x)
    return min(max(p, 0.0), 1.0)


def chi2_cdf(x: float, df: int) -> float:
    """P(X <= x) for X ~ chi-square(df)."""
    if df <= 0:
        raise ValueError("df must be positive")
    return regularized_gamma_p(0.5 * df, 0.5 * x)


def chi2_pdf(x: float, df: int) -> float:
    if x <= 0.0:
        return 0.0
    k = 0.5 * df
    return math.exp((k - 1.0) * math.log(x) - 0.5 * x - k * math.log(2.0) - math.lgamma(k))


def chi2_ppf(p: float, df: int) -> float:
    """Chi-square quantile x with chi2_cdf(x, df) = p."""
    if df <= 0:
        raise ValueError("df must be positive")
    if not 0.0 < p < 1.0:
        raise ValueError(f"p must be in (0, 1), got {p}")

    k = float(df)
    h = 2.0 / (9.0 * k)
    x = k * max(1.0 - h + normal_ppf(p) * math.sqrt(h), 1e-6) ** 3

    lo, hi = 0.0, max(x, 1.0)
    while chi2_cdf(hi, df) < p:
        lo, hi = hi, 2.0 * hi

    x = min(max(x, lo), hi)
    for _ in range(200):
        f = chi2_cdf(x, df) - p
        if f < 0.0:
            lo = x
        else:
            hi = x
        density = chi2_pdf(x, df)
        candidate = x - f / density if density > 0.0 else float("nan")
        if not math.isfinite(candidate) or not lo < candidate < hi:
            candidate = 0.5 * (lo + hi)
        if abs(candidate - x) <= 1e-12 * max(1.0, x):
            return float(candidate)
        x = candidate
    return float(x)


def chi2_interval(df: int, alpha: float) -> Tuple[float, float]:
    """Two-sided bounds (lower, upper) holding probability 1 - alpha."""
    if not 0.0 < alpha < 1.0:
        raise ValueError("alpha must be in (0, 1)")
    return chi2_ppf(0.5 * alpha, df), chi2_ppf(1.0 - 0.5 * alpha, df)
