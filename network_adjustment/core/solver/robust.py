"""Robust estimation module for least-squares adjustment.

Implements the weight functions of Iteratively Reweighted Least Squares
(IRLS). Each pass turns standardized residuals into weight factors u in
(0, 1] that scale the observation weights (W_eff = D W D, D = diag(sqrt(u))).

Supported methods:
- Huber: soft downweighting, good for small to moderate outliers
- Danish: aggressive downweighting, good for larger outliers
- IGG-III: three-part function with hard rejection threshold

Standardized residuals fed to the weight functions use the a priori sigma0
and the nominal cofactors, so an outlier cannot inflate the scale that is
meant to expose it.

Reference: Ghilani & Wolf, "Adjustment Computations", 6th ed., Chapter 21
"""

from __future__ import annotations

import math
from typing import Callable, Optional, Sequence

import numpy as np

from ..models.observation import equation_count
from ..models.options import AdjustmentOptions, RobustEstimator
from ..results.diagnostics import RobustIteration


# Weight factors below this count as downweighted.
DOWNWEIGHT_LIMIT = 0.999


# ---------------------------------------------------------------------------
# Robust Weight Functions
# ---------------------------------------------------------------------------

def huber_weight(w: float, c: float = 1.5) -> float:
    """Huber weight function.

    Formula:
        u(|w|) = 1           if |w| <= c
        u(|w|) = c / |w|     if |w| > c
    """
    abs_w = abs(w)
    if abs_w <= c:
        return 1.0
    return c / abs_w


def danish_weight(w: float, c: float = 2.0) -> float:
    """Danish weight function.

    Formula:
        u(|w|) = 1                       if |w| <= c
        u(|w|) = exp(-((|w|-c)/c)^2)     if |w| > c
    """
    abs_w = abs(w)
    if abs_w <= c:
        return 1.0
    return max(math.exp(-((abs_w - c) / c) ** 2), 1e-10)


def igg3_weight(w: float, k0: float = 1.5, k1: float = 3.0) -> float:
    """IGG-III (Institute of Geodesy and Geophysics) weight function.

    Formula:
        u(|w|) = 1                                if |w| <= k0
        u(|w|) = (k0/|w|) * ((k1-|w|)/(k1-k0))^2 if k0 < |w| < k1
        u(|w|) = 0                                if |w| >= k1

    Rejected observations get 1e-10 instead of exactly 0 so the weight
    block stays invertible.
    """
    abs_w = abs(w)
    if abs_w <= k0:
        return 1.0
    if abs_w >= k1:
        return 1e-10
    return max((k0 / abs_w) * ((k1 - abs_w) / (k1 - k0)) ** 2, 1e-10)


def get_weight_function(options: AdjustmentOptions) -> Optional[Callable[[float], float]]:
    """Weight function of the configured estimator, None for plain least squares."""
    method = options.robust_estimator
    if method == RobustEstimator.NONE:
        return None
    if method == RobustEstimator.HUBER:
        return lambda w: huber_weight(w, options.huber_c)
    if method == RobustEstimator.DANISH:
        return lambda w: danish_weight(w, options.danish_c)
    if method == RobustEstimator.IGG3:
        return lambda w: igg3_weight(w, options.igg3_k0, options.igg3_k1)
    raise ValueError(f"Unknown robust estimator: {method}")


def describe_method(options: AdjustmentOptions) -> str:
    """Human-readable description of the robust method and its constants."""
    method = options.robust_estimator
    if method == RobustEstimator.HUBER:
        return f"Huber (c={options.huber_c})"
    if method == RobustEstimator.DANISH:
        return f"Danish (c={options.danish_c})"
    if method == RobustEstimator.IGG3:
        return f"IGG-III (k0={options.igg3_k0}, k1={options.igg3_k1})"
    return "None (standard least squares)"


# ---------------------------------------------------------------------------
# IRLS helpers
# ---------------------------------------------------------------------------

def compute_robust_weights(
    standardized_residuals: np.ndarray,
    weight_func: Callable[[float], float],
) -> np.ndarray:
    """Weight factors from standardized residuals (1.0 for non-finite values)."""
    weights = np.ones(len(standardized_residuals))
    for i, w in enumerate(standardized_residuals):
        if np.isfinite(w):
            weights[i] = weight_func(float(w))
    return weights


def observation_weight_factors(
    prepared: Sequence,
    standardized: np.ndarray,
    weight_func: Callable[[float], float],
) -> np.ndarray:
    """Per-row weight factors, one factor per observation.

    Multi-row observations (GPS vectors) are weighted as a whole from their
    largest |t| component.
    """
    factors = np.ones(standardized.size, dtype=float)
    for item in prepared:
        size = equation_count(item.obs)
        rows = slice(item.row, item.row + size)
        t = float(np.max(np.abs(standardized[rows])))
        factors[rows] = compute_robust_weights(np.array([t]), weight_func)[0]
    return factors


def iteration_record(
    iteration: int,
    prepared: Sequence,
    factors: np.ndarray,
    previous: np.ndarray,
    standardized: np.ndarray,
) -> RobustIteration:
    """Summary of one re-weighting pass (statistics per observation)."""
    first_rows = np.array([item.row for item in prepared], dtype=int)
    obs_factors = factors[first_rows] if first_rows.size else np.ones(0)
    return RobustIteration(
        iteration=iteration,
        mean_weight=float(obs_factors.mean()) if obs_factors.size else 1.0,
        min_weight=float(obs_factors.min()) if obs_factors.size else 1.0,
        max_abs_standardized=float(np.max(np.abs(standardized))) if standardized.size else 0.0,
        downweighted=int(np.sum(obs_factors < DOWNWEIGHT_LIMIT)),
        max_weight_change=float(np.max(np.abs(factors - previous))) if factors.size else 0.0,
    )
