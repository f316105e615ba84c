"""network_adjustment.core.statistics.postfit

Post-adjustment statistics for a converged (or last) solution.

Given the final design matrix A, residual vector v (observed - computed),
and the block weight model, computes:
- Qxx = N^-1 and the parameter covariance (scaled by the a posteriori or
  a priori variance)
- v^T W v, degrees of freedom, variance factor, SEUW
- diag(Qvv) per block, redundancy numbers, standardized residuals
- Baarda local test, MDB, external reliability
- Global chi-square test

Standardized residuals follow the w-test: t_i = v_i / (sigma0 sqrt(Qvv_ii))
with sigma0 the a priori standard deviation of unit weight, and Qvv built
from the nominal (not robustly down-weighted) cofactors so that a
down-weighted blunder stays visible.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .reliability import block_redundancy, external_reliability, mdb_values
from .tests import (
    ChiSquareTestResult,
    chi_square_global_test,
    local_test_critical_value,
    mdb_multiplier,
)


@dataclass
class PostFitStatistics:
    """Per-row and global statistics of one adjustment."""

    dof: int
    vtpv: float
    variance_factor: float
    seuw: float
    qxx: Optional[np.ndarray]
    covariance: Optional[np.ndarray]
    residuals: np.ndarray
    sigmas: np.ndarray
    qvv_diag: np.ndarray
    redundancy: np.ndarray
    standardized: np.ndarray
    local_passed: np.ndarray
    mdb: np.ndarray
    external: np.ndarray
    critical_value: float
    chi_square: Optional[ChiSquareTestResult] = None
    notes: List[str] = field(default_factory=list)

    @property
    def max_abs_standardized(self) -> float:
        if self.standardized.size == 0:
            return 0.0
        return float(np.max(np.abs(self.standardized)))


def weighted_square_sum(v: np.ndarray, blocks: Sequence) -> float:
    """v^T W v over a block-diagonal weight matrix."""
    total = 0.0
    for block in blocks:
        vb = v[block.rows]
        total += float(vb @ block.weight @ vb)
    return total


def standardized_residuals(
    A: np.ndarray,
    v: np.ndarray,
    qxx: np.ndarray,
    blocks: Sequence,
    nominal_blocks: Sequence,
    sigma0: float,
):
    """Standardized residuals, tested Qvv diagonal and redundancy numbers.

    Rows at full weight use Qvv_ii = Qll_ii - (A Qxx Aᵀ)_ii from the nominal
    cofactors. Robustly down-weighted rows use Qll_ii * r_i with r_i their
    effective redundancy, which stays positive however small the weight.

    Returns:
        (standardized, qvv_diag, redundancy), each of length m
    """
    m = v.size
    standardized = np.zeros(m, dtype=float)
    qvv_diag = np.zeros(m, dtype=float)
    redundancy = np.zeros(m, dtype=float)

    for block, nominal in zip(blocks, nominal_blocks):
        rows = block.rows
        Ab = A[rows, :]
        aqa = Ab @ qxx @ Ab.T
        r = block_redundancy(block.cofactor - aqa, block.weight)
        redundancy[rows] = r

        q_nom = np.diag(nominal.cofactor)
        down = np.diag(block.cofactor) > q_nom * (1.0 + 1e-9)
        qvv = np.where(down, q_nom * r, q_nom - np.diag(aqa))
        qvv_diag[rows] = qvv

        # Rows the network cannot check (r ~ 0) have no testable residual.
        ok = qvv > 1e-10 * q_nom
        standardized[rows[ok]] = v[rows[ok]] / (sigma0 * np.sqrt(qvv[ok]))

    return standardized, qvv_diag, redundancy


def compute_postfit(
    A: np.ndarray,
    v: np.ndarray,
    blocks: Sequence,
    nominal_blocks: Sequence,
    normal_matrix: np.ndarray,
    coordinate_indices: Sequence[int],
    a_priori_variance: float = 1.0,
    alpha_local: float = 0.001,
    mdb_power: float = 0.80,
    confidence_level: float = 0.95,
    use_a_posteriori_variance: bool = True,
) -> PostFitStatistics:
    """Compute post-adjustment statistics.

    Args:
        A: final design matrix (m x n)
        v: residuals observed - computed (m,)
        blocks: effective weight blocks (robust factors applied)
        nominal_blocks: weight blocks without robust factors, same order
        normal_matrix: A^T W A built from ``blocks``
        coordinate_indices: parameter indices of coordinate unknowns
        a_priori_variance: sigma0^2 of the stochastic model

    Raises:
        numpy.linalg.LinAlgError: if the normal matrix cannot be inverted
    """
    m, n = A.shape
    dof = m - n
    notes: List[str] = []

    vtpv = weighted_square_sum(v, blocks)
    if dof > 0:
        variance_factor = vtpv / dof
    else:
        variance_factor = 1.0
        notes.append(f"No redundancy (dof={dof}): variance factor set to 1.0")
    seuw = math.sqrt(max(variance_factor, 0.0))

    qxx = np.linalg.inv(normal_matrix)
    qxx = 0.5 * (qxx + qxx.T)
    scale = variance_factor if (use_a_posteriori_variance and dof > 0) else a_priori_variance
    covariance = scale * qxx

    sigma0 = math.sqrt(a_priori_variance)
    standardized, qvv_diag, redundancy = standardized_residuals(
        A, v, qxx, blocks, nominal_blocks, sigma0
    )
    sigmas = np.zeros(m, dtype=float)
    for nominal in nominal_blocks:
        sigmas[nominal.rows] = np.sqrt(np.diag(nominal.cofactor))

    critical = local_test_critical_value(alpha_local)
    local_passed = np.abs(standardized) <= critical

    mdb = mdb_values(mdb_multiplier(alpha_local, mdb_power), sigma0, sigmas, redundancy)
    external = external_reliability(qxx, A, blocks, mdb, coordinate_indices)

    chi_square = None
    if dof > 0:
        chi_square = chi_square_global_test(
            vtpv=vtpv,
            dof=dof,
            alpha=1.0 - confidence_level,
            a_priori_variance=a_priori_variance,
        )

    return PostFitStatistics(
        dof=dof,
        vtpv=vtpv,
        variance_factor=float(variance_factor),
        seuw=seuw,
        qxx=qxx,
        covariance=covariance,
        residuals=v.copy(),
        sigmas=sigmas,
        qvv_diag=qvv_diag,
        redundancy=redundancy,
        standardized=standardized,
        local_passed=local_passed,
        mdb=mdb,
        external=external,
        critical_value=critical,
        chi_square=chi_square,
        notes=notes,
    )


def scaled_condition_number(normal_matrix: np.ndarray) -> float:
    """Condition number of the Jacobi-scaled normal matrix.

    Scaling by the diagonal removes the unit mismatch between metres and
    radians so the number reflects geometry rather than units.
    """
    diag = np.diag(normal_matrix)
    if diag.size == 0:
        return 1.0
    if np.any(diag <= 0.0):
        return math.inf
    d = 1.0 / np.sqrt(diag)
    scaled = normal_matrix * d[:, None] * d[None, :]
    return float(np.linalg.cond(scaled))
