"""network_adjustment.core.statistics.reliability

Reliability measures for a block-weighted least-squares adjustment.

Definitions used:
- W is block diagonal; each block covers the rows of one uncorrelated
  observation, one GPS vector, or one correlated group of angular rows.
- Qvv = Qll - A Qxx A^T is the residual cofactor matrix; only its
  diagonal blocks are needed.
- Redundancy number: r_i = (Qvv W)_ii. The sum over all rows equals
  trace(I - A Qxx A^T W) = m - n, i.e. the degrees of freedom.

MDB (Baarda's B-method):
    MDB_i = (k_alpha + k_beta) * sigma0 * sigma_i / sqrt(r_i)
with k_alpha = Phi^{-1}(1 - alpha/2), k_beta = Phi^{-1}(power). MDB is
infinite when r_i = 0: a blunder there cannot be detected at all.

External reliability: the unknown shift caused by an undetected bias of
size MDB_i in row i, dx = Qxx A^T W e_i * MDB_i, reported as the largest
absolute coordinate component.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Sequence

import numpy as np

# Values this close to 0 or 1 are rounding noise.
_ROUND_EPS = 1e-10


def block_redundancy(qvv_block: np.ndarray, weight_block: np.ndarray) -> np.ndarray:
    """Diagonal of Qvv W for one block."""
    r = np.diag(qvv_block @ weight_block).copy()
    r[np.abs(r) < _ROUND_EPS] = 0.0
    r[np.abs(r - 1.0) < _ROUND_EPS] = 1.0
    return r


def mdb_values(
    multiplier: float,
    sigma0: float,
    sigma_obs: np.ndarray,
    redundancy: np.ndarray,
) -> np.ndarray:
    """MDB per row; inf where the redundancy number is zero."""
    out = np.full(len(sigma_obs), math.inf, dtype=float)
    mask = redundancy > _ROUND_EPS
    out[mask] = multiplier * sigma0 * sigma_obs[mask] / np.sqrt(redundancy[mask])
    return out


def external_reliability(
    qxx: np.ndarray,
    A: np.ndarray,
    blocks: Sequence,
    mdb: np.ndarray,
    coordinate_indices: Iterable[int],
) -> np.ndarray:
    """Largest coordinate shift produced by an MDB-sized bias, per row."""
    coords: List[int] = list(coordinate_indices)
    out = np.zeros(A.shape[0], dtype=float)
    if not coords:
        return out

    for block in blocks:
        rows = block.rows
        # Column j of A_b^T W_b is the normal-equation response to a unit bias in row j.
        response = qxx @ (A[rows, :].T @ block.weight)
        for j, row in enumerate(rows):
            if not math.isfinite(mdb[row]):
                out[row] = math.inf
                continue
            shift = response[:, j] * mdb[row]
            out[row] = float(np.max(np.abs(shift[coords])))
    return out
