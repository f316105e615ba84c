"""network_adjustment.core.solver.normal_equations

Normal equations N dx = u with N = AᵀWA and u = AᵀWw.

Contributions are accumulated from the sparse design rows into an arena of
parameter-group blocks: one group per station (its E/N/H unknowns) and one
per direction-set orientation. Each weight block only touches the columns
its own rows reference, and only group pairs that share an observation (or
a correlated weight block) ever get a block, so accumulation work follows
network connectivity. ``to_dense`` assembles the full matrix for the
Cholesky factorization.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..statistics.postfit import scaled_condition_number
from .indexing import ParameterIndex


# Scaled condition number beyond which the system is treated as singular.
SINGULAR_CONDITION = 1e15


class SingularSystemError(np.linalg.LinAlgError):
    """The normal matrix cannot be factorized (datum defect or bad geometry)."""


class NormalEquations:
    """Block-sparse accumulator for AᵀWA and AᵀWw."""

    def __init__(self, index: ParameterIndex):
        self.index = index
        self.n = index.num_params
        self.rhs = np.zeros(self.n, dtype=float)

        group_ids: Dict[str, int] = {}
        self._group_of = np.zeros(self.n, dtype=int)
        self._local_of = np.zeros(self.n, dtype=int)
        members: List[List[int]] = []
        for j in range(self.n):
            name = index.parameter_group(j)
            g = group_ids.setdefault(name, len(group_ids))
            if g == len(members):
                members.append([])
            self._group_of[j] = g
            self._local_of[j] = len(members[g])
            members[g].append(j)
        self._members = [np.array(m, dtype=int) for m in members]
        self._blocks: Dict[Tuple[int, int], np.ndarray] = {}

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    def add(self, cols: np.ndarray, n_sub: np.ndarray, u_sub: np.ndarray) -> None:
        """Scatter a dense contribution over parameter columns ``cols``."""
        if cols.size == 0:
            return
        self.rhs[cols] += u_sub
        groups = self._group_of[cols]
        for gi in np.unique(groups):
            sel_i = np.nonzero(groups == gi)[0]
            loc_i = self._local_of[cols[sel_i]]
            for gj in np.unique(groups[groups >= gi]):
                sel_j = np.nonzero(groups == gj)[0]
                loc_j = self._local_of[cols[sel_j]]
                key = (int(gi), int(gj))
                blk = self._blocks.get(key)
                if blk is None:
                    blk = np.zeros((self._members[gi].size, self._members[gj].size), dtype=float)
                    self._blocks[key] = blk
                blk[np.ix_(loc_i, loc_j)] += n_sub[np.ix_(sel_i, sel_j)]

    def accumulate(self, rows: Sequence, w: np.ndarray, blocks: Sequence) -> None:
        """Add AᵀWA and AᵀWw for every weight block.

        Args:
            rows: sparse design rows (``cols``/``values``), one per equation
            w: misclosure vector
            blocks: weight blocks partitioning the rows
        """
        for block in blocks:
            block_rows = [rows[r] for r in block.rows]
            cols = np.unique(np.concatenate([row.cols for row in block_rows]))
            if cols.size == 0:
                continue
            Ac = np.zeros((len(block_rows), cols.size), dtype=float)
            for k, row in enumerate(block_rows):
                Ac[k, np.searchsorted(cols, row.cols)] = row.values
            AtW = Ac.T @ block.weight
            self.add(cols, AtW @ Ac, AtW @ w[block.rows])

    def to_dense(self) -> np.ndarray:
        N = np.zeros((self.n, self.n), dtype=float)
        for (gi, gj), blk in self._blocks.items():
            mi, mj = self._members[gi], self._members[gj]
            N[np.ix_(mi, mj)] = blk
            if gi != gj:
                N[np.ix_(mj, mi)] = blk.T
        return N


def build_normal_equations(
    index: ParameterIndex,
    lin,
    blocks: Sequence,
) -> Tuple[np.ndarray, np.ndarray]:
    """Dense (N, u) for a linearization and its weight blocks."""
    normal = NormalEquations(index)
    normal.accumulate(lin.rows, lin.misclosure, blocks)
    return normal.to_dense(), normal.rhs


def solve_normal_equations(
    N: np.ndarray,
    u: np.ndarray,
    index: ParameterIndex,
    singular_condition: float = SINGULAR_CONDITION,
    check_condition: bool = True,
) -> Tuple[np.ndarray, Optional[float]]:
    """Solve N dx = u by Cholesky factorization.

    The scaled condition number needs a full SVD. The solver checks it on
    the first iteration only; later iterations rely on the factorization.

    Returns:
        (dx, scaled condition number of N, or None when not checked)

    Raises:
        SingularSystemError: an undetermined parameter, a condition number
            above ``singular_condition``, or a failed Cholesky factorization
    """
    diag = np.diag(N)
    weak = np.nonzero(diag <= 0.0)[0]
    if weak.size:
        labels = ", ".join(index.label(int(j)) for j in weak[:5])
        raise SingularSystemError(f"Normal matrix is singular: no observation determines {labels}")

    cond: Optional[float] = None
    if check_condition:
        cond = scaled_condition_number(N)
        if not math.isfinite(cond) or cond > singular_condition:
            raise SingularSystemError(
                f"Normal matrix is singular (scaled condition number {cond:.3e}); "
                f"check the datum definition and network geometry"
            )

    try:
        L = np.linalg.cholesky(N)
    except np.linalg.LinAlgError as exc:
        raise SingularSystemError(
            "Normal matrix is not positive definite (datum definition / geometry issue)"
        ) from exc

    y = np.linalg.solve(L, u)
    dx = np.linalg.solve(L.T, y)
    return dx, cond
