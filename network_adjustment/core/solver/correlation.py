"""network_adjustment.core.solver.correlation

Block-diagonal weight model.

Every observation row belongs to exactly one weight block:
  - 1x1 blocks for uncorrelated scalar observations
  - 2x2 blocks for GPS vectors (E/N covariance of the vector)
  - kxk blocks for correlated angular groups

Angular observations (angles and directions) are grouped by
(setup station [, set id [, observation type]]) according to the
correlation scope. Within a group the covariance is

    C_ii = σ_i²,  C_ij = ρ σ_i σ_j  (i != j)

and the weight sub-matrix is its inverse. Robust factors are applied to a
block as W_eff = D W D with D = diag(sqrt(u)).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..models.observation import (
    AngleObservation,
    BearingObservation,
    DirectionObservation,
    DistanceObservation,
    GpsObservation,
    LevelingObservation,
    Observation,
    SigmaSource,
    ZenithObservation,
)
from ..models.options import CorrelationScope
from ..results.diagnostics import CorrelationSummary


@dataclass(frozen=True, eq=False)
class WeightBlock:
    """Cofactor and weight sub-matrices for a set of observation rows."""

    rows: np.ndarray
    cofactor: np.ndarray
    weight: np.ndarray
    key: Optional[Tuple[str, ...]] = None

    @property
    def size(self) -> int:
        return int(self.rows.size)

    def scaled(self, factors: np.ndarray) -> "WeightBlock":
        """Block with robust weight factors ``factors`` (one per row) applied."""
        d = np.sqrt(np.asarray(factors, dtype=float))
        inv = 1.0 / d
        return WeightBlock(
            rows=self.rows,
            cofactor=self.cofactor * inv[:, None] * inv[None, :],
            weight=self.weight * d[:, None] * d[None, :],
            key=self.key,
        )


def correlation_key(obs: Observation, scope: CorrelationScope) -> Optional[Tuple[str, ...]]:
    """Group key of an observation, or None if it is uncorrelated."""
    if isinstance(obs, (AngleObservation, DirectionObservation)):
        if scope == CorrelationScope.NONE:
            return None
        if scope == CorrelationScope.SETUP:
            return (obs.at_id,)
        if scope == CorrelationScope.SETUP_SET:
            return (obs.at_id, obs.set_id)
        return (obs.at_id, obs.set_id, obs.obs_type.value)
    if isinstance(obs, (DistanceObservation, BearingObservation, ZenithObservation,
                        GpsObservation, LevelingObservation)):
        return None
    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")


def _gps_covariance(item) -> np.ndarray:
    se = item.sigma.sigma
    sn = item.sigma.sigma_northing if item.sigma.sigma_northing is not None else se
    c = item.sigma.correlation * se * sn
    return np.array([[se * se, c], [c, sn * sn]], dtype=float)


def _single_block(item) -> WeightBlock:
    if isinstance(item.obs, GpsObservation):
        cov = _gps_covariance(item)
        return WeightBlock(
            rows=np.array([item.row, item.row + 1], dtype=int),
            cofactor=cov,
            weight=np.linalg.inv(cov),
        )
    var = item.sigma.sigma ** 2
    return WeightBlock(
        rows=np.array([item.row], dtype=int),
        cofactor=np.array([[var]], dtype=float),
        weight=np.array([[1.0 / var]], dtype=float),
    )


def _group_block(key: Tuple[str, ...], members: Sequence, rho: float) -> WeightBlock:
    sigmas = np.array([m.sigma.sigma for m in members], dtype=float)
    cov = rho * np.outer(sigmas, sigmas)
    np.fill_diagonal(cov, sigmas ** 2)
    return WeightBlock(
        rows=np.array([m.row for m in members], dtype=int),
        cofactor=cov,
        weight=np.linalg.inv(cov),
        key=key,
    )


def build_weight_blocks(
    prepared: Sequence,
    scope: CorrelationScope = CorrelationScope.NONE,
    rho: float = 0.0,
) -> Tuple[List[WeightBlock], CorrelationSummary]:
    """Build the block-diagonal weight model.

    Args:
        prepared: items with ``obs``, ``sigma`` (SigmaResolution), ``row``
        scope: correlation grouping of angular observations
        rho: shared correlation coefficient within a group

    Returns:
        (blocks ordered by first row, correlation summary)
    """
    enabled = scope != CorrelationScope.NONE and rho > 0.0
    groups: Dict[Tuple[str, ...], List] = defaultdict(list)
    blocks: List[WeightBlock] = []

    for item in prepared:
        key = correlation_key(item.obs, scope) if enabled else None
        # Fixed observations keep their own block.
        if key is None or item.sigma.source == SigmaSource.FIXED:
            blocks.append(_single_block(item))
        else:
            groups[key].append(item)

    group_count = 0
    equation_count = 0
    pair_count = 0
    max_size = 0
    off_diag_sum = 0.0
    off_diag_n = 0

    for key in sorted(groups):
        members = groups[key]
        if len(members) == 1:
            blocks.append(_single_block(members[0]))
            continue
        block = _group_block(key, members, rho)
        blocks.append(block)

        k = len(members)
        group_count += 1
        equation_count += k
        pair_count += k * (k - 1) // 2
        max_size = max(max_size, k)
        off = block.weight[~np.eye(k, dtype=bool)]
        off_diag_sum += float(np.abs(off).sum())
        off_diag_n += off.size

    blocks.sort(key=lambda b: int(b.rows.min()))

    summary = CorrelationSummary(
        enabled=enabled,
        scope=scope.value,
        rho=rho if enabled else 0.0,
        group_count=group_count,
        equation_count=equation_count,
        pair_count=pair_count,
        max_group_size=max_size,
        mean_abs_off_diagonal_weight=off_diag_sum / off_diag_n if off_diag_n else 0.0,
    )
    return blocks, summary


def effective_blocks(blocks: Sequence[WeightBlock], row_factors: np.ndarray) -> List[WeightBlock]:
    """Apply per-row robust factors to every block."""
    if np.all(row_factors == 1.0):
        return list(blocks)
    return [b.scaled(row_factors[b.rows]) for b in blocks]
