"""Suspect ranking and what-if impact analysis.

Ranking: observations failing the local test come first, then larger
|t|. Observations the network cannot check (r = 0) are not ranked.

What-if: each top candidate is re-solved in a sandbox that only adds the
candidate to the exclusion set. The committed result is never touched.
The solve function is passed in by the caller so this module does not
depend on the solver.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from ..results.diagnostics import Suspect, WhatIfImpact


logger = logging.getLogger(__name__)

SolveFunction = Callable[..., object]

# Redundancy below which an observation is treated as uncheckable.
MIN_REDUNDANCY = 1e-6


def suspect_score(standardized: float, local_failed: bool, critical_value: float) -> float:
    """|t| relative to the critical value, plus one for a failed local test."""
    ratio = abs(standardized) / critical_value if critical_value > 0 else abs(standardized)
    return ratio + (1.0 if local_failed else 0.0)


def rank_suspects(solved: Sequence, critical_value: float, limit: int = 20) -> List[Suspect]:
    """Rank likely blunders among the solved observations."""
    candidates = [
        s for s in solved
        if s.redundancy > MIN_REDUNDANCY and math.isfinite(s.standardized_residual)
    ]
    candidates.sort(key=lambda s: (s.local_test_passed, -abs(s.standardized_residual), s.id))

    suspects: List[Suspect] = []
    for rank, sol in enumerate(candidates[:limit], start=1):
        suspects.append(Suspect(
            rank=rank,
            observation_id=sol.id,
            obs_type=sol.obs_type.value,
            stations=sol.label,
            standardized=sol.standardized_residual,
            redundancy=sol.redundancy,
            mdb=sol.mdb,
            local_failed=not sol.local_test_passed,
            score=suspect_score(sol.standardized_residual, not sol.local_test_passed, critical_value),
        ))
    return suspects


def _status(result) -> Optional[str]:
    test = getattr(result, "chi_square_test", None)
    return test.status if test is not None else None


def max_coordinate_shift(before, after) -> tuple:
    """Largest 3D position change of any station between two results."""
    worst = 0.0
    worst_id = None
    for sid, st in after.stations.items():
        ref = before.stations.get(sid)
        if ref is None:
            continue
        shift = math.sqrt(
            (st.easting - ref.easting) ** 2
            + (st.northing - ref.northing) ** 2
            + (st.height - ref.height) ** 2
        )
        if shift > worst:
            worst, worst_id = shift, sid
    return worst, worst_id


def impact_score(seuw_before: float, seuw_after: float,
                 t_before: float, t_after: float) -> float:
    """Relative SEUW drop (x10) plus the drop of max |t|."""
    rel_drop = (seuw_before - seuw_after) / seuw_before if seuw_before > 0 else 0.0
    return 10.0 * max(rel_drop, 0.0) + max(t_before - t_after, 0.0)


def evaluate_exclusion(network, options, base, obs_id: str, obs_type: str,
                       solve_fn: SolveFunction) -> WhatIfImpact:
    """Re-solve without ``obs_id`` and compare with ``base``."""
    seuw_before = base.seuw
    t_before = base.max_abs_standardized
    try:
        trial = solve_fn(network, options.sandbox(obs_id))
    except ValueError as exc:
        return WhatIfImpact(
            observation_id=obs_id, obs_type=obs_type, success=False, converged=False,
            seuw_before=seuw_before, max_abs_t_before=t_before,
            chi_square_before=_status(base), message=str(exc),
        )

    if trial.cancelled or not trial.success:
        message = "re-solve cancelled" if trial.cancelled else (trial.error_message or "re-solve failed")
        return WhatIfImpact(
            observation_id=obs_id, obs_type=obs_type, success=False, converged=False,
            seuw_before=seuw_before, max_abs_t_before=t_before,
            chi_square_before=_status(base), message=message,
        )

    shift, station = max_coordinate_shift(base, trial)
    return WhatIfImpact(
        observation_id=obs_id,
        obs_type=obs_type,
        success=True,
        converged=trial.converged,
        seuw_before=seuw_before,
        seuw_after=trial.seuw,
        max_abs_t_before=t_before,
        max_abs_t_after=trial.max_abs_standardized,
        chi_square_before=_status(base),
        chi_square_after=_status(trial),
        max_coordinate_shift=shift,
        shifted_station=station,
        score=impact_score(seuw_before, trial.seuw, t_before, trial.max_abs_standardized),
        message="" if trial.converged else "re-solve did not converge",
    )


def what_if_analysis(
    network,
    options,
    base,
    suspects: Sequence[Suspect],
    solve_fn: SolveFunction,
) -> List[WhatIfImpact]:
    """Sandbox re-solves for the top ``options.what_if_candidates`` suspects.

    Runs in a thread pool when ``options.max_workers`` > 1. Every re-solve
    reads the same network and writes nothing shared.

    Returns:
        Impacts sorted by descending score
    """
    candidates = list(suspects[:options.what_if_candidates])
    if not candidates:
        return []

    def run(s: Suspect) -> WhatIfImpact:
        return evaluate_exclusion(network, options, base, s.observation_id, s.obs_type, solve_fn)

    if options.max_workers > 1 and len(candidates) > 1:
        with ThreadPoolExecutor(max_workers=options.max_workers) as pool:
            impacts = list(pool.map(run, candidates))
    else:
        impacts = [run(s) for s in candidates]

    for impact in impacts:
        if impact.success:
            logger.debug(
                "What-if %s: SEUW %.4f -> %.4f, max |t| %.2f -> %.2f",
                impact.observation_id, impact.seuw_before, impact.seuw_after,
                impact.max_abs_t_before, impact.max_abs_t_after,
            )
    impacts.sort(key=lambda w: (-w.score, w.observation_id))
    return impacts
