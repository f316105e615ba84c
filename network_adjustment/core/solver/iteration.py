"""network_adjustment.core.solver.iteration

Iterative solution of the adjustment.

State machine:

    initialize -> {linearize, accumulate, solve, apply, test convergence} x n
               -> converged | iteration limit | singular | cancelled

Gauss-Newton iterations run inside an optional IRLS loop. Each IRLS pass
starts from the previous pass's estimate, recomputes standardized
residuals with the a priori sigma0 and turns them into per-observation
weight factors. The loop stops after ``robust_max_iterations`` passes or
when no factor changes by more than ``robust_tol``.

A cancellation event is checked between iterations; the last complete
estimate is kept.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..models.options import AdjustmentOptions
from ..results.diagnostics import RobustSummary
from ..statistics.postfit import standardized_residuals
from .audit import AuditLog
from .correlation import WeightBlock, effective_blocks
from .geometry import horizontal_distance
from .indexing import OrientationKey, ParameterIndex
from .linearize import linearize
from .normal_equations import SingularSystemError, build_normal_equations, solve_normal_equations
from .robust import (
    describe_method,
    get_weight_function,
    iteration_record,
    observation_weight_factors,
)


@dataclass
class _State:
    """Mutable state during iterative adjustment."""
    points: Dict[str, Tuple[float, float, float]]   # id -> (E, N, H)
    orientations: Dict[OrientationKey, float]        # (set_id, station) -> omega (rad)

    def apply(self, index: ParameterIndex, dx: np.ndarray) -> None:
        """Apply corrections vector dx to the state."""
        for (sid, comp), j in index.coord_index.items():
            e, n, h = self.points[sid]
            if comp == "E":
                e += float(dx[j])
            elif comp == "N":
                n += float(dx[j])
            else:
                h += float(dx[j])
            self.points[sid] = (e, n, h)

        for key, j in index.orientation_index.items():
            self.orientations[key] = self.orientations.get(key, 0.0) + float(dx[j])


@dataclass
class IterationOutcome:
    state: _State
    row_factors: np.ndarray
    converged: bool = False
    iterations: int = 0
    solved: bool = False
    singular: bool = False
    cancelled: bool = False
    message: Optional[str] = None
    condition_number: Optional[float] = None
    robust: Optional[RobustSummary] = None
    last_correction: float = math.inf


def network_span(points: Mapping[str, Tuple[float, float, float]], station_ids: Iterable[str]) -> float:
    """Approximate network span for orientation convergence scaling."""
    coords = [points[sid][:2] for sid in station_ids if sid in points]
    if len(coords) < 2:
        return 1.0
    es = [c[0] for c in coords]
    ns = [c[1] for c in coords]
    span = horizontal_distance(min(es), min(ns), max(es), max(ns))
    return max(span, 1.0)


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _gauss_newton(
    problem,
    index: ParameterIndex,
    blocks: Sequence[WeightBlock],
    outcome: IterationOutcome,
    options: AdjustmentOptions,
    orient_tol: float,
    cancel_event: Optional[threading.Event],
    log: AuditLog,
) -> None:
    state = outcome.state
    outcome.converged = False
    coord_idx = np.array(index.coordinate_indices, dtype=int)
    orient_idx = np.array(list(index.orientation_index.values()), dtype=int)

    for _ in range(options.max_iterations):
        if _cancelled(cancel_event):
            outcome.cancelled = True
            log.warning(f"Adjustment cancelled after {outcome.iterations} iteration(s)")
            return

        try:
            lin = linearize(
                problem.observations, state.points, state.orientations,
                index, problem.num_rows, problem.settings,
            )
        except ValueError as exc:
            outcome.singular = True
            outcome.message = f"Degenerate geometry: {exc}"
            log.warning(outcome.message)
            return

        N, u = build_normal_equations(index, lin, blocks)
        try:
            dx, cond = solve_normal_equations(N, u, index, check_condition=not outcome.solved)
        except SingularSystemError as exc:
            outcome.singular = True
            outcome.message = str(exc)
            log.warning(outcome.message)
            return

        state.apply(index, dx)
        outcome.solved = True
        outcome.iterations += 1
        if cond is not None:
            outcome.condition_number = cond

        coord_max = float(np.max(np.abs(dx[coord_idx]))) if coord_idx.size else 0.0
        orient_max = float(np.max(np.abs(dx[orient_idx]))) if orient_idx.size else 0.0
        outcome.last_correction = coord_max
        log.debug(
            f"Iteration {outcome.iterations}: max coordinate correction {coord_max:.3e} m, "
            f"max orientation correction {orient_max:.3e} rad"
        )

        if coord_max <= options.convergence_threshold and orient_max <= orient_tol:
            outcome.converged = True
            return

    log.warning(
        f"Iteration limit reached ({options.max_iterations}) with max correction "
        f"{outcome.last_correction:.3e} m"
    )


def run_iterations(
    problem,
    index: ParameterIndex,
    blocks: Sequence[WeightBlock],
    state: _State,
    options: AdjustmentOptions,
    log: AuditLog,
    cancel_event: Optional[threading.Event] = None,
) -> IterationOutcome:
    """Iterate to convergence, with robust re-weighting if configured.

    Args:
        problem: prepared AdjustmentProblem
        index: parameter index
        blocks: nominal weight blocks
        state: initial coordinates and orientations (updated in place)
    """
    m = problem.num_rows
    factors = np.ones(m, dtype=float)
    weight_func = get_weight_function(options)

    outcome = IterationOutcome(state=state, row_factors=factors)
    if weight_func is not None:
        outcome.robust = RobustSummary(
            estimator=options.robust_estimator.value,
            description=describe_method(options),
            converged=False,
        )
        log.info(f"Robust estimation: {outcome.robust.description}")

    station_ids = index.plan_stations | index.height_stations
    span = network_span(state.points, station_ids)
    orient_tol = max(1e-14, options.convergence_threshold / span)
    sigma0 = math.sqrt(options.a_priori_variance)

    passes = options.robust_max_iterations if weight_func is not None else 1
    for irls_pass in range(1, passes + 1):
        eff = effective_blocks(blocks, factors)
        _gauss_newton(problem, index, eff, outcome, options, orient_tol, cancel_event, log)

        if weight_func is None or outcome.singular or outcome.cancelled:
            break

        try:
            lin = linearize(
                problem.observations, state.points, state.orientations,
                index, problem.num_rows, problem.settings,
            )
            N, _ = build_normal_equations(index, lin, eff)
            qxx = np.linalg.inv(N)
        except (ValueError, np.linalg.LinAlgError) as exc:
            log.warning(f"IRLS pass {irls_pass}: re-weighting stopped ({exc})")
            break
        t, _, _ = standardized_residuals(lin.A, lin.misclosure, qxx, eff, blocks, sigma0)

        new_factors = observation_weight_factors(problem.observations, t, weight_func)
        record = iteration_record(irls_pass, problem.observations, new_factors, factors, t)
        outcome.robust.iterations.append(record)
        log.info(
            f"IRLS pass {irls_pass}: mean weight {record.mean_weight:.4f}, "
            f"min weight {record.min_weight:.4f}, max |t| {record.max_abs_standardized:.2f}, "
            f"downweighted {record.downweighted}, max weight change {record.max_weight_change:.2e}"
        )

        if record.max_weight_change < options.robust_tol:
            outcome.robust.converged = True
            break
        if irls_pass == passes:
            break
        # The next pass starts from the current estimate.
        factors = new_factors
        outcome.row_factors = factors

    if outcome.robust is not None:
        if outcome.robust.converged:
            log.info(f"IRLS converged after {len(outcome.robust.iterations)} pass(es)")
        elif not (outcome.singular or outcome.cancelled):
            log.warning(f"IRLS did not converge after {passes} pass(es)")

    return outcome
