"""network_adjustment.core.solver.adjustment

Least-squares adjustment of a mixed geodetic network.

This is the single entry point of the engine:

    result = solve(network, options)

Stages:
  1. reference check (raises UnresolvedStationError)
  2. problem preparation: exclusions, overrides, sigmas, direction sets
  3. datum / connectivity checks (advisory)
  4. Gauss-Newton iterations, optionally inside an IRLS loop
  5. post-fit statistics from the final linearization
  6. diagnostics: direction tables, traverse closures, setups, suspects,
     what-if re-solves, sideshots, relative precision, type summary

The network and the options are read, never written. Numerical failures
become non-converged or failed results; they are not raised.
"""

from __future__ import annotations

import functools
import logging
import math
import threading
from typing import Dict, List, Optional

import numpy as np

from ..diagnostics.direction_sets import annotate_targets, repeatability
from ..diagnostics.precision import relative_precision
from ..diagnostics.setups import summarize_setups
from ..diagnostics.sideshots import compute_sideshots
from ..diagnostics.summary import type_summary
from ..diagnostics.suspects import rank_suspects, what_if_analysis
from ..diagnostics.traverse import traverse_closures
from ..geometry.ellipse import error_ellipse_from_covariance
from ..models.network import Network
from ..models.observation import DirectionObservation, GpsObservation
from ..models.options import AdjustmentOptions
from ..models.station import Station
from ..results.adjustment_result import AdjustmentResult, SolvedObservation
from ..statistics.postfit import PostFitStatistics, compute_postfit, scaled_condition_number
from ..validation.network_checks import check_network
from .audit import AuditLog
from .correlation import build_weight_blocks, effective_blocks
from .geometry import wrap_2pi
from .indexing import ParameterIndex, build_parameter_index, orientation_label
from .iteration import IterationOutcome, _State, run_iterations
from .linearize import Linearization, initial_orientations, linearize
from .normal_equations import build_normal_equations
from .problem import AdjustmentProblem, prepare_problem


logger = logging.getLogger(__name__)


def solve(
    network: Network,
    options: Optional[AdjustmentOptions] = None,
    cancel_event: Optional[threading.Event] = None,
    diagnostics: bool = True,
) -> AdjustmentResult:
    """Adjust a network by weighted least squares.

    Args:
        network: stations, instruments, observations and sideshots
        options: adjustment configuration (defaults if None)
        cancel_event: set from another thread to stop at the next iteration
        diagnostics: compute the derived diagnostics; what-if re-solves
            run without them

    Returns:
        AdjustmentResult. ``success`` is False only when no increment
        could be solved at all.

    Raises:
        UnresolvedStationError: an observation or sideshot cites an
            unknown station
        StochasticModelError: an observation has no resolvable sigma
    """
    options = options or AdjustmentOptions.default()
    network.check_references()

    log = AuditLog(logger)
    log.info(
        f"Adjusting network '{network.name}': {len(network.stations)} stations, "
        f"{len(network.observations)} observations"
    )

    problem = prepare_problem(network, options)
    log.extend(problem.messages)

    if not problem.observations:
        return AdjustmentResult.failure(
            "No observations to adjust", messages=log.messages,
            network_name=network.name, excluded_observations=problem.excluded,
        )

    working = [p.obs for p in problem.observations]
    health = check_network(network, working)
    for message in health.errors + health.warnings:
        log.warning(message)

    index = build_parameter_index(network.stations, working)
    if index.num_params == 0:
        return AdjustmentResult.failure(
            "All coordinates are fixed - nothing to adjust", messages=log.messages,
            network_name=network.name, excluded_observations=problem.excluded,
        )

    if options.map_scale_factor != 1.0:
        log.info(f"Map reduction active: scale factor {options.map_scale_factor:.8f}")
    if options.curvature_refraction:
        log.info(
            f"Vertical reduction active: curvature and refraction, "
            f"k={options.refraction_coefficient:.3f}"
        )

    blocks, correlation = build_weight_blocks(
        problem.observations, options.correlation_scope, options.correlation_rho
    )
    if correlation.enabled:
        log.info(
            f"Correlated angular groups ({correlation.scope}, rho={correlation.rho:.3f}): "
            f"{correlation.group_count} group(s), {correlation.equation_count} equation(s)"
        )

    points = {sid: (st.easting, st.northing, st.height) for sid, st in network.stations.items()}
    directions = [o for o in working if isinstance(o, DirectionObservation)]
    state = _State(points=points, orientations=initial_orientations(directions, points))

    outcome = run_iterations(problem, index, blocks, state, options, log, cancel_event)

    if not outcome.solved:
        return AdjustmentResult.failure(
            outcome.message or ("Adjustment cancelled before the first iteration"
                                if outcome.cancelled else "No solution could be computed"),
            messages=log.messages,
            cancelled=outcome.cancelled,
            network_name=network.name,
            excluded_observations=problem.excluded,
            correlation=correlation,
            robust=outcome.robust,
        )

    if outcome.converged:
        log.info(f"Converged after {outcome.iterations} iteration(s)")

    try:
        lin = linearize(
            problem.observations, state.points, state.orientations,
            index, problem.num_rows, problem.settings,
        )
    except ValueError as exc:
        return AdjustmentResult.failure(
            f"Degenerate geometry in the final estimate: {exc}", messages=log.messages,
            cancelled=outcome.cancelled, network_name=network.name,
            excluded_observations=problem.excluded, iterations=outcome.iterations,
        )
    eff = effective_blocks(blocks, outcome.row_factors)
    N, _ = build_normal_equations(index, lin, eff)

    stats: Optional[PostFitStatistics] = None
    if not outcome.singular:
        try:
            stats = compute_postfit(
                lin.A, lin.misclosure, eff, blocks, N, index.coordinate_indices,
                a_priori_variance=options.a_priori_variance,
                alpha_local=options.alpha_local,
                mdb_power=options.mdb_power,
                confidence_level=options.confidence_level,
                use_a_posteriori_variance=options.use_a_posteriori_variance,
            )
        except np.linalg.LinAlgError as exc:
            log.warning(f"Post-fit statistics unavailable: normal matrix not invertible ({exc})")

    result = AdjustmentResult(
        success=True,
        converged=outcome.converged,
        cancelled=outcome.cancelled,
        iterations=outcome.iterations,
        robust=outcome.robust,
        correlation=correlation,
        network_name=network.name,
        excluded_observations=list(problem.excluded),
        orientations={k: wrap_2pi(v) for k, v in state.orientations.items()},
        parameter_order=list(index.coord_order) + [("@", orientation_label(k)) for k in index.orientation_order],
    )

    try:
        cond = scaled_condition_number(N)
    except np.linalg.LinAlgError:
        cond = math.inf
    result.condition_number = cond
    if cond > options.condition_threshold:
        result.condition_warning = True
        log.warning(f"Normal matrix is ill-conditioned (scaled condition number {cond:.3e})")

    if stats is not None:
        _apply_statistics(result, stats, options, log)

    result.stations = _adjusted_stations(network, state, index, stats, options)
    result.observations = _solved_observations(problem, lin, outcome, stats)

    by_id = {sol.id: sol for sol in result.observations}
    annotate_targets(problem.directions.targets, by_id)
    result.direction_sets = list(problem.directions.sets)
    result.direction_targets = list(problem.directions.targets)
    result.direction_rejects = list(problem.directions.rejects)
    result.direction_repeatability = repeatability(problem.directions.targets)

    if diagnostics:
        _run_diagnostics(result, network, options, stats, state, log, cancel_event)

    result.messages = log.messages
    return result


def _apply_statistics(result: AdjustmentResult, stats: PostFitStatistics,
                      options: AdjustmentOptions, log: AuditLog) -> None:
    result.degrees_of_freedom = stats.dof
    result.vtpv = stats.vtpv
    result.variance_factor = stats.variance_factor
    result.seuw = stats.seuw
    result.covariance = stats.covariance
    result.critical_value = stats.critical_value
    result.chi_square_test = stats.chi_square
    for note in stats.notes:
        log.info(note)

    log.info(
        f"SEUW {stats.seuw:.4f}, variance factor {stats.variance_factor:.4f}, "
        f"dof {stats.dof}"
    )
    test = stats.chi_square
    if test is not None:
        line = (
            f"Global chi-square test: {test.status} (T={test.test_statistic:.3f}, "
            f"bounds [{test.critical_lower:.3f}, {test.critical_upper:.3f}])"
        )
        if test.passed:
            log.info(line)
        else:
            log.warning(line)

    failed = int(np.count_nonzero(~stats.local_passed))
    if failed:
        log.warning(f"{failed} observation row(s) fail the local test (k={stats.critical_value:.2f})")
    if stats.redundancy.size and np.any(~np.isfinite(stats.mdb)):
        log.warning(
            f"{int(np.count_nonzero(~np.isfinite(stats.mdb)))} observation row(s) have zero "
            f"redundancy: blunders there cannot be detected"
        )
    if result.robust is not None and result.robust.final_downweighted:
        log.warning(f"Robust estimation down-weighted {result.robust.final_downweighted} observation(s)")


def _adjusted_stations(
    network: Network,
    state: _State,
    index: ParameterIndex,
    stats: Optional[PostFitStatistics],
    options: AdjustmentOptions,
) -> Dict[str, Station]:
    cov = stats.covariance if stats is not None else None
    adjusted: Dict[str, Station] = {}

    for sid in sorted(network.stations):
        st = network.stations[sid]
        ie, in_, ih = index.get(sid, "E"), index.get(sid, "N"), index.get(sid, "H")
        if ie is None and in_ is None and ih is None:
            adjusted[sid] = st
            continue

        e, n, h = state.points[sid]
        if cov is None:
            adjusted[sid] = st.with_solution(e, n, h)
            continue

        def sigma(i: Optional[int]) -> Optional[float]:
            return math.sqrt(max(float(cov[i, i]), 0.0)) if i is not None else None

        ellipse = None
        if ie is not None or in_ is not None:
            cov2 = np.zeros((2, 2), dtype=float)
            for a, ia in enumerate((ie, in_)):
                for b, ib in enumerate((ie, in_)):
                    if ia is not None and ib is not None:
                        cov2[a, b] = cov[ia, ib]
            ellipse = error_ellipse_from_covariance(cov2, options.confidence_level)

        adjusted[sid] = st.with_solution(
            e, n, h,
            sigma_easting=sigma(ie),
            sigma_northing=sigma(in_),
            sigma_height=sigma(ih),
            error_ellipse=ellipse,
        )
    return adjusted


def _solved_observations(
    problem: AdjustmentProblem,
    lin: Linearization,
    outcome: IterationOutcome,
    stats: Optional[PostFitStatistics],
) -> List[SolvedObservation]:
    solved: List[SolvedObservation] = []
    for item, computed in zip(problem.observations, lin.computed):
        rows = list(item.rows)
        v = [float(lin.misclosure[r]) for r in rows]
        weight = float(min(outcome.row_factors[r] for r in rows))

        if stats is not None:
            t = [float(stats.standardized[r]) for r in rows]
            r_num = [float(stats.redundancy[r]) for r in rows]
            mdb = [float(stats.mdb[r]) for r in rows]
            ext = [float(stats.external[r]) for r in rows]
            passed = all(bool(stats.local_passed[r]) for r in rows)
        else:
            t = [math.nan] * len(rows)
            r_num = [0.0] * len(rows)
            mdb = [math.inf] * len(rows)
            ext = [math.nan] * len(rows)
            passed = True

        if isinstance(item.obs, GpsObservation):
            worst = max(range(len(rows)), key=lambda k: abs(t[k]) if math.isfinite(t[k]) else -1.0)
            solved.append(SolvedObservation(
                source=item.source,
                observed=item.obs.value,
                computed=tuple(computed),
                residual=tuple(v),
                standardized_residual=t[worst],
                redundancy=sum(r_num),
                local_test_passed=passed,
                mdb=max(mdb),
                external_reliability=max(ext) if not any(math.isnan(x) for x in ext) else math.nan,
                sigma=item.sigma.sigma,
                sigma_source=item.sigma.source,
                robust_weight=weight,
                row=item.row,
                standardized_components=tuple(t),
                redundancy_components=tuple(r_num),
                mdb_components=tuple(mdb),
            ))
        else:
            solved.append(SolvedObservation(
                source=item.source,
                observed=float(item.obs.value),
                computed=float(computed),
                residual=v[0],
                standardized_residual=t[0],
                redundancy=r_num[0],
                local_test_passed=passed,
                mdb=mdb[0],
                external_reliability=ext[0],
                sigma=item.sigma.sigma,
                sigma_source=item.sigma.source,
                robust_weight=weight,
                row=item.row,
            ))
    return solved


def _run_diagnostics(
    result: AdjustmentResult,
    network: Network,
    options: AdjustmentOptions,
    stats: Optional[PostFitStatistics],
    state: _State,
    log: AuditLog,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    result.traverse_loops, result.traverse_summary = traverse_closures(
        result.observations, state.points, options, log
    )
    result.setups = summarize_setups(result.observations)
    result.type_summary = type_summary(result.observations)

    if network.sideshots:
        result.sideshots = compute_sideshots(
            network.sideshots, result.stations, network.stations, network.instruments,
            result.station_covariance, options.map_scale_factor,
        )
        missing = [s.id for s in result.sideshots if not s.has_azimuth]
        if missing:
            log.warning(f"Sideshot azimuth unavailable: {', '.join(missing)}")

    if stats is None:
        return

    result.relative_precision = relative_precision(
        result.observations, result.stations, result.covariance, result.parameter_order,
        options.relative_precision_pairs, options.confidence_level, log,
    )

    result.suspects = rank_suspects(result.observations, stats.critical_value, options.suspect_limit)
    if result.suspects and options.what_if_candidates > 0:
        if cancel_event is not None and cancel_event.is_set():
            log.warning("What-if analysis skipped: adjustment cancelled")
            return
        sandbox_solve = functools.partial(solve, cancel_event=cancel_event, diagnostics=False)
        result.what_if = what_if_analysis(network, options, result, result.suspects, sandbox_solve)
        log.info(f"What-if analysis: {len(result.what_if)} candidate(s) re-solved")
