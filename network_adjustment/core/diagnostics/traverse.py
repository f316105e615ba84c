"""Traverse closure diagnostics.

A traverse loop is a closed chain of horizontal distance legs where an
angle is observed at every vertex between the incoming and the outgoing
leg. Starting from the adjusted azimuth of the first leg, the observed
angles and distances are carried around the loop; the gap between the
end point and the start point is the linear misclosure and the gap
between the final and the starting azimuth is the angular misclosure.

Only horizontal distances are used. Their ground values are reduced to
the grid with the map scale factor.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from ..models.observation import (
    AngleObservation,
    DistanceMode,
    DistanceObservation,
    radians_to_arcseconds,
)
from ..results.diagnostics import TraverseLoop, TraverseSummary
from ..solver.geometry import TAU, azimuth, wrap_pi


logger = logging.getLogger(__name__)

# Upper bound on the number of loops reported for one network.
MAX_LOOPS = 200


class _LoopGraph:
    """Distance legs and vertex angles of a network."""

    def __init__(self):
        self.legs: Dict[FrozenSet[str], Tuple[float, str]] = {}
        self.angles: Dict[Tuple[str, str, str], Tuple[float, str]] = {}
        self.adjacent: Dict[str, set] = {}

    def add_leg(self, a: str, b: str, length: float, obs_id: str) -> None:
        key = frozenset((a, b))
        if key in self.legs:
            return
        self.legs[key] = (length, obs_id)
        self.adjacent.setdefault(a, set()).add(b)
        self.adjacent.setdefault(b, set()).add(a)

    def add_angle(self, at: str, frm: str, to: str, value: float, obs_id: str) -> None:
        if (at, frm, to) not in self.angles:
            self.angles[(at, frm, to)] = (value, obs_id)
        # The same pair of rays measured the other way round.
        if (at, to, frm) not in self.angles:
            self.angles[(at, to, frm)] = ((TAU - value) % TAU, obs_id)

    def turn(self, at: str, frm: str, to: str) -> Optional[Tuple[float, str]]:
        return self.angles.get((at, frm, to))

    def leg(self, a: str, b: str) -> Tuple[float, str]:
        return self.legs[frozenset((a, b))]


def build_loop_graph(solved: Sequence, map_scale_factor: float = 1.0) -> _LoopGraph:
    """Collect legs and angles from solved observations (observed values)."""
    graph = _LoopGraph()
    for sol in solved:
        obs = sol.source
        if isinstance(obs, DistanceObservation) and obs.mode == DistanceMode.HORIZONTAL:
            graph.add_leg(obs.from_id, obs.to_id, float(sol.observed) * map_scale_factor, obs.id)
        elif isinstance(obs, AngleObservation):
            graph.add_angle(obs.at_id, obs.from_id, obs.to_id, float(sol.observed), obs.id)
    return graph


def find_loops(graph: _LoopGraph, max_legs: int = 12) -> List[Tuple[str, ...]]:
    """Enumerate simple loops of 3..max_legs legs with an angle at every vertex.

    Each loop is reported once, starting at its smallest station ID.
    """
    loops: List[Tuple[str, ...]] = []

    def extend(path: List[str]) -> None:
        if len(loops) >= MAX_LOOPS:
            return
        start, last = path[0], path[-1]
        for nb in sorted(graph.adjacent.get(last, ())):
            if len(path) > 1 and graph.turn(last, path[-2], nb) is None:
                continue
            if nb == start:
                if (len(path) >= 3 and path[1] < path[-1]
                        and graph.turn(start, last, path[1]) is not None):
                    loops.append(tuple(path))
                continue
            if nb < start or nb in path or len(path) >= max_legs:
                continue
            path.append(nb)
            extend(path)
            path.pop()

    for start in sorted(graph.adjacent):
        extend([start])
    return loops


def loop_closure(
    loop: Sequence[str],
    graph: _LoopGraph,
    coords: Mapping[str, Tuple[float, float, float]],
    max_ppm: float,
    angular_tolerance_arcsec: float,
) -> TraverseLoop:
    """Carry the observed angles and distances around one loop."""
    k = len(loop)
    e0, n0, _ = coords[loop[0]]
    e1, n1, _ = coords[loop[1]]
    start_az = azimuth(e0, n0, e1, n1)

    az = start_az
    e, n = e0, n0
    length = 0.0
    obs_ids: List[str] = []
    for i in range(k):
        a, b, c = loop[i], loop[(i + 1) % k], loop[(i + 2) % k]
        leg, leg_id = graph.leg(a, b)
        e += leg * math.sin(az)
        n += leg * math.cos(az)
        length += leg
        angle, angle_id = graph.turn(b, a, c)
        az = (az + math.pi + angle) % TAU
        obs_ids.extend([leg_id, angle_id])

    d_e = e - e0
    d_n = n - n0
    linear = math.hypot(d_e, d_n)
    angular = radians_to_arcseconds(wrap_pi(az - start_az))
    tolerance = angular_tolerance_arcsec * math.sqrt(k)
    ppm = linear / length * 1e6 if length > 0 else math.inf
    ratio = length / linear if linear > 0 else math.inf
    passed = ppm <= max_ppm and abs(angular) <= tolerance

    return TraverseLoop(
        stations=tuple(loop),
        observation_ids=tuple(obs_ids),
        length=length,
        delta_easting=d_e,
        delta_northing=d_n,
        linear_misclosure=linear,
        angular_misclosure_arcsec=angular,
        angular_tolerance_arcsec=tolerance,
        closure_ratio=ratio,
        ppm=ppm,
        passed=passed,
        severity=ppm / max_ppm + abs(angular) / tolerance,
    )


def traverse_closures(
    solved: Sequence,
    coords: Mapping[str, Tuple[float, float, float]],
    options,
    log=None,
) -> Tuple[List[TraverseLoop], Optional[TraverseSummary]]:
    """Detect traverse loops and compute their closures.

    Args:
        solved: SolvedObservation list
        coords: adjusted station ID -> (E, N, H)
        options: AdjustmentOptions (thresholds, loop size, map scale)
        log: optional AuditLog receiving one line per loop

    Returns:
        (loops sorted by severity, summary or None when no loop exists)
    """
    graph = build_loop_graph(solved, options.map_scale_factor)
    loops = [
        loop_closure(loop, graph, coords, options.traverse_max_ppm,
                     options.traverse_angular_tolerance_arcsec)
        for loop in find_loops(graph, options.traverse_max_legs)
    ]
    if not loops:
        return [], None

    loops.sort(key=lambda t: (-t.severity, t.stations))
    for t in loops:
        msg = (
            f"Traverse closure residual {'-'.join(t.stations)}: dE={t.delta_easting:.4f} "
            f"dN={t.delta_northing:.4f} ({t.ppm:.1f} ppm), angular "
            f"{t.angular_misclosure_arcsec:.2f}\" ({'pass' if t.passed else 'warn'})"
        )
        if log is not None:
            (log.info if t.passed else log.warning)(msg)
        else:
            logger.info(msg)

    summary = TraverseSummary(
        closure_count=len(loops),
        total_distance=sum(t.length for t in loops),
        worst_ppm=max(t.ppm for t in loops),
        max_ppm=options.traverse_max_ppm,
        angular_tolerance_arcsec=options.traverse_angular_tolerance_arcsec,
        failed_count=sum(1 for t in loops if not t.passed),
    )
    return loops, summary
