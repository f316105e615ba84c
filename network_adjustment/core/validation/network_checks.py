"""Datum and connectivity checks run before an adjustment.

The checks are advisory: a network that fails them is still handed to the
solver, which then reports the singular system. The messages tell the
user what to fix.

No numerical work is done here; everything follows from the station
flags and the observation graph.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Set, Tuple

from ..models.network import Network
from ..models.observation import (
    BearingObservation,
    DirectionObservation,
    GpsObservation,
    Observation,
    involves_height,
    involves_plan,
)


class CheckStatus(Enum):
    """Status of one check."""
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class NetworkHealth:
    """Checklist of datum requirements and network connectivity."""

    horizontal_status: CheckStatus = CheckStatus.OK
    height_status: CheckStatus = CheckStatus.OK
    orientation_status: CheckStatus = CheckStatus.OK
    connectivity_status: CheckStatus = CheckStatus.OK
    fixed_plan_stations: List[str] = field(default_factory=list)
    fixed_height_stations: List[str] = field(default_factory=list)
    disconnected_stations: List[str] = field(default_factory=list)
    unused_stations: List[str] = field(default_factory=list)
    num_equations: int = 0
    num_unknowns: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def redundancy(self) -> int:
        return self.num_equations - self.num_unknowns

    @property
    def is_solvable(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict:
        return {
            "is_solvable": self.is_solvable,
            "horizontal": self.horizontal_status.value,
            "height": self.height_status.value,
            "orientation": self.orientation_status.value,
            "connectivity": self.connectivity_status.value,
            "fixed_plan_stations": self.fixed_plan_stations,
            "fixed_height_stations": self.fixed_height_stations,
            "disconnected_stations": self.disconnected_stations,
            "unused_stations": self.unused_stations,
            "num_equations": self.num_equations,
            "num_unknowns": self.num_unknowns,
            "redundancy": self.redundancy,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def _components(ids: Set[str], edges: Dict[str, Set[str]]) -> List[Set[str]]:
    """Connected components of the station graph restricted to ``ids``."""
    seen: Set[str] = set()
    components: List[Set[str]] = []
    for start in sorted(ids):
        if start in seen:
            continue
        comp = {start}
        queue = deque([start])
        seen.add(start)
        while queue:
            current = queue.popleft()
            for nb in edges.get(current, ()):
                if nb in ids and nb not in seen:
                    seen.add(nb)
                    comp.add(nb)
                    queue.append(nb)
        components.append(comp)
    return components


def _link(edges: Dict[str, Set[str]], obs: Observation) -> None:
    occupied = obs.occupied_station
    for sid in obs.stations:
        if sid != occupied:
            edges.setdefault(occupied, set()).add(sid)
            edges.setdefault(sid, set()).add(occupied)


def check_network(network: Network, observations: List[Observation]) -> NetworkHealth:
    """Check datum definition and connectivity for the observations to adjust.

    Args:
        network: network holding the stations
        observations: observations that enter the adjustment
    """
    health = NetworkHealth()
    stations = network.stations

    plan_ids: Set[str] = set()
    height_ids: Set[str] = set()
    plan_edges: Dict[str, Set[str]] = {}
    height_edges: Dict[str, Set[str]] = {}
    orientation_keys: Set[Tuple[str, str]] = set()
    has_azimuth_reference = False

    for obs in observations:
        health.num_equations += 2 if isinstance(obs, GpsObservation) else 1
        if involves_plan(obs):
            plan_ids.update(obs.stations)
            _link(plan_edges, obs)
        if involves_height(obs):
            height_ids.update(obs.stations)
            _link(height_edges, obs)
        if isinstance(obs, DirectionObservation):
            orientation_keys.add(obs.orientation_key)
        if isinstance(obs, (BearingObservation, GpsObservation)):
            has_azimuth_reference = True

    for sid in plan_ids:
        st = stations[sid]
        health.num_unknowns += (not st.fixed_easting) + (not st.fixed_northing)
    for sid in height_ids:
        health.num_unknowns += not stations[sid].fixed_height
    # One orientation per (set, occupied station).
    health.num_unknowns += len(orientation_keys)

    health.fixed_plan_stations = sorted(
        sid for sid in plan_ids if stations[sid].fixed_easting or stations[sid].fixed_northing
    )
    health.fixed_height_stations = sorted(sid for sid in height_ids if stations[sid].fixed_height)
    health.unused_stations = sorted(set(stations) - network.referenced_station_ids(observations))

    if plan_ids:
        fixed_e = any(stations[s].fixed_easting for s in plan_ids)
        fixed_n = any(stations[s].fixed_northing for s in plan_ids)
        fully_fixed = [s for s in plan_ids if stations[s].is_fixed]
        if not (fixed_e and fixed_n):
            health.horizontal_status = CheckStatus.ERROR
            health.errors.append(
                "No horizontal datum: fix easting and northing of at least one station"
            )
        elif len(fully_fixed) < 2 and not has_azimuth_reference:
            health.orientation_status = CheckStatus.WARNING
            health.warnings.append(
                "Rotation is not fixed by control: add a second control station, "
                "a bearing or a GPS vector"
            )

    if height_ids and not health.fixed_height_stations:
        health.height_status = CheckStatus.ERROR
        health.errors.append("No height datum: fix the height of at least one station")

    disconnected: Set[str] = set()
    for ids, edges, fixed in (
        (plan_ids, plan_edges, set(health.fixed_plan_stations)),
        (height_ids, height_edges, set(health.fixed_height_stations)),
    ):
        for comp in _components(ids, edges):
            if fixed and not comp & fixed:
                disconnected |= comp
    if disconnected:
        health.connectivity_status = CheckStatus.ERROR
        health.disconnected_stations = sorted(disconnected)
        health.errors.append(
            f"Stations not connected to control: {', '.join(health.disconnected_stations)}"
        )

    if health.num_equations and health.redundancy < 0:
        health.errors.append(
            f"Fewer equations ({health.num_equations}) than unknowns ({health.num_unknowns})"
        )
    elif health.num_equations and health.redundancy == 0:
        health.warnings.append("No redundancy: residuals and statistics are not testable")

    return health
