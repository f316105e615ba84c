"""network_adjustment.core.solver.indexing

Parameter indexing helpers.

The least-squares solver works with a single parameter vector. This module
builds a stable mapping from logical unknowns to vector indices.

Unknown types:
  - Station easting/northing, for free components of stations referenced by
    planimetric observations (distance, angle, direction, bearing, zenith, GPS)
  - Station height, for free heights of stations referenced by leveling,
    zenith angles or slope distances
  - Direction-set orientations, one per (set ID, occupied station); a set
    ID reused at two setups gives two unknowns
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..models.observation import (
    DirectionObservation,
    Observation,
    involves_height,
    involves_plan,
)
from ..models.station import Station


# (set_id, occupied station)
OrientationKey = Tuple[str, str]


def orientation_label(key: OrientationKey) -> str:
    """Text form of an orientation key, e.g. ``S1@O``."""
    return f"{key[0]}@{key[1]}"


@dataclass(frozen=True)
class ParameterIndex:
    """Mapping of unknown parameters to indices in the solver vector."""

    coord_index: Dict[Tuple[str, str], int]          # (station_id, 'E'|'N'|'H') -> idx
    orientation_index: Dict[OrientationKey, int]    # (set_id, station) -> idx
    num_params: int
    coord_order: List[Tuple[str, str]]
    orientation_order: List[OrientationKey]
    plan_stations: frozenset = frozenset()
    height_stations: frozenset = frozenset()

    @property
    def coordinate_indices(self) -> List[int]:
        return [self.coord_index[key] for key in self.coord_order]

    def get(self, station_id: str, component: str) -> Optional[int]:
        return self.coord_index.get((station_id, component))

    def parameter_group(self, idx: int) -> str:
        """Arena group of a parameter: the station ID, or ``@set@station`` for orientations."""
        if idx < len(self.coord_order):
            return self.coord_order[idx][0]
        return "@" + orientation_label(self.orientation_order[idx - len(self.coord_order)])

    def label(self, idx: int) -> str:
        if idx < len(self.coord_order):
            sid, comp = self.coord_order[idx]
            return f"{sid}.{comp}"
        return f"orientation[{orientation_label(self.orientation_order[idx - len(self.coord_order)])}]"


def build_parameter_index(
    stations: Mapping[str, Station],
    observations: Sequence[Observation],
) -> ParameterIndex:
    """Build a stable parameter index.

    Ordering (stable / reproducible):
      1) station IDs sorted ascending
      2) components in the order E, N, H (if that component is a free unknown)
      3) orientation keys (set ID, station) sorted ascending
    """
    plan_ids: Set[str] = set()
    height_ids: Set[str] = set()
    orientation_keys: Set[OrientationKey] = set()

    for obs in observations:
        if involves_plan(obs):
            plan_ids.update(obs.stations)
        if involves_height(obs):
            height_ids.update(obs.stations)
        if isinstance(obs, DirectionObservation):
            orientation_keys.add(obs.orientation_key)

    coord_index: Dict[Tuple[str, str], int] = {}
    orientation_index: Dict[OrientationKey, int] = {}
    coord_order: List[Tuple[str, str]] = []
    orientation_order: List[OrientationKey] = []

    idx = 0
    for sid in sorted(stations):
        st = stations[sid]
        components = []
        if sid in plan_ids:
            if not st.fixed_easting:
                components.append("E")
            if not st.fixed_northing:
                components.append("N")
        if sid in height_ids and not st.fixed_height:
            components.append("H")
        for comp in components:
            coord_index[(sid, comp)] = idx
            coord_order.append((sid, comp))
            idx += 1

    for key in sorted(orientation_keys):
        orientation_index[key] = idx
        orientation_order.append(key)
        idx += 1

    return ParameterIndex(
        coord_index=coord_index,
        orientation_index=orientation_index,
        num_params=idx,
        coord_order=coord_order,
        orientation_order=orientation_order,
        plan_stations=frozenset(plan_ids),
        height_stations=frozenset(height_ids),
    )
