"""
Network class for geodetic network adjustment.

The Network is the parsed input model handed to ``solve``:
- Stations (control and unknown)
- Instrument library
- Observations (the closed set of kinds in ``observation.py``)
- Sideshots (excluded from the adjustment, computed afterwards)

It provides methods for:
- Adding/retrieving stations, instruments and observations
- Grouping direction readings by set
- Reference checking (every observation must cite known stations)
- A compact summary

``solve`` treats the network as read-only input.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .instrument import Instrument
from .observation import DirectionObservation, Observation, ObservationType
from .sideshot import Sideshot
from .station import Station


class UnresolvedStationError(ValueError):
    """An observation references a station that is not in the network."""

    def __init__(self, missing: Dict[str, List[str]]):
        self.missing = missing
        parts = [
            f"'{sid}' (cited by {', '.join(sorted(obs_ids))})"
            for sid, obs_ids in sorted(missing.items())
        ]
        super().__init__("Unresolved station references: " + "; ".join(parts))


@dataclass
class Network:
    """
    Container for a survey network.

    Attributes:
        name: Human-readable name
        stations: Station ID -> Station
        instruments: Instrument code -> Instrument
        observations: Observations in input order
        sideshots: One-way shots computed after the adjustment
    """

    name: str = "Unnamed Network"
    stations: Dict[str, Station] = field(default_factory=dict)
    instruments: Dict[str, Instrument] = field(default_factory=dict)
    observations: List[Observation] = field(default_factory=list)
    sideshots: List[Sideshot] = field(default_factory=list)

    def get_station(self, station_id: str) -> Station:
        """
        Retrieve a station by ID.

        Raises:
            KeyError: If station_id is not found
        """
        if station_id not in self.stations:
            raise KeyError(f"Station '{station_id}' not found in network")
        return self.stations[station_id]

    def add_station(self, station: Station) -> None:
        """
        Add a station to the network.

        Raises:
            ValueError: If a station with the same ID already exists
        """
        if station.id in self.stations:
            raise ValueError(f"Station '{station.id}' already exists in network")
        self.stations[station.id] = station

    def add_instrument(self, instrument: Instrument) -> None:
        if instrument.code in self.instruments:
            raise ValueError(f"Instrument '{instrument.code}' already exists in network")
        self.instruments[instrument.code] = instrument

    def add_observation(self, obs: Observation) -> None:
        """
        Add an observation.

        Raises:
            ValueError: If an observation with the same ID already exists
        """
        if any(o.id == obs.id for o in self.observations):
            raise ValueError(f"Observation '{obs.id}' already exists in network")
        self.observations.append(obs)

    def add_sideshot(self, shot: Sideshot) -> None:
        self.sideshots.append(shot)

    def get_observation(self, obs_id: str) -> Observation:
        for obs in self.observations:
            if obs.id == obs_id:
                return obs
        raise KeyError(f"Observation '{obs_id}' not found in network")

    def get_fixed_stations(self) -> List[Station]:
        return [s for s in self.stations.values() if s.is_fixed]

    def observations_by_type(self) -> Dict[ObservationType, List[Observation]]:
        groups: Dict[ObservationType, List[Observation]] = defaultdict(list)
        for obs in self.observations:
            groups[obs.obs_type].append(obs)
        return dict(groups)

    def direction_sets(self) -> Dict[str, List[DirectionObservation]]:
        """
        Group direction readings by their set_id.

        Returns:
            Dictionary mapping set_id to its readings, in input order
        """
        sets: Dict[str, List[DirectionObservation]] = defaultdict(list)
        for obs in self.observations:
            if isinstance(obs, DirectionObservation):
                sets[obs.set_id].append(obs)
        return dict(sets)

    def referenced_station_ids(self, observations: Optional[Iterable[Observation]] = None) -> Set[str]:
        """Station IDs cited by ``observations`` (default: all observations)."""
        ids: Set[str] = set()
        for obs in self.observations if observations is None else observations:
            ids.update(obs.stations)
        return ids

    def unresolved_references(self) -> Dict[str, List[str]]:
        """
        Find station IDs cited by observations or sideshots but not defined.

        Sideshot targets are computed points and need not exist.

        Returns:
            Missing station ID -> IDs of the records citing it
        """
        missing: Dict[str, List[str]] = defaultdict(list)
        for obs in self.observations:
            for sid in obs.stations:
                if sid not in self.stations:
                    missing[sid].append(obs.id)
        for shot in self.sideshots:
            for sid in (shot.occupied_id, shot.backsight_id):
                if sid and sid not in self.stations:
                    missing[sid].append(shot.id)
        return dict(missing)

    def check_references(self) -> None:
        """
        Raises:
            UnresolvedStationError: If any record cites an unknown station
        """
        missing = self.unresolved_references()
        if missing:
            raise UnresolvedStationError(missing)

    def summary(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for obs_type, items in self.observations_by_type().items():
            counts[obs_type.value] = len(items)
        return {
            "name": self.name,
            "num_stations": len(self.stations),
            "num_fixed_stations": len(self.get_fixed_stations()),
            "num_instruments": len(self.instruments),
            "num_observations": len(self.observations),
            "observations_by_type": counts,
            "num_sideshots": len(self.sideshots),
        }

    def __repr__(self) -> str:
        return (
            f"Network('{self.name}', stations={len(self.stations)}, "
            f"observations={len(self.observations)})"
        )
