"""network_adjustment.core.solver.problem

Turns a network and its options into the list of observations that enter
the adjustment:

1. exclusions are dropped
2. override values are applied to copies of the observations
3. sigmas are resolved (override > fixed > explicit > instrument)
4. direction readings are reduced per set (or kept raw)
5. design-matrix rows are assigned in input order

The network and its observations are never modified.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from ..diagnostics.direction_sets import ReducedDirections, reduce_direction_sets
from ..models.network import Network
from ..models.observation import DirectionObservation, Observation, SigmaSource, equation_count
from ..models.options import AdjustmentOptions
from .linearize import ReductionSettings
from .stochastic import SigmaResolution, apply_override, resolve_for


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedObservation:
    """An observation as it enters the adjustment.

    ``source`` is the observation as supplied (or the reduced direction);
    ``obs`` carries any override value.
    """

    source: Observation
    obs: Observation
    sigma: SigmaResolution
    row: int
    size: int

    @property
    def id(self) -> str:
        return self.obs.id

    @property
    def rows(self) -> range:
        return range(self.row, self.row + self.size)


@dataclass
class AdjustmentProblem:
    observations: List[PreparedObservation]
    num_rows: int
    directions: ReducedDirections
    settings: ReductionSettings
    excluded: List[str] = field(default_factory=list)
    unknown_exclusions: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    def by_id(self) -> Dict[str, PreparedObservation]:
        return {p.id: p for p in self.observations}


def _resolve(obs: Observation, network: Network, options: AdjustmentOptions) -> Tuple[Observation, SigmaResolution]:
    override = options.overrides.get(obs.id)
    working = apply_override(obs, override)
    return working, resolve_for(working, network.instruments, override)


def prepare_problem(network: Network, options: AdjustmentOptions) -> AdjustmentProblem:
    """Build the adjustment problem.

    Raises:
        StochasticModelError: if a sigma cannot be resolved
    """
    messages: List[str] = []
    known_ids = {o.id for o in network.observations}
    excluded_ids = options.excluded_observations

    kept_directions: Dict[str, Tuple[DirectionObservation, SigmaResolution]] = {}
    resolved: Dict[str, Tuple[Observation, SigmaResolution]] = {}
    excluded: List[str] = []

    for obs in network.observations:
        if obs.id in excluded_ids:
            excluded.append(obs.id)
            continue
        working, sigma = _resolve(obs, network, options)
        if isinstance(obs, DirectionObservation):
            kept_directions[obs.id] = (working, sigma)
        else:
            resolved[obs.id] = (working, sigma)

    directions = reduce_direction_sets(
        network.direction_sets(), kept_directions, options.direction_reduction
    )
    messages.extend(directions.messages)

    # Reduced directions may themselves be excluded or overridden by ID.
    reduced_by_set: Dict[Tuple[str, str], List[Tuple[Observation, Observation, SigmaResolution]]] = defaultdict(list)
    for source, working, sigma in directions.observations:
        if working.id in excluded_ids and working.id not in known_ids:
            excluded.append(working.id)
            continue
        override = options.overrides.get(working.id)
        if override is not None and working.id not in known_ids:
            working = apply_override(working, override)
            if override.sigma is not None:
                sigma = SigmaResolution(sigma=override.sigma, source=SigmaSource.OVERRIDE)
        reduced_by_set[(working.set_id, working.at_id)].append((source, working, sigma))

    reduced_ids = {w.id for _, w, _ in directions.observations}
    unknown = sorted(i for i in excluded_ids if i not in known_ids and i not in reduced_ids)
    for obs_id in unknown:
        msg = f"Excluded observation '{obs_id}' is not in the network"
        messages.append(msg)
        logger.warning(msg)

    prepared: List[PreparedObservation] = []
    row = 0
    emitted = set()

    def emit(source: Observation, working: Observation, sigma: SigmaResolution) -> None:
        nonlocal row
        size = equation_count(working)
        prepared.append(PreparedObservation(source, working, sigma, row, size))
        row += size

    for obs in network.observations:
        if isinstance(obs, DirectionObservation):
            key = (obs.set_id, obs.at_id)
            if key in emitted:
                continue
            emitted.add(key)
            for source, working, sigma in reduced_by_set.get(key, []):
                emit(source, working, sigma)
        elif obs.id in resolved:
            working, sigma = resolved[obs.id]
            emit(obs, working, sigma)

    if excluded:
        msg = f"Excluded observations: {', '.join(sorted(excluded))}"
        messages.append(msg)
        logger.info(msg)

    return AdjustmentProblem(
        observations=prepared,
        num_rows=row,
        directions=directions,
        settings=ReductionSettings.from_options(options),
        excluded=sorted(excluded),
        unknown_exclusions=unknown,
        messages=messages,
    )
