"""Per-setup aggregation of solved observations."""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, List, Sequence

from ..models.observation import DirectionObservation, radians_to_arcseconds
from ..results.diagnostics import SetupSummary


def _rms(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return math.sqrt(sum(v * v for v in values) / len(values))


def summarize_setups(solved: Sequence) -> List[SetupSummary]:
    """Roll solved observations up by occupied station.

    Orientation RMS is the RMS of the direction residuals (arc-seconds) of
    the station, None when no directions were taken there.
    """
    groups: Dict[str, List] = defaultdict(list)
    for sol in solved:
        groups[sol.source.occupied_station].append(sol)

    summaries: List[SetupSummary] = []
    for station_id in sorted(groups):
        items = groups[station_id]

        counts: Dict[str, int] = defaultdict(int)
        for sol in items:
            counts[sol.obs_type.value] += 1

        directions = [
            radians_to_arcseconds(sol.residual) for sol in items
            if isinstance(sol.source, DirectionObservation)
        ]
        t_values = [sol.standardized_residual for sol in items
                    if math.isfinite(sol.standardized_residual)]
        worst = max(items, key=lambda s: abs(s.standardized_residual)
                    if math.isfinite(s.standardized_residual) else -1.0)

        summaries.append(SetupSummary(
            station_id=station_id,
            counts=dict(counts),
            orientation_rms_arcsec=_rms(directions) if directions else None,
            rms_standardized=_rms(t_values),
            max_abs_standardized=max((abs(t) for t in t_values), default=0.0),
            local_fail_count=sum(1 for s in items if not s.local_test_passed),
            worst_observation_id=worst.id,
            worst_type=worst.obs_type.value,
            worst_stations=worst.label,
        ))
    return summaries
