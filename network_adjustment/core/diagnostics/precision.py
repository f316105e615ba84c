"""Relative precision between station pairs.

The difference vector d = x_to - x_from (E, N) is a linear function of the
parameter vector, so its covariance is J C Jᵀ with J holding +1/-1 at the
free E/N components of the two stations. Cross-covariances between the
stations are included; fixed components contribute nothing. The two
stations need not be connected by an observation.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from ..geometry.ellipse import error_ellipse_from_covariance
from ..models.observation import radians_to_arcseconds
from ..models.station import Station
from ..results.diagnostics import RelativePrecision
from ..solver.geometry import azimuth, horizontal_distance


logger = logging.getLogger(__name__)


def observed_pairs(solved: Sequence) -> List[Tuple[str, str]]:
    """Station pairs linked by an observation, each listed once, sorted."""
    pairs: Set[Tuple[str, str]] = set()
    for sol in solved:
        ids = sol.source.stations
        occupied = sol.source.occupied_station
        for other in ids:
            if other != occupied:
                pairs.add(tuple(sorted((occupied, other))))
    return sorted(pairs)


def pair_precision(
    from_id: str,
    to_id: str,
    stations: Mapping[str, Station],
    covariance: np.ndarray,
    parameter_order: Sequence[Tuple[str, str]],
    confidence_level: float = 0.95,
    observed: bool = True,
) -> Optional[RelativePrecision]:
    """Relative precision of one pair, None if neither station is free in plan."""
    positions = {key: i for i, key in enumerate(parameter_order)}
    J = np.zeros((2, covariance.shape[0]), dtype=float)
    free = False
    for sign, sid in ((-1.0, from_id), (1.0, to_id)):
        for row, comp in enumerate(("E", "N")):
            j = positions.get((sid, comp))
            if j is not None:
                J[row, j] = sign
                free = True
    if not free:
        return None

    cov = J @ covariance @ J.T
    a, b = stations[from_id], stations[to_id]
    dist = horizontal_distance(a.easting, a.northing, b.easting, b.northing)
    if dist > 0.0:
        az = azimuth(a.easting, a.northing, b.easting, b.northing)
        u = np.array([math.sin(az), math.cos(az)])
        w = np.array([math.cos(az), -math.sin(az)]) / dist
        sigma_dist = math.sqrt(max(float(u @ cov @ u), 0.0))
        sigma_az = math.sqrt(max(float(w @ cov @ w), 0.0))
    else:
        az = 0.0
        sigma_dist = math.sqrt(max(0.5 * (cov[0, 0] + cov[1, 1]), 0.0))
        sigma_az = math.inf

    return RelativePrecision(
        from_id=from_id,
        to_id=to_id,
        distance=dist,
        azimuth=az,
        sigma_distance=sigma_dist,
        sigma_azimuth_arcsec=radians_to_arcseconds(sigma_az),
        ellipse=error_ellipse_from_covariance(cov, confidence_level),
        observed=observed,
    )


def relative_precision(
    solved: Sequence,
    stations: Mapping[str, Station],
    covariance: Optional[np.ndarray],
    parameter_order: Sequence[Tuple[str, str]],
    pairs: Optional[Iterable[Tuple[str, str]]] = None,
    confidence_level: float = 0.95,
    log=None,
) -> List[RelativePrecision]:
    """Relative precision for configured pairs, or every observed pair."""
    if covariance is None:
        return []
    linked = set(observed_pairs(solved))
    wanted = list(pairs) if pairs is not None else sorted(linked)

    rows: List[RelativePrecision] = []
    for from_id, to_id in wanted:
        missing = [sid for sid in (from_id, to_id) if sid not in stations]
        if missing:
            msg = f"Relative precision pair {from_id}-{to_id} skipped: unknown station {', '.join(missing)}"
            if log is not None:
                log.warning(msg)
            else:
                logger.warning(msg)
            continue
        observed = tuple(sorted((from_id, to_id))) in linked
        item = pair_precision(from_id, to_id, stations, covariance, parameter_order,
                              confidence_level, observed)
        if item is not None:
            rows.append(item)
    return rows
