"""Sideshot coordinates from the adjusted network.

Sideshots are not adjusted. Their coordinates follow directly from the
adjusted occupied station and the shot; their sigmas combine the shot
precision with the occupied station's covariance by first-order
propagation.

Azimuth sources, in order: explicit, setup (adjusted azimuth to the
backsight plus the turned angle), target (approximate coordinates of a
known target station).
"""

from __future__ import annotations

import math
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..models.instrument import Instrument
from ..models.observation import arcseconds_to_radians
from ..models.sideshot import Sideshot
from ..models.station import Station
from ..results.diagnostics import SideshotResult
from ..solver.geometry import azimuth, wrap_2pi


CovarianceLookup = Callable[[str], Optional[np.ndarray]]


def _shot_sigmas(shot: Sideshot, instrument: Optional[Instrument]) -> Tuple[float, float]:
    sigma_d = shot.sigma_distance
    sigma_a = shot.sigma_angle
    if instrument is not None:
        if sigma_d is None:
            sigma_d = math.hypot(instrument.edm_ppm * shot.distance * 1e-6, instrument.edm_constant)
        if sigma_a is None:
            sigma_a = arcseconds_to_radians(instrument.angle_sigma_arcsec)
    return sigma_d or 0.0, sigma_a or 0.0


def shot_azimuth(shot: Sideshot, stations: Mapping[str, Station],
                 approximate: Mapping[str, Station]) -> Tuple[Optional[float], Optional[str]]:
    """(azimuth, source) of a sideshot, (None, None) when none can be formed."""
    occ = stations[shot.occupied_id]
    if shot.azimuth is not None:
        return wrap_2pi(shot.azimuth), "explicit"
    if shot.horizontal_angle is not None and shot.backsight_id in stations:
        bs = stations[shot.backsight_id]
        if (bs.easting, bs.northing) != (occ.easting, occ.northing):
            base = azimuth(occ.easting, occ.northing, bs.easting, bs.northing)
            return wrap_2pi(base + shot.horizontal_angle), "setup"
    target = approximate.get(shot.target_id)
    if target is not None and (target.easting, target.northing) != (occ.easting, occ.northing):
        return azimuth(occ.easting, occ.northing, target.easting, target.northing), "target"
    return None, None


def compute_sideshot(
    shot: Sideshot,
    stations: Mapping[str, Station],
    approximate: Mapping[str, Station],
    instruments: Mapping[str, Instrument],
    station_covariance: CovarianceLookup,
    map_scale_factor: float = 1.0,
) -> SideshotResult:
    """Coordinates and propagated sigmas of one sideshot.

    Args:
        stations: adjusted stations
        approximate: input stations (for target-derived azimuths)
        station_covariance: station ID -> 2x2 E/N covariance, None if fixed
    """
    occ = stations[shot.occupied_id]
    sigma_d, sigma_a = _shot_sigmas(shot, instruments.get(shot.instrument_code))

    if shot.zenith is not None:
        z = shot.zenith
        hd = shot.distance * math.sin(z)
        sigma_hd = math.hypot(math.sin(z) * sigma_d, shot.distance * math.cos(z) * sigma_a)
        height = occ.height + shot.instrument_height + shot.distance * math.cos(z) - shot.target_height
        var_h = (math.cos(z) * sigma_d) ** 2 + (shot.distance * math.sin(z) * sigma_a) ** 2
        var_h += (occ.sigma_height or 0.0) ** 2
        sigma_h: Optional[float] = math.sqrt(var_h)
    else:
        hd = shot.distance
        sigma_hd = sigma_d
        height = None
        sigma_h = None

    hd *= map_scale_factor
    sigma_hd *= map_scale_factor

    az, source = shot_azimuth(shot, stations, approximate)
    if az is None:
        return SideshotResult(
            id=shot.id,
            occupied_id=shot.occupied_id,
            target_id=shot.target_id,
            has_azimuth=False,
            horizontal_distance=hd,
            height=height,
            sigma_height=sigma_h,
            source_line=shot.source_line,
            note="azimuth unavailable",
        )

    sin_a, cos_a = math.sin(az), math.cos(az)
    J = np.array([[sin_a, hd * cos_a],
                  [cos_a, -hd * sin_a]], dtype=float)
    cov = J @ np.diag([sigma_hd ** 2, sigma_a ** 2]) @ J.T
    occ_cov = station_covariance(shot.occupied_id)
    if occ_cov is not None:
        cov = cov + occ_cov

    return SideshotResult(
        id=shot.id,
        occupied_id=shot.occupied_id,
        target_id=shot.target_id,
        has_azimuth=True,
        azimuth_source=source,
        azimuth=az,
        horizontal_distance=hd,
        easting=occ.easting + hd * sin_a,
        northing=occ.northing + hd * cos_a,
        height=height,
        sigma_easting=math.sqrt(max(cov[0, 0], 0.0)),
        sigma_northing=math.sqrt(max(cov[1, 1], 0.0)),
        sigma_height=sigma_h,
        source_line=shot.source_line,
    )


def compute_sideshots(
    shots: Sequence[Sideshot],
    stations: Mapping[str, Station],
    approximate: Mapping[str, Station],
    instruments: Mapping[str, Instrument],
    station_covariance: CovarianceLookup,
    map_scale_factor: float = 1.0,
) -> List[SideshotResult]:
    return [
        compute_sideshot(s, stations, approximate, instruments, station_covariance, map_scale_factor)
        for s in shots
    ]
