"""network_adjustment.core.solver.stochastic

Stochastic model resolver: the standard deviation of each observation.

Precedence:
1. Configuration override sigma      -> SigmaSource.OVERRIDE
2. Observation fixed by definition   -> SigmaSource.FIXED (FIXED_SIGMA)
3. Explicit sigma on the record      -> SigmaSource.EXPLICIT
4. Instrument-derived default        -> SigmaSource.DEFAULT

Instrument formulas:
- Distance:  sqrt((ppm * d * 1e-6)^2 + constant^2)
- Angular:   angle sigma in arc-seconds, converted to radians
- GPS:       planimetric sigma on both axes, no E/N correlation
- Leveling:  (mm/km) * sqrt(length_km) / 1000

Instrument libraries are read, never written.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from ..models.instrument import Instrument
from ..models.observation import (
    FIXED_SIGMA,
    AngleObservation,
    BearingObservation,
    DirectionObservation,
    DistanceObservation,
    GpsObservation,
    LevelingObservation,
    Observation,
    SigmaSource,
    ZenithObservation,
    arcseconds_to_radians,
)
from ..models.options import ObservationOverride


class StochasticModelError(ValueError):
    """No sigma can be determined for an observation."""


@dataclass(frozen=True)
class SigmaResolution:
    """
    Resolved standard deviation.

    ``sigma`` is the (easting) sigma; for GPS vectors ``sigma_northing``
    and ``correlation`` complete the 2x2 covariance.
    """

    sigma: float
    source: SigmaSource
    sigma_northing: Optional[float] = None
    correlation: float = 0.0

    @property
    def variance(self) -> float:
        return self.sigma * self.sigma


def _instrument_sigma(obs: Observation, instrument: Instrument) -> float:
    if isinstance(obs, DistanceObservation):
        proportional = instrument.edm_ppm * obs.value * 1e-6
        return math.hypot(proportional, instrument.edm_constant)
    if isinstance(obs, (AngleObservation, DirectionObservation, BearingObservation, ZenithObservation)):
        return arcseconds_to_radians(instrument.angle_sigma_arcsec)
    if isinstance(obs, GpsObservation):
        return instrument.gps_sigma_xy
    if isinstance(obs, LevelingObservation):
        return instrument.leveling_sigma_mm_per_km * math.sqrt(obs.length_km) / 1000.0
    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")


def resolve_sigma(
    obs: Observation,
    instrument: Optional[Instrument] = None,
    override: Optional[ObservationOverride] = None,
) -> SigmaResolution:
    """Resolve the standard deviation of one observation.

    Raises:
        StochasticModelError: no override, no explicit sigma, and no usable
            instrument term for this observation
    """
    gps = isinstance(obs, GpsObservation)

    if override is not None and override.sigma is not None:
        return SigmaResolution(
            sigma=override.sigma,
            source=SigmaSource.OVERRIDE,
            sigma_northing=override.sigma if gps else None,
        )

    if obs.fixed:
        return SigmaResolution(
            sigma=FIXED_SIGMA,
            source=SigmaSource.FIXED,
            sigma_northing=FIXED_SIGMA if gps else None,
        )

    if obs.sigma is not None:
        if gps:
            return SigmaResolution(
                sigma=obs.sigma,
                source=SigmaSource.EXPLICIT,
                sigma_northing=obs.sigma_northing or obs.sigma,
                correlation=obs.correlation,
            )
        return SigmaResolution(sigma=obs.sigma, source=SigmaSource.EXPLICIT)

    if instrument is None:
        raise StochasticModelError(
            f"{obs.obs_type.value} {obs.id}: no sigma given and "
            f"instrument '{obs.instrument_code}' is not in the library"
        )

    sigma = _instrument_sigma(obs, instrument)
    if not sigma > 0.0:
        raise StochasticModelError(
            f"{obs.obs_type.value} {obs.id}: instrument '{instrument.code}' "
            f"gives no {obs.obs_type.value} precision"
        )
    return SigmaResolution(
        sigma=sigma,
        source=SigmaSource.DEFAULT,
        sigma_northing=sigma if gps else None,
    )


def resolve_for(
    obs: Observation,
    instruments: Mapping[str, Instrument],
    override: Optional[ObservationOverride] = None,
) -> SigmaResolution:
    """Look up the observation's instrument and resolve its sigma."""
    instrument = instruments.get(obs.instrument_code) if obs.instrument_code else None
    return resolve_sigma(obs, instrument, override)


def apply_override(obs: Observation, override: Optional[ObservationOverride]) -> Observation:
    """Return a copy of ``obs`` carrying the override value, if any.

    The override sigma is handled by ``resolve_sigma``; the input
    observation is never modified.
    """
    if override is None or override.value is None:
        return obs

    if isinstance(obs, GpsObservation):
        if not isinstance(override.value, tuple):
            raise ValueError(f"gps {obs.id}: override value must be a (dE, dN) pair")
        d_e, d_n = override.value
        return replace(obs, d_easting=float(d_e), d_northing=float(d_n))

    if isinstance(obs, (DistanceObservation, AngleObservation, DirectionObservation,
                        BearingObservation, ZenithObservation, LevelingObservation)):
        if isinstance(override.value, tuple):
            raise ValueError(f"{obs.obs_type.value} {obs.id}: override value must be a scalar")
        return replace(obs, value=float(override.value))

    raise TypeError(f"Unsupported observation type: {type(obs).__name__}")
