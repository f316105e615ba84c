"""network_adjustment.core.solver.geometry

Observation geometry and partial derivatives.

Conventions:
  - Coordinates: Easting = X, Northing = Y, Height = H
  - Azimuth: North = 0, clockwise positive, via ``atan2(dE, dN)``
  - Zenith angle: measured from the vertical, π/2 on the horizon
  - Angles: radians
"""

from __future__ import annotations

import math
from typing import Tuple


TAU = 2.0 * math.pi
EARTH_RADIUS = 6378137.0


def wrap_pi(angle: float) -> float:
    """Normalize angle to (-π, π]."""
    a = math.fmod(angle + math.pi, TAU)
    if a <= 0.0:
        a += TAU
    return a - math.pi


def wrap_2pi(angle: float) -> float:
    """Normalize angle to [0, 2π)."""
    a = math.fmod(angle, TAU)
    if a < 0.0:
        a += TAU
    return 0.0 if a >= TAU else a


def azimuth(e1: float, n1: float, e2: float, n2: float) -> float:
    """Azimuth from (e1, n1) to (e2, n2) in [0, 2π)."""
    return wrap_2pi(math.atan2(e2 - e1, n2 - n1))


def horizontal_distance(e1: float, n1: float, e2: float, n2: float) -> float:
    return math.hypot(e2 - e1, n2 - n1)


def _require_separated(r2: float, what: str) -> None:
    if r2 == 0.0:
        raise ValueError(f"Cannot compute {what} partials for coincident stations")


def distance_partials(e1: float, n1: float, e2: float, n2: float) -> Tuple[float, float, float, float]:
    """Partials of the horizontal distance w.r.t. (E1, N1, E2, N2)."""
    de, dn = e2 - e1, n2 - n1
    d = math.hypot(de, dn)
    _require_separated(d, "distance")
    return (-de / d, -dn / d, de / d, dn / d)


def slope_distance(de: float, dn: float, dh: float) -> float:
    return math.sqrt(de * de + dn * dn + dh * dh)


def slope_distance_partials(de: float, dn: float, dh: float) -> Tuple[float, float, float]:
    """Partials of the slope distance w.r.t. the differences (dE, dN, dH).

    The partials w.r.t. the "to" station are these; the "from" station gets
    their negatives.
    """
    s = slope_distance(de, dn, dh)
    _require_separated(s, "slope distance")
    return (de / s, dn / s, dh / s)


def azimuth_partials(e1: float, n1: float, e2: float, n2: float) -> Tuple[float, float, float, float]:
    """Partials of the azimuth w.r.t. (E1, N1, E2, N2).

    For α = atan2(dE, dN): ∂α/∂dE = dN/r², ∂α/∂dN = -dE/r².
    """
    de, dn = e2 - e1, n2 - n1
    r2 = de * de + dn * dn
    _require_separated(r2, "azimuth")
    da_dde = dn / r2
    da_ddn = -de / r2
    return (-da_dde, -da_ddn, da_dde, da_ddn)


def angle_at_point(
    e_at: float, n_at: float,
    e_from: float, n_from: float,
    e_to: float, n_to: float,
) -> float:
    """Clockwise angle at "at" from the "from" ray to the "to" ray, in [0, 2π)."""
    return wrap_2pi(azimuth(e_at, n_at, e_to, n_to) - azimuth(e_at, n_at, e_from, n_from))


def angle_partials(
    e_at: float, n_at: float,
    e_from: float, n_from: float,
    e_to: float, n_to: float,
) -> Tuple[float, float, float, float, float, float]:
    """Partials of the angle w.r.t. (E_from, N_from, E_at, N_at, E_to, N_to)."""
    at_e_to, at_n_to, to_e, to_n = azimuth_partials(e_at, n_at, e_to, n_to)
    at_e_from, at_n_from, from_e, from_n = azimuth_partials(e_at, n_at, e_from, n_from)
    # angle = az(at->to) - az(at->from)
    return (
        -from_e,
        -from_n,
        at_e_to - at_e_from,
        at_n_to - at_n_from,
        to_e,
        to_n,
    )


def curvature_refraction(horizontal: float, k: float) -> float:
    """Combined earth curvature and refraction correction to a height difference."""
    return (1.0 - k) * horizontal * horizontal / (2.0 * EARTH_RADIUS)


def zenith_angle(horizontal: float, dh: float) -> float:
    """Zenith angle for a horizontal distance and an effective height difference."""
    return math.atan2(horizontal, dh)


def zenith_partials(horizontal: float, dh: float) -> Tuple[float, float]:
    """Partials of z = atan2(hd, dh) w.r.t. (hd, dh)."""
    r2 = horizontal * horizontal + dh * dh
    _require_separated(r2, "zenith")
    return (dh / r2, -horizontal / r2)
