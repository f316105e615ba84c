"""network_adjustment.core.geometry.ellipse

Error ellipse parameters from a 2x2 planimetric covariance block.

Conventions:
  - Covariance order is (E, N)
  - Orientation of the semi-major axis is an azimuth: from north,
    clockwise, reduced to [0, π)

The closed form is used instead of an eigen-solver so that the nearly
isotropic case (σEE ≈ σNN, σEN ≈ 0) still yields a finite orientation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from ..statistics.distributions import chi2_ppf


@dataclass(frozen=True)
class ErrorEllipse:
    """
    Error ellipse of a station or of a station-pair difference vector.

    Attributes:
        semi_major: Standard (1-sigma) semi-major axis in meters
        semi_minor: Standard (1-sigma) semi-minor axis in meters
        orientation: Azimuth of the semi-major axis in radians, [0, π)
        confidence_level: Probability covered by the scaled axes
        scale: Multiplier turning standard axes into confidence axes
    """

    semi_major: float
    semi_minor: float
    orientation: float
    confidence_level: float = 0.3935
    scale: float = 1.0

    @property
    def orientation_degrees(self) -> float:
        return math.degrees(self.orientation)

    @property
    def confidence_semi_major(self) -> float:
        """Semi-major axis scaled to the confidence level."""
        return self.semi_major * self.scale

    @property
    def confidence_semi_minor(self) -> float:
        """Semi-minor axis scaled to the confidence level."""
        return self.semi_minor * self.scale

    @property
    def is_circular(self) -> bool:
        return math.isclose(self.semi_major, self.semi_minor, rel_tol=1e-9, abs_tol=1e-15)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "semi_major_m": self.semi_major,
            "semi_minor_m": self.semi_minor,
            "orientation_rad": self.orientation,
            "orientation_deg": self.orientation_degrees,
            "confidence_level": self.confidence_level,
            "confidence_semi_major_m": self.confidence_semi_major,
            "confidence_semi_minor_m": self.confidence_semi_minor,
        }


def ellipse_axes(cov_ee: float, cov_nn: float, cov_en: float) -> tuple:
    """Standard semi-axes and orientation from covariance components.

    Returns:
        (semi_major, semi_minor, orientation) with orientation an
        azimuth in [0, π).
    """
    mean = 0.5 * (cov_ee + cov_nn)
    half_diff = 0.5 * (cov_ee - cov_nn)
    radius = math.hypot(half_diff, cov_en)

    lam_max = max(mean + radius, 0.0)
    lam_min = max(mean - radius, 0.0)

    # Angle of the major axis from the E axis, counter-clockwise.
    # atan2(0, 0) is 0, so the isotropic case stays finite.
    theta_east = 0.5 * math.atan2(2.0 * cov_en, cov_ee - cov_nn)
    orientation = (0.5 * math.pi - theta_east) % math.pi

    return math.sqrt(lam_max), math.sqrt(lam_min), orientation


def error_ellipse_from_covariance(
    cov: Sequence[Sequence[float]],
    confidence_level: float = 0.95,
) -> ErrorEllipse:
    """Build an ErrorEllipse from a 2x2 (E, N) covariance matrix.

    Args:
        cov: 2x2 covariance (already scaled by the variance factor)
        confidence_level: probability for the confidence-scaled axes

    Returns:
        ErrorEllipse with semi_major >= semi_minor >= 0
    """
    cov_ee = float(cov[0][0])
    cov_nn = float(cov[1][1])
    cov_en = 0.5 * (float(cov[0][1]) + float(cov[1][0]))

    semi_major, semi_minor, orientation = ellipse_axes(cov_ee, cov_nn, cov_en)
    scale = math.sqrt(chi2_ppf(confidence_level, 2))

    return ErrorEllipse(
        semi_major=semi_major,
        semi_minor=semi_minor,
        orientation=orientation,
        confidence_level=float(confidence_level),
        scale=scale,
    )
