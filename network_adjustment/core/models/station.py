"""
Station class for geodetic network adjustment.

Conventions:
- Coordinates: Easting (X), Northing (Y) - right-handed grid system
- Height: metres, tagged orthometric or ellipsoidal (no geoid modelling)
- Station IDs: strings, so alphanumeric names like "1000" or "BM-7" work
- Stations are immutable; an adjustment returns new Station instances
  carrying the propagated sigmas and error ellipse
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from ..geometry.ellipse import ErrorEllipse


class HeightType(Enum):
    """Height reference tag."""
    ORTHOMETRIC = "orthometric"
    ELLIPSOIDAL = "ellipsoidal"


@dataclass(frozen=True)
class Station:
    """
    A survey station (control or unknown).

    A station can be:
    - Fixed in all components (control)
    - Fixed planimetrically but free in height, or the reverse
    - Free, in which case easting/northing/height are approximations

    Attributes:
        id: Unique identifier
        easting: Grid easting in meters
        northing: Grid northing in meters
        height: Height in meters
        fixed_easting: Easting is held fixed (datum constraint)
        fixed_northing: Northing is held fixed
        fixed_height: Height is held fixed
        height_type: Optional height reference tag
        latitude: Optional geographic latitude in degrees
        longitude: Optional geographic longitude in degrees
        sigma_easting: Post-solve standard deviation of easting
        sigma_northing: Post-solve standard deviation of northing
        sigma_height: Post-solve standard deviation of height
        error_ellipse: Post-solve planimetric error ellipse
    """

    id: str
    easting: float
    northing: float
    height: float = 0.0
    fixed_easting: bool = False
    fixed_northing: bool = False
    fixed_height: bool = False
    height_type: Optional[HeightType] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    sigma_easting: Optional[float] = None
    sigma_northing: Optional[float] = None
    sigma_height: Optional[float] = None
    error_ellipse: Optional[ErrorEllipse] = None

    def __post_init__(self):
        if not self.id or not isinstance(self.id, str):
            raise ValueError("Station ID must be a non-empty string")

        object.__setattr__(self, "easting", float(self.easting))
        object.__setattr__(self, "northing", float(self.northing))
        object.__setattr__(self, "height", float(self.height or 0.0))

        if isinstance(self.height_type, str):
            object.__setattr__(self, "height_type", HeightType(self.height_type.lower()))

        for name in ("sigma_easting", "sigma_northing", "sigma_height"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative")

    @classmethod
    def control(cls, id: str, easting: float, northing: float, height: float = 0.0,
                **kwargs: Any) -> "Station":
        """Create a station fixed in all three components."""
        return cls(
            id=id, easting=easting, northing=northing, height=height,
            fixed_easting=True, fixed_northing=True, fixed_height=True,
            **kwargs,
        )

    @property
    def is_fixed(self) -> bool:
        """Both planimetric components are fixed."""
        return self.fixed_easting and self.fixed_northing

    @property
    def is_free(self) -> bool:
        return not self.fixed_easting and not self.fixed_northing

    @property
    def is_partially_fixed(self) -> bool:
        return self.fixed_easting != self.fixed_northing

    def with_solution(self, easting: float, northing: float, height: float,
                      sigma_easting: Optional[float] = None,
                      sigma_northing: Optional[float] = None,
                      sigma_height: Optional[float] = None,
                      error_ellipse: Optional[ErrorEllipse] = None) -> "Station":
        """Return a copy carrying adjusted coordinates and uncertainties."""
        return replace(
            self,
            easting=easting,
            northing=northing,
            height=height,
            sigma_easting=sigma_easting,
            sigma_northing=sigma_northing,
            sigma_height=sigma_height,
            error_ellipse=error_ellipse,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "easting": self.easting,
            "northing": self.northing,
            "height": self.height,
            "fixed_easting": self.fixed_easting,
            "fixed_northing": self.fixed_northing,
            "fixed_height": self.fixed_height,
            "sigma_easting": self.sigma_easting,
            "sigma_northing": self.sigma_northing,
            "sigma_height": self.sigma_height,
        }
        if self.height_type is not None:
            data["height_type"] = self.height_type.value
        if self.latitude is not None and self.longitude is not None:
            data["latitude"] = self.latitude
            data["longitude"] = self.longitude
        if self.error_ellipse is not None:
            data["error_ellipse"] = self.error_ellipse.to_dict()
        return data

    def __repr__(self) -> str:
        status = "fixed" if self.is_fixed else ("partial" if self.is_partially_fixed else "free")
        return (
            f"Station({self.id}, E={self.easting:.4f}, N={self.northing:.4f}, "
            f"H={self.height:.4f}, {status})"
        )
