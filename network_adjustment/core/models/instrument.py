"""
Instrument records for the stochastic model.

An instrument describes how raw observation sigmas are derived when an
observation carries no explicit standard deviation:

- Distances: proportional (ppm) term and constant term, combined in quadrature
- Angular types: one horizontal/vertical angle standard deviation (arc-seconds)
- GPS vectors: planimetric standard deviation applied to both axes
- Leveling: standard deviation per kilometre of run (mm/km)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class Instrument:
    """
    Instrument precision constants.

    Attributes:
        code: Identifier used by observations (e.g. "TS1")
        description: Free text
        edm_ppm: Proportional distance term in parts per million
        edm_constant: Constant distance term in meters
        angle_sigma_arcsec: Angular standard deviation in arc-seconds
        gps_sigma_xy: Planimetric GPS standard deviation in meters
        leveling_sigma_mm_per_km: Leveling standard deviation in mm per km
    """

    code: str
    description: str = ""
    edm_ppm: float = 0.0
    edm_constant: float = 0.0
    angle_sigma_arcsec: float = 0.0
    gps_sigma_xy: float = 0.0
    leveling_sigma_mm_per_km: float = 0.0

    def __post_init__(self):
        if not self.code:
            raise ValueError("Instrument code cannot be empty")
        for name in ("edm_ppm", "edm_constant", "angle_sigma_arcsec",
                     "gps_sigma_xy", "leveling_sigma_mm_per_km"):
            value = float(getattr(self, name))
            if value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")
            object.__setattr__(self, name, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "description": self.description,
            "edm_ppm": self.edm_ppm,
            "edm_constant": self.edm_constant,
            "angle_sigma_arcsec": self.angle_sigma_arcsec,
            "gps_sigma_xy": self.gps_sigma_xy,
            "leveling_sigma_mm_per_km": self.leveling_sigma_mm_per_km,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Instrument":
        return cls(
            code=str(data["code"]),
            description=str(data.get("description", data.get("desc", ""))),
            edm_ppm=float(data.get("edm_ppm", 0.0)),
            edm_constant=float(data.get("edm_constant", 0.0)),
            angle_sigma_arcsec=float(data.get("angle_sigma_arcsec", 0.0)),
            gps_sigma_xy=float(data.get("gps_sigma_xy", 0.0)),
            leveling_sigma_mm_per_km=float(data.get("leveling_sigma_mm_per_km", 0.0)),
        )


InstrumentLibrary = Mapping[str, Instrument]
