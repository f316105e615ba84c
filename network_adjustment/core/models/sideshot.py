"""
Sideshot records.

A sideshot is a one-way shot to a station that takes no part in the
adjustment. Its coordinates are computed afterwards from the adjusted
occupied station.

The azimuth of the shot comes from, in order of preference:
- an explicit azimuth on the record
- the setup: adjusted azimuth to ``backsight_id`` plus ``horizontal_angle``
- the target: approximate coordinates of ``target_id`` if it is a known station
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Sideshot:
    """
    One-way observation excluded from the adjustment.

    Attributes:
        id: Identifier
        occupied_id: Station the instrument stands on
        target_id: Name of the computed point
        distance: Measured distance (slope if ``zenith`` is given, else horizontal)
        azimuth: Explicit grid azimuth in radians
        horizontal_angle: Clockwise angle from the backsight in radians
        backsight_id: Station the horizontal angle is turned from
        zenith: Zenith angle in radians, enables height computation
        instrument_height: Height of instrument above the occupied station
        target_height: Height of target above the computed point
        sigma_distance: Distance sigma in meters (falls back to the instrument)
        sigma_angle: Angular sigma in radians (falls back to the instrument)
        instrument_code: Instrument used for default sigmas
        source_line: Line of the input record
    """

    id: str
    occupied_id: str
    target_id: str
    distance: float
    azimuth: Optional[float] = None
    horizontal_angle: Optional[float] = None
    backsight_id: Optional[str] = None
    zenith: Optional[float] = None
    instrument_height: float = 0.0
    target_height: float = 0.0
    sigma_distance: Optional[float] = None
    sigma_angle: Optional[float] = None
    instrument_code: str = ""
    source_line: Optional[int] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Sideshot ID cannot be empty")
        if not self.occupied_id or not self.target_id:
            raise ValueError(f"sideshot {self.id}: station IDs cannot be empty")
        if self.occupied_id == self.target_id:
            raise ValueError(f"sideshot {self.id}: occupied and target station are the same")
        if self.distance <= 0:
            raise ValueError(f"sideshot {self.id}: distance must be positive")
        if self.horizontal_angle is not None and not self.backsight_id:
            raise ValueError(f"sideshot {self.id}: a horizontal angle needs a backsight")
        if self.zenith is not None and not 0.0 < self.zenith < math.pi:
            raise ValueError(f"sideshot {self.id}: zenith must be in (0, π)")
