"""Shared fixtures: a small synthetic network and the reference network.

Observations are generated from known true coordinates, so an adjustment
of unbiased data must reproduce the truth. Start coordinates of the free
stations are offset by a few centimetres.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, Mapping, Optional, Tuple

import pytest

from network_adjustment.core.models import (
    AngleObservation,
    DistanceObservation,
    GpsObservation,
    Instrument,
    LevelingObservation,
    Network,
    Station,
    arcseconds_to_radians,
)
from network_adjustment.core.solver.linearize import compute_observation


Coordinates = Dict[str, Tuple[float, float, float]]


# ---------------------------------------------------------------------------
# Reference network
# ---------------------------------------------------------------------------

REFERENCE_CONTROL: Coordinates = {
    "1000": (5000.0, 5000.0, 100.0),
    "1001": (5300.0, 5000.0, 102.0),
    "1002": (5150.0, 5300.0, 101.5),
}

REFERENCE_UNKNOWN: Coordinates = {
    "2000": (5050.0, 5050.0, 100.2),
    "2001": (5250.0, 5050.0, 101.0),
    "2002": (5200.0, 5200.0, 101.2),
    "2003": (5100.0, 5200.0, 100.8),
    "2004": (5000.0, 5300.0, 100.6),
    "2005": (5300.0, 5300.0, 101.4),
    "2006": (5150.0, 5400.0, 101.0),
}

# Start-coordinate offsets (dE, dN, dH) of the free stations.
START_OFFSETS: Coordinates = {
    "2000": (0.03, -0.02, 0.01),
    "2001": (-0.02, 0.04, -0.02),
    "2002": (0.05, 0.01, 0.02),
    "2003": (-0.03, -0.04, 0.01),
    "2004": (0.02, 0.03, -0.01),
    "2005": (-0.04, 0.02, 0.02),
    "2006": (0.01, -0.05, -0.02),
}

DISTANCES = [
    ("D1", "1000", "2000"),
    ("D2", "2000", "2001"),
    ("D3", "2001", "1001"),
    ("D4", "1001", "2002"),
    ("D5", "2002", "2003"),
    ("D6", "2003", "1000"),
]

# (id, at, from, to)
ANGLES = [
    ("A1", "1000", "1001", "2000"),
    ("A2", "1000", "2000", "2003"),
    ("A3", "1001", "1000", "2001"),
    ("A4", "1001", "2001", "2002"),
    ("A5", "1002", "2003", "2002"),
    ("A6", "1002", "2004", "2005"),
]

# (id, from, to, sigma)
GPS_VECTORS = [
    ("G1", "1000", "1001", 0.010),
    ("G2", "1001", "1002", 0.010),
    ("G3", "1002", "1000", 0.010),
    ("G4", "1000", "2004", 0.020),
    ("G5", "1001", "2005", 0.020),
    ("G6", "1002", "2006", 0.020),
]

# (id, from, to, length_km)
LEVELING_RUNS = [
    ("L1", "1000", "1001", 0.30),
    ("L2", "1001", "1002", 0.34),
    ("L3", "1002", "1000", 0.34),
    ("L4", "1000", "2000", 0.07),
    ("L5", "2000", "2001", 0.20),
    ("L6", "2001", "1001", 0.07),
    ("L7", "1002", "2003", 0.11),
    ("L8", "2003", "2004", 0.14),
    ("L9", "2004", "1000", 0.30),
    ("L10", "1001", "2002", 0.22),
    ("L11", "1001", "2005", 0.30),
    ("L12", "1002", "2006", 0.10),
]

DISTANCE_SIGMA = 0.003
ANGLE_SIGMA = arcseconds_to_radians(1.0)


def reference_truth() -> Coordinates:
    truth = dict(REFERENCE_CONTROL)
    truth.update(REFERENCE_UNKNOWN)
    return truth


def build_reference_network(
    bias: Optional[Mapping[str, float]] = None,
    perturb: bool = True,
) -> Network:
    """Reference network with exact observations.

    Args:
        bias: observation ID -> value added to the exact observation
        perturb: offset the start coordinates of the free stations
    """
    bias = dict(bias or {})
    truth = reference_truth()
    net = Network(name="reference")
    net.add_instrument(Instrument(code="LV", leveling_sigma_mm_per_km=0.7))

    for sid, (e, n, h) in REFERENCE_CONTROL.items():
        net.add_station(Station.control(sid, e, n, h))
    for sid, (e, n, h) in REFERENCE_UNKNOWN.items():
        de, dn, dh = START_OFFSETS[sid] if perturb else (0.0, 0.0, 0.0)
        net.add_station(Station(sid, e + de, n + dn, h + dh))

    line = 1
    for obs_id, a, b in DISTANCES:
        shape = DistanceObservation(id=obs_id, from_id=a, to_id=b, value=1.0)
        value = compute_observation(shape, truth) + bias.get(obs_id, 0.0)
        net.add_observation(DistanceObservation(
            id=obs_id, from_id=a, to_id=b, value=value, sigma=DISTANCE_SIGMA, source_line=line,
        ))
        line += 1

    for obs_id, at, frm, to in ANGLES:
        shape = AngleObservation(id=obs_id, at_id=at, from_id=frm, to_id=to)
        value = compute_observation(shape, truth) + bias.get(obs_id, 0.0)
        net.add_observation(AngleObservation(
            id=obs_id, at_id=at, from_id=frm, to_id=to, value=value,
            sigma=ANGLE_SIGMA, source_line=line,
        ))
        line += 1

    for obs_id, a, b, sigma in GPS_VECTORS:
        de = truth[b][0] - truth[a][0] + bias.get(obs_id, 0.0)
        dn = truth[b][1] - truth[a][1]
        net.add_observation(GpsObservation(
            id=obs_id, from_id=a, to_id=b, d_easting=de, d_northing=dn,
            sigma=sigma, source_line=line,
        ))
        line += 1

    for obs_id, a, b, km in LEVELING_RUNS:
        value = truth[b][2] - truth[a][2] + bias.get(obs_id, 0.0)
        net.add_observation(LevelingObservation(
            id=obs_id, from_id=a, to_id=b, value=value, length_km=km,
            instrument_code="LV", source_line=line,
        ))
        line += 1

    return net


# ---------------------------------------------------------------------------
# Small trilateration / triangulation network
# ---------------------------------------------------------------------------

def build_quad_network(distance_bias: float = 0.0) -> Network:
    """Two control stations and two free stations with redundant distances and angles."""
    truth = {
        "A": (0.0, 0.0, 0.0),
        "B": (100.0, 0.0, 0.0),
        "C": (100.0, 80.0, 0.0),
        "D": (0.0, 80.0, 0.0),
    }
    net = Network(name="quad")
    net.add_station(Station.control("A", 0.0, 0.0))
    net.add_station(Station.control("B", 100.0, 0.0))
    net.add_station(Station("C", 100.04, 79.97))
    net.add_station(Station("D", -0.03, 80.02))

    legs = [("AB", "A", "B"), ("BC", "B", "C"), ("CD", "C", "D"), ("DA", "D", "A"), ("AC", "A", "C")]
    for obs_id, a, b in legs:
        shape = DistanceObservation(id=obs_id, from_id=a, to_id=b, value=1.0)
        value = compute_observation(shape, truth) + (distance_bias if obs_id == "CD" else 0.0)
        net.add_observation(DistanceObservation(id=obs_id, from_id=a, to_id=b, value=value, sigma=0.002))

    turns = [("aA", "A", "D", "B"), ("aB", "B", "A", "C"), ("aC", "C", "B", "D"), ("aD", "D", "C", "A")]
    for obs_id, at, frm, to in turns:
        shape = AngleObservation(id=obs_id, at_id=at, from_id=frm, to_id=to)
        net.add_observation(AngleObservation(
            id=obs_id, at_id=at, from_id=frm, to_id=to,
            value=compute_observation(shape, truth), sigma=arcseconds_to_radians(2.0),
        ))
    return net


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def truth() -> Coordinates:
    return reference_truth()


@pytest.fixture
def reference_network() -> Network:
    return build_reference_network()


@pytest.fixture
def blundered_network() -> Network:
    """Reference network with +0.04° on the angle at 1001 from 1000 to 2001."""
    return build_reference_network(bias={"A3": math.radians(0.04)})


@pytest.fixture
def make_reference_network() -> Callable[..., Network]:
    return build_reference_network


@pytest.fixture
def quad_network() -> Network:
    return build_quad_network()


@pytest.fixture
def make_quad_network() -> Callable[..., Network]:
    return build_quad_network
