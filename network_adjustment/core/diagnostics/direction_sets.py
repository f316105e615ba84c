"""Direction-set reduction and repeatability.

Raw direction readings are grouped by (set, occupied station, target).
A reduced direction is named ``set:target``, or ``set@station:target``
when the set ID is used at more than one station.
REDUCE mode: face-2 readings are brought to face 1 by subtracting π and
all readings of a target are combined into one weighted circular mean with
sigma sqrt(1 / Σw), w = 1/σ². The reduced direction replaces the raw
readings in the adjustment.

RAW mode: readings enter the adjustment unchanged. Readings whose face
differs from the first face of their set are rejected ("mixed-face").

Sets left without readings are reported as "no-shots".
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..models.observation import DirectionObservation, SigmaSource, radians_to_arcseconds
from ..models.options import DirectionReduction
from ..results.diagnostics import (
    DirectionReject,
    DirectionRepeatability,
    DirectionSetSummary,
    DirectionTargetSummary,
)
from ..solver.geometry import wrap_2pi, wrap_pi
from ..solver.stochastic import SigmaResolution


logger = logging.getLogger(__name__)


@dataclass
class ReducedDirections:
    """Output of the direction-set reduction."""

    # (source observation, working observation, sigma) in set order
    observations: List[Tuple[DirectionObservation, DirectionObservation, SigmaResolution]] = field(default_factory=list)
    sets: List[DirectionSetSummary] = field(default_factory=list)
    targets: List[DirectionTargetSummary] = field(default_factory=list)
    rejects: List[DirectionReject] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    def _log(self, message: str) -> None:
        self.messages.append(message)
        logger.info(message)


def weighted_circular_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    s = sum(w * math.sin(v) for v, w in zip(values, weights))
    c = sum(w * math.cos(v) for v, w in zip(values, weights))
    if abs(s) < 1e-18 and abs(c) < 1e-18:
        return wrap_2pi(values[0]) if values else 0.0
    return wrap_2pi(math.atan2(s, c))


def weighted_circular_spread(values: Sequence[float], mean: float, weights: Sequence[float]) -> float:
    """Weighted RMS of the wrapped deviations from ``mean``."""
    sum_w = sum(weights)
    if sum_w <= 0.0:
        return 0.0
    sum_sq = sum(w * wrap_pi(v - mean) ** 2 for v, w in zip(values, weights))
    return math.sqrt(sum_sq / sum_w)


def combine_sources(sources: Sequence[SigmaSource]) -> SigmaSource:
    """Sigma source of a reduced direction from those of its readings."""
    if not sources:
        return SigmaSource.DEFAULT
    if SigmaSource.FIXED in sources:
        return SigmaSource.FIXED
    if all(s == SigmaSource.DEFAULT for s in sources):
        return SigmaSource.DEFAULT
    if SigmaSource.OVERRIDE in sources:
        return SigmaSource.OVERRIDE
    return SigmaSource.EXPLICIT


def target_suspect_score(spread_arcsec: float, face_delta_arcsec: Optional[float],
                         standardized: Optional[float]) -> float:
    """Ranking score of a reduced direction: 10|t| + spread + face-pair delta / 2."""
    score = spread_arcsec
    if face_delta_arcsec is not None:
        score += 0.5 * face_delta_arcsec
    if standardized is not None and math.isfinite(standardized):
        score += 10.0 * abs(standardized)
    return score


def _reduced_id(set_id: str, occupied: str, target_id: str,
                shots: Sequence[DirectionObservation], shared: bool) -> str:
    if len(shots) == 1:
        return shots[0].id
    if shared:
        return f"{set_id}@{occupied}:{target_id}"
    return f"{set_id}:{target_id}"


def _reduce_target(
    set_id: str,
    occupied: str,
    target: str,
    shots: Sequence[Tuple[DirectionObservation, DirectionObservation, SigmaResolution]],
    shared: bool = False,
) -> Tuple[DirectionObservation, SigmaResolution, DirectionTargetSummary]:
    values = []
    weights = []
    faces = []
    for _, working, sigma in shots:
        v = wrap_2pi(working.value - math.pi) if working.face == 2 else wrap_2pi(working.value)
        values.append(v)
        weights.append(1.0 / max(sigma.sigma ** 2, 1e-24))
        faces.append(working.face)

    reduced = weighted_circular_mean(values, weights)
    sum_w = sum(weights)
    reduced_sigma = math.sqrt(1.0 / sum_w)
    spread = weighted_circular_spread(values, reduced, weights)
    max_residual = max(abs(wrap_pi(v - reduced)) for v in values)

    def face_stats(face: int) -> Tuple[Optional[float], Optional[float]]:
        sel = [(v, w) for v, w, f in zip(values, weights, faces) if f == face]
        if not sel:
            return None, None
        fv = [v for v, _ in sel]
        fw = [w for _, w in sel]
        mean = weighted_circular_mean(fv, fw)
        return mean, weighted_circular_spread(fv, mean, fw)

    f1_mean, f1_spread = face_stats(1)
    f2_mean, f2_spread = face_stats(2)
    face_delta = None
    if f1_mean is not None and f2_mean is not None:
        face_delta = radians_to_arcseconds(abs(wrap_pi(f1_mean - f2_mean)))

    raw = [s[0] for s in shots]
    first = raw[0]
    lines = [s.source_line for s in raw if s.source_line is not None]
    obs = DirectionObservation(
        id=_reduced_id(set_id, occupied, target, raw, shared),
        instrument_code=first.instrument_code,
        sigma=reduced_sigma,
        source_line=min(lines) if lines else None,
        set_id=set_id,
        at_id=occupied,
        to_id=target,
        value=reduced,
        face=1,
    )
    source = combine_sources([s[2].source for s in shots])
    sigma = SigmaResolution(sigma=reduced_sigma, source=source)

    spread_arcsec = radians_to_arcseconds(spread)
    summary = DirectionTargetSummary(
        set_id=set_id,
        occupied_id=occupied,
        target_id=target,
        observation_id=obs.id,
        raw_count=len(shots),
        face1_count=faces.count(1),
        face2_count=faces.count(2),
        reduced_value=reduced,
        reduced_sigma=reduced_sigma,
        raw_spread_arcsec=spread_arcsec,
        raw_max_residual_arcsec=radians_to_arcseconds(max_residual),
        face_pair_delta_arcsec=face_delta,
        face1_spread_arcsec=radians_to_arcseconds(f1_spread) if f1_spread is not None else None,
        face2_spread_arcsec=radians_to_arcseconds(f2_spread) if f2_spread is not None else None,
        suspect_score=target_suspect_score(spread_arcsec, face_delta, None),
    )
    return obs, sigma, summary


def reduce_direction_sets(
    network_sets: Mapping[str, Sequence[DirectionObservation]],
    kept: Mapping[str, Tuple[DirectionObservation, SigmaResolution]],
    mode: DirectionReduction = DirectionReduction.REDUCE,
) -> ReducedDirections:
    """Reduce the direction sets of a network.

    Args:
        network_sets: set_id -> every direction reading of the set
        kept: observation ID -> (working observation, sigma) for readings
            that were not excluded
        mode: REDUCE or RAW
    """
    out = ReducedDirections()

    for set_id in sorted(network_sets):
        by_station: Dict[str, List[DirectionObservation]] = defaultdict(list)
        for obs in network_sets[set_id]:
            by_station[obs.at_id].append(obs)

        for occupied in sorted(by_station):
            readings = by_station[occupied]
            shots = [(o, kept[o.id][0], kept[o.id][1]) for o in readings if o.id in kept]

            if not shots:
                out.rejects.append(DirectionReject(
                    set_id=set_id,
                    occupied_id=occupied,
                    reason="no-shots",
                    detail="No direction readings left in the set",
                    source_line=readings[0].source_line,
                ))
                out._log(f"Direction set {set_id} @ {occupied}: no directions")
                continue

            if mode == DirectionReduction.RAW:
                _keep_raw(out, set_id, occupied, shots)
            else:
                _reduce_set(out, set_id, occupied, shots, shared=len(by_station) > 1)

    return out


def _keep_raw(out: ReducedDirections, set_id: str, occupied: str, shots) -> None:
    expected = shots[0][1].face
    kept = []
    rejected = 0
    for source, working, sigma in shots:
        if working.face != expected:
            rejected += 1
            out.rejects.append(DirectionReject(
                set_id=set_id,
                occupied_id=occupied,
                reason="mixed-face",
                detail=f"Face {working.face} reading in a face {expected} set",
                target_id=working.to_id,
                observation_id=working.id,
                source_line=working.source_line,
                expected_face=expected,
                actual_face=working.face,
            ))
            out._log(f"Mixed face direction {working.id} rejected in set {set_id}")
            continue
        kept.append((source, working, sigma))

    out.observations.extend(kept)
    faces = [w.face for _, w, _ in kept]
    out.sets.append(DirectionSetSummary(
        set_id=set_id,
        occupied_id=occupied,
        mode=DirectionReduction.RAW.value,
        raw_count=len(shots),
        reduced_count=len(kept),
        face1_count=faces.count(1),
        face2_count=faces.count(2),
        paired_targets=0,
        rejected_count=rejected,
    ))
    out._log(f"Direction set {set_id} @ {occupied}: kept {len(kept)} raw direction(s)")


def _reduce_set(out: ReducedDirections, set_id: str, occupied: str, shots,
                shared: bool = False) -> None:
    by_target: Dict[str, list] = defaultdict(list)
    for shot in shots:
        by_target[shot[1].to_id].append(shot)

    paired = 0
    f1_total = 0
    f2_total = 0
    for target in sorted(by_target):
        group = by_target[target]
        obs, sigma, summary = _reduce_target(set_id, occupied, target, group, shared)
        source = group[0][0] if len(group) == 1 else obs
        out.observations.append((source, obs, sigma))
        out.targets.append(summary)
        f1_total += summary.face1_count
        f2_total += summary.face2_count
        if summary.face1_count and summary.face2_count:
            paired += 1

    out.sets.append(DirectionSetSummary(
        set_id=set_id,
        occupied_id=occupied,
        mode=DirectionReduction.REDUCE.value,
        raw_count=len(shots),
        reduced_count=len(by_target),
        face1_count=f1_total,
        face2_count=f2_total,
        paired_targets=paired,
    ))
    out._log(
        f"Direction set reduction {set_id} @ {occupied}: raw {len(shots)} -> reduced "
        f"{len(by_target)} (paired targets={paired}, F1={f1_total}, F2={f2_total})"
    )


def annotate_targets(
    targets: Sequence[DirectionTargetSummary],
    solved: Mapping[str, object],
) -> None:
    """Fill post-adjustment residuals into the target table.

    ``solved`` maps observation ID -> SolvedObservation.
    """
    for target in targets:
        sol = solved.get(target.observation_id)
        if sol is None:
            continue
        target.residual_arcsec = radians_to_arcseconds(sol.residual)
        target.standardized = sol.standardized_residual
        target.suspect_score = target_suspect_score(
            target.raw_spread_arcsec, target.face_pair_delta_arcsec, sol.standardized_residual
        )


def repeatability(targets: Sequence[DirectionTargetSummary]) -> List[DirectionRepeatability]:
    """Repeatability per (occupied station, target) across sets, worst first."""
    groups: Dict[Tuple[str, str], List[DirectionTargetSummary]] = defaultdict(list)
    for t in targets:
        groups[(t.occupied_id, t.target_id)].append(t)

    rows: List[DirectionRepeatability] = []
    for (occupied, target), items in groups.items():
        spreads = [t.raw_spread_arcsec for t in items]
        deltas = [t.face_pair_delta_arcsec for t in items if t.face_pair_delta_arcsec is not None]
        ts = [abs(t.standardized) for t in items if t.standardized is not None]
        max_delta = max(deltas) if deltas else None
        max_t = max(ts) if ts else None
        rows.append(DirectionRepeatability(
            occupied_id=occupied,
            target_id=target,
            set_count=len(items),
            mean_raw_spread_arcsec=sum(spreads) / len(spreads),
            max_raw_spread_arcsec=max(spreads),
            max_face_pair_delta_arcsec=max_delta,
            max_abs_standardized=max_t,
            suspect_score=target_suspect_score(max(spreads), max_delta, max_t),
        ))

    rows.sort(key=lambda r: (-r.suspect_score, r.occupied_id, r.target_id))
    return rows
