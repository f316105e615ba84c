"""Residual statistics per observation type."""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, List, Sequence

from ..models.observation import ObservationType
from ..results.diagnostics import TypeSummary


def type_summary(solved: Sequence) -> List[TypeSummary]:
    """Count, RMS |t|, max |t| and local-test failures per observation type.

    GPS vectors contribute both of their components to the RMS.
    """
    groups: Dict[ObservationType, List] = defaultdict(list)
    for sol in solved:
        groups[sol.obs_type].append(sol)

    rows: List[TypeSummary] = []
    for obs_type in ObservationType:
        items = groups.get(obs_type)
        if not items:
            continue
        values: List[float] = []
        for sol in items:
            values.extend(sol.standardized_components or (sol.standardized_residual,))
        values = [abs(t) for t in values if math.isfinite(t)]
        rows.append(TypeSummary(
            obs_type=obs_type.value,
            count=len(items),
            rms_standardized=math.sqrt(sum(t * t for t in values) / len(values)) if values else 0.0,
            max_abs_standardized=max(values, default=0.0),
            fail_count=sum(1 for s in items if not s.local_test_passed),
        ))
    return rows
