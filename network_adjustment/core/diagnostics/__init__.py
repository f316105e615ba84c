"""Diagnostics derived from an adjustment.

- Direction-set reduction and repeatability
- Traverse closures
- Setup aggregation
- Suspect ranking and what-if impact
- Sideshots
- Relative precision
- Per-type residual summary
"""

from .direction_sets import ReducedDirections, annotate_targets, reduce_direction_sets, repeatability
from .precision import observed_pairs, pair_precision, relative_precision
from .setups import summarize_setups
from .sideshots import compute_sideshot, compute_sideshots
from .summary import type_summary
from .suspects import rank_suspects, what_if_analysis
from .traverse import find_loops, traverse_closures

__all__ = [
    "ReducedDirections",
    "annotate_targets",
    "reduce_direction_sets",
    "repeatability",
    "observed_pairs",
    "pair_precision",
    "relative_precision",
    "summarize_setups",
    "compute_sideshot",
    "compute_sideshots",
    "type_summary",
    "rank_suspects",
    "what_if_analysis",
    "find_loops",
    "traverse_closures",
]
