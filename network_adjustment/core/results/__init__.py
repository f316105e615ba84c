"""Result data structures."""

from .adjustment_result import AdjustmentResult, SolvedObservation
from .diagnostics import (
    CorrelationSummary,
    DirectionReject,
    DirectionRepeatability,
    DirectionSetSummary,
    DirectionTargetSummary,
    RelativePrecision,
    RobustIteration,
    RobustSummary,
    SetupSummary,
    SideshotResult,
    Suspect,
    TraverseLoop,
    TraverseSummary,
    TypeSummary,
    WhatIfImpact,
)

__all__ = [
    "AdjustmentResult",
    "SolvedObservation",
    "CorrelationSummary",
    "DirectionReject",
    "DirectionRepeatability",
    "DirectionSetSummary",
    "DirectionTargetSummary",
    "RelativePrecision",
    "RobustIteration",
    "RobustSummary",
    "SetupSummary",
    "SideshotResult",
    "Suspect",
    "TraverseLoop",
    "TraverseSummary",
    "TypeSummary",
    "WhatIfImpact",
]
