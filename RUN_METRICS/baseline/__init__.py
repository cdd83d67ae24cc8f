"""
Gold Baseline
=============

Promotion gate (gold / pending / history) and regression diff.
"""

from .diff import MetricsDiff, compute_metrics_diff
from .promotion import (
    GateResult,
    GoldBaselineStore,
    PromotionOutcome,
    PromotionResult,
    check_promotion_gate,
)

__all__ = [
    "GateResult",
    "GoldBaselineStore",
    "MetricsDiff",
    "PromotionOutcome",
    "PromotionResult",
    "check_promotion_gate",
    "compute_metrics_diff",
]
