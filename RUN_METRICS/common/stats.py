"""
Statistics Helpers
==================

Nearest-rank percentile and plain means shared by run aggregation and
cross-project bucket statistics.
"""

from __future__ import annotations

import math
from typing import Sequence, Union

import numpy as np

Number = Union[int, float]


def nearest_rank_percentile(values: Sequence[Number], p: float) -> Number:
    """
    Nearest-rank percentile without interpolation.

    Returns sorted(values)[floor((n - 1) * p)], or 0 for an empty sequence.
    Gate and policy thresholds are calibrated against exactly this
    definition, so do not swap in np.percentile.

    Example:
        >>> nearest_rank_percentile([0, 1, 2, 3, 4], 0.95)
        3
    """
    if len(values) == 0:
        return 0
    ordered = np.sort(np.asarray(values))
    idx = math.floor((len(ordered) - 1) * p)
    return ordered[idx].item()


def mean(values: Sequence[Number]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return sum(values) / len(values)
