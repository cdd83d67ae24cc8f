"""
Telemetry
=========

Per-run recording and aggregate health scoring.
"""

from .aggregation import compute_aggregates, compute_retry_stats, health_score
from .recorder import RunRecorder, run_file_name

__all__ = [
    "RunRecorder",
    "compute_aggregates",
    "compute_retry_stats",
    "health_score",
    "run_file_name",
]
