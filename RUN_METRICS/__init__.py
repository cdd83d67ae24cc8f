"""
RUN_METRICS - Run Health, Adaptive Policy & Gold Baseline
=========================================================

Turns per-unit generation telemetry into run health and acts on it:

1. Telemetry recording and health scoring per run
2. Rule-based adaptive parameters for the next run
3. Cross-project priors per project class (genre x length)
4. Double-confirmation gate for the Gold baseline
5. Regression diff against a baseline

Uses get_cfg() for configuration and write_atomic_json() for all file writes.
"""

from RUN_METRICS.common.exceptions import RunMetricsError
from RUN_METRICS.common.types import RunRecord, UnitEvent

__version__ = "0.1.0"
__all__ = ["RunMetricsError", "RunRecord", "UnitEvent"]
