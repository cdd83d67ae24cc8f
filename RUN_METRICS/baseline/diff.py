"""
Regression Diff
===============

Compares a run against a baseline (usually the Gold) and classifies the
change:

- score delta <= -10            blocking
- any new error                 blocking
- p95 retry delta >= 1          warning
- 1-3 new warnings              warning
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from RUN_METRICS.common.constants import (
    DIFF_BLOCKING_SCORE_DROP,
    DIFF_MAX_NOTED_NEW_WARNINGS,
    DIFF_P95_RETRY_INCREASE,
)
from RUN_METRICS.common.exceptions import RecordFormatError
from RUN_METRICS.common.types import RunAggregates, RunRecord

logger = logging.getLogger(__name__)


@dataclass
class MetricsDiff:
    """Changes from a baseline run to the current run."""

    baseline_run_id: str
    current_run_id: str
    score_delta: float
    avg_retries_delta: float
    p95_retries_delta: float
    new_errors: Tuple[str, ...] = ()
    new_warnings: Tuple[str, ...] = ()
    blocking_reasons: List[str] = field(default_factory=list)
    warning_reasons: List[str] = field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return len(self.blocking_reasons) > 0

    @property
    def verdict(self) -> str:
        if self.blocking:
            return "BLOCKING"
        if self.warning_reasons:
            return "WARNING"
        return "OK"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_retries_delta": self.avg_retries_delta,
            "baseline_run_id": self.baseline_run_id,
            "blocking_reasons": list(self.blocking_reasons),
            "current_run_id": self.current_run_id,
            "new_errors": list(self.new_errors),
            "new_warnings": list(self.new_warnings),
            "p95_retries_delta": self.p95_retries_delta,
            "score_delta": self.score_delta,
            "verdict": self.verdict,
            "warning_reasons": list(self.warning_reasons),
        }


def _aggregates(record: RunRecord) -> RunAggregates:
    if record.aggregates is None:
        raise RecordFormatError("run is not finalized (no aggregates)", run_id=record.run_id)
    return record.aggregates


def compute_metrics_diff(baseline: RunRecord, current: RunRecord) -> MetricsDiff:
    """
    Diff two finalized runs.

    Raises:
        RecordFormatError: If either run has no aggregates
    """
    base = _aggregates(baseline)
    cur = _aggregates(current)

    base_errors = set(base.errors)
    base_warnings = set(base.warnings)

    diff = MetricsDiff(
        baseline_run_id=baseline.run_id,
        current_run_id=current.run_id,
        score_delta=cur.score - base.score,
        avg_retries_delta=cur.retry.avg_retries - base.retry.avg_retries,
        p95_retries_delta=cur.retry.p95_retries - base.retry.p95_retries,
        new_errors=tuple(e for e in cur.errors if e not in base_errors),
        new_warnings=tuple(w for w in cur.warnings if w not in base_warnings),
    )

    if diff.score_delta <= DIFF_BLOCKING_SCORE_DROP:
        diff.blocking_reasons.append(f"health score dropped by {-diff.score_delta}")
    if diff.new_errors:
        diff.blocking_reasons.append(f"{len(diff.new_errors)} new error(s)")

    if diff.p95_retries_delta >= DIFF_P95_RETRY_INCREASE:
        diff.warning_reasons.append(f"p95 retries increased by {diff.p95_retries_delta}")
    if 0 < len(diff.new_warnings) <= DIFF_MAX_NOTED_NEW_WARNINGS:
        diff.warning_reasons.append(f"{len(diff.new_warnings)} new warning(s)")

    logger.info(
        f"Diff {baseline.run_id} -> {current.run_id}: {diff.verdict} "
        f"(score {diff.score_delta:+}, p95 retries {diff.p95_retries_delta:+})"
    )
    return diff
