"""
Run Aggregation & Health Scoring
================================

Pure function from an ordered unit-event sequence to RunAggregates.

Rules (fixed, not configurable):
- A failed unit validation contributes one error line
- Any two adjacent units sharing a reveal type contribute ONE error line
- A post-signal flag set to False contributes one warning line per flag
- retries > 0 on at least half the units adds a high-retry-frequency warning
- p95 retries >= 2 adds a p95 warning
- score = max(0, 100 - 20 * |errors| - 5 * |warnings|)

The promotion gate and policy thresholds are calibrated against the score
weights and the nearest-rank p95, so neither may change.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from RUN_METRICS.common.constants import (
    CADENCE_TAGS,
    ERROR_CONSECUTIVE_REPEAT,
    ERROR_PENALTY,
    HIGH_RETRY_FRACTION,
    P95_RETRY_WARNING_THRESHOLD,
    PRESSURE_VECTORS,
    RETRY_PERCENTILE,
    REVEAL_TYPES,
    SCORE_CEILING,
    WARNING_HIGH_RETRY_FREQUENCY,
    WARNING_P95_RETRIES,
    WARNING_PENALTY,
)
from RUN_METRICS.common.stats import mean, nearest_rank_percentile
from RUN_METRICS.common.types import (
    AdaptiveParamsSnapshot,
    CadenceBias,
    HealthReport,
    RetryStats,
    RunAggregates,
    UnitEvent,
)

logger = logging.getLogger(__name__)


def health_score(error_count: int, warning_count: int) -> int:
    """max(0, 100 - 20 * errors - 5 * warnings)."""
    return max(0, SCORE_CEILING - ERROR_PENALTY * error_count - WARNING_PENALTY * warning_count)


def unit_error_line(event: UnitEvent) -> str:
    return f"EP{event.episode}: slotValidationFail={'|'.join(event.validation_errors)}"


def post_signal_warnings(event: UnitEvent) -> List[str]:
    """One warning per post-signal flag explicitly set to False."""
    if not event.post_signals:
        return []
    warnings = []
    if event.post_signals.get("reveal_is_concrete") is False:
        warnings.append(f"EP{event.episode}: reveal not concrete")
    if event.post_signals.get("reveal_has_consequence") is False:
        warnings.append(f"EP{event.episode}: reveal no consequence")
    return warnings


def type_transitions_ok(events: Sequence[UnitEvent]) -> bool:
    """False if any two adjacent units share the same reveal type."""
    return all(
        events[i].reveal_type != events[i - 1].reveal_type for i in range(1, len(events))
    )


def compute_retry_stats(events: Sequence[UnitEvent]) -> RetryStats:
    retries = [ev.slot_retries for ev in events]
    return RetryStats(
        episodes_with_retry=sum(1 for r in retries if r > 0),
        avg_retries=mean(retries),
        p95_retries=nearest_rank_percentile(retries, RETRY_PERCENTILE),
    )


def describe_adaptive_params(snapshot: AdaptiveParamsSnapshot) -> str:
    """Human-readable explanation of an adaptive parameter snapshot."""
    parts = [
        f"source: {snapshot.source.value}",
        f"cadence bias: {snapshot.cadence_bias.value}",
        f"max slot retries: {snapshot.max_slot_retries}",
        f"pressure multiplier: {snapshot.pressure_multiplier:.2f}",
    ]

    if snapshot.cadence_bias == CadenceBias.SPIKE_UP:
        parts.append("note: more SPIKE reveals to lift reveal quality")
    elif snapshot.cadence_bias == CadenceBias.SPIKE_DOWN:
        parts.append("note: fewer SPIKE reveals to calm cadence")

    if snapshot.max_slot_retries > 3:
        parts.append("note: extra retries to repair structure failures")

    if snapshot.pressure_multiplier < 1.0:
        parts.append("note: lower pressure to reduce warning build-up")
    elif snapshot.pressure_multiplier > 1.0:
        parts.append("note: higher pressure to raise tension")

    return " | ".join(parts)


def compute_aggregates(
    events: Sequence[UnitEvent],
    adaptive_params: Optional[AdaptiveParamsSnapshot] = None,
) -> RunAggregates:
    """
    Compute a run's aggregate block.

    Args:
        events: Unit events ordered by episode index
        adaptive_params: Optional parameter snapshot to describe in the block

    Returns:
        RunAggregates (all counters zero and score 100 for an empty run)
    """
    type_counts: Dict[str, int] = {t: 0 for t in REVEAL_TYPES}
    cadence_counts: Dict[str, int] = {c: 0 for c in CADENCE_TAGS}
    vector_counts: Dict[str, int] = {v: 0 for v in PRESSURE_VECTORS}

    warnings: List[str] = []
    errors: List[str] = []

    for ev in events:
        type_counts[ev.reveal_type] = type_counts.get(ev.reveal_type, 0) + 1
        cadence_counts[ev.cadence] = cadence_counts.get(ev.cadence, 0) + 1
        if ev.pressure_vector:
            vector_counts[ev.pressure_vector] = vector_counts.get(ev.pressure_vector, 0) + 1

        if not ev.validation_passed:
            errors.append(unit_error_line(ev))

        warnings.extend(post_signal_warnings(ev))

    transitions_ok = type_transitions_ok(events)
    if not transitions_ok:
        errors.append(ERROR_CONSECUTIVE_REPEAT)

    retry = compute_retry_stats(events)
    if events and retry.episodes_with_retry / len(events) >= HIGH_RETRY_FRACTION:
        warnings.append(WARNING_HIGH_RETRY_FREQUENCY)
    if retry.p95_retries >= P95_RETRY_WARNING_THRESHOLD:
        warnings.append(WARNING_P95_RETRIES)

    score = health_score(len(errors), len(warnings))
    logger.debug(
        f"Aggregated {len(events)} units: score={score} "
        f"errors={len(errors)} warnings={len(warnings)} p95_retries={retry.p95_retries}"
    )

    adaptive_block = None
    if adaptive_params is not None:
        adaptive_block = {
            "description": describe_adaptive_params(adaptive_params),
            "source": adaptive_params.source.value,
        }

    return RunAggregates(
        type_counts=type_counts,
        type_transitions_ok=transitions_ok,
        cadence_counts=cadence_counts,
        vector_counts=vector_counts,
        retry=retry,
        health=HealthReport(score=score, warnings=tuple(warnings), errors=tuple(errors)),
        adaptive_params=adaptive_block,
    )
