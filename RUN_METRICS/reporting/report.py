"""
Text Reports
============

Read-only renderers for run records, meta policies and diffs.
"""

from __future__ import annotations

from typing import List

import pandas as pd

from RUN_METRICS.baseline.diff import MetricsDiff
from RUN_METRICS.common.types import RunRecord
from RUN_METRICS.meta.models import MetaPolicy

RULE = "=" * 60
THIN_RULE = "-" * 60

UNIT_COLUMNS = ["EP", "type", "scope", "cadence", "vector", "retries", "valid", "errors"]


def units_frame(record: RunRecord) -> pd.DataFrame:
    """One row per unit, ordered by episode."""
    rows = [
        {
            "EP": ev.episode,
            "type": ev.reveal_type,
            "scope": ev.reveal_scope,
            "cadence": ev.cadence,
            "vector": ev.pressure_vector or "-",
            "retries": ev.slot_retries,
            "valid": "yes" if ev.validation_passed else "NO",
            "errors": "|".join(ev.validation_errors) or "-",
        }
        for ev in record.episodes
    ]
    return pd.DataFrame(rows, columns=UNIT_COLUMNS)


def _counts_line(label: str, counts: dict) -> str:
    body = ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
    return f"{label:<12}{body or '-'}"


def render_run_report(record: RunRecord) -> str:
    """Text dashboard for one run record."""
    lines: List[str] = [
        RULE,
        f"Run:     {record.run_id}",
        f"Project: {record.project_id}",
        f"Range:   EP{record.from_episode}-EP{record.to_episode} ({len(record.episodes)} units)",
    ]
    agg = record.aggregates
    if agg is None:
        lines.append("Status:  not finalized")
    else:
        lines.append(f"Score:   {agg.score}/100")
    if record.adaptive_params is not None:
        snap = record.adaptive_params
        lines.append(
            f"Params:  cadence={snap.cadence_bias.value} retries={snap.max_slot_retries} "
            f"pressure={snap.pressure_multiplier} (source: {snap.source.value})"
        )
    lines.append(RULE)

    if agg is not None:
        lines.append(_counts_line("Types:", agg.type_counts))
        lines.append(_counts_line("Cadence:", agg.cadence_counts))
        lines.append(_counts_line("Pressure:", agg.vector_counts))
        lines.append(f"{'No repeat:':<12}{'ok' if agg.type_transitions_ok else 'VIOLATED'}")
        lines.append(
            f"{'Retries:':<12}units with retry={agg.retry.episodes_with_retry}, "
            f"avg={agg.retry.avg_retries:.2f}, p95={agg.retry.p95_retries}"
        )
        lines.append(THIN_RULE)
        lines.append(f"Errors ({len(agg.errors)}):")
        lines.extend(f"  - {e}" for e in agg.errors)
        lines.append(f"Warnings ({len(agg.warnings)}):")
        lines.extend(f"  - {w}" for w in agg.warnings)
        lines.append(THIN_RULE)

    frame = units_frame(record)
    if frame.empty:
        lines.append("(no units recorded)")
    else:
        lines.append(frame.to_string(index=False))
    lines.append(RULE)
    return "\n".join(lines)


def render_meta_policy_summary(policy: MetaPolicy) -> str:
    """Per-bucket summary of a meta policy."""
    lines: List[str] = [
        RULE,
        f"Meta policy v{policy.version} (generated {policy.generated_at})",
        f"Buckets: {len(policy.buckets)}",
        RULE,
    ]
    for key, entry in sorted(policy.buckets.items()):
        stats, bias = entry.stats, entry.bias
        lines.append(f"[{key}]")
        lines.append(
            f"  samples={stats.sample_count} mean_score={stats.mean_score:.1f} "
            f"p95_retries={stats.p95_retries} "
            f"error_rate={stats.error_rate * 100:.1f}% (smoothed {stats.error_rate_smoothed * 100:.1f}%)"
        )
        lines.append(
            f"  prior: cadence={bias.cadence_bias_prior.value} retries={bias.retry_budget_prior} "
            f"pressure={bias.pressure_multiplier_prior} confidence={bias.confidence:.2f}"
        )
        lines.extend(f"    * {reason}" for reason in bias.rationale)
    return "\n".join(lines)


def render_metrics_diff(diff: MetricsDiff) -> str:
    """Human-readable diff verdict."""
    lines: List[str] = [
        RULE,
        f"Baseline: {diff.baseline_run_id}",
        f"Current:  {diff.current_run_id}",
        f"Score delta:       {diff.score_delta:+}",
        f"Avg retries delta: {diff.avg_retries_delta:+.2f}",
        f"P95 retries delta: {diff.p95_retries_delta:+}",
    ]
    if diff.new_errors:
        lines.append("New errors:")
        lines.extend(f"  - {e}" for e in diff.new_errors)
    if diff.new_warnings:
        lines.append("New warnings:")
        lines.extend(f"  - {w}" for w in diff.new_warnings)
    for reason in diff.blocking_reasons:
        lines.append(f"REGRESSION: {reason}")
    for reason in diff.warning_reasons:
        lines.append(f"WARNING: {reason}")
    lines.append(f"Verdict: {diff.verdict}")
    lines.append(RULE)
    return "\n".join(lines)
