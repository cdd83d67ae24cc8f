"""
Cross-Project Meta Aggregator
=============================

Learns per-project-class priors from finalized runs across many projects.

Pipeline:
    scan_pool()  ->  bucket by profile  ->  aggregate_bucket_stats()
                 ->  derive_meta_policy_bias()  ->  MetaPolicy  ->  write_meta_policy()

Pool layout: one directory per project id, each holding run record JSON
files and optionally a profile.json. Malformed files are logged and skipped.

Small-sample protection:
- error rate is smoothed with a Beta(1,1) prior: (errors + 1) / (n + 2)
- confidence = min(1, n / 10), capped at 0.25 when n < 5
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from CONFIG.config_loader import get_cfg
from RUN_METRICS.common.clock import Clock, get_clock, iso_now
from RUN_METRICS.common.constants import (
    BIAS_HIGH_AVG_WARNINGS,
    BIAS_HIGH_ERROR_RATE,
    BIAS_HIGH_P95_RETRIES,
    BIAS_LOW_MEAN_SCORE,
    BIAS_PRESSURE_MULTIPLIER,
    BIAS_RETRY_BUDGET,
    CONFIDENCE_FULL_SAMPLES,
    DEFAULT_CADENCE_BIAS,
    DEFAULT_CONFIG,
    DEFAULT_MAX_SLOT_RETRIES,
    DEFAULT_PRESSURE_MULTIPLIER,
    PROFILE_FILE_NAME,
    RETRY_PERCENTILE,
    SMALL_SAMPLE_MAX_CONFIDENCE,
    SMALL_SAMPLE_THRESHOLD,
    SPIKE_CADENCE_TAG,
)
from RUN_METRICS.common.exceptions import PoolDataError, RecordFormatError
from RUN_METRICS.common.persistence import read_json, write_atomic_json
from RUN_METRICS.common.stats import mean, nearest_rank_percentile
from RUN_METRICS.common.types import CadenceBias, ProjectProfile, RunAggregates, RunRecord
from RUN_METRICS.meta.models import BucketPolicy, BucketStats, MetaPolicy, MetaPolicyBias
from RUN_METRICS.meta.profile import bucket_key, is_learnable, resolve_profile

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# =============================================================================
# Pool scanning
# =============================================================================


def load_pool_record(path: Path) -> RunRecord:
    """
    Parse one pool file into a finalized run record.

    Raises:
        PoolDataError: If the file is unreadable, not JSON, or lacks a run id
            or aggregate block
    """
    try:
        data = read_json(path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PoolDataError(f"cannot read {path.name}: {e}", path=str(path)) from e

    if not isinstance(data, dict) or not data.get("run_id") or not data.get("aggregates"):
        raise PoolDataError(f"{path.name} lacks run_id or aggregates", path=str(path))

    try:
        return RunRecord.from_dict(data, path=str(path))
    except RecordFormatError as e:
        raise PoolDataError(e.message, run_id=e.run_id, path=str(path)) from e


def load_project_profile(project_dir: Path) -> Optional[ProjectProfile]:
    """Read a project's profile.json; None (logged) if absent or malformed."""
    profile_path = project_dir / PROFILE_FILE_NAME
    if not profile_path.exists():
        return None
    try:
        return ProjectProfile.from_dict(read_json(profile_path))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Ignoring malformed project profile {profile_path}: {e}")
        return None


def scan_pool(root_dir: PathLike) -> List[RunRecord]:
    """
    Load every finalized run record in the metrics pool.

    Args:
        root_dir: Pool root holding one directory per project id

    Returns:
        Run records sorted by (project dir, file name); records without a
        profile of their own get the project's profile.json when present
    """
    root = Path(root_dir)
    if not root.exists():
        logger.warning(f"Metrics pool directory not found: {root}")
        return []

    runs: List[RunRecord] = []
    project_dirs = sorted(p for p in root.iterdir() if p.is_dir())

    for project_dir in project_dirs:
        project_profile = load_project_profile(project_dir)
        for path in sorted(project_dir.glob("*.json")):
            if path.name == PROFILE_FILE_NAME:
                continue
            try:
                record = load_pool_record(path)
            except PoolDataError as e:
                logger.warning(f"Skipping pool file {project_dir.name}/{path.name}: {e}")
                continue
            if record.profile is None and project_profile is not None:
                record.profile = project_profile
            runs.append(record)
            logger.debug(f"Loaded: {project_dir.name}/{path.name}")

    logger.info(f"Loaded {len(runs)} metrics runs from {len(project_dirs)} projects")
    return runs


# =============================================================================
# Bucketing & statistics
# =============================================================================


def group_by_bucket(runs: Sequence[RunRecord]) -> Dict[str, List[RunRecord]]:
    """Group runs by bucket key; unknown-genre runs are dropped."""
    buckets: Dict[str, List[RunRecord]] = defaultdict(list)
    for run in runs:
        profile = resolve_profile(run)
        if not is_learnable(profile):
            logger.info(f"Skipping run with unknown genre: {run.run_id}")
            continue
        buckets[bucket_key(profile)].append(run)
    return dict(buckets)


def spike_ratio(aggregates: RunAggregates) -> float:
    """SPIKE share of all cadence observations in one run (0 if none)."""
    total = sum(aggregates.cadence_counts.values())
    if total <= 0:
        return 0.0
    return aggregates.cadence_counts.get(SPIKE_CADENCE_TAG, 0) / total


def aggregate_bucket_stats(bucket_runs: Sequence[RunRecord]) -> BucketStats:
    """
    Statistics over all finalized runs in one bucket.

    Returns:
        BucketStats (all zero for an empty bucket)
    """
    aggregates = [run.aggregates for run in bucket_runs if run.aggregates is not None]
    sample_count = len(aggregates)
    if sample_count == 0:
        return BucketStats()

    runs_with_errors = sum(1 for agg in aggregates if len(agg.errors) > 0)

    return BucketStats(
        sample_count=sample_count,
        mean_score=mean([agg.score for agg in aggregates]),
        p95_retries=nearest_rank_percentile(
            [agg.retry.p95_retries for agg in aggregates], RETRY_PERCENTILE
        ),
        runs_with_errors=runs_with_errors,
        error_rate=runs_with_errors / sample_count,
        error_rate_smoothed=(runs_with_errors + 1) / (sample_count + 2),
        spike_ratio=mean([spike_ratio(agg) for agg in aggregates]),
        avg_warnings=mean([len(agg.warnings) for agg in aggregates]),
        avg_errors=mean([len(agg.errors) for agg in aggregates]),
    )


def derive_meta_policy_bias(stats: BucketStats) -> MetaPolicyBias:
    """
    Derive a bucket prior from its statistics.

    Rules are independent; each one that fires appends a rationale line.
    """
    rationale: List[str] = []

    confidence = min(1.0, stats.sample_count / CONFIDENCE_FULL_SAMPLES)
    rationale.append(f"sample count {stats.sample_count}, confidence {confidence:.2f}")

    cadence_bias = CadenceBias(DEFAULT_CADENCE_BIAS)
    retry_budget = DEFAULT_MAX_SLOT_RETRIES
    pressure_multiplier = DEFAULT_PRESSURE_MULTIPLIER

    if stats.mean_score < BIAS_LOW_MEAN_SCORE or stats.error_rate_smoothed > BIAS_HIGH_ERROR_RATE:
        cadence_bias = CadenceBias.SPIKE_UP
        rationale.append(
            f"mean score {stats.mean_score:.1f} < {BIAS_LOW_MEAN_SCORE} or smoothed error rate "
            f"{stats.error_rate_smoothed * 100:.1f}% > {BIAS_HIGH_ERROR_RATE * 100:.0f}%: "
            f"raise SPIKE cadence to lift reveal quality"
        )

    if stats.p95_retries > BIAS_HIGH_P95_RETRIES:
        retry_budget = BIAS_RETRY_BUDGET
        rationale.append(
            f"p95 retries {stats.p95_retries:.2f} > {BIAS_HIGH_P95_RETRIES}: "
            f"raise retry budget to {BIAS_RETRY_BUDGET} to repair structure failures"
        )

    if stats.avg_warnings >= BIAS_HIGH_AVG_WARNINGS:
        pressure_multiplier = BIAS_PRESSURE_MULTIPLIER
        rationale.append(
            f"avg warnings {stats.avg_warnings:.1f} >= {BIAS_HIGH_AVG_WARNINGS}: "
            f"lower pressure to {BIAS_PRESSURE_MULTIPLIER} to reduce warning build-up"
        )

    if stats.sample_count < SMALL_SAMPLE_THRESHOLD:
        confidence = min(confidence, SMALL_SAMPLE_MAX_CONFIDENCE)
        rationale.append(
            f"fewer than {SMALL_SAMPLE_THRESHOLD} samples: confidence capped at "
            f"{confidence:.2f}, prior will not override a run's own evidence"
        )

    rationale.append(
        f"stats: mean score {stats.mean_score:.1f}, p95 retries {stats.p95_retries:.2f}, "
        f"smoothed error rate {stats.error_rate_smoothed * 100:.1f}%, "
        f"spike ratio {stats.spike_ratio * 100:.1f}%"
    )

    return MetaPolicyBias(
        cadence_bias_prior=cadence_bias,
        retry_budget_prior=retry_budget,
        pressure_multiplier_prior=pressure_multiplier,
        confidence=confidence,
        rationale=tuple(rationale),
    )


# =============================================================================
# Policy build & persistence
# =============================================================================


def build_meta_policy_from_runs(
    runs: Sequence[RunRecord], clock: Optional[Clock] = None
) -> MetaPolicy:
    """Bucket runs and derive bias + stats per bucket."""
    clock = clock or get_clock()
    buckets: Dict[str, BucketPolicy] = {}

    for key, bucket_runs in sorted(group_by_bucket(runs).items()):
        stats = aggregate_bucket_stats(bucket_runs)
        bias = derive_meta_policy_bias(stats)
        buckets[key] = BucketPolicy(bias=bias, stats=stats)
        logger.info(
            f"Bucket {key}: n={stats.sample_count} mean_score={stats.mean_score:.1f} "
            f"confidence={bias.confidence:.2f} cadence={bias.cadence_bias_prior.value} "
            f"retries={bias.retry_budget_prior} pressure={bias.pressure_multiplier_prior}"
        )

    policy = MetaPolicy(
        version=str(get_cfg("run_metrics.meta.policy_version", default=DEFAULT_CONFIG["policy_version"])),
        generated_at=iso_now(clock),
        buckets=buckets,
    )
    logger.info(f"Meta policy built: {len(buckets)} buckets")
    return policy


def build_meta_policy(pool_dir: PathLike, clock: Optional[Clock] = None) -> MetaPolicy:
    """Scan the pool and build the meta policy."""
    logger.info(f"Building meta policy from {pool_dir}")
    return build_meta_policy_from_runs(scan_pool(pool_dir), clock=clock)


def write_meta_policy(output_path: PathLike, policy: MetaPolicy) -> Path:
    """Persist the meta policy, creating parent directories as needed."""
    path = write_atomic_json(Path(output_path), policy.to_dict())
    logger.info(f"Meta policy written to: {path}")
    return path


def load_meta_policy(path: PathLike) -> Optional[MetaPolicy]:
    """
    Load a persisted meta policy.

    Returns:
        MetaPolicy, or None if the file does not exist

    Raises:
        RecordFormatError: If the file exists but is not a valid policy
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No meta policy at {path}")
        return None
    try:
        return MetaPolicy.from_dict(read_json(path))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise RecordFormatError(f"invalid meta policy {path}: {e}", path=str(path)) from e

