"""
Unit tests for cross-project meta learning.

Tests:
- Bucket keys and length classes
- Profile resolution: record profile, profile.json, run-id keywords, unknown
- scan_pool(): malformed or wrongly typed files skipped, missing root
- aggregate_bucket_stats(): smoothing, nearest-rank p95, spike ratio
- derive_meta_policy_bias(): rules, confidence and small-sample cap
- build / write / load meta policy
"""

import json
from datetime import datetime, timezone

import pytest

from CONFIG.config_loader import clear_config_cache
from RUN_METRICS.common.clock import SimulatedClock
from RUN_METRICS.common.exceptions import ConfigValidationError, PoolDataError
from RUN_METRICS.common.persistence import write_atomic_json
from RUN_METRICS.common.types import (
    CadenceBias,
    HealthReport,
    LengthClass,
    ProjectProfile,
    RetryStats,
    RunAggregates,
    RunRecord,
)
from RUN_METRICS.meta.aggregator import (
    aggregate_bucket_stats,
    build_meta_policy,
    derive_meta_policy_bias,
    load_meta_policy,
    load_pool_record,
    scan_pool,
    write_meta_policy,
)
from RUN_METRICS.meta.models import BucketStats, MetaPolicy
from RUN_METRICS.meta.profile import (
    bucket_key,
    infer_genre,
    is_learnable,
    length_class,
    resolve_profile,
)

T0 = datetime(2026, 5, 4, 8, 30, tzinfo=timezone.utc)


def _record(
    run_id,
    score=100,
    errors=(),
    warnings=(),
    p95=0,
    cadence=None,
    profile=None,
):
    aggregates = RunAggregates(
        type_counts={"FACT": 1},
        type_transitions_ok=True,
        cadence_counts=cadence if cadence is not None else {"NORMAL": 1, "SPIKE": 0},
        vector_counts={},
        retry=RetryStats(episodes_with_retry=0, avg_retries=0.0, p95_retries=p95),
        health=HealthReport(score=score, warnings=tuple(warnings), errors=tuple(errors)),
    )
    return RunRecord(
        run_id=run_id,
        project_id="proj",
        timestamp=T0.isoformat(),
        from_episode=1,
        to_episode=10,
        aggregates=aggregates,
        profile=profile,
    )


def _write_run(pool, project, record):
    write_atomic_json(pool / project / f"run_metrics_{record.run_id}.json", record.to_dict())


# ---------------------------------------------------------------------------
# Profiles & bucket keys
# ---------------------------------------------------------------------------

class TestBucketKeys:

    @pytest.mark.parametrize(
        "units,expected",
        [(1, LengthClass.SHORT), (60, LengthClass.SHORT), (61, LengthClass.MID),
         (120, LengthClass.MID), (121, LengthClass.LONG)],
    )
    def test_length_class(self, units, expected):
        assert length_class(units) == expected

    def test_bucket_key(self):
        assert bucket_key(ProjectProfile(genre="romance_ceo", total_units=80)) == "romance_ceo__MID"

    def test_unknown_not_learnable(self):
        assert is_learnable(ProjectProfile(genre="unknown", total_units=80)) is False
        assert is_learnable(ProjectProfile(genre="  ", total_units=80)) is False
        assert is_learnable(None) is False
        assert is_learnable(ProjectProfile(genre="romance_ceo", total_units=80)) is True


class TestProfileResolution:

    def test_infer_genre_from_keywords(self):
        assert infer_genre("ceo_romance_run_3") == "romance_ceo"
        assert infer_genre("Rebirth-07") == "revenge_rebirth"
        assert infer_genre("CULTIVATION_A") == "cultivation_fantasy"
        assert infer_genre("plain_run") == "unknown"

    def test_record_profile_wins(self):
        profile = ProjectProfile(genre="revenge_rebirth", total_units=40)
        record = _record("romance_1", profile=profile)
        assert resolve_profile(record, ProjectProfile(genre="x", total_units=1)) == profile

    def test_project_profile_before_keywords(self):
        project_profile = ProjectProfile(genre="cultivation_fantasy", total_units=200)
        assert resolve_profile(_record("romance_1"), project_profile) == project_profile

    def test_keyword_fallback_uses_default_units(self):
        profile = resolve_profile(_record("romance_1"))
        assert profile == ProjectProfile(genre="romance_ceo", total_units=100)

    def test_configured_keywords(self, tmp_path, monkeypatch):
        (tmp_path / "run_metrics.yaml").write_text(
            "run_metrics:\n  meta:\n    genre_keywords:\n      mystery: [detective]\n"
        )
        monkeypatch.setenv("RUN_METRICS_CONFIG_DIR", str(tmp_path))
        clear_config_cache()
        assert infer_genre("detective_case_1") == "mystery"
        assert infer_genre("romance_1") == "unknown"

    def test_malformed_keywords_rejected(self, tmp_path, monkeypatch):
        (tmp_path / "run_metrics.yaml").write_text(
            "run_metrics:\n  meta:\n    genre_keywords: [romance]\n"
        )
        monkeypatch.setenv("RUN_METRICS_CONFIG_DIR", str(tmp_path))
        clear_config_cache()
        with pytest.raises(ConfigValidationError):
            infer_genre("romance_1")


# ---------------------------------------------------------------------------
# Pool scanning
# ---------------------------------------------------------------------------

class TestScanPool:

    def test_missing_root(self, tmp_path):
        assert scan_pool(tmp_path / "nope") == []

    def test_malformed_files_skipped(self, tmp_path):
        pool = tmp_path / "pool"
        _write_run(pool, "proj_a", _record("romance_1"))
        (pool / "proj_a" / "broken.json").write_text("{not json")
        (pool / "proj_a" / "no_aggregates.json").write_text(json.dumps({"run_id": "x"}))
        (pool / "proj_a" / "no_run_id.json").write_text(json.dumps({"aggregates": {}}))
        (pool / "proj_a" / "list.json").write_text("[1, 2]")
        (pool / "proj_a" / "bad_health.json").write_text(
            json.dumps({"run_id": "y", "aggregates": {"retry": {}}})
        )
        (pool / "proj_a" / "notes.txt").write_text("ignored")

        runs = scan_pool(pool)
        assert [r.run_id for r in runs] == ["romance_1"]

    @pytest.mark.parametrize(
        "section, key, value",
        [
            ("health", "score", None),
            ("health", "score", "90"),
            ("health", "score", True),
            ("health", "errors", "boom"),
            ("health", "warnings", [1, 2]),
            ("retry", "p95_retries", None),
            ("retry", "avg_retries", "0.5"),
        ],
    )
    def test_wrongly_typed_values_skipped(self, tmp_path, section, key, value):
        pool = tmp_path / "pool"
        _write_run(pool, "proj_a", _record("romance_1", score=60))
        data = _record("romance_2", score=60).to_dict()
        data["aggregates"][section][key] = value
        write_atomic_json(pool / "proj_a" / "run_metrics_romance_2.json", data)

        assert [r.run_id for r in scan_pool(pool)] == ["romance_1"]
        policy = build_meta_policy(pool, clock=SimulatedClock(T0))
        assert policy.buckets["romance_ceo__MID"].stats.sample_count == 1

    def test_non_int_counts_skipped(self, tmp_path):
        pool = tmp_path / "pool"
        data = _record("romance_1").to_dict()
        data["aggregates"]["reveal"]["type_counts"] = {"FACT": "1"}
        write_atomic_json(pool / "proj_a" / "run_metrics_romance_1.json", data)
        assert scan_pool(pool) == []

    def test_load_pool_record_reports_bad_errors_list(self, tmp_path):
        data = _record("romance_1").to_dict()
        data["aggregates"]["health"]["errors"] = "boom"
        path = write_atomic_json(tmp_path / "run_metrics_romance_1.json", data)
        with pytest.raises(PoolDataError, match="health.errors"):
            load_pool_record(path)

    def test_project_profile_attached(self, tmp_path):
        pool = tmp_path / "pool"
        _write_run(pool, "proj_b", _record("plain_run"))
        (pool / "proj_b" / "profile.json").write_text(
            json.dumps({"genre": "revenge_rebirth", "total_units": 150})
        )
        runs = scan_pool(pool)
        assert len(runs) == 1
        assert runs[0].profile == ProjectProfile(genre="revenge_rebirth", total_units=150)

    def test_multiple_projects(self, tmp_path):
        pool = tmp_path / "pool"
        _write_run(pool, "proj_a", _record("romance_1"))
        _write_run(pool, "proj_b", _record("romance_2"))
        _write_run(pool, "proj_b", _record("romance_3"))
        assert len(scan_pool(pool)) == 3


# ---------------------------------------------------------------------------
# Bucket statistics & bias
# ---------------------------------------------------------------------------

class TestAggregateBucketStats:

    def test_empty_bucket(self):
        assert aggregate_bucket_stats([]) == BucketStats()

    def test_single_run_with_error_smoothed(self):
        """1 run, 1 error: raw rate 100%, smoothed 2/3."""
        stats = aggregate_bucket_stats([_record("r", score=80, errors=("e",))])
        assert stats.sample_count == 1
        assert stats.runs_with_errors == 1
        assert stats.error_rate == 1.0
        assert stats.error_rate_smoothed == pytest.approx(2 / 3)

    def test_statistics(self):
        runs = [
            _record("a", score=100, p95=0, cadence={"NORMAL": 3, "SPIKE": 1}),
            _record("b", score=90, p95=1, warnings=("w",), cadence={"NORMAL": 1, "SPIKE": 1}),
            _record("c", score=80, p95=2, errors=("e",), cadence={"NORMAL": 0, "SPIKE": 0}),
            _record("d", score=70, p95=3, warnings=("w", "x")),
            _record("e", score=60, p95=4),
        ]
        stats = aggregate_bucket_stats(runs)
        assert stats.sample_count == 5
        assert stats.mean_score == 80
        assert stats.p95_retries == 3
        assert stats.spike_ratio == pytest.approx((0.25 + 0.5 + 0 + 0 + 0) / 5)
        assert stats.avg_warnings == pytest.approx(0.6)
        assert stats.avg_errors == pytest.approx(0.2)
        assert stats.error_rate_smoothed == pytest.approx(2 / 7)


class TestDeriveMetaPolicyBias:

    def test_healthy_bucket_defaults(self):
        stats = BucketStats(sample_count=20, mean_score=95, error_rate_smoothed=0.05)
        bias = derive_meta_policy_bias(stats)
        assert bias.cadence_bias_prior == CadenceBias.NORMAL
        assert bias.retry_budget_prior == 3
        assert bias.pressure_multiplier_prior == 1.0
        assert bias.confidence == 1.0
        assert bias.rationale

    def test_low_score_spike_up(self):
        bias = derive_meta_policy_bias(BucketStats(sample_count=10, mean_score=55))
        assert bias.cadence_bias_prior == CadenceBias.SPIKE_UP

    def test_high_smoothed_error_rate_spike_up(self):
        bias = derive_meta_policy_bias(
            BucketStats(sample_count=10, mean_score=90, error_rate_smoothed=0.25)
        )
        assert bias.cadence_bias_prior == CadenceBias.SPIKE_UP

    def test_high_p95_retry_budget(self):
        bias = derive_meta_policy_bias(BucketStats(sample_count=10, mean_score=90, p95_retries=2))
        assert bias.retry_budget_prior == 4

    def test_warnings_lower_pressure(self):
        bias = derive_meta_policy_bias(BucketStats(sample_count=10, mean_score=90, avg_warnings=3))
        assert bias.pressure_multiplier_prior == 0.9

    def test_small_sample_cap(self):
        """n=4: min(1, 0.4) capped to 0.25."""
        bias = derive_meta_policy_bias(BucketStats(sample_count=4, mean_score=90))
        assert bias.confidence == 0.25
        assert any("capped" in line for line in bias.rationale)

    def test_confidence_scaling(self):
        assert derive_meta_policy_bias(BucketStats(sample_count=2, mean_score=90)).confidence == 0.2
        assert derive_meta_policy_bias(BucketStats(sample_count=5, mean_score=90)).confidence == 0.5
        assert derive_meta_policy_bias(BucketStats(sample_count=30, mean_score=90)).confidence == 1.0

    def test_one_error_run_not_full_error_rate(self):
        """Smoothing keeps a 1-run bucket from reading as certain, and confidence stays below merge."""
        stats = aggregate_bucket_stats([_record("r", score=80, errors=("e",))])
        bias = derive_meta_policy_bias(stats)
        assert bias.confidence < 0.3


# ---------------------------------------------------------------------------
# Meta policy build & persistence
# ---------------------------------------------------------------------------

class TestBuildMetaPolicy:

    def _pool(self, tmp_path):
        pool = tmp_path / "pool"
        for i in range(6):
            _write_run(pool, "proj_romance", _record(f"romance_{i}", score=55))
        _write_run(pool, "proj_misc", _record("plain_run"))
        _write_run(pool, "proj_misc", _record("other_run"))
        return pool

    def test_unknown_excluded(self, tmp_path):
        policy = build_meta_policy(self._pool(tmp_path), clock=SimulatedClock(T0))
        assert list(policy.buckets) == ["romance_ceo__MID"]
        assert policy.buckets["romance_ceo__MID"].stats.sample_count == 6

    def test_policy_metadata(self, tmp_path):
        policy = build_meta_policy(self._pool(tmp_path), clock=SimulatedClock(T0))
        assert policy.version == "1.0.0"
        assert policy.generated_at == T0.isoformat()
        bias = policy.buckets["romance_ceo__MID"].bias
        assert bias.cadence_bias_prior == CadenceBias.SPIKE_UP
        assert bias.confidence == pytest.approx(0.6)

    def test_empty_pool(self, tmp_path):
        (tmp_path / "pool").mkdir()
        policy = build_meta_policy(tmp_path / "pool", clock=SimulatedClock(T0))
        assert policy.buckets == {}

    def test_write_and_load(self, tmp_path):
        policy = build_meta_policy(self._pool(tmp_path), clock=SimulatedClock(T0))
        path = write_meta_policy(tmp_path / "meta" / "deep" / "meta_policy.json", policy)
        loaded = load_meta_policy(path)
        assert loaded.to_dict() == policy.to_dict()

    def test_load_absent(self, tmp_path):
        assert load_meta_policy(tmp_path / "missing.json") is None

    def test_bias_for_profile(self, tmp_path):
        policy = build_meta_policy(self._pool(tmp_path), clock=SimulatedClock(T0))
        assert policy.bias_for(ProjectProfile(genre="romance_ceo", total_units=100)) is not None
        assert policy.bias_for(ProjectProfile(genre="romance_ceo", total_units=30)) is None
        assert policy.bias_for(ProjectProfile(genre="unknown", total_units=100)) is None

    def test_rebuild_is_deterministic(self, tmp_path):
        pool = self._pool(tmp_path)
        first = build_meta_policy(pool, clock=SimulatedClock(T0))
        second = build_meta_policy(pool, clock=SimulatedClock(T0))
        assert isinstance(first, MetaPolicy)
        assert first.to_dict() == second.to_dict()
