"""
Unit tests for the policy engine.

Tests:
- State rules 1-3 and their override order
- Prior merge: confidence threshold, cadence override, max retries, clamped pressure
- extract_policy_input(): records, dicts, missing aggregates
- resolve_adaptive_params(): baseline -> last run -> default, meta_policy tag
"""

import pytest

from RUN_METRICS.common.types import (
    AdaptiveParams,
    CadenceBias,
    HealthReport,
    ParamSource,
    RetryStats,
    RunAggregates,
    RunRecord,
)
from RUN_METRICS.meta.models import MetaPolicyBias
from RUN_METRICS.policy.engine import (
    RULE_LOW_HEALTH,
    RULE_STRUCTURE_ERRORS,
    RULE_WARNING_ACCUMULATION,
    PolicyInput,
    create_snapshot,
    default_params,
    derive_adaptive_params,
    evaluate_policy,
    extract_policy_input,
    resolve_adaptive_params,
)


def _bias(cadence="SPIKE_UP", retries=4, pressure=0.9, confidence=0.5):
    return MetaPolicyBias(
        cadence_bias_prior=cadence,
        retry_budget_prior=retries,
        pressure_multiplier_prior=pressure,
        confidence=confidence,
        rationale=("test prior",),
    )


def _record(run_id, score=100, p95=0, errors=(), warnings=()):
    aggregates = RunAggregates(
        type_counts={},
        type_transitions_ok=True,
        cadence_counts={},
        vector_counts={},
        retry=RetryStats(episodes_with_retry=0, avg_retries=0.0, p95_retries=p95),
        health=HealthReport(score=score, warnings=tuple(warnings), errors=tuple(errors)),
    )
    return RunRecord(
        run_id=run_id,
        project_id="p",
        timestamp="2026-01-01T00:00:00+00:00",
        from_episode=1,
        to_episode=3,
        aggregates=aggregates,
    )


# ---------------------------------------------------------------------------
# State rules
# ---------------------------------------------------------------------------

class TestStateRules:

    def test_defaults(self):
        params = derive_adaptive_params(PolicyInput(score=90, p95_retries=1))
        assert params == AdaptiveParams(CadenceBias.NORMAL, 3, 1.0)

    def test_low_score(self):
        """score=55, p95=1, no errors/warnings -> SPIKE_UP, 4, 0.9."""
        params = derive_adaptive_params(PolicyInput(score=55, p95_retries=1))
        assert params == AdaptiveParams(CadenceBias.SPIKE_UP, 4, 0.9)

    def test_high_p95(self):
        params = derive_adaptive_params(PolicyInput(score=95, p95_retries=2))
        assert params == AdaptiveParams(CadenceBias.SPIKE_UP, 4, 0.9)

    def test_score_boundary(self):
        """score == 60 does not trigger rule 1."""
        params = derive_adaptive_params(PolicyInput(score=60, p95_retries=0))
        assert params.cadence_bias == CadenceBias.NORMAL

    def test_errors_raise_retries_only(self):
        """score=80, one error -> NORMAL, 4, 1.0."""
        params = derive_adaptive_params(PolicyInput(score=80, p95_retries=0, errors=("e",)))
        assert params == AdaptiveParams(CadenceBias.NORMAL, 4, 1.0)

    def test_warning_accumulation_overrides_pressure(self):
        """score=55 and 3 warnings -> SPIKE_UP, 4, 0.85 (rule 3 overrides rule 1's pressure)."""
        decision = evaluate_policy(PolicyInput(score=55, p95_retries=0, warnings=("a", "b", "c")))
        assert decision.params == AdaptiveParams(CadenceBias.SPIKE_UP, 4, 0.85)
        assert decision.triggered_rules == (RULE_LOW_HEALTH, RULE_WARNING_ACCUMULATION)

    def test_two_warnings_no_pressure_change(self):
        params = derive_adaptive_params(PolicyInput(score=90, p95_retries=0, warnings=("a", "b")))
        assert params.pressure_multiplier == 1.0

    def test_all_rules(self):
        decision = evaluate_policy(
            PolicyInput(score=20, p95_retries=3, errors=("e",), warnings=("a", "b", "c"))
        )
        assert decision.triggered_rules == (
            RULE_LOW_HEALTH,
            RULE_STRUCTURE_ERRORS,
            RULE_WARNING_ACCUMULATION,
        )
        assert decision.params == AdaptiveParams(CadenceBias.SPIKE_UP, 4, 0.85)


# ---------------------------------------------------------------------------
# Prior merge
# ---------------------------------------------------------------------------

class TestPriorMerge:

    def test_low_confidence_prior_ignored(self):
        """confidence 0.2 < 0.3 -> state-only result, tagged as not merged."""
        policy_input = PolicyInput(score=90, p95_retries=0)
        decision = evaluate_policy(policy_input, _bias(confidence=0.2))
        assert decision.merged_with_prior is False
        assert decision.params == evaluate_policy(policy_input).params
        assert decision.prior_confidence == 0.2

    def test_threshold_is_inclusive(self):
        decision = evaluate_policy(PolicyInput(score=90, p95_retries=0), _bias(confidence=0.3))
        assert decision.merged_with_prior is True

    def test_merge_formula(self):
        """Healthy state + strong prior: cadence from prior, max retries, blended pressure."""
        decision = evaluate_policy(
            PolicyInput(score=90, p95_retries=0),
            _bias(cadence="SPIKE_UP", retries=4, pressure=0.9, confidence=0.8),
        )
        assert decision.merged_with_prior is True
        assert decision.params.cadence_bias == CadenceBias.SPIKE_UP
        assert decision.params.max_slot_retries == 4
        assert decision.params.pressure_multiplier == pytest.approx(0.6 * 0.9 + 0.4 * 1.0)
        assert decision.state_params == AdaptiveParams(CadenceBias.NORMAL, 3, 1.0)
        assert decision.prior_rationale == ("test prior",)

    def test_prior_cadence_wins_even_when_normal(self):
        decision = evaluate_policy(
            PolicyInput(score=40, p95_retries=0), _bias(cadence="NORMAL", retries=3, pressure=1.0)
        )
        assert decision.params.cadence_bias == CadenceBias.NORMAL
        assert decision.params.max_slot_retries == 4

    def test_pressure_clamped_low(self):
        decision = evaluate_policy(
            PolicyInput(score=90, p95_retries=0, warnings=("a", "b", "c")),
            _bias(pressure=0.5, confidence=1.0),
        )
        # 0.6 * 0.5 + 0.4 * 0.85 = 0.64 -> 0.8
        assert decision.params.pressure_multiplier == 0.8

    def test_pressure_clamped_high(self):
        decision = evaluate_policy(PolicyInput(score=90, p95_retries=0), _bias(pressure=2.0))
        assert decision.params.pressure_multiplier == 1.2

    def test_no_prior(self):
        decision = evaluate_policy(PolicyInput(score=90, p95_retries=0))
        assert decision.merged_with_prior is False
        assert decision.prior_confidence is None


# ---------------------------------------------------------------------------
# Input extraction & provenance
# ---------------------------------------------------------------------------

class TestExtractPolicyInput:

    def test_from_record(self):
        policy_input = extract_policy_input(_record("r", score=75, p95=2, warnings=("w",)))
        assert policy_input.score == 75
        assert policy_input.p95_retries == 2
        assert policy_input.warnings == ("w",)

    def test_from_dict(self):
        policy_input = extract_policy_input(_record("r", score=65, errors=("e",)).to_dict())
        assert policy_input.score == 65
        assert policy_input.errors == ("e",)

    def test_missing_aggregates(self):
        assert extract_policy_input({"run_id": "r"}) is None
        assert extract_policy_input(None) is None

    def test_missing_health_section(self):
        assert extract_policy_input({"run_id": "r", "aggregates": {"retry": {}}}) is None

    def test_unfinalized_record(self):
        record = _record("r")
        record.aggregates = None
        assert extract_policy_input(record) is None


class TestResolveAdaptiveParams:

    def test_default_when_nothing_available(self):
        snapshot = resolve_adaptive_params()
        assert snapshot.source == ParamSource.DEFAULT
        assert snapshot == default_params()

    def test_baseline_preferred_over_last_run(self):
        snapshot = resolve_adaptive_params(
            baseline=_record("gold", score=100), last_run=_record("last", score=40)
        )
        assert snapshot.source == ParamSource.BASELINE
        assert snapshot.cadence_bias == CadenceBias.NORMAL

    def test_last_run_fallback(self):
        snapshot = resolve_adaptive_params(last_run=_record("last", score=40))
        assert snapshot.source == ParamSource.LAST_RUN
        assert snapshot.cadence_bias == CadenceBias.SPIKE_UP

    def test_merged_prior_tagged_meta_policy(self):
        snapshot = resolve_adaptive_params(last_run=_record("last"), bias=_bias(confidence=0.9))
        assert snapshot.source == ParamSource.META_POLICY

    def test_weak_prior_keeps_state_tag(self):
        snapshot = resolve_adaptive_params(last_run=_record("last"), bias=_bias(confidence=0.1))
        assert snapshot.source == ParamSource.LAST_RUN

    def test_create_snapshot_serializes_source(self):
        snapshot = create_snapshot(AdaptiveParams(), "baseline")
        assert snapshot.to_dict() == {
            "cadence_bias": "NORMAL",
            "max_slot_retries": 3,
            "pressure_multiplier": 1.0,
            "source": "baseline",
        }
