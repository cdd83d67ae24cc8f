"""
Unit tests for run aggregation and health scoring.

Tests:
- nearest_rank_percentile(): nearest-rank p95, no interpolation
- health_score(): 20/5 weights, floor at 0
- compute_aggregates(): counts, repeat error, retry warnings, empty run
- describe_adaptive_params(): provenance in the aggregate block
"""

import numpy as np
import pytest

from RUN_METRICS.common.constants import (
    ERROR_CONSECUTIVE_REPEAT,
    WARNING_HIGH_RETRY_FREQUENCY,
    WARNING_P95_RETRIES,
)
from RUN_METRICS.common.stats import mean, nearest_rank_percentile
from RUN_METRICS.common.types import (
    AdaptiveParams,
    AdaptiveParamsSnapshot,
    CadenceBias,
    ParamSource,
    UnitEvent,
)
from RUN_METRICS.telemetry.aggregation import (
    compute_aggregates,
    compute_retry_stats,
    health_score,
    type_transitions_ok,
)


def _events(types, retries=None):
    retries = retries or [0] * len(types)
    return [
        UnitEvent(episode=i + 1, reveal_type=t, slot_retries=r)
        for i, (t, r) in enumerate(zip(types, retries))
    ]


# ---------------------------------------------------------------------------
# Statistics helpers
# ---------------------------------------------------------------------------

class TestNearestRankPercentile:

    def test_p95_of_five(self):
        """floor((5-1)*0.95) = 3 -> sorted[3]."""
        assert nearest_rank_percentile([0, 1, 2, 3, 4], 0.95) == 3

    def test_unsorted_input(self):
        assert nearest_rank_percentile([4, 0, 3, 1, 2], 0.95) == 3

    def test_not_interpolated(self):
        """np.percentile would interpolate to 3.8; nearest rank stays on a sample."""
        values = [0, 1, 2, 3, 4]
        assert np.percentile(values, 95) == pytest.approx(3.8)
        assert nearest_rank_percentile(values, 0.95) == 3

    def test_twenty_values(self):
        """floor(19*0.95) = 18."""
        assert nearest_rank_percentile(list(range(20)), 0.95) == 18

    def test_single_value(self):
        assert nearest_rank_percentile([7], 0.95) == 7

    def test_empty(self):
        assert nearest_rank_percentile([], 0.95) == 0

    def test_returns_native_number(self):
        assert type(nearest_rank_percentile([1, 2, 3], 0.95)) is int

    def test_mean_empty(self):
        assert mean([]) == 0.0


# ---------------------------------------------------------------------------
# Health score
# ---------------------------------------------------------------------------

class TestHealthScore:

    def test_clean(self):
        assert health_score(0, 0) == 100

    def test_weights(self):
        assert health_score(1, 0) == 80
        assert health_score(0, 1) == 95
        assert health_score(2, 3) == 45

    def test_floor_at_zero(self):
        assert health_score(5, 1) == 0
        assert health_score(10, 10) == 0


# ---------------------------------------------------------------------------
# compute_aggregates
# ---------------------------------------------------------------------------

class TestComputeAggregates:

    def test_empty_run(self):
        """Empty run: zero counters, no warnings, score 100."""
        agg = compute_aggregates([])
        assert agg.score == 100
        assert agg.errors == ()
        assert agg.warnings == ()
        assert agg.retry.avg_retries == 0
        assert agg.retry.p95_retries == 0
        assert agg.retry.episodes_with_retry == 0
        assert all(v == 0 for v in agg.type_counts.values())
        assert all(v == 0 for v in agg.cadence_counts.values())
        assert agg.type_transitions_ok is True

    def test_counts(self):
        events = [
            UnitEvent(episode=1, reveal_type="FACT", cadence_tag="SPIKE", pressure_vector="POWER"),
            UnitEvent(episode=2, reveal_type="INFO", pressure_vector="POWER"),
            UnitEvent(episode=3, reveal_type="FACT", cadence_tag="NORMAL", pressure_vector="STATUS"),
        ]
        agg = compute_aggregates(events)
        assert agg.type_counts["FACT"] == 2
        assert agg.type_counts["INFO"] == 1
        assert agg.type_counts["RELATION"] == 0
        assert agg.cadence_counts == {"NORMAL": 2, "SPIKE": 1}
        assert agg.vector_counts["POWER"] == 2
        assert agg.vector_counts["STATUS"] == 1
        assert agg.score == 100

    def test_consecutive_repeat_single_error(self):
        """Several adjacent repeats still produce exactly one repeat error."""
        agg = compute_aggregates(_events(["FACT", "FACT", "INFO", "INFO", "INFO"]))
        assert agg.type_transitions_ok is False
        assert agg.errors.count(ERROR_CONSECUTIVE_REPEAT) == 1
        assert agg.score == 80

    def test_non_adjacent_repeat_ok(self):
        assert type_transitions_ok(_events(["FACT", "INFO", "FACT"])) is True

    def test_validation_failure_error_line(self):
        events = [
            UnitEvent(episode=1, reveal_type="FACT"),
            UnitEvent(
                episode=2,
                reveal_type="INFO",
                validation_passed=False,
                validation_errors=("missing_slot", "too_short"),
            ),
        ]
        agg = compute_aggregates(events)
        assert agg.errors == ("EP2: slotValidationFail=missing_slot|too_short",)
        assert agg.score == 80

    def test_unit_errors_precede_repeat_error(self):
        events = [
            UnitEvent(episode=1, reveal_type="FACT", validation_passed=False, validation_errors=("x",)),
            UnitEvent(episode=2, reveal_type="FACT"),
        ]
        agg = compute_aggregates(events)
        assert agg.errors == ("EP1: slotValidationFail=x", ERROR_CONSECUTIVE_REPEAT)
        assert agg.score == 60

    def test_retry_stats(self):
        stats = compute_retry_stats(_events(["FACT", "INFO", "FACT", "INFO", "FACT"], [0, 1, 2, 3, 4]))
        assert stats.episodes_with_retry == 4
        assert stats.avg_retries == 2.0
        assert stats.p95_retries == 3

    def test_high_retry_warnings(self):
        """4/5 units retried and p95 >= 2: both retry warnings, score 90."""
        agg = compute_aggregates(_events(["FACT", "INFO", "FACT", "INFO", "FACT"], [0, 1, 2, 3, 4]))
        assert WARNING_HIGH_RETRY_FREQUENCY in agg.warnings
        assert WARNING_P95_RETRIES in agg.warnings
        assert agg.score == 90

    def test_high_retry_fraction_boundary(self):
        """Exactly half the units retried triggers the frequency warning."""
        agg = compute_aggregates(_events(["FACT", "INFO"], [1, 0]))
        assert agg.warnings == (WARNING_HIGH_RETRY_FREQUENCY,)

    def test_below_high_retry_fraction(self):
        agg = compute_aggregates(_events(["FACT", "INFO", "FACT"], [1, 0, 0]))
        assert agg.warnings == ()

    def test_post_signal_warnings(self):
        events = [
            UnitEvent(
                episode=3,
                reveal_type="FACT",
                post_signals={"reveal_is_concrete": False, "reveal_has_consequence": False},
            ),
            UnitEvent(episode=4, reveal_type="INFO", post_signals={"reveal_is_concrete": True}),
        ]
        agg = compute_aggregates(events)
        assert agg.warnings == ("EP3: reveal not concrete", "EP3: reveal no consequence")
        assert agg.score == 90

    def test_pure(self):
        events = _events(["FACT", "INFO", "FACT"], [0, 2, 1])
        assert compute_aggregates(events) == compute_aggregates(events)

    def test_adaptive_params_block(self):
        snapshot = AdaptiveParamsSnapshot(
            params=AdaptiveParams(CadenceBias.SPIKE_UP, 4, 0.9),
            source=ParamSource.META_POLICY,
        )
        agg = compute_aggregates(_events(["FACT"]), snapshot)
        assert agg.adaptive_params["source"] == "meta_policy"
        assert "cadence bias: SPIKE_UP" in agg.adaptive_params["description"]
        assert "max slot retries: 4" in agg.adaptive_params["description"]
        assert agg.to_dict()["adaptive_params"]["source"] == "meta_policy"

    def test_no_adaptive_params_block(self):
        assert "adaptive_params" not in compute_aggregates(_events(["FACT"])).to_dict()
