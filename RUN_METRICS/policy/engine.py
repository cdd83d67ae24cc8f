"""
Policy Engine
=============

Derives adaptive generation parameters from a run's health.

State rules (evaluated in order, every rule runs, later rules override):

1. score < 60 or p95 retries >= 2  -> SPIKE_UP, retries 4, pressure 0.9
2. any errors                      -> retries 4
3. >= 3 warnings                   -> pressure 0.85
Defaults otherwise: NORMAL, retries 3, pressure 1.0

Cross-project prior (MetaPolicyBias) is merged only when its confidence is
>= 0.3:
- cadence bias  <- prior (categorical, empirical history wins)
- retry budget  <- max(state, prior)
- pressure      <- clamp(0.8, 1.2, 0.6 * prior + 0.4 * state)

Below the threshold the state-derived parameters are returned untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple, Union

from RUN_METRICS.common.constants import (
    DEFAULT_CADENCE_BIAS,
    DEFAULT_MAX_SLOT_RETRIES,
    DEFAULT_PRESSURE_MULTIPLIER,
    POLICY_ELEVATED_RETRIES,
    POLICY_HIGH_P95_RETRIES,
    POLICY_LOW_SCORE,
    POLICY_RELIEVED_PRESSURE,
    POLICY_WARNING_ACCUMULATION,
    POLICY_WARNING_PRESSURE,
    PRESSURE_MULTIPLIER_MAX,
    PRESSURE_MULTIPLIER_MIN,
    PRIOR_MIN_CONFIDENCE,
    PRIOR_PRESSURE_WEIGHT,
    STATE_PRESSURE_WEIGHT,
)
from RUN_METRICS.common.exceptions import RecordFormatError
from RUN_METRICS.common.types import (
    AdaptiveParams,
    AdaptiveParamsSnapshot,
    CadenceBias,
    ParamSource,
    RunAggregates,
    RunRecord,
)
from RUN_METRICS.meta.models import MetaPolicyBias

logger = logging.getLogger(__name__)

RULE_LOW_HEALTH = "low_health_or_high_retries"
RULE_STRUCTURE_ERRORS = "structure_errors"
RULE_WARNING_ACCUMULATION = "warning_accumulation"


@dataclass(frozen=True)
class PolicyInput:
    """
    The slice of a run's aggregates the policy engine reads.

    Attributes:
        score: Health score (0-100)
        avg_retries: Mean retries per unit
        p95_retries: Nearest-rank p95 of retries per unit
        warnings: Warning lines
        errors: Error lines
    """

    score: float
    p95_retries: float
    avg_retries: float = 0.0
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "warnings", tuple(self.warnings))
        object.__setattr__(self, "errors", tuple(self.errors))

    @classmethod
    def from_aggregates(cls, aggregates: RunAggregates) -> "PolicyInput":
        return cls(
            score=aggregates.score,
            avg_retries=aggregates.retry.avg_retries,
            p95_retries=aggregates.retry.p95_retries,
            warnings=aggregates.warnings,
            errors=aggregates.errors,
        )


@dataclass(frozen=True)
class PolicyDecision:
    """
    Tagged result of a policy evaluation.

    Attributes:
        params: Parameters to hand to the generator
        state_params: Parameters derived from the run's own health alone
        merged_with_prior: True when the cross-project prior was merged
        triggered_rules: Names of state rules that fired, in order
        prior_confidence: Confidence of the offered prior (None if no prior)
        prior_rationale: Rationale lines of the offered prior
    """

    params: AdaptiveParams
    state_params: AdaptiveParams
    merged_with_prior: bool
    triggered_rules: Tuple[str, ...] = ()
    prior_confidence: Optional[float] = None
    prior_rationale: Tuple[str, ...] = field(default_factory=tuple)


def default_params() -> AdaptiveParamsSnapshot:
    """Default parameters tagged with the 'default' provenance."""
    return AdaptiveParamsSnapshot(
        params=AdaptiveParams(
            cadence_bias=CadenceBias(DEFAULT_CADENCE_BIAS),
            max_slot_retries=DEFAULT_MAX_SLOT_RETRIES,
            pressure_multiplier=DEFAULT_PRESSURE_MULTIPLIER,
        ),
        source=ParamSource.DEFAULT,
    )


def create_snapshot(params: AdaptiveParams, source: Union[ParamSource, str]) -> AdaptiveParamsSnapshot:
    """Tag parameters with their provenance for storage in a run record."""
    return AdaptiveParamsSnapshot(params=params, source=ParamSource(source))


def state_rules(policy_input: PolicyInput) -> Tuple[AdaptiveParams, List[str]]:
    """Apply the three state rules; returns (params, names of rules fired)."""
    cadence_bias = CadenceBias(DEFAULT_CADENCE_BIAS)
    max_slot_retries = DEFAULT_MAX_SLOT_RETRIES
    pressure_multiplier = DEFAULT_PRESSURE_MULTIPLIER
    fired: List[str] = []

    if policy_input.score < POLICY_LOW_SCORE or policy_input.p95_retries >= POLICY_HIGH_P95_RETRIES:
        logger.debug(
            f"Rule 1 triggered: score={policy_input.score}, p95_retries={policy_input.p95_retries}"
        )
        cadence_bias = CadenceBias.SPIKE_UP
        max_slot_retries = POLICY_ELEVATED_RETRIES
        pressure_multiplier = POLICY_RELIEVED_PRESSURE
        fired.append(RULE_LOW_HEALTH)

    if len(policy_input.errors) > 0:
        logger.debug(f"Rule 2 triggered: {len(policy_input.errors)} errors")
        max_slot_retries = POLICY_ELEVATED_RETRIES
        fired.append(RULE_STRUCTURE_ERRORS)

    if len(policy_input.warnings) >= POLICY_WARNING_ACCUMULATION:
        logger.debug(f"Rule 3 triggered: {len(policy_input.warnings)} warnings")
        pressure_multiplier = POLICY_WARNING_PRESSURE
        fired.append(RULE_WARNING_ACCUMULATION)

    params = AdaptiveParams(
        cadence_bias=cadence_bias,
        max_slot_retries=max_slot_retries,
        pressure_multiplier=pressure_multiplier,
    )
    return params, fired


def merge_with_prior(state: AdaptiveParams, bias: MetaPolicyBias) -> AdaptiveParams:
    """Merge state-derived parameters with a cross-project prior."""
    blended = (
        PRIOR_PRESSURE_WEIGHT * bias.pressure_multiplier_prior
        + STATE_PRESSURE_WEIGHT * state.pressure_multiplier
    )
    merged = AdaptiveParams(
        cadence_bias=bias.cadence_bias_prior,
        max_slot_retries=max(state.max_slot_retries, bias.retry_budget_prior),
        pressure_multiplier=max(PRESSURE_MULTIPLIER_MIN, min(PRESSURE_MULTIPLIER_MAX, blended)),
    )
    logger.debug(
        f"Merged params: cadence {state.cadence_bias.value}->{merged.cadence_bias.value}, "
        f"retries {state.max_slot_retries}/{bias.retry_budget_prior}->{merged.max_slot_retries}, "
        f"pressure {state.pressure_multiplier}/{bias.pressure_multiplier_prior}"
        f"->{merged.pressure_multiplier:.3f}"
    )
    return merged


def evaluate_policy(
    policy_input: PolicyInput, bias: Optional[MetaPolicyBias] = None
) -> PolicyDecision:
    """
    Evaluate the policy and report how the result was reached.

    Args:
        policy_input: This run's health
        bias: Optional prior for this run's bucket

    Returns:
        PolicyDecision; merged_with_prior is True only if bias.confidence >= 0.3
    """
    state, fired = state_rules(policy_input)

    if bias is None:
        return PolicyDecision(params=state, state_params=state, merged_with_prior=False,
                              triggered_rules=tuple(fired))

    if bias.confidence < PRIOR_MIN_CONFIDENCE:
        logger.info(
            f"Prior confidence {bias.confidence:.2f} < {PRIOR_MIN_CONFIDENCE}, "
            f"keeping state-derived params"
        )
        return PolicyDecision(
            params=state,
            state_params=state,
            merged_with_prior=False,
            triggered_rules=tuple(fired),
            prior_confidence=bias.confidence,
            prior_rationale=tuple(bias.rationale),
        )

    merged = merge_with_prior(state, bias)
    logger.info(f"Merged prior (confidence {bias.confidence:.2f}): {merged.to_dict()}")
    return PolicyDecision(
        params=merged,
        state_params=state,
        merged_with_prior=True,
        triggered_rules=tuple(fired),
        prior_confidence=bias.confidence,
        prior_rationale=tuple(bias.rationale),
    )


def derive_adaptive_params(
    policy_input: PolicyInput, bias: Optional[MetaPolicyBias] = None
) -> AdaptiveParams:
    """Parameters only; see evaluate_policy() for the tagged decision."""
    return evaluate_policy(policy_input, bias).params


def extract_policy_input(record: Union[RunRecord, Mapping[str, Any], None]) -> Optional[PolicyInput]:
    """
    Pull the policy input out of a run record or its JSON dict.

    Returns:
        PolicyInput, or None if the record has no usable aggregate block
    """
    if record is None:
        return None

    if isinstance(record, RunRecord):
        if record.aggregates is None:
            logger.warning(f"Run {record.run_id} has no aggregates")
            return None
        return PolicyInput.from_aggregates(record.aggregates)

    aggregates = record.get("aggregates") if isinstance(record, Mapping) else None
    if not aggregates:
        logger.warning("Run metrics missing aggregates")
        return None
    try:
        return PolicyInput.from_aggregates(RunAggregates.from_dict(aggregates))
    except RecordFormatError as e:
        logger.warning(f"Cannot extract policy input: {e}")
        return None


def resolve_adaptive_params(
    baseline: Optional[RunRecord] = None,
    last_run: Optional[RunRecord] = None,
    bias: Optional[MetaPolicyBias] = None,
) -> AdaptiveParamsSnapshot:
    """
    Choose the parameters for the next run, with provenance.

    The state source is picked in priority order Gold baseline -> last run;
    without either, the defaults are returned. A prior that passes the
    confidence threshold retags the result as meta_policy.
    """
    for source, record in ((ParamSource.BASELINE, baseline), (ParamSource.LAST_RUN, last_run)):
        policy_input = extract_policy_input(record)
        if policy_input is None:
            continue
        decision = evaluate_policy(policy_input, bias)
        tag = ParamSource.META_POLICY if decision.merged_with_prior else source
        logger.info(f"Adaptive params from {tag.value}: {decision.params.to_dict()}")
        return create_snapshot(decision.params, tag)

    logger.info("No usable run metrics, using default adaptive params")
    return default_params()

