"""
Policy Engine
=============

Run health (+ optional cross-project prior) -> adaptive parameters.
"""

from .engine import (
    PolicyDecision,
    PolicyInput,
    create_snapshot,
    default_params,
    derive_adaptive_params,
    evaluate_policy,
    extract_policy_input,
    resolve_adaptive_params,
)

__all__ = [
    "PolicyDecision",
    "PolicyInput",
    "create_snapshot",
    "default_params",
    "derive_adaptive_params",
    "evaluate_policy",
    "extract_policy_input",
    "resolve_adaptive_params",
]
