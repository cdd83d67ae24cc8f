"""
Run Metrics Constants
=====================

Central location for all constants used in the RUN_METRICS module.

Two kinds of values live here:

1. Fixed rule thresholds. Downstream gates and priors are calibrated
   against these exact numbers, so they are NOT read from config.
2. Fallback defaults for configurable values. For those, always use:
       from CONFIG.config_loader import get_cfg
       value = get_cfg("run_metrics.xyz", default=DEFAULT_CONFIG["xyz"])
"""

from __future__ import annotations

from typing import Any, Dict, List

# =============================================================================
# Unit classification tags
# =============================================================================

REVEAL_TYPES: List[str] = ["FACT", "INFO", "RELATION", "IDENTITY"]
REVEAL_SCOPES: List[str] = ["PROTAGONIST", "ANTAGONIST", "WORLD"]
CADENCE_TAGS: List[str] = ["NORMAL", "SPIKE"]
PRESSURE_VECTORS: List[str] = ["POWER", "RESOURCE", "STATUS", "RELATION", "LIFE_THREAT"]

DEFAULT_CADENCE_TAG = "NORMAL"
SPIKE_CADENCE_TAG = "SPIKE"

# Placeholders used when a retry is recorded before the unit's contract
PLACEHOLDER_REVEAL_TYPE = "FACT"
PLACEHOLDER_REVEAL_SCOPE = "WORLD"

# =============================================================================
# Health scoring (fixed)
# =============================================================================

SCORE_CEILING = 100
ERROR_PENALTY = 20
WARNING_PENALTY = 5

RETRY_PERCENTILE = 0.95
HIGH_RETRY_FRACTION = 0.5
P95_RETRY_WARNING_THRESHOLD = 2

ERROR_CONSECUTIVE_REPEAT = "RevealType repeated in consecutive episodes"
WARNING_HIGH_RETRY_FREQUENCY = "High retry frequency: writer near structure boundary"
WARNING_P95_RETRIES = "p95 retries >= 2"

# =============================================================================
# Policy engine (fixed)
# =============================================================================

DEFAULT_CADENCE_BIAS = "NORMAL"
DEFAULT_MAX_SLOT_RETRIES = 3
DEFAULT_PRESSURE_MULTIPLIER = 1.0

POLICY_LOW_SCORE = 60
POLICY_HIGH_P95_RETRIES = 2
POLICY_WARNING_ACCUMULATION = 3
POLICY_ELEVATED_RETRIES = 4
POLICY_RELIEVED_PRESSURE = 0.9
POLICY_WARNING_PRESSURE = 0.85

# Prior is merged only at or above this confidence
PRIOR_MIN_CONFIDENCE = 0.3
PRIOR_PRESSURE_WEIGHT = 0.6
STATE_PRESSURE_WEIGHT = 0.4
PRESSURE_MULTIPLIER_MIN = 0.8
PRESSURE_MULTIPLIER_MAX = 1.2

# =============================================================================
# Meta aggregation (fixed)
# =============================================================================

SHORT_MAX_UNITS = 60
MID_MAX_UNITS = 120

CONFIDENCE_FULL_SAMPLES = 10
SMALL_SAMPLE_THRESHOLD = 5
SMALL_SAMPLE_MAX_CONFIDENCE = 0.25

BIAS_LOW_MEAN_SCORE = 60
BIAS_HIGH_ERROR_RATE = 0.2
BIAS_HIGH_P95_RETRIES = 1.5
BIAS_HIGH_AVG_WARNINGS = 3
BIAS_RETRY_BUDGET = 4
BIAS_PRESSURE_MULTIPLIER = 0.9

# =============================================================================
# Promotion gate (fixed)
# =============================================================================

GATE_MAX_ERRORS = 0
GATE_MAX_P95_RETRIES = 1

# =============================================================================
# Regression diff (fixed)
# =============================================================================

DIFF_BLOCKING_SCORE_DROP = -10
DIFF_P95_RETRY_INCREASE = 1
DIFF_MAX_NOTED_NEW_WARNINGS = 3

# =============================================================================
# File naming
# =============================================================================

RUN_FILE_PREFIX = "run_metrics_"
GOLD_FILE_NAME = "run_metrics_gold.json"
PENDING_FILE_NAME = "run_metrics_pending.json"
PROFILE_FILE_NAME = "profile.json"
LOCK_FILE_NAME = ".promotion.lock"

# =============================================================================
# Configurable defaults
# =============================================================================

DEFAULT_GENRE_KEYWORDS: Dict[str, List[str]] = {
    "cultivation_fantasy": ["cultivation", "fantasy"],
    "romance_ceo": ["romance", "ceo"],
    "revenge_rebirth": ["revenge", "rebirth"],
}

DEFAULT_CONFIG: Dict[str, Any] = {
    # Storage
    "reports_dir": "reports",
    "pool_dir": "metrics_pool",
    "meta_policy_path": "meta/meta_policy.json",
    "baseline_dir": "baseline",
    # Gate
    "cold_start_min_score": 70,
    "min_score_margin": 0,
    # Meta
    "policy_version": "1.0.0",
    "unknown_genre": "unknown",
    "default_total_units": 100,
    "genre_keywords": DEFAULT_GENRE_KEYWORDS,
    # Logging
    "log_level": "INFO",
}
