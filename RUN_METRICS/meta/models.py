"""
Meta Policy Types
=================

Types produced by cross-project learning:

- BucketStats: statistics of all runs in one bucket
- MetaPolicyBias: the prior derived from a bucket's statistics
- MetaPolicy: versioned map bucket key -> {bias, stats}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from RUN_METRICS.common.types import CadenceBias, ProjectProfile
from RUN_METRICS.meta.profile import bucket_key, is_learnable


@dataclass(frozen=True)
class BucketStats:
    """
    Aggregate statistics of one bucket. Recomputed in full on every pass.

    Attributes:
        sample_count: Number of runs in the bucket
        mean_score: Mean health score
        p95_retries: Nearest-rank p95 over each run's own p95 retries
        runs_with_errors: Runs with at least one error
        error_rate: runs_with_errors / sample_count
        error_rate_smoothed: Beta(1,1) posterior mean (runs_with_errors + 1) / (sample_count + 2)
        spike_ratio: Mean per-run SPIKE share of cadence observations
        avg_warnings: Mean warning count per run
        avg_errors: Mean error count per run
    """

    sample_count: int = 0
    mean_score: float = 0.0
    p95_retries: float = 0.0
    runs_with_errors: int = 0
    error_rate: float = 0.0
    error_rate_smoothed: float = 0.0
    spike_ratio: float = 0.0
    avg_warnings: float = 0.0
    avg_errors: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_errors": self.avg_errors,
            "avg_warnings": self.avg_warnings,
            "error_rate": self.error_rate,
            "error_rate_smoothed": self.error_rate_smoothed,
            "mean_score": self.mean_score,
            "p95_retries": self.p95_retries,
            "runs_with_errors": self.runs_with_errors,
            "sample_count": self.sample_count,
            "spike_ratio": self.spike_ratio,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BucketStats":
        return cls(
            sample_count=int(d.get("sample_count", 0)),
            mean_score=float(d.get("mean_score", 0.0)),
            p95_retries=d.get("p95_retries", 0.0),
            runs_with_errors=int(d.get("runs_with_errors", 0)),
            error_rate=float(d.get("error_rate", 0.0)),
            error_rate_smoothed=float(d.get("error_rate_smoothed", 0.0)),
            spike_ratio=float(d.get("spike_ratio", 0.0)),
            avg_warnings=float(d.get("avg_warnings", 0.0)),
            avg_errors=float(d.get("avg_errors", 0.0)),
        )


@dataclass(frozen=True)
class MetaPolicyBias:
    """
    Prior for one project class, fed to the policy engine.

    Attributes:
        cadence_bias_prior: NORMAL, SPIKE_UP or SPIKE_DOWN
        retry_budget_prior: Retry budget prior (2, 3 or 4)
        pressure_multiplier_prior: Pressure prior in [0.8, 1.2]
        confidence: 0-1; below 0.3 the policy engine ignores the prior
        rationale: Why each value was chosen (mandatory audit trail)
    """

    cadence_bias_prior: CadenceBias
    retry_budget_prior: int
    pressure_multiplier_prior: float
    confidence: float
    rationale: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "cadence_bias_prior", CadenceBias(self.cadence_bias_prior))
        object.__setattr__(self, "rationale", tuple(self.rationale))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cadence_bias_prior": self.cadence_bias_prior.value,
            "confidence": self.confidence,
            "pressure_multiplier_prior": self.pressure_multiplier_prior,
            "rationale": list(self.rationale),
            "retry_budget_prior": self.retry_budget_prior,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "MetaPolicyBias":
        return cls(
            cadence_bias_prior=CadenceBias(d["cadence_bias_prior"]),
            retry_budget_prior=int(d["retry_budget_prior"]),
            pressure_multiplier_prior=float(d["pressure_multiplier_prior"]),
            confidence=float(d["confidence"]),
            rationale=tuple(d.get("rationale", ())),
        )


@dataclass(frozen=True)
class BucketPolicy:
    """One bucket's entry in the meta policy."""

    bias: MetaPolicyBias
    stats: BucketStats

    def to_dict(self) -> Dict[str, Any]:
        return {"bias": self.bias.to_dict(), "stats": self.stats.to_dict()}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BucketPolicy":
        return cls(bias=MetaPolicyBias.from_dict(d["bias"]), stats=BucketStats.from_dict(d["stats"]))


@dataclass
class MetaPolicy:
    """
    Versioned, timestamped map from bucket key (genre__LENGTH) to bias and stats.
    """

    version: str
    generated_at: str
    buckets: Dict[str, BucketPolicy] = field(default_factory=dict)

    def bias_for_key(self, key: str) -> Optional[MetaPolicyBias]:
        entry = self.buckets.get(key)
        return entry.bias if entry is not None else None

    def bias_for(self, profile: Optional[ProjectProfile]) -> Optional[MetaPolicyBias]:
        """The prior for a profile's bucket; None for unknown genres or unseen buckets."""
        if not is_learnable(profile):
            return None
        return self.bias_for_key(bucket_key(profile))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buckets": {key: entry.to_dict() for key, entry in sorted(self.buckets.items())},
            "generated_at": self.generated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "MetaPolicy":
        return cls(
            version=str(d["version"]),
            generated_at=str(d["generated_at"]),
            buckets={key: BucketPolicy.from_dict(v) for key, v in d.get("buckets", {}).items()},
        )
