"""
Common Type Definitions
=======================

Shared dataclasses used across RUN_METRICS modules:

- UnitEvent: one generation unit's telemetry
- RunAggregates: derived statistics of a finalized run
- RunRecord: one run (events + aggregates + adaptive params snapshot)
- AdaptiveParams / AdaptiveParamsSnapshot: generation control parameters
- ProjectProfile: project class used for bucketing

All to_dict() methods emit sorted keys so persisted files are canonical.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from RUN_METRICS.common.constants import (
    CADENCE_TAGS,
    DEFAULT_CADENCE_BIAS,
    DEFAULT_CADENCE_TAG,
    DEFAULT_MAX_SLOT_RETRIES,
    DEFAULT_PRESSURE_MULTIPLIER,
    PLACEHOLDER_REVEAL_SCOPE,
    PLACEHOLDER_REVEAL_TYPE,
    REVEAL_SCOPES,
    REVEAL_TYPES,
)
from RUN_METRICS.common.exceptions import RecordFormatError

# =============================================================================
# Enums
# =============================================================================


class CadenceBias(str, Enum):
    """How the generator should skew SPIKE cadence for the next run."""

    NORMAL = "NORMAL"
    SPIKE_UP = "SPIKE_UP"
    SPIKE_DOWN = "SPIKE_DOWN"


class ParamSource(str, Enum):
    """Provenance of an adaptive parameter set."""

    BASELINE = "baseline"
    LAST_RUN = "last_run"
    META_POLICY = "meta_policy"
    DEFAULT = "default"


class LengthClass(str, Enum):
    """Project length class used in bucket keys."""

    SHORT = "SHORT"
    MID = "MID"
    LONG = "LONG"


# =============================================================================
# Unit Events
# =============================================================================


@dataclass(frozen=True)
class UnitEvent:
    """
    Telemetry for one generation unit (one episode).

    Instances are immutable. The recorder amends a unit by building a patched
    copy with patched(); fields not named in the patch keep their value.

    Attributes:
        episode: Unit ordinal index
        reveal_type: Classification tag (FACT, INFO, RELATION, IDENTITY)
        reveal_scope: PROTAGONIST, ANTAGONIST or WORLD
        reveal_required: Whether the contract required a new reveal
        cadence_tag: NORMAL or SPIKE (None counts as NORMAL)
        no_repeat_key: Optional key the planner used to avoid repeats
        pressure_vector: Optional pressure/category tag
        pressure_hint: Optional free-text pressure hint
        slot_retries: Writer retries spent on this unit (>= 0)
        validation_passed: Whether the unit's slot validation passed
        validation_errors: Validation failure reasons
        post_signals: Optional post-hoc boolean signals
    """

    episode: int
    reveal_type: str = PLACEHOLDER_REVEAL_TYPE
    reveal_scope: str = PLACEHOLDER_REVEAL_SCOPE
    reveal_required: bool = False
    cadence_tag: Optional[str] = None
    no_repeat_key: Optional[str] = None
    pressure_vector: Optional[str] = None
    pressure_hint: Optional[str] = None
    slot_retries: int = 0
    validation_passed: bool = True
    validation_errors: Tuple[str, ...] = ()
    post_signals: Optional[Mapping[str, bool]] = None

    def __post_init__(self) -> None:
        if isinstance(self.episode, bool) or not isinstance(self.episode, int):
            raise TypeError(f"episode must be an int, got {self.episode!r}")
        if isinstance(self.slot_retries, bool) or not isinstance(self.slot_retries, int):
            raise TypeError(f"slot_retries must be an int, got {self.slot_retries!r}")
        if self.slot_retries < 0:
            raise ValueError(f"slot_retries must be >= 0, got {self.slot_retries}")
        if self.reveal_type not in REVEAL_TYPES:
            raise ValueError(f"reveal_type must be one of {REVEAL_TYPES}, got {self.reveal_type!r}")
        if self.reveal_scope not in REVEAL_SCOPES:
            raise ValueError(f"reveal_scope must be one of {REVEAL_SCOPES}, got {self.reveal_scope!r}")
        if self.cadence_tag is not None and self.cadence_tag not in CADENCE_TAGS:
            raise ValueError(f"cadence_tag must be one of {CADENCE_TAGS}, got {self.cadence_tag!r}")
        # Normalize containers so equal events compare equal
        object.__setattr__(self, "validation_errors", tuple(self.validation_errors))
        if self.post_signals is not None:
            object.__setattr__(self, "post_signals", dict(self.post_signals))

    def patched(self, **fields: Any) -> "UnitEvent":
        """
        Return a copy with the given fields overridden.

        Override-or-keep: every named field replaces the stored value,
        every other field is kept. The episode index cannot be patched.

        Raises:
            TypeError: For unknown field names
            ValueError: If the patch tries to change the episode index
        """
        if "episode" in fields and fields["episode"] != self.episode:
            raise ValueError(
                f"Cannot move unit {self.episode} to episode {fields['episode']}"
            )
        return dataclasses.replace(self, **fields)

    @property
    def cadence(self) -> str:
        """Cadence tag with the NORMAL default applied."""
        return self.cadence_tag or DEFAULT_CADENCE_TAG

    def to_dict(self) -> Dict[str, Any]:
        """Convert to serializable dict with sorted keys."""
        d: Dict[str, Any] = {
            "contract": {
                "pressure": {
                    "hint": self.pressure_hint,
                    "vector": self.pressure_vector,
                },
                "reveal": {
                    "cadence_tag": self.cadence_tag,
                    "no_repeat_key": self.no_repeat_key,
                    "required": self.reveal_required,
                    "scope": self.reveal_scope,
                    "type": self.reveal_type,
                },
            },
            "episode": self.episode,
            "writer": {
                "slot_retries": self.slot_retries,
                "slot_validation": {
                    "errors": list(self.validation_errors),
                    "passed": self.validation_passed,
                },
            },
        }
        if self.post_signals is not None:
            d["post_signals"] = dict(self.post_signals)
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "UnitEvent":
        """Create from dict produced by to_dict()."""
        contract = d.get("contract") or {}
        reveal = contract.get("reveal") or {}
        pressure = contract.get("pressure") or {}
        writer = d.get("writer") or {}
        validation = writer.get("slot_validation") or {}
        return cls(
            episode=d["episode"],
            reveal_type=reveal.get("type", PLACEHOLDER_REVEAL_TYPE),
            reveal_scope=reveal.get("scope", PLACEHOLDER_REVEAL_SCOPE),
            reveal_required=reveal.get("required", False),
            cadence_tag=reveal.get("cadence_tag"),
            no_repeat_key=reveal.get("no_repeat_key"),
            pressure_vector=pressure.get("vector"),
            pressure_hint=pressure.get("hint"),
            slot_retries=writer.get("slot_retries", 0) or 0,
            validation_passed=validation.get("passed", True),
            validation_errors=tuple(validation.get("errors", ())),
            post_signals=d.get("post_signals"),
        )


# =============================================================================
# Aggregates
# =============================================================================


@dataclass(frozen=True)
class RetryStats:
    """Retry statistics over a run's units."""

    episodes_with_retry: int = 0
    avg_retries: float = 0.0
    p95_retries: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_retries": self.avg_retries,
            "episodes_with_retry": self.episodes_with_retry,
            "p95_retries": self.p95_retries,
        }


@dataclass(frozen=True)
class HealthReport:
    """Health score plus the warnings and errors that produced it."""

    score: int = 100
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": list(self.errors),
            "score": self.score,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class RunAggregates:
    """
    Derived statistics of a run. Pure function of the run's unit events;
    never edited by hand.
    """

    type_counts: Dict[str, int]
    type_transitions_ok: bool
    cadence_counts: Dict[str, int]
    vector_counts: Dict[str, int]
    retry: RetryStats
    health: HealthReport
    adaptive_params: Optional[Dict[str, str]] = None

    @property
    def score(self) -> int:
        return self.health.score

    @property
    def errors(self) -> Tuple[str, ...]:
        return self.health.errors

    @property
    def warnings(self) -> Tuple[str, ...]:
        return self.health.warnings

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "health": self.health.to_dict(),
            "pressure": {"vector_counts": dict(self.vector_counts)},
            "retry": self.retry.to_dict(),
            "reveal": {
                "cadence": dict(self.cadence_counts),
                "type_counts": dict(self.type_counts),
                "type_transitions_ok": self.type_transitions_ok,
            },
        }
        if self.adaptive_params is not None:
            d["adaptive_params"] = dict(self.adaptive_params)
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RunAggregates":
        """
        Create from dict produced by to_dict().

        Raises:
            RecordFormatError: If a section is missing or holds values of the
                wrong type (null score, string error list, non-int counts)
        """
        if not isinstance(d, Mapping):
            raise RecordFormatError(f"aggregates must be a mapping, got {type(d).__name__}")
        health = d.get("health")
        retry = d.get("retry")
        if not isinstance(health, Mapping) or not isinstance(retry, Mapping):
            raise RecordFormatError("aggregates missing health or retry section")
        reveal = d.get("reveal") or {}
        pressure = d.get("pressure") or {}
        if not isinstance(reveal, Mapping) or not isinstance(pressure, Mapping):
            raise RecordFormatError("aggregates reveal/pressure sections must be mappings")
        return cls(
            type_counts=_count_map(reveal.get("type_counts", {}), "reveal.type_counts"),
            type_transitions_ok=bool(reveal.get("type_transitions_ok", True)),
            cadence_counts=_count_map(reveal.get("cadence", {}), "reveal.cadence"),
            vector_counts=_count_map(pressure.get("vector_counts", {}), "pressure.vector_counts"),
            retry=RetryStats(
                episodes_with_retry=_int_field(retry.get("episodes_with_retry", 0), "retry.episodes_with_retry"),
                avg_retries=_number_field(retry.get("avg_retries", 0.0), "retry.avg_retries"),
                p95_retries=_number_field(retry.get("p95_retries", 0), "retry.p95_retries"),
            ),
            health=HealthReport(
                score=_number_field(health.get("score", 100), "health.score"),
                warnings=_string_list(health.get("warnings", []), "health.warnings"),
                errors=_string_list(health.get("errors", []), "health.errors"),
            ),
            adaptive_params=d.get("adaptive_params"),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number_field(value: Any, name: str) -> Any:
    if not _is_number(value):
        raise RecordFormatError(f"aggregates {name} must be a number, got {value!r}")
    return value


def _int_field(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RecordFormatError(f"aggregates {name} must be an int, got {value!r}")
    return value


def _string_list(value: Any, name: str) -> Tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RecordFormatError(f"aggregates {name} must be a list of strings, got {value!r}")
    return tuple(value)


def _count_map(value: Any, name: str) -> Dict[str, int]:
    if not isinstance(value, Mapping):
        raise RecordFormatError(f"aggregates {name} must be a mapping, got {value!r}")
    for key, count in value.items():
        if isinstance(count, bool) or not isinstance(count, int):
            raise RecordFormatError(f"aggregates {name}[{key!r}] must be an int, got {count!r}")
    return dict(value)


# =============================================================================
# Adaptive Parameters
# =============================================================================


@dataclass(frozen=True)
class AdaptiveParams:
    """
    Generation control parameters for the next run.

    Attributes:
        cadence_bias: NORMAL, SPIKE_UP or SPIKE_DOWN
        max_slot_retries: Retry budget per unit (2, 3 or 4)
        pressure_multiplier: Pressure dial in [0.8, 1.2]
    """

    cadence_bias: CadenceBias = CadenceBias(DEFAULT_CADENCE_BIAS)
    max_slot_retries: int = DEFAULT_MAX_SLOT_RETRIES
    pressure_multiplier: float = DEFAULT_PRESSURE_MULTIPLIER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cadence_bias": self.cadence_bias.value,
            "max_slot_retries": self.max_slot_retries,
            "pressure_multiplier": self.pressure_multiplier,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "AdaptiveParams":
        return cls(
            cadence_bias=CadenceBias(d["cadence_bias"]),
            max_slot_retries=int(d["max_slot_retries"]),
            pressure_multiplier=float(d["pressure_multiplier"]),
        )


@dataclass(frozen=True)
class AdaptiveParamsSnapshot:
    """Adaptive parameters plus the provenance tag, as stored for audit."""

    params: AdaptiveParams
    source: ParamSource

    @property
    def cadence_bias(self) -> CadenceBias:
        return self.params.cadence_bias

    @property
    def max_slot_retries(self) -> int:
        return self.params.max_slot_retries

    @property
    def pressure_multiplier(self) -> float:
        return self.params.pressure_multiplier

    def to_dict(self) -> Dict[str, Any]:
        d = self.params.to_dict()
        d["source"] = self.source.value
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "AdaptiveParamsSnapshot":
        return cls(params=AdaptiveParams.from_dict(d), source=ParamSource(d["source"]))


# =============================================================================
# Project Profile
# =============================================================================


@dataclass(frozen=True)
class ProjectProfile:
    """
    Project class used to compute a bucket key.

    Attributes:
        genre: Genre class (e.g. "romance_ceo"); "unknown" is never learned from
        total_units: Total planned units (episodes) of the project
        platform: Optional publishing platform
        style_tags: Optional style tags
    """

    genre: str
    total_units: int
    platform: Optional[str] = None
    style_tags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "genre": self.genre,
            "platform": self.platform,
            "style_tags": list(self.style_tags),
            "total_units": self.total_units,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ProjectProfile":
        return cls(
            genre=str(d["genre"]),
            total_units=int(d["total_units"]),
            platform=d.get("platform"),
            style_tags=tuple(d.get("style_tags") or ()),
        )


# =============================================================================
# Run Record
# =============================================================================


@dataclass
class RunRecord:
    """
    One generation run.

    Created at run start, mutated only by the owning RunRecorder, frozen at
    finalization when aggregates are computed and the file is persisted.

    Attributes:
        run_id: Run identifier (names the persisted file)
        project_id: Project the run belongs to
        timestamp: ISO-8601 UTC start time
        from_episode: First unit index of the run's range
        to_episode: Last unit index of the run's range
        episodes: Unit events, sorted by episode index
        aggregates: Derived statistics (None until finalized)
        adaptive_params: Snapshot of the parameters used for this run
        profile: Optional project profile for cross-project bucketing
    """

    run_id: str
    project_id: str
    timestamp: str
    from_episode: int
    to_episode: int
    episodes: List[UnitEvent] = field(default_factory=list)
    aggregates: Optional[RunAggregates] = None
    adaptive_params: Optional[AdaptiveParamsSnapshot] = None
    profile: Optional[ProjectProfile] = None

    @property
    def is_finalized(self) -> bool:
        return self.aggregates is not None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "episodes": [ep.to_dict() for ep in self.episodes],
            "project_id": self.project_id,
            "range": {"from_episode": self.from_episode, "to_episode": self.to_episode},
            "run_id": self.run_id,
            "timestamp": self.timestamp,
        }
        if self.aggregates is not None:
            d["aggregates"] = self.aggregates.to_dict()
        if self.adaptive_params is not None:
            d["adaptive_params"] = self.adaptive_params.to_dict()
        if self.profile is not None:
            d["profile"] = self.profile.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], path: Optional[str] = None) -> "RunRecord":
        """
        Create from dict produced by to_dict().

        Raises:
            RecordFormatError: If required fields are missing or malformed
        """
        if not isinstance(d, Mapping):
            raise RecordFormatError(
                f"run record must be a JSON object, got {type(d).__name__}", path=path
            )
        run_id = d.get("run_id")
        if not run_id:
            raise RecordFormatError("run record missing run_id", path=path)
        try:
            rng = d.get("range") or {}
            aggregates = d.get("aggregates")
            adaptive = d.get("adaptive_params")
            profile = d.get("profile")
            return cls(
                run_id=str(run_id),
                project_id=str(d.get("project_id", "")),
                timestamp=str(d.get("timestamp", "")),
                from_episode=int(rng.get("from_episode", 0)),
                to_episode=int(rng.get("to_episode", 0)),
                episodes=[UnitEvent.from_dict(ep) for ep in d.get("episodes", [])],
                aggregates=RunAggregates.from_dict(aggregates) if aggregates is not None else None,
                adaptive_params=(
                    AdaptiveParamsSnapshot.from_dict(adaptive) if adaptive is not None else None
                ),
                profile=ProjectProfile.from_dict(profile) if profile is not None else None,
            )
        except RecordFormatError as e:
            if path and e.path is None:
                e.path = path
                e.context["path"] = path
            e.run_id = str(run_id)
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RecordFormatError(
                f"malformed run record {run_id}: {e}", run_id=str(run_id), path=path
            ) from e
