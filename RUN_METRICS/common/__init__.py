"""
Common infrastructure for RUN_METRICS.

Provides exceptions, constants, clock, persistence and shared types.
"""

from .clock import (
    Clock,
    SimulatedClock,
    SystemClock,
    compact_utc_stamp,
    get_clock,
    iso_now,
    reset_clock,
    set_clock,
)
from .exceptions import (
    ConfigValidationError,
    PoolDataError,
    RecordFormatError,
    RunMetricsError,
    RunNotStartedError,
)
from .persistence import canonical_json, exclusive_lock, read_json, write_atomic_json
from .types import (
    AdaptiveParams,
    AdaptiveParamsSnapshot,
    CadenceBias,
    HealthReport,
    LengthClass,
    ParamSource,
    ProjectProfile,
    RetryStats,
    RunAggregates,
    RunRecord,
    UnitEvent,
)

__all__ = [
    # Clock
    "Clock",
    "SimulatedClock",
    "SystemClock",
    "compact_utc_stamp",
    "get_clock",
    "iso_now",
    "reset_clock",
    "set_clock",
    # Exceptions
    "ConfigValidationError",
    "PoolDataError",
    "RecordFormatError",
    "RunMetricsError",
    "RunNotStartedError",
    # Persistence
    "canonical_json",
    "exclusive_lock",
    "read_json",
    "write_atomic_json",
    # Types
    "AdaptiveParams",
    "AdaptiveParamsSnapshot",
    "CadenceBias",
    "HealthReport",
    "LengthClass",
    "ParamSource",
    "ProjectProfile",
    "RetryStats",
    "RunAggregates",
    "RunRecord",
    "UnitEvent",
]
