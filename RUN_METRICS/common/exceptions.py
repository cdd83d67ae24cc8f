"""
Run Metrics Exceptions
======================

Exception hierarchy for the RUN_METRICS module.

Only programmer-usage errors and malformed inputs raise. Business outcomes
(a failed unit validation, a low health score, a rejected promotion, an
unknown genre) are modeled as data and never raise. Storage OSErrors
propagate unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class RunMetricsError(Exception):
    """
    Base exception for all run metrics errors.

    Carries a structured payload for logging:
    - run_id: Run identifier (if available)
    - error_code: Machine-readable error code
    - context: Additional context dict
    """

    message: str
    run_id: Optional[str] = None
    error_code: str = "RUN_METRICS_ERROR"
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to structured dict for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "run_id": self.run_id,
            "error_code": self.error_code,
            "context": self.context,
        }


# =============================================================================
# Usage Exceptions
# =============================================================================


@dataclass
class RunNotStartedError(RunMetricsError):
    """A recording call was made with no active run (before start() or after finalize())."""

    error_code: str = "RUN_NOT_STARTED"


# =============================================================================
# Data Exceptions
# =============================================================================


@dataclass
class RecordFormatError(RunMetricsError):
    """A run record does not have the structure an operation requires."""

    path: Optional[str] = None
    error_code: str = "RECORD_FORMAT"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.path:
            self.context["path"] = self.path


@dataclass
class PoolDataError(RecordFormatError):
    """A metrics pool file could not be used. Scanners log and skip these."""

    error_code: str = "POOL_DATA"


# =============================================================================
# Configuration Exceptions
# =============================================================================


@dataclass
class ConfigValidationError(RunMetricsError):
    """Configuration value has the wrong shape."""

    config_path: Optional[str] = None
    error_code: str = "CONFIG_INVALID"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.config_path:
            self.context["config_path"] = self.config_path
