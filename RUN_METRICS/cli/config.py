"""
CLI Configuration
=================

Configuration loading and logging setup for the run-metrics CLI.

CLI args take precedence over config file values; config file values take
precedence over the module defaults.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from CONFIG.config_loader import get_cfg
from RUN_METRICS.common.constants import DEFAULT_CONFIG
from RUN_METRICS.common.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class CLIConfig:
    """Resolved paths and logging settings for one CLI invocation."""

    reports_dir: Path
    pool_dir: Path
    meta_policy_path: Path
    baseline_dir: Path
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        """Convert string paths to Path objects."""
        for name in ("reports_dir", "pool_dir", "meta_policy_path", "baseline_dir"):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))
        if isinstance(self.log_dir, str):
            self.log_dir = Path(self.log_dir)

    @classmethod
    def from_args_and_config(
        cls,
        reports_dir: Optional[str] = None,
        pool_dir: Optional[str] = None,
        meta_policy_path: Optional[str] = None,
        baseline_dir: Optional[str] = None,
        log_level: Optional[str] = None,
        log_dir: Optional[str] = None,
    ) -> "CLIConfig":
        """
        Create config from CLI args and the config file.

        Raises:
            ConfigValidationError: If the log level is not a logging level name
        """
        config = cls(
            reports_dir=Path(reports_dir or get_cfg(
                "run_metrics.paths.reports_dir", default=DEFAULT_CONFIG["reports_dir"]
            )),
            pool_dir=Path(pool_dir or get_cfg(
                "run_metrics.paths.pool_dir", default=DEFAULT_CONFIG["pool_dir"]
            )),
            meta_policy_path=Path(meta_policy_path or get_cfg(
                "run_metrics.paths.meta_policy_path", default=DEFAULT_CONFIG["meta_policy_path"]
            )),
            baseline_dir=Path(baseline_dir or get_cfg(
                "run_metrics.paths.baseline_dir", default=DEFAULT_CONFIG["baseline_dir"]
            )),
            log_level=(log_level or get_cfg(
                "run_metrics.logging.level", default=DEFAULT_CONFIG["log_level"]
            )).upper(),
            log_dir=Path(log_dir) if log_dir else None,
        )
        validate_config(config)
        return config


def validate_config(config: CLIConfig) -> None:
    """
    Raises:
        ConfigValidationError: If a value is out of range
    """
    if config.log_level not in VALID_LOG_LEVELS:
        raise ConfigValidationError(
            f"invalid log level {config.log_level!r}, expected one of {', '.join(VALID_LOG_LEVELS)}",
            config_path="run_metrics.logging.level",
        )


def setup_logging(level: str, log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Setup logging configuration.

    Log lines go to stderr so reports printed on stdout stay clean.

    Args:
        level: Logging level (DEBUG, INFO, etc.)
        log_dir: Optional directory for a timestamped log file

    Returns:
        Path to log file, or None when logging to stderr only
    """
    handlers: list = [logging.StreamHandler(sys.stderr)]
    log_file: Optional[Path] = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"run_metrics_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file))

    # Clear any existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )

    if log_file is not None:
        logger.info(f"Logging to {log_file}")
    return log_file
