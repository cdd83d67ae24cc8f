"""
CLI Module
==========

Command-line interface for run metrics tooling.
"""

from .config import CLIConfig, setup_logging, validate_config

__all__ = ["CLIConfig", "setup_logging", "validate_config"]
