# SPDX-License-Identifier: AGPL-3.0-or-later OR Commercial
# Copyright (c) 2025-2026 Fox ML Infrastructure LLC

"""
Centralized Configuration Loader

Loads run-metrics configuration from YAML files in the CONFIG directory.

CONFIG-AVAILABILITY BOUNDARY:
=============================

This module defines the SINGLE boundary for config fallbacks.

Policy:
- **Config loader layer (this module)**: Fallbacks are ALLOWED here
  - `get_cfg()` can return `default` parameter if config missing
  - `load_config()` can return empty dict if file missing
  - This protects tooling, isolated module usage, and tests

- **Code below config loader (all callers)**: Config is ASSUMED to be present
  - Callers pass the constant from RUN_METRICS.common.constants as `default`
  - Callers of `get_cfg()` should NOT add their own fallbacks
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

# Resolve CONFIG directory (parent of this file), overridable for deployments
CONFIG_DIR = Path(__file__).resolve().parent
CONFIG_DIR_ENV = "RUN_METRICS_CONFIG_DIR"
DEFAULT_CONFIG_NAME = "run_metrics"

# Parsed YAML per config name, protected by RLock for thread safety
_CONFIG_CACHE: Dict[str, Dict[str, Any]] = {}
_CONFIG_CACHE_LOCK = threading.RLock()


def clear_config_cache() -> None:
    """
    Clear all config caches to force reload on next access.
    Useful when config files are modified and you want changes to take effect immediately.
    """
    with _CONFIG_CACHE_LOCK:
        _CONFIG_CACHE.clear()
    logger.debug("Cleared config cache - configs will be reloaded on next access")


def get_config_dir() -> Path:
    """Directory holding the YAML config files."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    return CONFIG_DIR


def get_config_path(config_name: str) -> Path:
    """Resolve a config name (without .yaml) to a file path."""
    return get_config_dir() / f"{config_name}.yaml"


def load_config(config_name: str = DEFAULT_CONFIG_NAME) -> Dict[str, Any]:
    """
    Load a configuration file by name.

    Args:
        config_name: Name of config file (without .yaml)

    Returns:
        Parsed configuration dict (empty if the file is missing or invalid)
    """
    with _CONFIG_CACHE_LOCK:
        if config_name in _CONFIG_CACHE:
            return _CONFIG_CACHE[config_name]

        config_file = get_config_path(config_name)
        if not config_file.exists():
            logger.warning(f"Config not found: {config_file}, using empty config")
            _CONFIG_CACHE[config_name] = {}
            return _CONFIG_CACHE[config_name]

        try:
            with open(config_file, "r") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config {config_file}: {e}")
            loaded = None

        if not isinstance(loaded, dict):
            if loaded is not None:
                logger.warning(f"Config {config_file} is not a mapping, using empty config")
            loaded = {}
        else:
            logger.debug(f"Loaded config from {config_file}")

        _CONFIG_CACHE[config_name] = loaded
        return loaded


def get_cfg(path: str, default: Any = None, config_name: str = DEFAULT_CONFIG_NAME) -> Any:
    """
    Get a nested config value using dot notation.

    CONFIG-AVAILABILITY BOUNDARY:
    This function is the SINGLE boundary where fallbacks are allowed.

    Args:
        path: Dot-separated path to config value (e.g., "run_metrics.gate.cold_start_min_score")
        default: Default value if path not found (should match the shipped YAML default)
        config_name: Name of config file (without .yaml)

    Returns:
        Config value or default

    Example:
        >>> floor = get_cfg("run_metrics.gate.cold_start_min_score", default=70)
    """
    config = load_config(config_name)
    if not config:
        return default

    value: Any = config
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value
