"""
JSON Persistence
================

Atomic, canonical JSON writes for run records, meta policies and baselines.

Canonical output (sorted keys, indent 2, newline at EOF) means that writing
the same record twice produces byte-identical files, which the promotion
gate relies on when comparing Gold before and after a call.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator

import numpy as np

logger = logging.getLogger(__name__)


def _sanitize(obj: Any) -> Any:
    """Convert numpy scalars, enums and paths to JSON-native values."""
    if isinstance(obj, dict):
        return {str(k): _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, Path):
        return str(obj)
    return obj


def canonical_json(obj: Any, *, indent: int = 2) -> str:
    """
    Convert object to canonical JSON string (deterministic).

    Args:
        obj: Object to serialize
        indent: Indentation width

    Returns:
        JSON string with sorted keys and a trailing newline
    """
    text = json.dumps(_sanitize(obj), sort_keys=True, ensure_ascii=False, indent=indent)
    return text + "\n"


def write_atomic_json(file_path: Path, data: Dict[str, Any]) -> Path:
    """
    Write JSON file atomically using temp file + rename.

    1. Write to temp file
    2. fsync(tempfile)
    3. os.replace() - atomic rename

    Args:
        file_path: Target file path
        data: Data to write (must be JSON-serializable after sanitizing)

    Returns:
        The written path

    Raises:
        OSError: If write fails
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        with open(temp_file, "w", encoding="utf-8") as f:
            f.write(canonical_json(data))
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_file, file_path)
    except Exception:
        # Clean up temp file on error
        if temp_file.exists():
            temp_file.unlink()
        raise

    logger.debug(f"Wrote {file_path}")
    return file_path


def read_json(file_path: Path) -> Any:
    """
    Read a JSON file.

    Raises:
        OSError: If the file cannot be read
        json.JSONDecodeError: If the content is not JSON
    """
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


@contextmanager
def exclusive_lock(lock_path: Path) -> Iterator[None]:
    """
    Hold an exclusive flock on lock_path for the duration of the block.

    Blocks until the lock is available. Used to serialize read-modify-write
    sequences on shared state directories.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a") as lock_f:
        fcntl.flock(lock_f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_f.fileno(), fcntl.LOCK_UN)
