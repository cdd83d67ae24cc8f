"""
Project Profiles & Bucket Keys
==============================

A bucket key is `genre__LENGTH` where LENGTH is SHORT (<= 60 units),
MID (<= 120) or LONG. Profiles are resolved per run:

1. an explicit `profile` block in the run record
2. `profile.json` in the run's project directory of the pool
3. genre inferred from run-id keywords, total units from config

Anything that resolves to the unknown sentinel is excluded from learning.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from CONFIG.config_loader import get_cfg
from RUN_METRICS.common.constants import DEFAULT_CONFIG, MID_MAX_UNITS, SHORT_MAX_UNITS
from RUN_METRICS.common.exceptions import ConfigValidationError
from RUN_METRICS.common.types import LengthClass, ProjectProfile, RunRecord

logger = logging.getLogger(__name__)


def length_class(total_units: int) -> LengthClass:
    if total_units <= SHORT_MAX_UNITS:
        return LengthClass.SHORT
    if total_units <= MID_MAX_UNITS:
        return LengthClass.MID
    return LengthClass.LONG


def bucket_key(profile: ProjectProfile) -> str:
    """Bucket key for a profile, e.g. "romance_ceo__MID"."""
    return f"{profile.genre}__{length_class(profile.total_units).value}"


def unknown_genre() -> str:
    return get_cfg("run_metrics.meta.unknown_genre", default=DEFAULT_CONFIG["unknown_genre"])


def is_learnable(profile: Optional[ProjectProfile]) -> bool:
    """False for missing, blank or unknown-genre profiles."""
    if profile is None:
        return False
    genre = (profile.genre or "").strip()
    return bool(genre) and genre != unknown_genre()


def genre_keywords() -> Dict[str, List[str]]:
    """
    Genre -> run-id keywords map from config.

    Raises:
        ConfigValidationError: If the configured value is not a mapping of lists
    """
    raw = get_cfg("run_metrics.meta.genre_keywords", default=DEFAULT_CONFIG["genre_keywords"])
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(
            f"genre_keywords must be a mapping, got {type(raw).__name__}",
            config_path="run_metrics.meta.genre_keywords",
        )
    keywords: Dict[str, List[str]] = {}
    for genre, words in raw.items():
        if isinstance(words, str) or not isinstance(words, (list, tuple)):
            raise ConfigValidationError(
                f"keywords for genre {genre!r} must be a list",
                config_path="run_metrics.meta.genre_keywords",
            )
        keywords[str(genre)] = [str(w).lower() for w in words]
    return keywords


def infer_genre(run_id: str) -> str:
    """First genre whose keyword appears in the run id, else the unknown sentinel."""
    lowered = run_id.lower()
    for genre, words in genre_keywords().items():
        if any(word in lowered for word in words):
            return genre
    return unknown_genre()


def resolve_profile(
    record: RunRecord, project_profile: Optional[ProjectProfile] = None
) -> ProjectProfile:
    """
    Resolve the profile a run is bucketed under.

    Args:
        record: The run record
        project_profile: Profile loaded from the project's directory, if any

    Returns:
        ProjectProfile (genre may be the unknown sentinel)
    """
    if record.profile is not None:
        return record.profile
    if project_profile is not None:
        return project_profile

    total_units = get_cfg(
        "run_metrics.meta.default_total_units", default=DEFAULT_CONFIG["default_total_units"]
    )
    profile = ProjectProfile(genre=infer_genre(record.run_id), total_units=int(total_units))
    logger.debug(f"Inferred profile for {record.run_id}: {profile.genre}/{profile.total_units}")
    return profile
