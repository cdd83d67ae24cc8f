"""
Run Recorder
============

Accumulates one run's per-unit telemetry and persists the finalized record.

One RunRecorder instance owns one run for its lifetime. Concurrent runs use
independent recorders and independent output paths, so no locking is needed.

Unit updates are patches over a map keyed by episode index:
- a patch for an unknown episode creates the unit (defaults for absent fields)
- a patch for a known episode overrides only the fields it names
- post signals are merged key by key (record_post_signals)
- episodes are always kept sorted by index

Example:
    >>> recorder = RunRecorder()
    >>> recorder.start("run_42", "proj_a", from_episode=1, to_episode=10)
    >>> recorder.record_contract(1, reveal_type="FACT", cadence_tag="SPIKE")
    >>> recorder.record_retry(1, 2)
    >>> path, record = recorder.finalize("reports")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from CONFIG.config_loader import get_cfg
from RUN_METRICS.common.clock import Clock, get_clock, iso_now
from RUN_METRICS.common.constants import DEFAULT_CONFIG, RUN_FILE_PREFIX
from RUN_METRICS.common.exceptions import RunNotStartedError
from RUN_METRICS.common.persistence import write_atomic_json
from RUN_METRICS.common.types import (
    AdaptiveParamsSnapshot,
    ProjectProfile,
    RunRecord,
    UnitEvent,
)
from RUN_METRICS.telemetry.aggregation import compute_aggregates

logger = logging.getLogger(__name__)

UnitPatch = Union[UnitEvent, Mapping[str, Any]]


def run_file_name(run_id: str) -> str:
    """File name a run record is persisted under."""
    return f"{RUN_FILE_PREFIX}{run_id}.json"


class RunRecorder:
    """
    Session object recording a single run.

    All recording calls before start(), or after finalize() until the next
    start(), raise RunNotStartedError. A finalized record is never mutated.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or get_clock()
        self._run: Optional[RunRecord] = None
        self._units: Dict[int, UnitEvent] = {}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(
        self,
        run_id: str,
        project_id: str,
        from_episode: int,
        to_episode: int,
        profile: Optional[ProjectProfile] = None,
    ) -> RunRecord:
        """
        Initialize an empty run record.

        Calling start() again discards the previous, unfinalized run.
        """
        if self._run is not None and not self._run.is_finalized:
            logger.warning(
                f"Discarding unfinalized run {self._run.run_id} "
                f"({len(self._units)} units) for new run {run_id}"
            )
        self._run = RunRecord(
            run_id=run_id,
            project_id=project_id,
            timestamp=iso_now(self._clock),
            from_episode=from_episode,
            to_episode=to_episode,
            profile=profile,
        )
        self._units = {}
        logger.info(f"Started run {run_id} for project {project_id} (EP{from_episode}-EP{to_episode})")
        return self._run

    def _ensure_run(self) -> RunRecord:
        if self._run is None:
            raise RunNotStartedError("run not started: call start() before recording")
        if self._run.is_finalized:
            raise RunNotStartedError(
                f"run {self._run.run_id} is already finalized: call start() for a new run",
                run_id=self._run.run_id,
            )
        return self._run

    @property
    def run(self) -> Optional[RunRecord]:
        """The current run record (None before start())."""
        return self._run

    # -------------------------------------------------------------------------
    # Unit patches
    # -------------------------------------------------------------------------

    def record_unit(self, event: UnitPatch) -> UnitEvent:
        """
        Insert or amend a unit by episode index.

        Args:
            event: A full UnitEvent (replaces every field) or a mapping with
                an "episode" key plus the fields to override

        Returns:
            The stored unit after the patch
        """
        if isinstance(event, UnitEvent):
            fields = {name: getattr(event, name) for name in event.__dataclass_fields__}
        else:
            fields = dict(event)
        if "episode" not in fields:
            raise ValueError("unit patch must name an episode")
        episode = fields.pop("episode")
        return self._patch(episode, **fields)

    def _patch(self, episode: int, **fields: Any) -> UnitEvent:
        run = self._ensure_run()
        existing = self._units.get(episode)
        if existing is None:
            unit = UnitEvent(episode=episode, **fields)
        else:
            unit = existing.patched(**fields)
        self._units[episode] = unit
        run.episodes = [self._units[k] for k in sorted(self._units)]
        logger.debug(f"Run {run.run_id}: EP{episode} <- {sorted(fields)}")
        return unit

    def record_contract(
        self,
        episode: int,
        reveal_type: str,
        reveal_scope: str = "WORLD",
        required: bool = True,
        cadence_tag: Optional[str] = None,
        no_repeat_key: Optional[str] = None,
        pressure_vector: Optional[str] = None,
        pressure_hint: Optional[str] = None,
    ) -> UnitEvent:
        """
        Record the unit's planned contract.

        A fresh contract restarts the writer: retries go back to 0 and the
        validation result to passing.
        """
        return self._patch(
            episode,
            reveal_type=reveal_type,
            reveal_scope=reveal_scope,
            reveal_required=required,
            cadence_tag=cadence_tag,
            no_repeat_key=no_repeat_key,
            pressure_vector=pressure_vector,
            pressure_hint=pressure_hint,
            slot_retries=0,
            validation_passed=True,
            validation_errors=(),
        )

    def record_retry(self, episode: int, slot_retries: int) -> UnitEvent:
        """Set the unit's retry count (creates a placeholder unit if unknown)."""
        return self._patch(episode, slot_retries=slot_retries)

    def record_validation(
        self, episode: int, passed: bool, errors: Iterable[str] = ()
    ) -> UnitEvent:
        """Set the unit's slot validation result."""
        return self._patch(episode, validation_passed=passed, validation_errors=tuple(errors))

    def record_post_signals(
        self,
        episode: int,
        reveal_is_concrete: Optional[bool] = None,
        reveal_has_consequence: Optional[bool] = None,
    ) -> UnitEvent:
        """Merge post-hoc signals into the unit; only given flags are overwritten."""
        self._ensure_run()
        existing = self._units.get(episode)
        signals: Dict[str, bool] = dict(existing.post_signals or {}) if existing else {}
        if reveal_is_concrete is not None:
            signals["reveal_is_concrete"] = reveal_is_concrete
        if reveal_has_consequence is not None:
            signals["reveal_has_consequence"] = reveal_has_consequence
        return self._patch(episode, post_signals=signals)

    def record_adaptive_params(self, snapshot: AdaptiveParamsSnapshot) -> None:
        """Snapshot the parameters this run was generated with, for audit."""
        run = self._ensure_run()
        run.adaptive_params = snapshot
        logger.info(f"Run {run.run_id}: recorded adaptive params {snapshot.to_dict()}")

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def finalize(self, output_dir: Optional[Union[str, Path]] = None) -> Tuple[Path, RunRecord]:
        """
        Compute aggregates and persist the run record.

        Args:
            output_dir: Directory to write into (created if absent); defaults
                to the configured reports directory

        Returns:
            (path to written file, finalized run record)
        """
        run = self._ensure_run()
        run.aggregates = compute_aggregates(run.episodes, run.adaptive_params)

        out_dir = Path(
            output_dir
            or get_cfg("run_metrics.paths.reports_dir", default=DEFAULT_CONFIG["reports_dir"])
        )
        path = write_atomic_json(out_dir / run_file_name(run.run_id), run.to_dict())

        logger.info(
            f"Finalized run {run.run_id}: {len(run.episodes)} units, "
            f"score={run.aggregates.score} -> {path}"
        )
        return path, run
