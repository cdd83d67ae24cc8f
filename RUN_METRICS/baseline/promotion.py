"""
Baseline Promotion Gate
=======================

Decides whether a finalized run becomes the new Gold baseline.

Directory layout under the baseline root:

    gold/run_metrics_gold.json        current canonical baseline (0 or 1)
    pending/run_metrics_pending.json  candidate awaiting reconfirmation (0 or 1)
    history/<UTC ts>_<run id>.json    superseded Gold records (append-only)
    .promotion.lock                   serializes gate invocations

Gate predicate (all must hold):
    score >= min score (Gold's score, or the cold-start floor without a Gold)
    no errors
    p95 retries <= 1

Transitions:
    gate fails                         -> nothing changes
    gate passes, no Pending            -> candidate becomes Pending
    gate passes, Pending has same id   -> Gold archived, candidate is Gold, Pending cleared
    gate passes, Pending has other id  -> Pending replaced, nothing promoted

NOTE: reconfirmation is "the same run id passes twice", not "two different
passing runs". A re-submitted analysis is not independent evidence; revisit
before changing, since it decides which runs become canonical.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from CONFIG.config_loader import get_cfg
from RUN_METRICS.common.clock import Clock, compact_utc_stamp, get_clock
from RUN_METRICS.common.constants import (
    DEFAULT_CONFIG,
    GATE_MAX_ERRORS,
    GATE_MAX_P95_RETRIES,
    GOLD_FILE_NAME,
    LOCK_FILE_NAME,
    PENDING_FILE_NAME,
)
from RUN_METRICS.common.exceptions import RecordFormatError
from RUN_METRICS.common.persistence import exclusive_lock, read_json, write_atomic_json
from RUN_METRICS.common.types import RunRecord

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PromotionOutcome(str, Enum):
    REJECTED = "REJECTED"
    PENDING_CREATED = "PENDING_CREATED"
    PENDING_REPLACED = "PENDING_REPLACED"
    PROMOTED = "PROMOTED"


@dataclass
class GateResult:
    """Result of gate evaluation."""

    passed: bool
    min_score: float
    score_ok: bool
    errors_ok: bool
    retries_ok: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "errors_ok": self.errors_ok,
            "min_score": self.min_score,
            "passed": self.passed,
            "reasons": list(self.reasons),
            "retries_ok": self.retries_ok,
            "score_ok": self.score_ok,
        }


@dataclass
class PromotionResult:
    """What a single gate invocation did."""

    outcome: PromotionOutcome
    run_id: str
    gate: GateResult
    archived_path: Optional[Path] = None

    @property
    def promoted(self) -> bool:
        return self.outcome is PromotionOutcome.PROMOTED


def required_min_score(
    gold: Optional[RunRecord],
    cold_start_min_score: float,
    margin: float = 0,
) -> float:
    """Cold start -> floor; with a Gold -> max(gold score + margin, floor)."""
    if gold is None or gold.aggregates is None:
        return cold_start_min_score
    return max(gold.aggregates.score + margin, cold_start_min_score)


def check_promotion_gate(
    candidate: RunRecord,
    gold: Optional[RunRecord] = None,
    cold_start_min_score: Optional[float] = None,
    margin: Optional[float] = None,
) -> GateResult:
    """
    Evaluate the gate predicate for a candidate run.

    Args:
        candidate: Finalized candidate run
        gold: Current Gold (None on cold start)
        cold_start_min_score: Score floor (default from config)
        margin: Points above the Gold's score required (default from config)

    Raises:
        RecordFormatError: If the candidate has no aggregates
    """
    if candidate.aggregates is None:
        raise RecordFormatError(
            "candidate run is not finalized (no aggregates)", run_id=candidate.run_id
        )
    if cold_start_min_score is None:
        cold_start_min_score = get_cfg(
            "run_metrics.gate.cold_start_min_score", default=DEFAULT_CONFIG["cold_start_min_score"]
        )
    if margin is None:
        margin = get_cfg("run_metrics.gate.min_score_margin", default=DEFAULT_CONFIG["min_score_margin"])

    agg = candidate.aggregates
    min_score = required_min_score(gold, cold_start_min_score, margin)

    score_ok = agg.score >= min_score
    errors_ok = len(agg.errors) <= GATE_MAX_ERRORS
    retries_ok = agg.retry.p95_retries <= GATE_MAX_P95_RETRIES

    reasons: List[str] = []
    if not score_ok:
        reasons.append(f"score {agg.score} < {min_score}")
    if not errors_ok:
        reasons.append(f"errors {len(agg.errors)} > {GATE_MAX_ERRORS}")
    if not retries_ok:
        reasons.append(f"p95 retries {agg.retry.p95_retries} > {GATE_MAX_P95_RETRIES}")

    return GateResult(
        passed=score_ok and errors_ok and retries_ok,
        min_score=min_score,
        score_ok=score_ok,
        errors_ok=errors_ok,
        retries_ok=retries_ok,
        reasons=reasons,
    )


def history_file_name(superseded_at: str, run_id: str) -> str:
    return f"{superseded_at}_{run_id}.json"


class GoldBaselineStore:
    """
    Gold / Pending / History slots for one baseline directory.

    promote() is the only method that mutates the directory.
    """

    def __init__(
        self,
        root_dir: Optional[PathLike] = None,
        clock: Optional[Clock] = None,
        cold_start_min_score: Optional[float] = None,
        margin: Optional[float] = None,
    ):
        self.root_dir = Path(
            root_dir or get_cfg("run_metrics.paths.baseline_dir", default=DEFAULT_CONFIG["baseline_dir"])
        )
        self._clock = clock or get_clock()
        self.cold_start_min_score = cold_start_min_score if cold_start_min_score is not None else get_cfg(
            "run_metrics.gate.cold_start_min_score",
            default=DEFAULT_CONFIG["cold_start_min_score"],
        )
        self.margin = margin if margin is not None else get_cfg(
            "run_metrics.gate.min_score_margin",
            default=DEFAULT_CONFIG["min_score_margin"],
        )

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    @property
    def gold_path(self) -> Path:
        return self.root_dir / "gold" / GOLD_FILE_NAME

    @property
    def pending_path(self) -> Path:
        return self.root_dir / "pending" / PENDING_FILE_NAME

    @property
    def history_dir(self) -> Path:
        return self.root_dir / "history"

    @property
    def lock_path(self) -> Path:
        return self.root_dir / LOCK_FILE_NAME

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    def _load(self, path: Path) -> Optional[RunRecord]:
        if not path.exists():
            return None
        return RunRecord.from_dict(read_json(path), path=str(path))

    def gold(self) -> Optional[RunRecord]:
        """Current Gold, or None (cold start)."""
        return self._load(self.gold_path)

    def pending(self) -> Optional[RunRecord]:
        """Current Pending candidate, or None."""
        return self._load(self.pending_path)

    def history(self) -> List[Path]:
        """Archived Gold files, oldest first."""
        if not self.history_dir.exists():
            return []
        return sorted(self.history_dir.glob("*.json"))

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def promote(self, candidate: RunRecord) -> PromotionResult:
        """
        Run the gate for a candidate and apply the resulting transition.

        Returns:
            PromotionResult; REJECTED leaves Gold and Pending byte-identical

        Raises:
            RecordFormatError: If the candidate (or a stored slot) is malformed
            OSError: On storage failure
        """
        with exclusive_lock(self.lock_path):
            gold = self.gold()
            gate = check_promotion_gate(
                candidate,
                gold,
                cold_start_min_score=self.cold_start_min_score,
                margin=self.margin,
            )

            if not gate.passed:
                logger.info(f"Gate rejected {candidate.run_id}: {'; '.join(gate.reasons)}")
                return PromotionResult(PromotionOutcome.REJECTED, candidate.run_id, gate)

            pending = self.pending()

            if pending is None:
                write_atomic_json(self.pending_path, candidate.to_dict())
                logger.info(f"Gate passed {candidate.run_id}: stored as pending (awaiting reconfirmation)")
                return PromotionResult(PromotionOutcome.PENDING_CREATED, candidate.run_id, gate)

            if pending.run_id != candidate.run_id:
                write_atomic_json(self.pending_path, candidate.to_dict())
                logger.info(
                    f"Gate passed {candidate.run_id}: replaced pending {pending.run_id}, no promotion"
                )
                return PromotionResult(PromotionOutcome.PENDING_REPLACED, candidate.run_id, gate)

            archived = self._archive_gold(gold)
            write_atomic_json(self.gold_path, candidate.to_dict())
            self.pending_path.unlink()
            logger.info(
                f"Promoted {candidate.run_id} to gold (score={candidate.aggregates.score})"
                + (f", archived {gold.run_id}" if gold is not None else "")
            )
            return PromotionResult(PromotionOutcome.PROMOTED, candidate.run_id, gate, archived)

    def promote_file(self, candidate_path: PathLike) -> PromotionResult:
        """promote() for a run record file on disk."""
        path = Path(candidate_path)
        return self.promote(RunRecord.from_dict(read_json(path), path=str(path)))

    def _archive_gold(self, gold: Optional[RunRecord]) -> Optional[Path]:
        """Byte-copy the current Gold file into history."""
        if gold is None:
            return None
        stamp = compact_utc_stamp(self._clock.now())
        target = self.history_dir / history_file_name(stamp, gold.run_id)
        # History is append-only: same stamp and id gets a numeric suffix
        collision = 1
        while target.exists():
            target = self.history_dir / history_file_name(stamp, f"{gold.run_id}.{collision}")
            collision += 1
        self.history_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.gold_path, target)
        logger.info(f"Archived gold {gold.run_id} -> {target}")
        return target
