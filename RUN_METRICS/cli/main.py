"""
Run Metrics CLI
===============

Usage:
    # Learn per-bucket priors from the metrics pool
    run-metrics meta-build --pool-dir metrics_pool --output meta/meta_policy.json

    # Show a persisted meta policy
    run-metrics meta-show --meta-policy meta/meta_policy.json

    # Submit a finalized run to the promotion gate
    run-metrics gold-promote reports/run_metrics_run_42.json --baseline-dir baseline

    # Regression diff (exit code 1 on blocking regression)
    run-metrics diff baseline.json current.json

    # Text dashboard for one run
    run-metrics report reports/run_metrics_run_42.json

    # Parameters for the next run, with provenance
    run-metrics params --baseline-dir baseline --genre romance_ceo --total-units 80

Exit codes: 0 success, 1 blocking regression, 2 usage/data/storage error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from RUN_METRICS.baseline.diff import compute_metrics_diff
from RUN_METRICS.baseline.promotion import GoldBaselineStore
from RUN_METRICS.cli.config import CLIConfig, setup_logging
from RUN_METRICS.common.exceptions import RunMetricsError
from RUN_METRICS.common.persistence import canonical_json, read_json
from RUN_METRICS.common.types import ProjectProfile, RunRecord
from RUN_METRICS.meta.aggregator import build_meta_policy, load_meta_policy, write_meta_policy
from RUN_METRICS.policy.engine import resolve_adaptive_params
from RUN_METRICS.reporting.report import (
    render_meta_policy_summary,
    render_metrics_diff,
    render_run_report,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REGRESSION = 1
EXIT_ERROR = 2


def load_record(path: str) -> RunRecord:
    """Read a run record file."""
    return RunRecord.from_dict(read_json(Path(path)), path=str(path))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run-metrics",
        description="Run health metrics, adaptive policy and gold baseline tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default from config)",
    )
    parser.add_argument("--log-dir", help="Also write logs to a file in this directory")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("meta-build", help="Build the cross-project meta policy")
    p.add_argument("--pool-dir", help="Metrics pool root (one directory per project)")
    p.add_argument("--output", help="Meta policy output path")

    p = sub.add_parser("meta-show", help="Print a meta policy summary")
    p.add_argument("--meta-policy", help="Meta policy path")

    p = sub.add_parser("gold-promote", help="Submit a run to the promotion gate")
    p.add_argument("record", help="Finalized run record JSON")
    p.add_argument("--baseline-dir", help="Gold/pending/history root")

    p = sub.add_parser("diff", help="Regression diff between two runs")
    p.add_argument("baseline", help="Baseline run record JSON")
    p.add_argument("current", help="Current run record JSON")

    p = sub.add_parser("report", help="Render a run record")
    p.add_argument("record", help="Run record JSON")

    p = sub.add_parser("params", help="Resolve adaptive params for the next run")
    p.add_argument("--baseline-dir", help="Gold/pending/history root")
    p.add_argument("--last-run", help="Most recent run record JSON")
    p.add_argument("--meta-policy", help="Meta policy path")
    p.add_argument("--genre", help="Project genre (enables the cross-project prior)")
    p.add_argument("--total-units", type=int, help="Planned total units of the project")

    return parser


# =============================================================================
# Commands
# =============================================================================


def cmd_meta_build(args: argparse.Namespace, config: CLIConfig) -> int:
    policy = build_meta_policy(args.pool_dir or config.pool_dir)
    write_meta_policy(args.output or config.meta_policy_path, policy)
    print(render_meta_policy_summary(policy))
    return EXIT_OK


def cmd_meta_show(args: argparse.Namespace, config: CLIConfig) -> int:
    path = Path(args.meta_policy or config.meta_policy_path)
    policy = load_meta_policy(path)
    if policy is None:
        print(f"No meta policy at {path}")
        return EXIT_OK
    print(render_meta_policy_summary(policy))
    return EXIT_OK


def cmd_gold_promote(args: argparse.Namespace, config: CLIConfig) -> int:
    store = GoldBaselineStore(args.baseline_dir or config.baseline_dir)
    result = store.promote_file(args.record)
    print(f"{result.outcome.value}: {result.run_id} (min score {result.gate.min_score})")
    for reason in result.gate.reasons:
        print(f"  - {reason}")
    if result.archived_path is not None:
        print(f"  archived previous gold: {result.archived_path}")
    return EXIT_OK


def cmd_diff(args: argparse.Namespace, config: CLIConfig) -> int:
    diff = compute_metrics_diff(load_record(args.baseline), load_record(args.current))
    print(render_metrics_diff(diff))
    return EXIT_REGRESSION if diff.blocking else EXIT_OK


def cmd_report(args: argparse.Namespace, config: CLIConfig) -> int:
    print(render_run_report(load_record(args.record)))
    return EXIT_OK


def cmd_params(args: argparse.Namespace, config: CLIConfig) -> int:
    baseline = GoldBaselineStore(args.baseline_dir or config.baseline_dir).gold()
    last_run = load_record(args.last_run) if args.last_run else None

    bias = None
    if args.genre and args.total_units is not None:
        policy = load_meta_policy(args.meta_policy or config.meta_policy_path)
        if policy is not None:
            bias = policy.bias_for(ProjectProfile(genre=args.genre, total_units=args.total_units))

    snapshot = resolve_adaptive_params(baseline=baseline, last_run=last_run, bias=bias)
    sys.stdout.write(canonical_json(snapshot.to_dict()))
    return EXIT_OK


COMMANDS = {
    "meta-build": cmd_meta_build,
    "meta-show": cmd_meta_show,
    "gold-promote": cmd_gold_promote,
    "diff": cmd_diff,
    "report": cmd_report,
    "params": cmd_params,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 = success, 1 = blocking regression, 2 = error)
    """
    args = build_parser().parse_args(argv)

    try:
        config = CLIConfig.from_args_and_config(log_level=args.log_level, log_dir=args.log_dir)
    except RunMetricsError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(config.log_level, config.log_dir)

    try:
        return COMMANDS[args.command](args, config)
    except RunMetricsError as e:
        logger.error(f"{args.command} failed: {e.to_dict()}")
        return EXIT_ERROR
    except (OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
