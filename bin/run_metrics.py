#!/usr/bin/env python
"""
Run Metrics CLI
===============

Entry point for the run-metrics tooling (same as the `run-metrics` script).

Usage:
    python -m bin.run_metrics meta-build --pool-dir metrics_pool
    python -m bin.run_metrics gold-promote reports/run_metrics_run_42.json
    python -m bin.run_metrics diff baseline.json current.json
"""

import sys

from RUN_METRICS.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
