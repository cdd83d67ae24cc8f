"""Read-only text renderers."""

from .report import render_meta_policy_summary, render_metrics_diff, render_run_report

__all__ = ["render_meta_policy_summary", "render_metrics_diff", "render_run_report"]
