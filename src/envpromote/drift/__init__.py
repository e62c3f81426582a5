"""Scheduled drift reconciliation."""

from envpromote.drift.reconciler import DriftOutcome, DriftReconciler, drift_title, render_drift_body

__all__ = ["DriftOutcome", "DriftReconciler", "drift_title", "render_drift_body"]
