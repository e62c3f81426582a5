"""Dry-run execution and classification."""

from envpromote.plan.executor import (
    MAX_BODY_CHARS,
    MAX_PAYLOAD_CHARS,
    TRUNCATION_MARKER,
    PlanExecutor,
    classify_exit_code,
    fit_payload,
    truncate_payload,
)
from envpromote.plan.render import render_plan_comment
from envpromote.plan.types import PlanOutcome, PlanResult

__all__ = [
    "MAX_BODY_CHARS",
    "MAX_PAYLOAD_CHARS",
    "TRUNCATION_MARKER",
    "PlanExecutor",
    "PlanOutcome",
    "PlanResult",
    "classify_exit_code",
    "fit_payload",
    "render_plan_comment",
    "truncate_payload",
]
