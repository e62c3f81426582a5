"""Markdown rendering of plan results for pull-request comments."""

from __future__ import annotations

from envpromote.plan.executor import fit_payload
from envpromote.plan.types import PlanOutcome, PlanResult

_OUTCOME_LABELS = {
    PlanOutcome.NO_CHANGES: "✅ no changes",
    PlanOutcome.CHANGES_PENDING: "📝 changes pending",
    PlanOutcome.FAILED: "❌ failed",
}

_CHECK_HEADINGS = (("fmt", "Format"), ("init", "Init"), ("validate", "Validate"))


def render_plan_comment(result: PlanResult, *, actor: str | None = None, event: str | None = None) -> str:
    """Render the comment body posted for a plan, kept within the body size limit."""
    frame = len(_compose(result, "", actor, event))
    return _compose(result, fit_payload(result.payload, frame), actor, event)


def _compose(result: PlanResult, payload: str, actor: str | None, event: str | None) -> str:
    lines = [f"## Plan - `{result.environment}`", ""]
    if result.checks:
        lines.extend(f"#### {heading}: `{result.check(name)}`" for name, heading in _CHECK_HEADINGS)
    lines.extend(
        [
            f"#### Plan: `{_OUTCOME_LABELS[result.outcome]}` (exit {result.exit_code})",
            "",
            "<details>",
            "<summary>Show Plan</summary>",
            "",
            "```terraform",
            payload,
            "```",
            "",
            "</details>",
        ]
    )
    if actor or event:
        lines.extend(["", f"*Pushed by: @{actor or 'unknown'}, Action: `{event or 'manual'}`*"])
    return "\n".join(lines) + "\n"
