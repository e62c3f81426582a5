"""Promotion run report artifacts."""

from __future__ import annotations

from pathlib import Path

from envpromote import __version__
from envpromote.artifacts import canonical_dumps, sha256_text, timestamp, write_json
from envpromote.promotion.types import PromotionRun, RunStatus, StageState

REPORT_JSON = "PROMOTION_RUN.json"
REPORT_MD = "PROMOTION_RUN.md"

_STATE_ICONS = {
    StageState.SUCCESS: "✅",
    StageState.FAILED: "❌",
    StageState.SKIPPED: "⏭️",
    StageState.PENDING: "…",
    StageState.RUNNING: "…",
}


def build_report(run: PromotionRun, timestamp_mode: str = "deterministic") -> dict:
    """Report payload with a hash over everything except the hash itself."""
    data = {
        "schema_version": "1.0",
        "envpromote_version": __version__,
        "generated_at": timestamp(timestamp_mode),
        "timestamp_mode": timestamp_mode,
        **run.to_dict(),
    }
    data["hashes"] = {"run_hash": sha256_text(canonical_dumps(data))}
    return data


def write_run_report(run: PromotionRun, out_dir: Path, timestamp_mode: str = "deterministic") -> Path:
    """Write PROMOTION_RUN.json and PROMOTION_RUN.md; return the JSON path."""
    out_dir.mkdir(parents=True, exist_ok=True)
    data = build_report(run, timestamp_mode)

    json_path = out_dir / REPORT_JSON
    write_json(json_path, data)
    (out_dir / REPORT_MD).write_text(render_run_markdown(run, data), encoding="utf-8")
    return json_path


def render_run_markdown(run: PromotionRun, data: dict) -> str:
    status_icon = "✅ SUCCEEDED" if run.status is RunStatus.SUCCEEDED else f"❌ {run.status.value.upper()}"
    lines = [
        "# Promotion Run Report",
        "",
        f"**Status:** {status_icon}",
        f"**Run ID:** {run.run_id}",
        f"**Action:** {run.action.value}",
        f"**Generated:** {data['generated_at']} ({data['timestamp_mode']})",
        "",
        "## Stages",
        "",
        "| # | Environment | State | Reason |",
        "|---|---|---|---|",
    ]
    for index, stage in enumerate(run.stages, start=1):
        icon = _STATE_ICONS[stage.state]
        lines.append(f"| {index} | `{stage.environment}` | {icon} {stage.state.value} | {stage.reason} |")

    for stage in run.stages:
        if stage.outputs:
            lines.extend(["", f"## Outputs - `{stage.environment}`", ""])
            lines.extend(f"- `{name}`: {_format_output(value)}" for name, value in sorted(stage.outputs.items()))

    failed = run.failed_stage
    if failed is not None:
        lines.extend(["", f"## Failure - `{failed.environment}`", "", failed.error or ""])
        if failed.payload:
            lines.extend(
                [
                    "",
                    "<details>",
                    "<summary>Diagnostic output</summary>",
                    "",
                    "```",
                    failed.payload,
                    "```",
                    "",
                    "</details>",
                ]
            )
        lines.extend(["", "Earlier environments are not rolled back; re-run or remediate manually."])

    lines.extend(["", "---", f"*Run hash: {data['hashes']['run_hash']}*", ""])
    return "\n".join(lines)


def _format_output(value: object) -> str:
    if isinstance(value, str):
        return value
    return f"`{canonical_dumps(value)}`"

