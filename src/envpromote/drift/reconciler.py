"""Drift reconciliation: re-plan against live state, open deduplicated incidents."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Literal

from envpromote.artifacts import timestamp
from envpromote.config.types import Environment
from envpromote.errors import PlanFailed, PromoteError
from envpromote.incidents.tracker import IncidentTracker
from envpromote.incidents.types import DRIFT_CATEGORY, Incident, IncidentKey
from envpromote.plan.executor import PlanExecutor, fit_payload
from envpromote.plan.types import PlanOutcome, PlanResult

logger = logging.getLogger(__name__)

DriftStatus = Literal["clean", "drift", "failed"]


@dataclass(frozen=True)
class DriftOutcome:
    """Result of reconciling one environment."""

    environment: str
    status: DriftStatus
    incident: Incident | None = None
    plan: PlanResult | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "environment": self.environment,
            "status": self.status,
            "incident": self.incident.to_dict() if self.incident else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "error": self.error,
        }


def drift_title(environment: str) -> str:
    return f"Drift detected - {environment}"


def render_drift_body(
    result: PlanResult,
    *,
    detected_at: str,
    run_url: str | None = None,
) -> str:
    """Issue body for a drift incident, kept within the body size limit."""
    frame = len(_compose_drift_body(result, "", detected_at, run_url))
    return _compose_drift_body(result, fit_payload(result.payload, frame), detected_at, run_url)


def _compose_drift_body(result: PlanResult, payload: str, detected_at: str, run_url: str | None) -> str:
    lines = [
        "## Drift Detection Report",
        "",
        f"**Environment:** `{result.environment}`",
        f"**Detected:** {detected_at}",
    ]
    if run_url:
        lines.append(f"**Workflow:** [{run_url}]({run_url})")
    lines.extend(
        [
            "",
            "### Plan Output",
            "",
            "<details>",
            "<summary>Show Details</summary>",
            "",
            "```",
            payload,
            "```",
            "",
            "</details>",
            "",
            "### Action Required",
            "",
            "Please review the drift and either:",
            "1. Apply the configuration to remediate",
            "2. Update the configuration code to match the current state",
            "3. Investigate manual changes made outside of the configuration",
            "",
        ]
    )
    return "\n".join(lines)


def workflow_run_url(environ: Mapping[str, str] | None = None) -> str | None:
    """Link to the current CI run when running under GitHub Actions."""
    source = os.environ if environ is None else environ
    server = source.get("GITHUB_SERVER_URL")
    repository = source.get("GITHUB_REPOSITORY")
    run_id = source.get("GITHUB_RUN_ID")
    if server and repository and run_id:
        return f"{server}/{repository}/actions/runs/{run_id}"
    return None


class DriftReconciler:
    """Detect divergence between declared configuration and live state.

    Invoked fresh per schedule tick; holds no state between runs.
    """

    def __init__(
        self,
        executor: PlanExecutor,
        tracker: IncidentTracker,
        *,
        timestamp_mode: str = "wallclock",
        run_url: str | None = None,
        guard: Callable[[Environment, Callable[[], PlanResult]], PlanResult] | None = None,
    ) -> None:
        self.executor = executor
        self.tracker = tracker
        self.timestamp_mode = timestamp_mode
        self.run_url = run_url
        self.guard = guard

    def reconcile(self, environment: Environment) -> Incident | None:
        """Return the open drift incident for the environment, or None when clean.

        Raises:
            PlanFailed: If the plan itself failed (never treated as drift)
            ExecutionError: If the plan could not start
        """
        _, incident = self._reconcile(environment)
        return incident

    def _reconcile(self, environment: Environment) -> tuple[PlanResult, Incident | None]:
        result = self._plan(environment)

        if result.outcome is PlanOutcome.FAILED:
            logger.warning("drift check for %s failed (exit %d)", environment.name, result.exit_code)
            raise PlanFailed(
                environment.name,
                f"plan failed for '{environment.name}' (exit {result.exit_code}); not treated as drift",
                payload=result.payload,
                exit_code=result.exit_code,
            )

        if result.outcome is PlanOutcome.NO_CHANGES:
            logger.info("no drift in %s", environment.name)
            return result, None

        logger.warning("drift detected in %s", environment.name)
        body = render_drift_body(
            result,
            detected_at=timestamp(self.timestamp_mode),
            run_url=self.run_url,
        )
        incident = self.tracker.open_or_skip(
            IncidentKey(environment=environment.name, category=DRIFT_CATEGORY),
            drift_title(environment.name),
            body,
        )
        return result, incident

    def reconcile_all(self, environments: Sequence[Environment]) -> list[DriftOutcome]:
        """Reconcile each environment independently; one failure does not stop the rest."""
        outcomes: list[DriftOutcome] = []
        for environment in environments:
            try:
                result, incident = self._reconcile(environment)
            except PromoteError as exc:
                logger.error("drift check for %s did not complete: %s", environment.name, exc)
                outcomes.append(
                    DriftOutcome(environment=environment.name, status="failed", error=str(exc))
                )
                continue

            outcomes.append(
                DriftOutcome(
                    environment=environment.name,
                    status="drift" if incident is not None else "clean",
                    incident=incident,
                    plan=result,
                )
            )
        return outcomes

    def _plan(self, environment: Environment) -> PlanResult:
        if self.guard is None:
            return self.executor.plan(environment)
        return self.guard(environment, lambda: self.executor.plan(environment))
