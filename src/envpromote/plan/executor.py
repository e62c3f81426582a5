"""Plan executor: run a dry-run for one environment and classify it."""

from __future__ import annotations

import logging
from pathlib import Path

from envpromote.artifacts import write_json
from envpromote.config.types import Environment
from envpromote.engine.base import EXIT_CHANGES_PENDING, Engine, EngineResult
from envpromote.errors import ExecutionError
from envpromote.plan.types import (
    CHECK_FAILURE,
    CHECK_SKIPPED,
    CHECK_SUCCESS,
    PlanOutcome,
    PlanResult,
)

logger = logging.getLogger(__name__)

# Comment and issue bodies downstream reject payloads above this size.
MAX_PAYLOAD_CHARS = 65000
# Hard limit on a whole comment or issue body, markup included.
MAX_BODY_CHARS = 65536
TRUNCATION_MARKER = "\n\n... (truncated)"

PLAN_OUTPUT_FILENAME = "plan_output.txt"
PLAN_RESULT_FILENAME = "PLAN_RESULT.json"


def truncate_payload(text: str, limit: int = MAX_PAYLOAD_CHARS) -> str:
    """Bound payload to ``limit`` characters, appending the truncation marker when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def fit_payload(payload: str, frame_chars: int, limit: int = MAX_BODY_CHARS) -> str:
    """Shrink ``payload`` so it fits in a body whose surrounding markup takes ``frame_chars``."""
    room = limit - frame_chars
    if len(payload) <= room:
        return payload
    if payload.endswith(TRUNCATION_MARKER):
        payload = payload[: -len(TRUNCATION_MARKER)]
    return truncate_payload(payload, max(0, room - len(TRUNCATION_MARKER)))


def classify_exit_code(exit_code: int) -> PlanOutcome:
    """0 means no changes, the detailed "differences found" code means pending, anything else failed."""
    if exit_code == 0:
        return PlanOutcome.NO_CHANGES
    if exit_code == EXIT_CHANGES_PENDING:
        return PlanOutcome.CHANGES_PENDING
    return PlanOutcome.FAILED


class PlanExecutor:
    """Compute pending differences for an environment without mutating it.

    With ``run_checks`` the dry-run is preceded by a format check and a
    validation. A format failure is reported but does not block the plan; a
    validation failure does, and the result carries the validation output.

    Args:
        engine: Engine backend used for the dry-run
        archive_dir: Optional directory receiving the raw (untruncated) plan
            output and a ``PLAN_RESULT.json`` per environment
        run_checks: Run the format and validation checks before planning
    """

    def __init__(self, engine: Engine, archive_dir: Path | None = None, *, run_checks: bool = True) -> None:
        self.engine = engine
        self.archive_dir = archive_dir
        self.run_checks = run_checks

    def plan(self, environment: Environment, *, destroy: bool = False) -> PlanResult:
        """Run the dry-run.

        Raises:
            ExecutionError: If the engine invocation cannot start or the
                archive cannot be written
            LockUnavailable: If the backend state lock is held elsewhere
        """
        checks: dict[str, str] = {}
        if self.run_checks:
            failed = self._precheck(environment, checks)
            if failed is not None:
                checks["plan"] = CHECK_SKIPPED
                return self._finish(environment, failed, checks, destroy, outcome=PlanOutcome.FAILED)

        logger.info("planning %s%s", environment.name, " (destroy)" if destroy else "")
        execution = self.engine.compute_diff(environment, destroy=destroy)
        outcome = classify_exit_code(execution.returncode)
        checks["plan"] = CHECK_FAILURE if outcome is PlanOutcome.FAILED else CHECK_SUCCESS
        return self._finish(environment, execution, checks, destroy, outcome=outcome)

    def _precheck(self, environment: Environment, checks: dict[str, str]) -> EngineResult | None:
        fmt = self.engine.fmt_check(environment)
        if fmt.returncode == 0:
            checks["fmt"] = CHECK_SUCCESS
        else:
            checks["fmt"] = CHECK_FAILURE
            logger.warning("format check failed for %s (exit %d)", environment.name, fmt.returncode)

        validation = self.engine.validate(environment)
        checks["init"] = CHECK_SUCCESS
        if validation.returncode != 0:
            checks["validate"] = CHECK_FAILURE
            logger.warning("validation failed for %s (exit %d)", environment.name, validation.returncode)
            return validation
        checks["validate"] = CHECK_SUCCESS
        return None

    def _finish(
        self,
        environment: Environment,
        execution: EngineResult,
        checks: dict[str, str],
        destroy: bool,
        *,
        outcome: PlanOutcome,
    ) -> PlanResult:
        raw = execution.output
        result = PlanResult(
            environment=environment.name,
            outcome=outcome,
            payload=truncate_payload(raw),
            exit_code=execution.returncode,
            raw_length=len(raw),
            truncated=len(raw) > MAX_PAYLOAD_CHARS,
            command=execution.rendered(),
            destroy=destroy,
            checks=tuple(checks.items()),
        )
        logger.info(
            "plan %s: %s (exit %d, %d chars)",
            environment.name,
            result.outcome.value,
            result.exit_code,
            result.raw_length,
        )

        if self.archive_dir is not None:
            self._archive(result, raw)
        return result

    def _archive(self, result: PlanResult, raw: str) -> None:
        env_dir = self.archive_dir / result.environment
        try:
            env_dir.mkdir(parents=True, exist_ok=True)
            (env_dir / PLAN_OUTPUT_FILENAME).write_text(raw, encoding="utf-8")
            write_json(env_dir / PLAN_RESULT_FILENAME, result.to_dict())
        except OSError as exc:
            raise ExecutionError(f"cannot archive plan for '{result.environment}' in {env_dir}: {exc}") from exc
