"""Promotion orchestrator: sequence plan/apply across ordered environments."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection, Iterable, Sequence
from typing import TypeVar

from envpromote.config.types import Environment, LockPolicy
from envpromote.engine.base import Engine
from envpromote.errors import (
    ApplyFailed,
    ConfirmationError,
    PlanFailed,
    PromoteError,
    ValidationError,
)
from envpromote.locks import NullStateLock, StateLock, hold_lock, retry_on_lock
from envpromote.plan.executor import PlanExecutor, truncate_payload
from envpromote.plan.types import PlanOutcome
from envpromote.promotion.types import Action, CancelToken, PromotionRun, Stage, StageState

logger = logging.getLogger(__name__)

T = TypeVar("T")


def validate_request(
    environments: Sequence[Environment],
    action: Action,
    targets: Collection[str],
    confirmations: Iterable[str] = (),
) -> None:
    """Reject bad requests before any lock, plan or apply call.

    Destroy needs exactly one target confirmed by its own name. Apply needs the
    same confirmation for every targeted environment flagged
    ``require_confirmation``. Confirmation is a typo guard, not authorization.

    Raises:
        ValidationError: Unknown targets or a destroy not aimed at one environment
        ConfirmationError: Missing or mismatched confirmation
    """
    known = {env.name for env in environments}
    unknown = sorted(set(targets) - known)
    if unknown:
        raise ValidationError(
            f"unknown environment(s): {', '.join(unknown)} (known: {', '.join(sorted(known))})"
        )

    confirmed = {c.strip() for c in confirmations if c and c.strip()}
    got = ", ".join(sorted(confirmed)) or None

    if action is Action.DESTROY:
        if len(targets) != 1:
            raise ValidationError(
                f"destroy must target exactly one environment, got {len(targets)}"
            )
        (name,) = tuple(targets)
        if name not in confirmed:
            raise ConfirmationError(name, got)
        return

    if action is Action.APPLY:
        for env in environments:
            if env.name in targets and env.require_confirmation and env.name not in confirmed:
                raise ConfirmationError(env.name, got)


class PromotionOrchestrator:
    """Run stages strictly in environment order.

    A stage runs only when every earlier stage ended ``SUCCESS`` or ``SKIPPED``.
    After a failure every later stage is ``SKIPPED``; earlier environments are
    not rolled back.
    """

    def __init__(
        self,
        executor: PlanExecutor,
        engine: Engine,
        *,
        lock: StateLock | None = None,
        lock_policy: LockPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.executor = executor
        self.engine = engine
        self.lock = lock or NullStateLock()
        self.lock_policy = lock_policy or LockPolicy()
        self.sleep = sleep
        self.clock = clock

    def run(
        self,
        environments: Sequence[Environment],
        action: Action | str,
        *,
        targets: Collection[str] | None = None,
        confirmations: Iterable[str] = (),
        cancel: CancelToken | None = None,
        run_id: str = "PROMOTE",
    ) -> PromotionRun:
        """Execute one promotion run.

        Args:
            environments: Full environment sequence (ordered by ``order``)
            action: plan, apply or destroy
            targets: Environments to act on; others are skipped as not affected.
                Defaults to every environment.
            confirmations: Confirmation tokens supplied by the operator
            cancel: Optional token checked before each stage starts
            run_id: Identifier recorded on the run

        Raises:
            ValidationError: Request rejected before any side effect
        """
        action = Action(action)
        ordered = sorted(environments, key=lambda env: env.order)
        target_names = {env.name for env in ordered} if targets is None else set(targets)

        validate_request(ordered, action, target_names, confirmations)

        run = PromotionRun(
            run_id=run_id,
            action=action,
            stages=[Stage(environment=env.name) for env in ordered],
        )
        logger.info(
            "promotion %s: %s on %s",
            run_id,
            action.value,
            ", ".join(env.name for env in ordered if env.name in target_names) or "(nothing)",
        )

        failed_env: str | None = None
        for env, stage in zip(ordered, run.stages, strict=True):
            if failed_env is not None:
                stage.transition(StageState.SKIPPED, f"upstream {failed_env} failed")
            elif env.name not in target_names:
                stage.transition(StageState.SKIPPED, "not affected")
            elif cancel is not None and cancel.cancelled:
                run.cancelled = True
                stage.transition(StageState.SKIPPED, "cancelled")
            else:
                stage.transition(StageState.RUNNING)
                logger.info("stage %s running", env.name)
                try:
                    reason = self._execute(env, action, stage)
                except PromoteError as exc:
                    stage.error = str(exc)
                    stage.payload = getattr(exc, "payload", "") or ""
                    stage.transition(StageState.FAILED, type(exc).__name__)
                    failed_env = env.name
                    logger.error("stage %s failed: %s", env.name, exc)
                    continue
                stage.transition(StageState.SUCCESS, reason)
            logger.info("stage %s %s (%s)", env.name, stage.state.value, stage.reason)

        logger.info("promotion %s %s", run_id, run.status.value)
        return run

    def _execute(self, env: Environment, action: Action, stage: Stage) -> str:
        with hold_lock(self.lock, env.name, self.lock_policy, sleep=self.sleep, clock=self.clock):
            destroy = action is Action.DESTROY
            plan = self._retry(env, lambda: self.executor.plan(env, destroy=destroy))
            stage.plan = plan

            if plan.outcome is PlanOutcome.FAILED:
                raise PlanFailed(
                    env.name,
                    f"plan failed for '{env.name}' (exit {plan.exit_code})",
                    payload=plan.payload,
                    exit_code=plan.exit_code,
                )
            if action is Action.PLAN:
                return plan.outcome.value
            if plan.outcome is PlanOutcome.NO_CHANGES:
                return "nothing to destroy" if destroy else "no changes"

            operation = self.engine.destroy if destroy else self.engine.apply_diff
            verb = "destroy" if destroy else "apply"
            result = self._retry(env, lambda: operation(env))
            if result.returncode != 0:
                raise ApplyFailed(
                    env.name,
                    f"{verb} failed for '{env.name}' (exit {result.returncode})",
                    payload=truncate_payload(result.output),
                    exit_code=result.returncode,
                )
            stage.applied = True
            if destroy:
                return "destroyed"
            stage.outputs = self._read_outputs(env)
            return "applied"

    def _read_outputs(self, env: Environment) -> dict[str, object]:
        try:
            return self._retry(env, lambda: self.engine.outputs(env))
        except PromoteError as exc:
            logger.warning("outputs for %s unavailable: %s", env.name, exc)
            return {}

    def _retry(self, env: Environment, fn: Callable[[], T]) -> T:
        return retry_on_lock(
            fn,
            environment=env.name,
            policy=self.lock_policy,
            sleep=self.sleep,
            clock=self.clock,
        )
