"""Promotion run types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from envpromote.plan.types import PlanResult


class Action(str, Enum):
    """Trigger mode for a promotion run."""

    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"


class StageState(str, Enum):
    """Per-environment stage state."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Overall promotion run status."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


_ALLOWED_TRANSITIONS: dict[StageState, frozenset[StageState]] = {
    StageState.PENDING: frozenset({StageState.RUNNING, StageState.SKIPPED}),
    StageState.RUNNING: frozenset({StageState.SUCCESS, StageState.FAILED}),
    StageState.SUCCESS: frozenset(),
    StageState.FAILED: frozenset(),
    StageState.SKIPPED: frozenset(),
}


@dataclass
class Stage:
    """One environment's progress within a promotion run."""

    environment: str
    state: StageState = StageState.PENDING
    reason: str = ""
    plan: PlanResult | None = None
    applied: bool = False
    error: str | None = None
    payload: str = ""
    outputs: dict[str, object] = field(default_factory=dict)
    history: list[StageState] = field(default_factory=lambda: [StageState.PENDING])

    @property
    def terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.state]

    def transition(self, new_state: StageState, reason: str = "") -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"invalid stage transition for {self.environment}: {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)
        if reason:
            self.reason = reason

    def to_dict(self) -> dict:
        return {
            "environment": self.environment,
            "state": self.state.value,
            "reason": self.reason,
            "applied": self.applied,
            "error": self.error,
            "plan": self.plan.to_dict() if self.plan else None,
            "outputs": dict(self.outputs),
            "history": [s.value for s in self.history],
        }


@dataclass
class PromotionRun:
    """Ordered stage outcomes of a single invocation."""

    run_id: str
    action: Action
    stages: list[Stage]
    cancelled: bool = False

    @property
    def status(self) -> RunStatus:
        if any(stage.state is StageState.FAILED for stage in self.stages):
            return RunStatus.FAILED
        if self.cancelled:
            return RunStatus.CANCELLED
        return RunStatus.SUCCEEDED

    @property
    def failed_stage(self) -> Stage | None:
        for stage in self.stages:
            if stage.state is StageState.FAILED:
                return stage
        return None

    def stage(self, environment: str) -> Stage:
        for stage in self.stages:
            if stage.environment == environment:
                return stage
        raise KeyError(environment)

    def states(self) -> list[StageState]:
        return [stage.state for stage in self.stages]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "action": self.action.value,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "stages": [stage.to_dict() for stage in self.stages],
        }


class CancelToken:
    """Cooperative cancellation checked before each stage starts."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
