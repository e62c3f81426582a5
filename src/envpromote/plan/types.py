"""Plan result types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Pre-plan steps reported alongside the plan, in display order.
CHECK_NAMES = ("fmt", "init", "validate", "plan")

CHECK_SUCCESS = "success"
CHECK_FAILURE = "failure"
CHECK_SKIPPED = "skipped"


class PlanOutcome(str, Enum):
    """Classification of a dry-run."""

    NO_CHANGES = "no_changes"
    CHANGES_PENDING = "changes_pending"
    FAILED = "failed"


@dataclass(frozen=True)
class PlanResult:
    """Classified dry-run for one environment."""

    environment: str
    outcome: PlanOutcome
    payload: str  # truncated to MAX_PAYLOAD_CHARS plus marker
    exit_code: int
    raw_length: int
    truncated: bool
    command: str = ""
    destroy: bool = False
    checks: tuple[tuple[str, str], ...] = ()

    @property
    def has_changes(self) -> bool:
        return self.outcome is PlanOutcome.CHANGES_PENDING

    @property
    def failed(self) -> bool:
        return self.outcome is PlanOutcome.FAILED

    def check(self, name: str) -> str:
        """Outcome of a pre-plan step; steps that never ran are ``skipped``."""
        return dict(self.checks).get(name, CHECK_SKIPPED)

    def to_dict(self) -> dict:
        return {
            "environment": self.environment,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "raw_length": self.raw_length,
            "truncated": self.truncated,
            "command": self.command,
            "destroy": self.destroy,
            "checks": dict(self.checks),
        }
