"""Capability interface for plan/apply engines."""

from __future__ import annotations

from typing import Protocol

from envpromote.config.types import Environment
from envpromote.engine.exec import ExecResult

# Detailed exit code reported by a dry-run that found differences.
EXIT_CHANGES_PENDING = 2

EngineResult = ExecResult


class Engine(Protocol):
    """Compute and apply differences for one environment's configuration root.

    Implementations raise ``ExecutionError`` when the invocation cannot start
    and ``LockUnavailable`` when the backend state lock is held elsewhere. A
    completed invocation is always returned as a result, whatever its exit code.
    ``outputs`` instead raises ``ExecutionError`` when the values cannot be read.
    """

    def compute_diff(self, environment: Environment, *, destroy: bool = False) -> EngineResult: ...

    def apply_diff(self, environment: Environment) -> EngineResult: ...

    def destroy(self, environment: Environment) -> EngineResult: ...

    def fmt_check(self, environment: Environment) -> EngineResult: ...

    def validate(self, environment: Environment) -> EngineResult: ...

    def outputs(self, environment: Environment) -> dict[str, object]: ...
