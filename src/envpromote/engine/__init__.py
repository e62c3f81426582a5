"""Plan/apply engine boundary."""

from envpromote.engine.base import EXIT_CHANGES_PENDING, Engine, EngineResult
from envpromote.engine.exec import ExecError, ExecResult, run_command, run_git
from envpromote.engine.terraform import TerraformEngine

__all__ = [
    "EXIT_CHANGES_PENDING",
    "Engine",
    "EngineResult",
    "ExecError",
    "ExecResult",
    "TerraformEngine",
    "run_command",
    "run_git",
]
