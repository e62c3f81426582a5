"""Error taxonomy for envpromote.

Every error carries the CLI exit code it maps to. Library code raises these
where the condition is detected; only the CLI converts them to exit codes.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_ENGINE = 2


class PromoteError(RuntimeError):
    """Base class for all envpromote failures."""

    exit_code: int = EXIT_ENGINE


class ValidationError(PromoteError):
    """Bad input. Never retried, raised before any side effect."""

    exit_code = EXIT_VALIDATION


class ConfirmationError(ValidationError):
    """Confirmation token does not match the target environment."""

    def __init__(self, environment: str, got: str | None):
        super().__init__(
            f"Confirmation does not match environment name! Expected: {environment} Got: {got or '(none)'}"
        )
        self.environment = environment
        self.got = got


class ConfigError(ValidationError):
    """Configuration file missing, malformed or invalid."""


class LockUnavailable(PromoteError):
    """State lock for an environment is held by another run (retryable)."""

    def __init__(self, environment: str, detail: str = ""):
        message = f"state lock for '{environment}' is held by another run"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.environment = environment
        self.detail = detail


class LockTimeout(PromoteError):
    """State lock could not be acquired within the bounded wait."""

    def __init__(self, environment: str, waited_sec: float):
        super().__init__(
            f"timed out after {waited_sec:.1f}s waiting for state lock on '{environment}'"
        )
        self.environment = environment
        self.waited_sec = waited_sec


class ExecutionError(PromoteError):
    """The external engine invocation itself could not run."""


class _EngineReportedFailure(PromoteError):
    """Engine ran but reported failure; carries the captured diagnostic payload."""

    def __init__(self, environment: str, message: str, payload: str = "", exit_code: int | None = None):
        super().__init__(message)
        self.environment = environment
        self.payload = payload
        self.engine_exit_code = exit_code


class PlanFailed(_EngineReportedFailure):
    """Dry-run completed with a failure classification."""


class ApplyFailed(_EngineReportedFailure):
    """Apply or destroy completed with a nonzero exit code."""
