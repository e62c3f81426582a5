"""Command runners for engine and git invocations."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MASK = "***"


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for subprocess execution. ``argv`` is already masked."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined stdout then stderr, the way a ``2>&1`` pipe would read."""
        if self.stdout and self.stderr:
            sep = "" if self.stdout.endswith("\n") else "\n"
            return f"{self.stdout}{sep}{self.stderr}"
        return self.stdout or self.stderr

    def rendered(self) -> str:
        return " ".join(self.argv)


class ExecError(RuntimeError):
    """Raised when a command returns non-zero in check mode."""

    def __init__(self, result: ExecResult):
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"command failed ({result.returncode}): {result.rendered()}\n{detail}")
        self.result = result


def mask_text(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value occurring in text."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, MASK)
    return text


def run_command(
    argv: list[str],
    *,
    cwd: Path,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    secrets: Iterable[str] = (),
) -> ExecResult:
    """Run command and return structured result.

    Raises:
        FileNotFoundError: If the executable does not exist
        ExecError: If check is set and the command exits non-zero
    """
    secret_values = tuple(s for s in secrets if s)
    masked_argv = tuple(mask_text(arg, secret_values) for arg in argv)
    logger.debug("exec: %s (cwd=%s)", " ".join(masked_argv), cwd)

    completed = subprocess.run(
        argv,
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
        env=dict(env) if env is not None else None,
        input=input_text,
    )
    result = ExecResult(
        argv=masked_argv,
        cwd=cwd.resolve(),
        returncode=completed.returncode,
        stdout=mask_text(completed.stdout or "", secret_values),
        stderr=mask_text(completed.stderr or "", secret_values),
    )
    if check and result.returncode != 0:
        raise ExecError(result)
    return result


def run_git(
    args: list[str],
    *,
    repo_root: Path,
    check: bool = True,
) -> ExecResult:
    """Run git command rooted at repo."""
    return run_command(["git", *args], cwd=repo_root, check=check)
