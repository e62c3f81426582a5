"""Terraform backend for the engine capability interface."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Mapping

from envpromote.config.types import Environment, SecretRef
from envpromote.engine.base import EngineResult
from envpromote.engine.exec import ExecResult, run_command
from envpromote.errors import ExecutionError, LockUnavailable

logger = logging.getLogger(__name__)

LOCK_ERROR_MARKER = "Error acquiring the state lock"
SENSITIVE_MASK = "***"

Runner = Callable[..., ExecResult]


class TerraformEngine:
    """Run ``terraform`` against an environment's configuration root.

    Backend locking is left to Terraform (``-lock-timeout=0s`` so contention
    surfaces immediately as ``LockUnavailable`` and the caller's retry policy
    decides how long to wait).
    """

    def __init__(
        self,
        binary: str = "terraform",
        *,
        run_init: bool = True,
        environ: Mapping[str, str] | None = None,
        runner: Runner = run_command,
    ) -> None:
        self.binary = binary
        self.run_init = run_init
        self.environ = dict(os.environ if environ is None else environ)
        self.runner = runner
        self._initialized: set[str] = set()

    def compute_diff(self, environment: Environment, *, destroy: bool = False) -> EngineResult:
        args = ["plan", "-input=false", "-no-color", "-detailed-exitcode", "-lock-timeout=0s"]
        if destroy:
            args.append("-destroy")
        return self._invoke(environment, args)

    def apply_diff(self, environment: Environment) -> EngineResult:
        return self._invoke(
            environment,
            ["apply", "-auto-approve", "-input=false", "-no-color", "-lock-timeout=0s"],
        )

    def destroy(self, environment: Environment) -> EngineResult:
        return self._invoke(
            environment,
            ["destroy", "-auto-approve", "-input=false", "-no-color", "-lock-timeout=0s"],
        )

    def fmt_check(self, environment: Environment) -> EngineResult:
        return self._invoke(
            environment, ["fmt", "-check", "-recursive", "-no-color"], init=False, with_vars=False
        )

    def validate(self, environment: Environment) -> EngineResult:
        return self._invoke(environment, ["validate", "-no-color"], with_vars=False)

    def outputs(self, environment: Environment) -> dict[str, object]:
        """Root module outputs after apply; sensitive values are masked."""
        result = self._invoke(environment, ["output", "-json", "-no-color"], with_vars=False)
        if result.returncode != 0:
            raise ExecutionError(
                f"{self.binary} output failed for '{environment.name}' ({result.returncode}):\n"
                f"{result.output.strip()}"
            )
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ExecutionError(f"unreadable {self.binary} output for '{environment.name}': {exc}") from exc

        values: dict[str, object] = {}
        for name in sorted(data):
            entry = data[name]
            values[name] = SENSITIVE_MASK if entry.get("sensitive") else entry.get("value")
        return values

    def _invoke(
        self,
        environment: Environment,
        args: list[str],
        *,
        init: bool = True,
        with_vars: bool = True,
    ) -> EngineResult:
        if not environment.root.is_dir():
            raise ExecutionError(
                f"configuration root for '{environment.name}' not found: {environment.root}"
            )

        var_args, secrets = self._variable_args(environment)
        if init:
            self._ensure_init(environment, secrets)

        argv = [self.binary, *args, *(var_args if with_vars else ())]
        result = self._run(argv, environment, secrets)
        if result.returncode != 0 and LOCK_ERROR_MARKER in result.output:
            raise LockUnavailable(environment.name, _first_line(result.stderr or result.stdout))
        return result

    def _ensure_init(self, environment: Environment, secrets: tuple[str, ...]) -> None:
        if not self.run_init or environment.name in self._initialized:
            return

        result = self._run([self.binary, "init", "-input=false", "-no-color"], environment, secrets)
        if result.returncode != 0:
            if LOCK_ERROR_MARKER in result.output:
                raise LockUnavailable(environment.name, _first_line(result.stderr))
            raise ExecutionError(
                f"{self.binary} init failed for '{environment.name}' ({result.returncode}):\n"
                f"{result.output.strip()}"
            )
        self._initialized.add(environment.name)

    def _run(self, argv: list[str], environment: Environment, secrets: tuple[str, ...]) -> ExecResult:
        env = {**self.environ, "TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}
        try:
            return self.runner(argv, cwd=environment.root, check=False, env=env, secrets=secrets)
        except FileNotFoundError as exc:
            raise ExecutionError(f"engine executable not found: {self.binary}") from exc
        except OSError as exc:
            raise ExecutionError(f"unable to start {self.binary} for '{environment.name}': {exc}") from exc

    def _variable_args(self, environment: Environment) -> tuple[list[str], tuple[str, ...]]:
        args: list[str] = []
        secrets: list[str] = []
        for key in sorted(environment.variables):
            value = environment.variables[key]
            if isinstance(value, SecretRef):
                resolved = value.resolve(self.environ)
                secrets.append(resolved)
            else:
                resolved = value
            args.append(f"-var={key}={resolved}")
        return args, tuple(secrets)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""
