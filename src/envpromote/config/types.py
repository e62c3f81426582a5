"""Configuration domain types."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from envpromote.errors import ExecutionError, ValidationError

DEFAULT_CONFIG_RELATIVE_PATH = Path(".envpromote/config.yaml")
DEFAULT_OUT_RELATIVE_PATH = Path("out/envpromote")

LockBackend = Literal["engine", "file"]
IncidentStoreKind = Literal["github", "file"]


@dataclass(frozen=True)
class SecretRef:
    """Variable value read from a process environment variable at invocation time."""

    env_var: str

    def resolve(self, environ: Mapping[str, str] | None = None) -> str:
        source = os.environ if environ is None else environ
        value = source.get(self.env_var)
        if value is None or value == "":
            raise ExecutionError(f"missing secret: environment variable {self.env_var} is not set")
        return value


VariableValue = str | SecretRef


@dataclass(frozen=True)
class Environment:
    """A named deployment target in the promotion sequence."""

    name: str
    order: int
    root: Path
    paths: tuple[str, ...] = ()
    require_confirmation: bool = False
    variables: Mapping[str, VariableValue] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineSettings:
    """Settings for the plan/apply engine backend."""

    binary: str = "terraform"
    init: bool = True
    checks: bool = True


@dataclass(frozen=True)
class LockPolicy:
    """Bounded retry policy for state lock contention."""

    timeout_sec: float = 300.0
    initial_backoff_sec: float = 2.0
    max_backoff_sec: float = 30.0


@dataclass(frozen=True)
class LockSettings:
    """State lock backend selection."""

    backend: LockBackend = "engine"
    directory: Path | None = None
    policy: LockPolicy = field(default_factory=LockPolicy)


@dataclass(frozen=True)
class IncidentSettings:
    """Incident store selection."""

    store: IncidentStoreKind = "github"
    path: Path | None = None
    labels: tuple[str, ...] = ("terraform",)


@dataclass(frozen=True)
class PromoteConfig:
    """Normalized envpromote configuration."""

    environments: tuple[Environment, ...]
    shared_paths: tuple[str, ...]
    engine: EngineSettings
    lock: LockSettings
    incidents: IncidentSettings
    archive_dir: Path | None
    path: Path

    @property
    def ordered(self) -> tuple[Environment, ...]:
        return tuple(sorted(self.environments, key=lambda env: env.order))

    def get(self, name: str) -> Environment:
        for env in self.environments:
            if env.name == name:
                return env
        known = ", ".join(env.name for env in self.ordered)
        raise ValidationError(f"unknown environment '{name}' (known: {known})")
