"""Load and validate envpromote configuration.

Configuration lives in ``.envpromote/config.yaml`` under the repository root.
The ``ENVPROMOTE_CONFIG`` environment variable or an explicit path overrides
the default location.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jsonschema.validators import Draft202012Validator

from envpromote.config.types import (
    DEFAULT_CONFIG_RELATIVE_PATH,
    DEFAULT_OUT_RELATIVE_PATH,
    EngineSettings,
    Environment,
    IncidentSettings,
    LockPolicy,
    LockSettings,
    PromoteConfig,
    SecretRef,
    VariableValue,
)
from envpromote.errors import ConfigError

ENVPROMOTE_CONFIG_ENV = "ENVPROMOTE_CONFIG"
ENVPROMOTE_OUT_DIR_ENV = "ENVPROMOTE_OUT_DIR"

_NAME_PATTERN = "^[a-z0-9][a-z0-9_-]*$"

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["environments"],
    "additionalProperties": False,
    "properties": {
        "environments": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name", "root"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string", "pattern": _NAME_PATTERN},
                    "order": {"type": "integer", "minimum": 0},
                    "root": {"type": "string", "minLength": 1},
                    "paths": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "require_confirmation": {"type": "boolean"},
                    "variables": {
                        "type": "object",
                        "additionalProperties": {
                            "oneOf": [
                                {"type": "string"},
                                {
                                    "type": "object",
                                    "required": ["secret_env"],
                                    "additionalProperties": False,
                                    "properties": {"secret_env": {"type": "string", "minLength": 1}},
                                },
                            ]
                        },
                    },
                },
            },
        },
        "shared_paths": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "engine": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "binary": {"type": "string", "minLength": 1},
                "init": {"type": "boolean"},
                "checks": {"type": "boolean"},
            },
        },
        "lock": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "backend": {"enum": ["engine", "file"]},
                "directory": {"type": "string"},
                "timeout_sec": {"type": "number", "minimum": 0},
                "initial_backoff_sec": {"type": "number", "exclusiveMinimum": 0},
                "max_backoff_sec": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "incidents": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "store": {"enum": ["github", "file"]},
                "path": {"type": "string"},
                "labels": {"type": "array", "items": {"type": "string", "minLength": 1}},
            },
        },
        "archive_dir": {"type": "string"},
    },
}

# Keep this literal deterministic and sorted in write path.
DEFAULT_CONFIG_TEMPLATE: dict[str, Any] = {
    "environments": [
        {
            "name": name,
            "order": order,
            "root": f"environments/{name}",
            "paths": [f"environments/{name}/**"],
            "require_confirmation": name == "prod",
            "variables": {"grafana_admin_password": {"secret_env": "GRAFANA_ADMIN_PASSWORD"}},
        }
        for order, name in enumerate(("dev", "staging", "prod"))
    ],
    "shared_paths": ["modules/**"],
    "engine": {"binary": "terraform", "init": True, "checks": True},
    "lock": {
        "backend": "engine",
        "timeout_sec": 300,
        "initial_backoff_sec": 2,
        "max_backoff_sec": 30,
    },
    "incidents": {"store": "github", "labels": ["terraform"]},
    "archive_dir": "out/envpromote/plans",
}


def config_path_for_repo(repo_root: Path, explicit: Path | None = None) -> Path:
    """Resolve configuration path: explicit flag, env var, then repo default."""
    if explicit is not None:
        return explicit.expanduser().resolve()

    env_path = os.getenv(ENVPROMOTE_CONFIG_ENV, "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / DEFAULT_CONFIG_RELATIVE_PATH).resolve()


def resolve_out_dir(repo_root: Path, explicit: Path | None = None) -> Path:
    """Resolve report output directory using flag, env var, then repo default."""
    if explicit is not None:
        return explicit.expanduser().resolve()

    env_out = os.getenv(ENVPROMOTE_OUT_DIR_ENV, "").strip()
    if env_out:
        return Path(env_out).expanduser().resolve()

    return (repo_root / DEFAULT_OUT_RELATIVE_PATH).resolve()


def write_default_config(repo_root: Path, *, force: bool = False) -> Path:
    """Create the default configuration file deterministically."""
    output_path = config_path_for_repo(repo_root)
    if output_path.exists() and not force:
        raise FileExistsError(f"Config file already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rendered = yaml.safe_dump(DEFAULT_CONFIG_TEMPLATE, sort_keys=True)
    output_path.write_text(rendered, encoding="utf-8")
    return output_path


def load_config(repo_root: Path, explicit: Path | None = None) -> PromoteConfig:
    """Load, validate and normalize configuration.

    Raises:
        ConfigError: If the file is missing, malformed or fails validation
    """
    path = config_path_for_repo(repo_root, explicit)
    if not path.exists():
        raise ConfigError(
            f"Missing config at {path}. Run `envpromote init` first or pass --config."
        )

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Malformed YAML config at {path}: {exc}") from exc

    if data is None:
        data = {}
    return parse_config(data, path=path, repo_root=repo_root)


def parse_config(data: Any, *, path: Path, repo_root: Path) -> PromoteConfig:
    """Validate a raw mapping against the schema and build ``PromoteConfig``."""
    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        messages = [
            f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
            for e in errors
        ]
        raise ConfigError(
            f"Invalid config at {path}:\n" + "\n".join(f"  - {msg}" for msg in messages)
        )

    environments = []
    seen: set[str] = set()
    for index, raw in enumerate(data["environments"]):
        name = raw["name"]
        if name in seen:
            raise ConfigError(f"Invalid config at {path}: duplicate environment '{name}'")
        seen.add(name)
        environments.append(
            Environment(
                name=name,
                order=raw.get("order", index),
                root=_resolve(repo_root, raw["root"]),
                paths=tuple(raw.get("paths", [f"{raw['root'].rstrip('/')}/**"])),
                require_confirmation=raw.get("require_confirmation", False),
                variables=_parse_variables(raw.get("variables", {})),
            )
        )

    orders = [env.order for env in environments]
    if len(set(orders)) != len(orders):
        raise ConfigError(f"Invalid config at {path}: environment order values must be unique")

    engine_raw = data.get("engine", {})
    lock_raw = data.get("lock", {})
    incidents_raw = data.get("incidents", {})
    defaults = LockPolicy()

    lock_dir = lock_raw.get("directory")
    incidents_path = incidents_raw.get("path")
    archive_dir = data.get("archive_dir")

    return PromoteConfig(
        environments=tuple(environments),
        shared_paths=tuple(data.get("shared_paths", [])),
        engine=EngineSettings(
            binary=engine_raw.get("binary", "terraform"),
            init=engine_raw.get("init", True),
            checks=engine_raw.get("checks", True),
        ),
        lock=LockSettings(
            backend=lock_raw.get("backend", "engine"),
            directory=_resolve(repo_root, lock_dir) if lock_dir else None,
            policy=LockPolicy(
                timeout_sec=float(lock_raw.get("timeout_sec", defaults.timeout_sec)),
                initial_backoff_sec=float(lock_raw.get("initial_backoff_sec", defaults.initial_backoff_sec)),
                max_backoff_sec=float(lock_raw.get("max_backoff_sec", defaults.max_backoff_sec)),
            ),
        ),
        incidents=IncidentSettings(
            store=incidents_raw.get("store", "github"),
            path=_resolve(repo_root, incidents_path) if incidents_path else None,
            labels=tuple(incidents_raw.get("labels", ["terraform"])),
        ),
        archive_dir=_resolve(repo_root, archive_dir) if archive_dir else None,
        path=path,
    )


def _parse_variables(raw: dict[str, Any]) -> dict[str, VariableValue]:
    variables: dict[str, VariableValue] = {}
    for key in sorted(raw):
        value = raw[key]
        if isinstance(value, dict):
            variables[key] = SecretRef(env_var=value["secret_env"])
        else:
            variables[key] = str(value)
    return variables


def _resolve(repo_root: Path, value: str) -> Path:
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return candidate
    return (repo_root / candidate).resolve()
