"""Configuration loading for envpromote."""

from envpromote.config.loader import (
    DEFAULT_CONFIG_TEMPLATE,
    config_path_for_repo,
    load_config,
    parse_config,
    resolve_out_dir,
    write_default_config,
)
from envpromote.config.types import (
    EngineSettings,
    Environment,
    IncidentSettings,
    LockPolicy,
    LockSettings,
    PromoteConfig,
    SecretRef,
)

__all__ = [
    "DEFAULT_CONFIG_TEMPLATE",
    "EngineSettings",
    "Environment",
    "IncidentSettings",
    "LockPolicy",
    "LockSettings",
    "PromoteConfig",
    "SecretRef",
    "config_path_for_repo",
    "load_config",
    "parse_config",
    "resolve_out_dir",
    "write_default_config",
]
