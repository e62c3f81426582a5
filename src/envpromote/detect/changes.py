"""Change detection: map changed paths to affected environments."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path, PurePosixPath

from envpromote.config.types import Environment
from envpromote.engine.exec import ExecError, run_git
from envpromote.errors import ExecutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeSet:
    """Modified paths for a single trigger event."""

    paths: frozenset[str]

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> ChangeSet:
        normalized = {_normalize_path(p) for p in paths}
        normalized.discard("")
        return cls(paths=frozenset(normalized))

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self):
        return iter(sorted(self.paths))


def build_filters(
    environments: Sequence[Environment],
    shared_paths: Sequence[str] = (),
) -> dict[str, tuple[str, ...]]:
    """Per-environment filter globs: own paths plus every shared path."""
    return {env.name: (*env.paths, *shared_paths) for env in environments}


def detect(
    changeset: ChangeSet | Iterable[str],
    environment_path_filters: Mapping[str, Sequence[str]],
) -> set[str]:
    """Return every environment whose filter set matches a changed path."""
    if not isinstance(changeset, ChangeSet):
        changeset = ChangeSet.from_paths(changeset)

    affected: set[str] = set()
    for env_name, patterns in environment_path_filters.items():
        for path in changeset.paths:
            if matches_any(path, patterns):
                logger.debug("environment %s affected by %s", env_name, path)
                affected.add(env_name)
                break
    return affected


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Check if path matches any filter pattern."""
    normalized = _normalize_path(path)

    for pattern in patterns:
        clean_pattern = _normalize_path(pattern)

        # Exact match
        if normalized == clean_pattern:
            return True

        # Directory prefix
        if not _is_glob(clean_pattern):
            if normalized.startswith(clean_pattern.rstrip("/") + "/"):
                return True
            continue

        # Glob match
        if _compile_glob(clean_pattern).fullmatch(normalized):
            return True

    return False


def changed_files_from_git(repo_root: Path, base: str, head: str = "HEAD") -> ChangeSet:
    """Changed paths between two refs (three-dot diff against the merge base)."""
    try:
        result = run_git(["diff", "--name-only", f"{base}...{head}"], repo_root=repo_root)
    except ExecError as exc:
        raise ExecutionError(f"unable to compute changed files for {base}...{head}: {exc}") from exc
    except FileNotFoundError as exc:
        raise ExecutionError("git executable not found") from exc
    return ChangeSet.from_paths(line for line in result.stdout.splitlines() if line.strip())


def _normalize_path(value: str) -> str:
    cleaned = value.strip().strip("`").replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if not cleaned:
        return ""
    if _is_glob(cleaned):
        return cleaned
    return PurePosixPath(cleaned).as_posix()


def _is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?")


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate a path-filter glob: ``**`` spans segments, ``*`` and ``?`` do not."""
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                if i + 2 < n and pattern[i + 2] == "/":
                    parts.append("(?:.*/)?")
                    i += 3
                else:
                    parts.append(".*")
                    i += 2
                continue
            parts.append("[^/]*")
        elif ch == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(ch))
        i += 1
    return re.compile("".join(parts))
