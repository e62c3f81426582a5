"""Canonical JSON and timestamp helpers for envpromote report artifacts."""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

TimestampMode = Literal["deterministic", "wallclock"]

DETERMINISTIC_TIMESTAMP = "1970-01-01T00:00:00Z"


def canonical_dumps(obj: Any) -> str:
    """Serialize a JSON-compatible object with stable canonical formatting."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def write_json(path: Path, obj: Any) -> None:
    """Write indented, key-sorted JSON as UTF-8 (readable and diff-stable)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")


def sha256_text(text: str) -> str:
    """Compute SHA-256 for UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def timestamp(mode: str) -> str:
    """Report timestamp: fixed epoch in deterministic mode, UTC now otherwise."""
    if mode == "deterministic":
        return DETERMINISTIC_TIMESTAMP
    if mode == "wallclock":
        return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
    raise ValueError(f"Unsupported timestamp mode: {mode}. Expected one of: deterministic, wallclock.")


def make_run_id(prefix: str, timestamp_mode: str) -> str:
    """Create run IDs: stable in deterministic mode, UTC-stamped otherwise."""
    prefix_clean = prefix.strip() or "RUN"

    if timestamp_mode == "deterministic":
        return f"{prefix_clean}_DETERMINISTIC"
    if timestamp_mode == "wallclock":
        return f"{prefix_clean}_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S')}"
    raise ValueError(f"Unsupported timestamp mode: {timestamp_mode}")
