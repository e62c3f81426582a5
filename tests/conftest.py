"""Pytest configuration and fixtures for envpromote tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from envpromote.config.types import Environment
from tests.fakes import FakeClock


def pytest_sessionfinish(session, exitstatus):
    """Check that coverage data was collected if --cov was requested.

    This prevents silent "no data collected" scenarios that produce 0% coverage
    without failing the test run.
    """
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)
    if not cov_enabled:
        return

    coverage_files = list(Path.cwd().glob(".coverage*"))
    if not coverage_files:
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'envpromote' (the package) not 'src/envpromote' (filesystem path).",
            returncode=1,
        )


@pytest.fixture
def environments(tmp_path: Path) -> tuple[Environment, ...]:
    """dev -> staging -> prod with real (empty) configuration roots; prod is protected."""
    envs = []
    for order, name in enumerate(("dev", "staging", "prod")):
        root = tmp_path / "environments" / name
        root.mkdir(parents=True)
        envs.append(
            Environment(
                name=name,
                order=order,
                root=root,
                paths=(f"environments/{name}/**",),
                require_confirmation=name == "prod",
            )
        )
    return tuple(envs)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
