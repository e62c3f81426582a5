"""Tests for the envpromote CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from envpromote import __version__
from envpromote.cli import cli
from tests.fakes import FakeEngine, exec_result

runner = CliRunner()

DRIFT_OUTPUT = "~ aws_db_instance.main will be updated in-place"


@pytest.fixture
def repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("ENVPROMOTE_CONFIG", raising=False)
    monkeypatch.setenv("ENVPROMOTE_OUT_DIR", str(tmp_path / "out"))
    config = {
        "environments": [
            {
                "name": name,
                "order": order,
                "root": f"environments/{name}",
                "require_confirmation": name == "prod",
            }
            for order, name in enumerate(("dev", "staging", "prod"))
        ],
        "shared_paths": ["modules/**"],
        "incidents": {"store": "file", "path": "incidents.json"},
    }
    path = tmp_path / ".envpromote" / "config.yaml"
    path.parent.mkdir(parents=True)
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return tmp_path


def _use_engine(monkeypatch: pytest.MonkeyPatch, engine: FakeEngine) -> FakeEngine:
    monkeypatch.setattr("envpromote.cli._make_engine", lambda config: engine)
    return engine


def _invoke(repo: Path, *args: str):
    return runner.invoke(cli, ["--repo-root", str(repo), *args])


# promote


def test_promote_plan_succeeds(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(monkeypatch, FakeEngine({("plan", "dev"): exec_result(2, "Plan: 3 to add")}))

    result = _invoke(repo, "promote", "dev", "--action", "plan")

    assert result.exit_code == 0, result.output
    assert engine.calls == [("plan", "dev")]
    assert "Plan: 3 to add" in result.output
    report = json.loads((repo / "out" / "PROMOTION_RUN.json").read_text(encoding="utf-8"))
    assert report["status"] == "succeeded"
    assert [s["state"] for s in report["stages"]] == ["success", "skipped", "skipped"]


def test_promote_destroy_confirmation_mismatch_exits_1(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(monkeypatch, FakeEngine())

    result = _invoke(repo, "promote", "prod", "--action", "destroy", "--confirm", "staging")

    assert result.exit_code == 1
    assert "Expected: prod" in result.output
    assert engine.calls == []


def test_promote_protected_apply_without_confirm_exits_1(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(monkeypatch, FakeEngine())

    result = _invoke(repo, "promote", "prod", "--action", "apply")

    assert result.exit_code == 1
    assert engine.calls == []


def test_promote_apply_failure_exits_2(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(
        monkeypatch,
        FakeEngine(
            {
                ("plan", "dev"): exec_result(2, "Plan: 1 to add"),
                ("apply", "dev"): exec_result(1, "", "Error: timeout while waiting for state"),
            }
        ),
    )

    result = _invoke(repo, "promote", "dev", "--action", "apply")

    assert result.exit_code == 2
    assert "timeout while waiting for state" in result.output
    assert (repo / "out" / "PROMOTION_RUN.md").exists()


def test_promote_unknown_environment_exits_1(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(monkeypatch, FakeEngine())
    result = _invoke(repo, "promote", "qa")
    assert result.exit_code == 1
    assert "unknown environment" in result.output


def test_missing_config_exits_1(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ENVPROMOTE_CONFIG", raising=False)
    result = runner.invoke(cli, ["--repo-root", str(tmp_path), "promote", "dev"])
    assert result.exit_code == 1
    assert "Config error" in result.output


# run / detect


def test_run_shared_change_plans_every_environment(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(monkeypatch, FakeEngine())

    result = _invoke(repo, "run", "--changed-file", "modules/vpc/main.tf", "--timestamp-mode", "deterministic")

    assert result.exit_code == 0, result.output
    assert engine.calls == [("plan", "dev"), ("plan", "staging"), ("plan", "prod")]
    report = json.loads((repo / "out" / "PROMOTION_RUN.json").read_text(encoding="utf-8"))
    assert report["run_id"] == "PROMOTE_PLAN_DETERMINISTIC"


def test_run_apply_stops_after_failure(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(
        monkeypatch,
        FakeEngine({("plan", "dev"): exec_result(1, "", "Error: Invalid provider configuration")}),
    )

    result = _invoke(
        repo,
        "run",
        "-f",
        "modules/eks/main.tf",
        "--action",
        "apply",
        "--confirm",
        "prod",
    )

    assert result.exit_code == 2
    assert engine.calls == [("plan", "dev")]


def test_run_without_affected_environments(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(monkeypatch, FakeEngine())

    result = _invoke(repo, "run", "--changed-file", "README.md")

    assert result.exit_code == 0
    assert "No environments affected" in result.output
    assert engine.calls == []


def test_run_requires_change_source(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(monkeypatch, FakeEngine())
    result = _invoke(repo, "run")
    assert result.exit_code == 1


def test_detect_json(repo: Path) -> None:
    result = _invoke(
        repo,
        "detect",
        "--changed-file",
        "environments/staging/main.tf",
        "--changed-file",
        "environments/prod/outputs.tf",
        "--json",
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["affected"] == ["staging", "prod"]


# plan


def test_plan_writes_comment(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(monkeypatch, FakeEngine({("plan", "staging"): exec_result(2, "Plan: 1 to change")}))
    monkeypatch.setenv("GITHUB_ACTOR", "octocat")
    monkeypatch.setenv("GITHUB_EVENT_NAME", "pull_request")
    comment = repo / "comment.md"

    result = _invoke(repo, "plan", "staging", "--comment-file", str(comment))

    assert result.exit_code == 0, result.output
    text = comment.read_text(encoding="utf-8")
    assert "## Plan - `staging`" in text
    assert "@octocat" in text
    assert "#### Validate: `success`" in text


def test_plan_failure_exits_2(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(monkeypatch, FakeEngine({("plan", "dev"): exec_result(1, "", "Error: bad")}))
    result = _invoke(repo, "plan", "dev")
    assert result.exit_code == 2


# drift


def test_drift_opens_incident_once(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _use_engine(monkeypatch, FakeEngine({("plan", "prod"): exec_result(2, DRIFT_OUTPUT)}))

    first = _invoke(repo, "drift")
    second = _invoke(repo, "drift")

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0
    store = json.loads((repo / "incidents.json").read_text(encoding="utf-8"))
    assert len(store["incidents"]) == 1
    assert store["incidents"][0]["labels"] == ["drift", "prod", "terraform"]
    report = json.loads((repo / "out" / "DRIFT_REPORT.json").read_text(encoding="utf-8"))
    assert [o["status"] for o in report["outcomes"]] == ["clean", "clean", "drift"]
    assert report["outcomes"][2]["incident"]["newly_opened"] is False
    assert engine.reads == []


def test_drift_fail_on_drift_exits_2(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(monkeypatch, FakeEngine({("plan", "dev"): exec_result(2, DRIFT_OUTPUT)}))
    result = _invoke(repo, "drift", "--environment", "dev", "--fail-on-drift")
    assert result.exit_code == 2


def test_drift_failed_plan_exits_2_without_incident(repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_engine(monkeypatch, FakeEngine({("plan", "dev"): exec_result(1, "", "Error: credentials")}))

    result = _invoke(repo, "drift", "-e", "dev")

    assert result.exit_code == 2
    assert not (repo / "incidents.json").exists()


# init / version


def test_init_writes_config_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ENVPROMOTE_CONFIG", raising=False)

    first = runner.invoke(cli, ["--repo-root", str(tmp_path), "init"])
    second = runner.invoke(cli, ["--repo-root", str(tmp_path), "init"])
    forced = runner.invoke(cli, ["--repo-root", str(tmp_path), "init", "--force"])

    assert first.exit_code == 0
    assert (tmp_path / ".envpromote" / "config.yaml").exists()
    assert second.exit_code == 1
    assert forced.exit_code == 0


def test_version() -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
