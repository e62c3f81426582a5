"""Unit tests for incident tracking and stores."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from envpromote.engine.exec import ExecError, ExecResult
from envpromote.errors import ExecutionError
from envpromote.incidents import GitHubIssueStore, IncidentKey, IncidentTracker, JsonFileIncidentStore
from tests.fakes import FakeIncidentStore

DEV_DRIFT = IncidentKey(environment="dev", category="drift")


class TestIncidentTracker:
    def test_open_or_skip_creates_once(self) -> None:
        store = FakeIncidentStore()
        tracker = IncidentTracker(store, extra_labels=("terraform",))

        first = tracker.open_or_skip(DEV_DRIFT, "Drift detected - dev", "body")
        second = tracker.open_or_skip(DEV_DRIFT, "Drift detected - dev", "body again")

        assert first.newly_opened is True
        assert second.newly_opened is False
        assert second.number == first.number
        assert len(store.created) == 1
        assert store.created[0][1] == ("drift", "dev", "terraform")

    def test_keys_are_independent(self) -> None:
        store = FakeIncidentStore()
        tracker = IncidentTracker(store)

        tracker.open_or_skip(DEV_DRIFT, "Drift detected - dev", "body")
        prod = tracker.open_or_skip(IncidentKey("prod", "drift"), "Drift detected - prod", "body")

        assert prod.newly_opened is True
        assert len(store.created) == 2

    def test_closed_incident_allows_new_one(self) -> None:
        store = FakeIncidentStore()
        tracker = IncidentTracker(store)
        tracker.open_or_skip(DEV_DRIFT, "t", "b")

        closed = tracker.close(DEV_DRIFT)
        reopened = tracker.open_or_skip(DEV_DRIFT, "t", "b")

        assert [i.state for i in closed] == ["closed"]
        assert reopened.newly_opened is True
        assert reopened.number == 2

    def test_find_open_returns_lowest_number(self) -> None:
        store = FakeIncidentStore()
        store.create("a", "", ("drift", "dev"))
        store.create("b", "", ("drift", "dev"))
        tracker = IncidentTracker(store)

        found = tracker.find_open(DEV_DRIFT)

        assert found is not None
        assert found.number == 1
        assert found.key == DEV_DRIFT

    def test_duplicate_labels_collapsed(self) -> None:
        store = FakeIncidentStore()
        tracker = IncidentTracker(store, extra_labels=("drift", "terraform", ""))
        tracker.open_or_skip(DEV_DRIFT, "t", "b")
        assert store.created[0][1] == ("drift", "dev", "terraform")


class TestJsonFileIncidentStore:
    def test_persists_and_filters_by_labels(self, tmp_path: Path) -> None:
        path = tmp_path / "incidents.json"
        store = JsonFileIncidentStore(path)

        created = store.create("Drift detected - dev", "body", ("drift", "dev", "terraform"))
        store.create("Drift detected - prod", "body", ("drift", "prod", "terraform"))

        assert created.number == 1
        reloaded = JsonFileIncidentStore(path)
        assert [i.number for i in reloaded.list_open(("drift", "dev"))] == [1]
        assert json.loads(path.read_text(encoding="utf-8"))["next_number"] == 3

    def test_close_hides_from_open_list(self, tmp_path: Path) -> None:
        store = JsonFileIncidentStore(tmp_path / "incidents.json")
        created = store.create("t", "b", ("drift", "dev"))

        closed = store.close(created)

        assert closed.state == "closed"
        assert store.list_open(("drift", "dev")) == []

    def test_malformed_file(self, tmp_path: Path) -> None:
        path = tmp_path / "incidents.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ExecutionError, match="Malformed incident store"):
            JsonFileIncidentStore(path).list_open(("drift",))


class _GhStub:
    def __init__(self, stdout: str = "", error: Exception | None = None):
        self.stdout = stdout
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, argv, *, cwd, check=True, input_text=None):
        self.calls.append({"argv": list(argv), "input_text": input_text})
        if self.error is not None:
            raise self.error
        return ExecResult(argv=tuple(argv), cwd=cwd, returncode=0, stdout=self.stdout, stderr="")


class TestGitHubIssueStore:
    def test_list_open_parses_label_objects(self, tmp_path: Path) -> None:
        rows = [
            {
                "number": 7,
                "title": "Drift detected - dev",
                "body": "...",
                "state": "OPEN",
                "labels": [{"name": "drift"}, {"name": "dev"}, {"name": "terraform"}],
                "url": "https://github.com/acme/infra/issues/7",
            },
            {
                "number": 8,
                "title": "Drift detected - prod",
                "body": "...",
                "state": "OPEN",
                "labels": [{"name": "drift"}, {"name": "prod"}],
                "url": "https://github.com/acme/infra/issues/8",
            },
        ]
        stub = _GhStub(json.dumps(rows))
        store = GitHubIssueStore(tmp_path, runner=stub, gh_path="/usr/bin/gh")

        found = store.list_open(("drift", "dev"))

        assert [i.number for i in found] == [7]
        assert found[0].labels == ("drift", "dev", "terraform")
        argv = stub.calls[0]["argv"]
        assert argv[:3] == ["/usr/bin/gh", "issue", "list"]
        assert argv.count("--label") == 2

    def test_create_sends_body_on_stdin_and_parses_number(self, tmp_path: Path) -> None:
        stub = _GhStub("Creating issue in acme/infra\n\nhttps://github.com/acme/infra/issues/42\n")
        store = GitHubIssueStore(tmp_path, repo="acme/infra", runner=stub, gh_path="gh")

        incident = store.create("Drift detected - dev", "## body", ("drift", "dev"))

        assert incident.number == 42
        assert incident.url == "https://github.com/acme/infra/issues/42"
        call = stub.calls[0]
        assert call["input_text"] == "## body"
        assert call["argv"][-2:] == ["--repo", "acme/infra"]

    def test_close(self, tmp_path: Path) -> None:
        stub = _GhStub()
        store = GitHubIssueStore(tmp_path, runner=stub, gh_path="gh")
        created = JsonFileIncidentStore(tmp_path / "x.json").create("t", "b", ("drift",))

        closed = store.close(created)

        assert closed.state == "closed"
        assert stub.calls[0]["argv"] == ["gh", "issue", "close", "1"]

    def test_gh_failure_is_execution_error(self, tmp_path: Path) -> None:
        failed = ExecResult(argv=("gh",), cwd=tmp_path, returncode=1, stdout="", stderr="HTTP 401")
        store = GitHubIssueStore(tmp_path, runner=_GhStub(error=ExecError(failed)), gh_path="gh")
        with pytest.raises(ExecutionError, match="HTTP 401"):
            store.list_open(("drift",))

    def test_missing_gh(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("envpromote.incidents.stores.shutil.which", lambda _: None)
        with pytest.raises(ExecutionError, match="gh CLI not found"):
            GitHubIssueStore(tmp_path, runner=_GhStub()).list_open(("drift",))
