"""Incident store backends."""

from __future__ import annotations

import dataclasses
import json
import re
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envpromote.artifacts import write_json
from envpromote.engine.exec import ExecError, ExecResult, run_command
from envpromote.errors import ExecutionError
from envpromote.incidents.types import Incident

_ISSUE_URL_RE = re.compile(r"https?://\S+/issues/(\d+)")
_LIST_FIELDS = "number,title,body,state,labels,url"


class GitHubIssueStore:
    """GitHub issues via the ``gh`` CLI (authenticated through ``GH_TOKEN``/``gh auth``)."""

    def __init__(
        self,
        repo_root: Path,
        *,
        repo: str | None = None,
        limit: int = 100,
        runner: Callable[..., ExecResult] = run_command,
        gh_path: str | None = None,
    ) -> None:
        self.repo_root = repo_root
        self.repo = repo
        self.limit = limit
        self.runner = runner
        self.gh_path = gh_path

    def list_open(self, labels: tuple[str, ...]) -> list[Incident]:
        argv = ["issue", "list", "--state", "open", "--limit", str(self.limit), "--json", _LIST_FIELDS]
        for label in labels:
            argv.extend(["--label", label])
        result = self._gh(argv)

        try:
            rows = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise ExecutionError(f"unexpected output from gh issue list: {exc}") from exc

        incidents = [_incident_from_row(row) for row in rows]
        wanted = set(labels)
        return [i for i in incidents if i.state == "open" and wanted.issubset(i.labels)]

    def create(self, title: str, body: str, labels: tuple[str, ...]) -> Incident:
        argv = ["issue", "create", "--title", title, "--body-file", "-"]
        for label in labels:
            argv.extend(["--label", label])
        result = self._gh(argv, input_text=body)

        url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        match = _ISSUE_URL_RE.search(url)
        if match is None:
            raise ExecutionError(f"could not parse issue URL from gh output: {result.stdout.strip()!r}")
        return Incident(
            number=int(match.group(1)),
            title=title,
            body=body,
            state="open",
            labels=labels,
            url=match.group(0),
        )

    def close(self, incident: Incident) -> Incident:
        self._gh(["issue", "close", str(incident.number)])
        return dataclasses.replace(incident, state="closed")

    def _gh(self, args: list[str], *, input_text: str | None = None) -> ExecResult:
        gh = self.gh_path or shutil.which("gh")
        if not gh:
            raise ExecutionError("gh CLI not found; install it or configure incidents.store: file")
        argv = [gh, *args]
        if self.repo:
            argv.extend(["--repo", self.repo])
        try:
            return self.runner(argv, cwd=self.repo_root, check=True, input_text=input_text)
        except ExecError as exc:
            raise ExecutionError(str(exc)) from exc
        except FileNotFoundError as exc:
            raise ExecutionError(f"gh CLI not executable: {gh}") from exc


class JsonFileIncidentStore:
    """Incidents persisted in a local JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def list_open(self, labels: tuple[str, ...]) -> list[Incident]:
        wanted = set(labels)
        return [
            i for i in self._load_incidents() if i.state == "open" and wanted.issubset(i.labels)
        ]

    def create(self, title: str, body: str, labels: tuple[str, ...]) -> Incident:
        data = self._load()
        number = int(data.get("next_number", 1))
        incident = Incident(number=number, title=title, body=body, state="open", labels=tuple(labels))
        data["incidents"].append(_incident_to_row(incident))
        data["next_number"] = number + 1
        write_json(self.path, data)
        return incident

    def close(self, incident: Incident) -> Incident:
        data = self._load()
        for row in data["incidents"]:
            if row["number"] == incident.number:
                row["state"] = "closed"
        write_json(self.path, data)
        return dataclasses.replace(incident, state="closed")

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"next_number": 1, "incidents": []}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ExecutionError(f"Malformed incident store at {self.path}: {exc}") from exc
        data.setdefault("incidents", [])
        return data

    def _load_incidents(self) -> list[Incident]:
        return [_incident_from_row(row) for row in self._load()["incidents"]]


def _incident_from_row(row: dict[str, Any]) -> Incident:
    labels = tuple(
        label["name"] if isinstance(label, dict) else str(label) for label in row.get("labels", [])
    )
    return Incident(
        number=int(row["number"]),
        title=str(row.get("title", "")),
        body=str(row.get("body", "")),
        state="open" if str(row.get("state", "open")).lower() == "open" else "closed",
        labels=labels,
        url=row.get("url"),
    )


def _incident_to_row(incident: Incident) -> dict[str, Any]:
    return {
        "number": incident.number,
        "title": incident.title,
        "body": incident.body,
        "state": incident.state,
        "labels": list(incident.labels),
        "url": incident.url,
    }
