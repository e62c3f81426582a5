"""Incident types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol

IncidentState = Literal["open", "closed"]

DRIFT_CATEGORY = "drift"


@dataclass(frozen=True)
class IncidentKey:
    """Deduplication key: at most one open incident per key."""

    environment: str
    category: str

    @property
    def labels(self) -> tuple[str, str]:
        return (self.category, self.environment)

    def __str__(self) -> str:
        return f"{self.category}/{self.environment}"


@dataclass(frozen=True)
class Incident:
    """Tracked incident as reported by a store."""

    number: int
    title: str
    body: str
    state: IncidentState
    labels: tuple[str, ...]
    url: str | None = None
    newly_opened: bool = False
    key: IncidentKey | None = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "labels": list(self.labels),
            "url": self.url,
            "newly_opened": self.newly_opened,
        }


class IncidentStore(Protocol):
    """Durable incident backend (an issue tracker)."""

    def list_open(self, labels: tuple[str, ...]) -> list[Incident]:
        """Open incidents carrying every one of ``labels``."""
        ...

    def create(self, title: str, body: str, labels: tuple[str, ...]) -> Incident: ...

    def close(self, incident: Incident) -> Incident: ...
