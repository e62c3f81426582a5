"""Incident tracker: open-or-skip keyed by (environment, category)."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence

from envpromote.incidents.types import Incident, IncidentKey, IncidentStore

logger = logging.getLogger(__name__)


class IncidentTracker:
    """Deduplicate incidents on top of an ``IncidentStore``.

    Deduplication is check-then-create. Two runs for the same key racing
    between the lookup and the create can both create; stores are not assumed
    to offer an atomic create-if-absent.
    """

    def __init__(self, store: IncidentStore, extra_labels: Sequence[str] = ()) -> None:
        self.store = store
        self.extra_labels = tuple(label for label in extra_labels if label)

    def find_open(self, key: IncidentKey) -> Incident | None:
        existing = self.store.list_open(key.labels)
        if not existing:
            return None
        return dataclasses.replace(min(existing, key=lambda i: i.number), key=key)

    def open_or_skip(self, key: IncidentKey, title: str, body: str) -> Incident:
        """Create an incident for ``key`` unless one is already open."""
        existing = self.find_open(key)
        if existing is not None:
            logger.info("incident %s already open as #%d; skipping", key, existing.number)
            return dataclasses.replace(existing, newly_opened=False)

        labels = tuple(dict.fromkeys((*key.labels, *self.extra_labels)))
        created = self.store.create(title, body, labels)
        logger.info("opened incident #%d for %s", created.number, key)
        return dataclasses.replace(created, key=key, newly_opened=True)

    def close(self, key: IncidentKey) -> list[Incident]:
        """Close every open incident for ``key``."""
        closed = [self.store.close(incident) for incident in self.store.list_open(key.labels)]
        for incident in closed:
            logger.info("closed incident #%d for %s", incident.number, key)
        return [dataclasses.replace(incident, key=key) for incident in closed]
