"""Deduplicated incident tracking."""

from envpromote.incidents.stores import GitHubIssueStore, JsonFileIncidentStore
from envpromote.incidents.tracker import IncidentTracker
from envpromote.incidents.types import DRIFT_CATEGORY, Incident, IncidentKey, IncidentStore

__all__ = [
    "DRIFT_CATEGORY",
    "GitHubIssueStore",
    "Incident",
    "IncidentKey",
    "IncidentStore",
    "IncidentTracker",
    "JsonFileIncidentStore",
]
