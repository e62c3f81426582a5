"""Change detection for envpromote."""

from envpromote.detect.changes import ChangeSet, build_filters, changed_files_from_git, detect, matches_any

__all__ = ["ChangeSet", "build_filters", "changed_files_from_git", "detect", "matches_any"]
