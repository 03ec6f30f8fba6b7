"""Post versioning: snapshots, diffs and three-way merges."""
from blogflow.versioning.models import (
    TRACKED_FIELDS,
    Change,
    ChangeType,
    Conflict,
    ConflictResolution,
    MergeResult,
    TextDiff,
    Version,
    VersionDiff,
)
from blogflow.versioning.diff_engine import DiffEngine
from blogflow.versioning.version_store import VersionStore
from blogflow.versioning.conflict_resolver import ConflictResolver

__all__ = [
    "TRACKED_FIELDS", "Change", "ChangeType", "Conflict", "ConflictResolution",
    "MergeResult", "TextDiff", "Version", "VersionDiff",
    "DiffEngine", "VersionStore", "ConflictResolver",
]
