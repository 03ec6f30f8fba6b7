"""
Versioning data models: Version, Change, VersionDiff, Conflict, MergeResult.

Defines the core data structures used by the versioning subsystem:
- ``Version``: Immutable snapshot of a post's editable fields.
- ``Change``: One field-level difference recorded on a version.
- ``VersionDiff``: Derived comparison between two versions.
- ``Conflict``: Field edited differently on both sides of a merge.
- ``MergeResult``: Outcome of a three-way merge.

Rows in ``post_versions`` use snake_case columns; ``to_row`` /
``from_row`` convert between rows and dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from blogflow.utils import parse_timestamp, utc_now

# Editable fields snapshotted on every version, in display order.
TRACKED_FIELDS: Tuple[str, ...] = ("title", "content", "excerpt", "tags")


# =============================================================================
# CHANGE
# =============================================================================


class ChangeType(Enum):
    """Kind of field-level change recorded on a version."""

    INSERT = "insert"
    DELETE = "delete"
    UPDATE = "update"


@dataclass
class Change:
    """A single field-level change relative to the parent version.

    Attributes:
        type: Insert, delete or update.
        field: Field name (``title``, ``tags``...) or a synthetic marker
            such as ``initial``, ``rollback`` or ``merge``.
        new_value: Value after the change.
        author_id: User who made the change.
        timestamp: When the change was recorded (timezone-aware UTC).
        old_value: Value before the change, when there was one.
    """

    type: ChangeType
    field: str
    new_value: Any
    author_id: str
    timestamp: datetime = field(default_factory=utc_now)
    old_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "timestamp": self.timestamp.isoformat(),
            "author_id": self.author_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Change":
        return cls(
            type=ChangeType(data["type"]),
            field=data["field"],
            new_value=data.get("new_value"),
            author_id=data.get("author_id", ""),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            old_value=data.get("old_value"),
        )


# =============================================================================
# VERSION
# =============================================================================


@dataclass
class Version:
    """An immutable snapshot of a post's editable fields.

    Attributes:
        id: Unique identifier (UUID).
        post_id: Owning post.
        version_number: Position in the post's history, contiguous from 1.
        title: Post title at this version.
        content: Markdown body at this version.
        excerpt: Short summary at this version.
        tags: Ordered tag list at this version.
        author_id: User who created the version.
        created_at: Creation timestamp (timezone-aware UTC).
        is_published: Whether this is the post's live content.
        changes: Differences from the parent version.
        parent_version_id: Version this one was derived from.
        branch_name: Optional branch label.
        post_deleted: Set when the owning post was deleted; the version
            itself is kept for audit.
    """

    id: str
    post_id: str
    version_number: int
    title: str
    content: str
    excerpt: str
    tags: List[str]
    author_id: str
    created_at: datetime = field(default_factory=utc_now)
    is_published: bool = False
    changes: List[Change] = field(default_factory=list)
    parent_version_id: Optional[str] = None
    branch_name: Optional[str] = None
    post_deleted: bool = False

    def fields(self) -> Dict[str, Any]:
        """Return the tracked field values (tags copied)."""
        return {
            "title": self.title,
            "content": self.content,
            "excerpt": self.excerpt,
            "tags": list(self.tags),
        }

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``post_versions`` row."""
        return {
            "id": self.id,
            "post_id": self.post_id,
            "version_number": self.version_number,
            "title": self.title,
            "content": self.content,
            "excerpt": self.excerpt,
            "tags": list(self.tags),
            "author_id": self.author_id,
            "created_at": self.created_at.isoformat(),
            "is_published": self.is_published,
            "changes": [change.to_dict() for change in self.changes],
            "parent_version_id": self.parent_version_id,
            "branch_name": self.branch_name,
            "post_deleted": self.post_deleted,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        return self.to_row()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Version":
        """Build a ``Version`` from a ``post_versions`` row."""
        return cls(
            id=row["id"],
            post_id=row["post_id"],
            version_number=int(row["version_number"]),
            title=row.get("title") or "",
            content=row.get("content") or "",
            excerpt=row.get("excerpt") or "",
            tags=list(row.get("tags") or []),
            author_id=row.get("author_id") or "",
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            is_published=bool(row.get("is_published", False)),
            changes=[Change.from_dict(c) for c in row.get("changes") or []],
            parent_version_id=row.get("parent_version_id"),
            branch_name=row.get("branch_name"),
            post_deleted=bool(row.get("post_deleted", False)),
        )


# =============================================================================
# CONFLICTS
# =============================================================================


class ConflictResolution(Enum):
    """Strategy for resolving a field edited on both sides of a merge."""

    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


@dataclass
class Conflict:
    """A field whose local and remote values diverged from the same base."""

    field: str
    local_value: Any
    remote_value: Any
    resolution: Optional[ConflictResolution] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "local_value": self.local_value,
            "remote_value": self.remote_value,
            "resolution": self.resolution.value if self.resolution else None,
        }


# =============================================================================
# DIFFS
# =============================================================================


@dataclass
class TextDiff:
    """Line and word level diff of the ``content`` field.

    Attributes:
        unified: Unified diff lines (no trailing newlines).
        operations: Word-level opcodes, each
            ``{"op": "equal"|"insert"|"delete"|"replace", "old": str, "new": str}``.
        added_lines: Lines present only in the newer text.
        removed_lines: Lines present only in the older text.
        added_words: Words present only in the newer text.
        removed_words: Words present only in the older text.
    """

    unified: List[str] = field(default_factory=list)
    operations: List[Dict[str, str]] = field(default_factory=list)
    added_lines: int = 0
    removed_lines: int = 0
    added_words: int = 0
    removed_words: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unified": self.unified,
            "operations": self.operations,
            "added_lines": self.added_lines,
            "removed_lines": self.removed_lines,
            "added_words": self.added_words,
            "removed_words": self.removed_words,
        }


@dataclass
class VersionDiff:
    """Field-level comparison of two versions (derived, never stored)."""

    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    text_diff: Optional[TextDiff] = None

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified or self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "text_diff": self.text_diff.to_dict() if self.text_diff else None,
        }


@dataclass
class MergeResult:
    """Outcome of a three-way merge of local edits onto the remote version.

    Attributes:
        merged: Field values taken without conflict (one side changed, or
            both sides agree).
        conflicts: Fields changed differently on both sides.
        base_version_id: Common ancestor used for the merge.
        remote_version_id: Latest persisted version merged against.
    """

    merged: Dict[str, Any]
    conflicts: List[Conflict]
    base_version_id: str
    remote_version_id: str

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merged": self.merged,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "base_version_id": self.base_version_id,
            "remote_version_id": self.remote_version_id,
        }


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "TRACKED_FIELDS",
    "ChangeType",
    "Change",
    "Version",
    "ConflictResolution",
    "Conflict",
    "TextDiff",
    "VersionDiff",
    "MergeResult",
]
