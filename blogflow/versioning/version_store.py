"""
Version Store: append-only snapshots of a post's editable fields.

Every accepted edit, merge or rollback creates a new ``Version`` whose
``version_number`` is one greater than the post's latest.  Two writers
racing for the same number are separated by the ``(post_id,
version_number)`` unique constraint: the loser gets
``VersionNumberTakenError`` from the database layer, reloads the latest
version and tries again.

Usage::

    store = VersionStore(db)
    v1 = await store.create_version(post_id, {"title": "Draft"}, user_id)
    history = await store.get_version_history(post_id)
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from blogflow.config import Settings, get_settings
from blogflow.database import SupabaseDB
from blogflow.exceptions import (
    NoChangeError,
    NoCommonAncestorError,
    StorageUnavailableError,
    ValidationError,
    VersionNotFoundError,
    VersionNumberTakenError,
)
from blogflow.logging import ComponentLogger, LogComponent
from blogflow.utils import generate_id, utc_now
from blogflow.versioning.diff_engine import DiffEngine, normalize_value
from blogflow.versioning.models import (
    TRACKED_FIELDS,
    Change,
    ChangeType,
    Version,
    VersionDiff,
)

logger = logging.getLogger(__name__)

# Defaults for fields a first version does not supply
_EMPTY_FIELDS: Dict[str, Any] = {"title": "", "content": "", "excerpt": "", "tags": []}


class VersionStore:
    """Creates and reads post versions.

    Args:
        db: Database client.
        diff_engine: Engine used to compute change lists.
        settings: Runtime settings (``version_create_attempts``).
    """

    def __init__(
        self,
        db: SupabaseDB,
        diff_engine: Optional[DiffEngine] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.diff_engine = diff_engine or DiffEngine()
        self.settings = settings or get_settings()
        self.log = ComponentLogger(LogComponent.VERSION_STORE)

    # ================================================================
    # CREATE
    # ================================================================

    async def create_version(
        self,
        post_id: str,
        fields: Mapping[str, Any],
        author_id: str,
        parent_version_id: Optional[str] = None,
        branch_name: Optional[str] = None,
        extra_changes: Optional[List[Change]] = None,
        expected_latest_id: Optional[str] = None,
    ) -> Version:
        """Create the next version of a post.

        Unspecified (or ``None``) fields are carried over from the latest
        version.  The new version's parent defaults to the latest version.

        Args:
            post_id: Post to version.
            fields: Subset of ``title``, ``content``, ``excerpt``, ``tags``.
            author_id: User creating the version.
            parent_version_id: Version the edit was derived from.
            branch_name: Optional branch label.
            extra_changes: Synthetic changes (rollback, merge) appended
                to the computed change list.  A version carrying extra
                changes is created even when no field differs.
            expected_latest_id: The version the caller believes is latest.
                When given, the create fails instead of retrying if another
                writer got there first, so the caller can re-check for
                conflicts.

        Returns:
            The persisted ``Version``.

        Raises:
            ValidationError: On unknown field names.
            NoChangeError: If nothing differs from the latest version.
            VersionNotFoundError: If ``parent_version_id`` does not belong
                to ``post_id``.
            VersionNumberTakenError: If *expected_latest_id* is no longer
                the latest version.
            StorageUnavailableError: If a version number could not be
                allocated after ``version_create_attempts`` tries.
        """
        unknown = set(fields) - set(TRACKED_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown version fields: {sorted(unknown)}")
        if not author_id:
            raise ValidationError("author_id is required")

        if parent_version_id is not None:
            await self.get_version(parent_version_id, post_id=post_id)

        attempts = self.settings.version_create_attempts
        for attempt in range(1, attempts + 1):
            latest = await self.get_latest_version(post_id)
            latest_id = latest.id if latest else None
            if expected_latest_id is not None and latest_id != expected_latest_id:
                raise VersionNumberTakenError(post_id, latest.version_number if latest else 0)
            version = self._build_version(
                post_id,
                latest,
                fields,
                author_id,
                parent_version_id,
                branch_name,
                extra_changes or [],
            )
            try:
                row = await self.db.insert_version(version.to_row())
            except VersionNumberTakenError:
                if expected_latest_id is not None:
                    raise
                logger.warning(
                    "[VERSIONS] Version %d of post %s taken (attempt %d/%d), retrying",
                    version.version_number, post_id, attempt, attempts,
                )
                continue

            created = Version.from_row(row)
            logger.info(
                "[VERSIONS] Created version %d of post %s",
                created.version_number, post_id,
            )
            await self.log.info(
                f"Created version {created.version_number}",
                post_id=post_id,
                user_id=author_id,
                data={
                    "version_id": created.id,
                    "changed_fields": [c.field for c in created.changes],
                },
            )
            return created

        raise StorageUnavailableError(
            f"Could not allocate a version number for post {post_id} "
            f"after {attempts} attempts"
        )

    def _build_version(
        self,
        post_id: str,
        latest: Optional[Version],
        fields: Mapping[str, Any],
        author_id: str,
        parent_version_id: Optional[str],
        branch_name: Optional[str],
        extra_changes: List[Change],
    ) -> Version:
        supplied = {
            name: normalize_value(name, value)
            for name, value in fields.items()
            if value is not None
        }
        now = utc_now()

        if latest is None:
            if not supplied:
                raise NoChangeError(f"No fields supplied for the first version of post {post_id}")
            values = {**_EMPTY_FIELDS, **supplied}
            changes = self.diff_engine.compute_changes(None, supplied, author_id, now)
            version_number = 1
        else:
            changes = self.diff_engine.compute_changes(latest, supplied, author_id, now)
            if not changes and not extra_changes:
                raise NoChangeError(
                    f"No changes relative to version {latest.version_number} of post {post_id}"
                )
            values = {**latest.fields(), **supplied}
            version_number = latest.version_number + 1

        return Version(
            id=generate_id(),
            post_id=post_id,
            version_number=version_number,
            title=values["title"],
            content=values["content"],
            excerpt=values["excerpt"],
            tags=list(values["tags"]),
            author_id=author_id,
            created_at=now,
            changes=changes + list(extra_changes),
            parent_version_id=parent_version_id or (latest.id if latest else None),
            branch_name=branch_name,
        )

    # ================================================================
    # READ
    # ================================================================

    async def get_latest_version(self, post_id: str) -> Optional[Version]:
        """Return the post's highest-numbered version, or ``None``."""
        row = await self.db.get_latest_version_row(post_id)
        return Version.from_row(row) if row else None

    async def get_version_history(
        self, post_id: str, limit: Optional[int] = None
    ) -> List[Version]:
        """Return the post's versions, newest first."""
        rows = await self.db.get_version_rows(post_id, limit=limit)
        return [Version.from_row(row) for row in rows]

    async def get_version(
        self, version_id: str, post_id: Optional[str] = None
    ) -> Version:
        """Load a version by ID.

        Args:
            version_id: Version to load.
            post_id: When given, the version must belong to this post.

        Raises:
            VersionNotFoundError: If the version does not exist or belongs
                to another post.
        """
        row = await self.db.get_version_row(version_id)
        if row is None or (post_id is not None and row["post_id"] != post_id):
            raise VersionNotFoundError(
                f"Version {version_id} not found"
                + (f" for post {post_id}" if post_id else "")
            )
        return Version.from_row(row)

    # ================================================================
    # ROLLBACK
    # ================================================================

    async def rollback_to_version(
        self, post_id: str, version_id: str, author_id: str
    ) -> Version:
        """Create a new version restoring the fields of *version_id*.

        The new version carries an extra ``update`` change on the
        synthetic ``rollback`` field whose ``new_value`` is the target's
        version number.  It is created even when the target's fields
        equal the latest version's.

        Raises:
            VersionNotFoundError: If *version_id* is not a version of
                *post_id*.
        """
        target = await self.get_version(version_id, post_id=post_id)
        rollback_change = Change(
            type=ChangeType.UPDATE,
            field="rollback",
            old_value=None,
            new_value=target.version_number,
            author_id=author_id,
        )

        version = await self.create_version(
            post_id,
            target.fields(),
            author_id,
            extra_changes=[rollback_change],
        )
        logger.info(
            "[VERSIONS] Rolled back post %s to version %d as version %d",
            post_id, target.version_number, version.version_number,
        )
        return version

    # ================================================================
    # COMPARE
    # ================================================================

    async def compare_versions(
        self,
        version_id_a: str,
        version_id_b: str,
        post_id: Optional[str] = None,
    ) -> VersionDiff:
        """Diff two versions of the same post (A older side, B newer side).

        Raises:
            VersionNotFoundError: If either version does not exist (or is
                not a version of *post_id* when given).
            ValidationError: If the versions belong to different posts.
        """
        version_a = await self.get_version(version_id_a, post_id=post_id)
        version_b = await self.get_version(version_id_b, post_id=post_id)
        if version_a.post_id != version_b.post_id:
            raise ValidationError("Cannot compare versions of different posts")
        return self.diff_engine.diff(version_a, version_b)

    # ================================================================
    # PUBLISH FLAG
    # ================================================================

    async def mark_published(self, post_id: str, version_id: str) -> Version:
        """Make *version_id* the post's only ``is_published`` version.

        Raises:
            VersionNotFoundError: If the version does not belong to the post.
        """
        version = await self.get_version(version_id, post_id=post_id)
        if not await self.db.set_published_version(post_id, version_id):
            raise VersionNotFoundError(
                f"Version {version_id} not found for post {post_id}"
            )
        version.is_published = True
        logger.info(
            "[VERSIONS] Version %d of post %s marked published",
            version.version_number, post_id,
        )
        return version

    async def get_published_version(self, post_id: str) -> Optional[Version]:
        """Return the post's published version, or ``None``."""
        row = await self.db.get_published_version_row(post_id)
        return Version.from_row(row) if row else None

    # ================================================================
    # ANCESTRY
    # ================================================================

    async def find_common_ancestor(
        self, post_id: str, version_id_a: str, version_id_b: str
    ) -> Version:
        """Find the nearest common ancestor of two versions.

        Ancestry follows ``parent_version_id``; a version counts as its
        own ancestor, so when one version descends from the other the
        older one is returned.

        Raises:
            VersionNotFoundError: If either version is not in the post.
            NoCommonAncestorError: If the parent chains never meet.
        """
        by_id = {
            row["id"]: Version.from_row(row)
            for row in await self.db.get_version_rows(post_id)
        }
        for version_id in (version_id_a, version_id_b):
            if version_id not in by_id:
                raise VersionNotFoundError(
                    f"Version {version_id} not found for post {post_id}"
                )

        ancestors_a = set(self._lineage(by_id, version_id_a))
        for version_id in self._lineage(by_id, version_id_b):
            if version_id in ancestors_a:
                return by_id[version_id]

        raise NoCommonAncestorError(
            f"Versions {version_id_a} and {version_id_b} share no ancestor"
        )

    @staticmethod
    def _lineage(by_id: Dict[str, Version], version_id: str) -> List[str]:
        """Walk ``parent_version_id`` links from *version_id* (inclusive)."""
        lineage: List[str] = []
        seen = set()
        current: Optional[str] = version_id
        while current is not None and current in by_id and current not in seen:
            seen.add(current)
            lineage.append(current)
            current = by_id[current].parent_version_id
        return lineage


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = ["VersionStore"]
