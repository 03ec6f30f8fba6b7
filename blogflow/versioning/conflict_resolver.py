"""
Three-way merge of concurrent edits.

Given the common ancestor (``base``), the editor's draft (``local``) and
the latest persisted version (``remote``), a tracked field conflicts when
both sides changed it to different values.  A field changed on only one
side takes that side's value.

Conflicts are resolved with a strategy:

- ``local``: keep the editor's values.
- ``remote``: keep the persisted values.
- ``manual``: hand ``{field: {"local": .., "remote": ..}}`` back to the
  caller, who completes the merge with ``apply_manual_choices``.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from blogflow.exceptions import (
    ManualResolutionRequiredError,
    StorageUnavailableError,
    ValidationError,
    VersionNotFoundError,
    VersionNumberTakenError,
)
from blogflow.logging import ComponentLogger, LogComponent
from blogflow.versioning.diff_engine import normalize_value
from blogflow.versioning.models import (
    TRACKED_FIELDS,
    Change,
    ChangeType,
    Conflict,
    ConflictResolution,
    MergeResult,
    Version,
)
from blogflow.versioning.version_store import VersionStore

logger = logging.getLogger(__name__)

FieldSource = Union[Version, Mapping[str, Any]]


def _fields(source: FieldSource) -> Dict[str, Any]:
    if isinstance(source, Version):
        return source.fields()
    return {
        name: normalize_value(name, source.get(name))
        for name in TRACKED_FIELDS
    }


def parse_strategy(strategy: Union[str, ConflictResolution]) -> ConflictResolution:
    """Coerce a strategy name to ``ConflictResolution``.

    Raises:
        ValidationError: For unknown strategy names.
    """
    if isinstance(strategy, ConflictResolution):
        return strategy
    try:
        return ConflictResolution(strategy)
    except ValueError:
        raise ValidationError(
            f"Unknown resolution strategy '{strategy}', "
            f"expected one of {[s.value for s in ConflictResolution]}"
        ) from None


class ConflictResolver:
    """Detects, resolves and commits concurrent field edits.

    Args:
        version_store: Store used to load versions and commit merges.
    """

    def __init__(self, version_store: VersionStore) -> None:
        self.version_store = version_store
        self.log = ComponentLogger(LogComponent.CONFLICT_RESOLVER)

    # ================================================================
    # DETECTION AND MERGE
    # ================================================================

    def detect(
        self, base: FieldSource, local: FieldSource, remote: FieldSource
    ) -> List[Conflict]:
        """Return one ``Conflict`` per field both sides changed differently."""
        base_f, local_f, remote_f = _fields(base), _fields(local), _fields(remote)
        conflicts = []
        for name in TRACKED_FIELDS:
            base_val, local_val, remote_val = base_f[name], local_f[name], remote_f[name]
            if local_val != base_val and remote_val != base_val and local_val != remote_val:
                conflicts.append(
                    Conflict(field=name, local_value=local_val, remote_value=remote_val)
                )
        return conflicts

    def merge(
        self,
        base: FieldSource,
        local: FieldSource,
        remote: FieldSource,
        base_version_id: str = "",
        remote_version_id: str = "",
    ) -> MergeResult:
        """Three-way merge; conflicting fields are left out of ``merged``."""
        base_f, local_f, remote_f = _fields(base), _fields(local), _fields(remote)
        conflicts = self.detect(base_f, local_f, remote_f)
        conflicted = {c.field for c in conflicts}

        merged: Dict[str, Any] = {}
        for name in TRACKED_FIELDS:
            if name in conflicted:
                continue
            # Whichever side moved away from base wins; equal sides agree.
            merged[name] = local_f[name] if local_f[name] != base_f[name] else remote_f[name]

        return MergeResult(
            merged=merged,
            conflicts=conflicts,
            base_version_id=base_version_id,
            remote_version_id=remote_version_id,
        )

    # ================================================================
    # RESOLUTION
    # ================================================================

    def resolve(
        self,
        conflicts: List[Conflict],
        strategy: Union[str, ConflictResolution],
    ) -> Dict[str, Any]:
        """Apply a resolution strategy to *conflicts*.

        Returns:
            ``{field: value}`` for ``local`` / ``remote``; for ``manual``,
            ``{field: {"local": value, "remote": value}}`` with resolution
            deferred to the caller.
        """
        strategy = parse_strategy(strategy)
        resolved: Dict[str, Any] = {}
        for conflict in conflicts:
            if strategy is ConflictResolution.LOCAL:
                resolved[conflict.field] = conflict.local_value
                conflict.resolution = ConflictResolution.LOCAL
            elif strategy is ConflictResolution.REMOTE:
                resolved[conflict.field] = conflict.remote_value
                conflict.resolution = ConflictResolution.REMOTE
            else:
                resolved[conflict.field] = {
                    "local": conflict.local_value,
                    "remote": conflict.remote_value,
                }
        return resolved

    def apply_manual_choices(
        self,
        conflicts: List[Conflict],
        choices: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Complete a manual resolution from per-field choices.

        Args:
            conflicts: Conflicts to resolve.
            choices: ``{field: "local" | "remote" | {"value": custom}}``.

        Returns:
            ``{field: chosen value}``.

        Raises:
            ManualResolutionRequiredError: If a conflicted field has no
                choice.
            ValidationError: On an unrecognised choice.
        """
        missing = [c for c in conflicts if c.field not in choices]
        if missing:
            raise ManualResolutionRequiredError(
                f"Choose a value for: {', '.join(c.field for c in missing)}",
                choices=self.resolve(missing, ConflictResolution.MANUAL),
            )

        resolved: Dict[str, Any] = {}
        for conflict in conflicts:
            choice = choices[conflict.field]
            if choice == "local":
                value = conflict.local_value
            elif choice == "remote":
                value = conflict.remote_value
            elif isinstance(choice, Mapping) and "value" in choice:
                value = normalize_value(conflict.field, choice["value"])
            else:
                raise ValidationError(
                    f"Invalid choice for '{conflict.field}': expected 'local', "
                    "'remote' or {'value': ...}"
                )
            resolved[conflict.field] = value
            conflict.resolution = ConflictResolution.MANUAL
        return resolved

    # ================================================================
    # COMMIT
    # ================================================================

    async def commit(
        self,
        post_id: str,
        local_fields: Mapping[str, Any],
        base_version_id: str,
        author_id: str,
        strategy: Union[str, ConflictResolution],
        manual_choices: Optional[Mapping[str, Any]] = None,
        retry_on_contention: bool = True,
    ) -> Version:
        """Merge an editor's draft onto the latest version and persist it.

        Args:
            post_id: Post being edited.
            local_fields: The editor's field values (partial allowed;
                omitted fields keep the base version's values).
            base_version_id: Version the draft was derived from.
            author_id: Committing user.
            strategy: Resolution strategy for conflicting fields.
            manual_choices: Per-field choices when *strategy* is manual.
            retry_on_contention: Re-merge against the new latest version
                when another writer commits first.  When ``False`` the
                ``VersionNumberTakenError`` propagates to the caller.

        Returns:
            The new version, parented on the latest version, whose change
            list records each resolved conflict on the ``merge`` field.

        Raises:
            VersionNotFoundError: If the post has no versions or the base
                is not one of its versions.
            NoCommonAncestorError: If base and latest share no ancestor.
            ManualResolutionRequiredError: If a manual merge lacks choices.
            StorageUnavailableError: If every re-merge lost the race.
        """
        strategy = parse_strategy(strategy)
        attempts = self.version_store.settings.version_create_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._commit_once(
                    post_id, local_fields, base_version_id, author_id, strategy, manual_choices
                )
            except VersionNumberTakenError:
                if not retry_on_contention:
                    raise
                logger.info(
                    "[MERGE] Post %s moved during merge (attempt %d/%d), re-merging",
                    post_id, attempt, attempts,
                )

        raise StorageUnavailableError(
            f"Could not commit merge to post {post_id} after {attempts} attempts"
        )

    async def _commit_once(
        self,
        post_id: str,
        local_fields: Mapping[str, Any],
        base_version_id: str,
        author_id: str,
        strategy: ConflictResolution,
        manual_choices: Optional[Mapping[str, Any]],
    ) -> Version:
        remote = await self.version_store.get_latest_version(post_id)
        if remote is None:
            raise VersionNotFoundError(f"Post {post_id} has no versions")

        base_version = await self.version_store.get_version(base_version_id, post_id=post_id)
        ancestor = await self.version_store.find_common_ancestor(
            post_id, base_version.id, remote.id
        )

        local = base_version.fields()
        local.update({
            name: normalize_value(name, value)
            for name, value in local_fields.items()
            if value is not None
        })

        result = self.merge(ancestor, local, remote, ancestor.id, remote.id)
        if not result.has_conflicts:
            resolved: Dict[str, Any] = {}
        elif strategy is ConflictResolution.MANUAL:
            resolved = self.apply_manual_choices(result.conflicts, manual_choices or {})
        else:
            resolved = self.resolve(result.conflicts, strategy)

        merge_changes = [
            Change(
                type=ChangeType.UPDATE,
                field="merge",
                old_value={"local": c.local_value, "remote": c.remote_value},
                new_value={
                    "field": c.field,
                    "resolution": c.resolution.value if c.resolution else strategy.value,
                    "value": resolved[c.field],
                },
                author_id=author_id,
            )
            for c in result.conflicts
        ]

        if result.has_conflicts:
            logger.info(
                "[MERGE] Resolved %d conflict(s) on post %s with strategy %s",
                len(result.conflicts), post_id, strategy.value,
            )
            await self.log.info(
                f"Resolved {len(result.conflicts)} conflict(s)",
                post_id=post_id,
                user_id=author_id,
                data={
                    "strategy": strategy.value,
                    "fields": [c.field for c in result.conflicts],
                    "base_version_id": ancestor.id,
                    "remote_version_id": remote.id,
                },
            )

        return await self.version_store.create_version(
            post_id,
            {**result.merged, **resolved},
            author_id,
            parent_version_id=remote.id,
            extra_changes=merge_changes,
            expected_latest_id=remote.id,
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = ["ConflictResolver", "parse_strategy"]
