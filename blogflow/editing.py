"""
Edit Coordinator: the single entry point for saving an edit.

An edit goes straight to the Version Store when nobody else can have
moved the post underneath the editor:

- fewer than two active editors across the post's live sessions, or
- the edit's ``base_version_id`` is still the latest version.

Otherwise the edit is merged against the latest version through the
Conflict Resolver.  Without a resolution strategy, overlapping field
edits are rejected with ``EditConflictError`` so the editor can choose.
"""

import logging
from typing import Any, Mapping, Optional, Union

from blogflow.collaboration.session_manager import SessionManager
from blogflow.exceptions import (
    EditConflictError,
    StorageUnavailableError,
    VersionNumberTakenError,
)
from blogflow.logging import ComponentLogger, LogComponent
from blogflow.versioning.conflict_resolver import ConflictResolver, parse_strategy
from blogflow.versioning.models import ConflictResolution, Version
from blogflow.versioning.version_store import VersionStore

logger = logging.getLogger(__name__)


class EditCoordinator:
    """Routes edits through direct versioning or a three-way merge.

    Args:
        version_store: Version Store.
        sessions: Session Manager used to count active editors.
        resolver: Conflict Resolver (built from *version_store* when
            omitted).
    """

    def __init__(
        self,
        version_store: VersionStore,
        sessions: SessionManager,
        resolver: Optional[ConflictResolver] = None,
    ) -> None:
        self.version_store = version_store
        self.sessions = sessions
        self.resolver = resolver or ConflictResolver(version_store)
        self.log = ComponentLogger(LogComponent.EDIT_COORDINATOR)

    async def save_edit(
        self,
        post_id: str,
        fields: Mapping[str, Any],
        author_id: str,
        base_version_id: Optional[str] = None,
        strategy: Optional[Union[str, ConflictResolution]] = None,
        manual_choices: Optional[Mapping[str, Any]] = None,
    ) -> Version:
        """Persist an edit as a new version.

        Args:
            post_id: Post being edited.
            fields: Changed field values.
            author_id: Editing user.
            base_version_id: Version the editor started from.
            strategy: How to resolve conflicts with concurrent edits.
            manual_choices: Per-field choices for a manual strategy.

        Returns:
            The new version.

        Raises:
            NoChangeError: If the edit changes nothing.
            EditConflictError: If concurrent edits overlap and no strategy
                was given.
            ManualResolutionRequiredError: If a manual merge lacks choices.
            StorageUnavailableError: If the post kept moving on every attempt.
        """
        if strategy is not None:
            strategy = parse_strategy(strategy)

        attempts = self.version_store.settings.version_create_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._route_edit(
                    post_id, fields, author_id, base_version_id, strategy, manual_choices
                )
            except VersionNumberTakenError:
                # Another editor saved first; route again against the new latest.
                logger.info(
                    "[EDIT] Post %s moved during save (attempt %d/%d), re-checking",
                    post_id, attempt, attempts,
                )

        raise StorageUnavailableError(
            f"Could not save edit to post {post_id} after {attempts} attempts"
        )

    async def _route_edit(
        self,
        post_id: str,
        fields: Mapping[str, Any],
        author_id: str,
        base_version_id: Optional[str],
        strategy: Optional[ConflictResolution],
        manual_choices: Optional[Mapping[str, Any]],
    ) -> Version:
        latest = await self.version_store.get_latest_version(post_id)
        if latest is None or base_version_id is None:
            return await self.version_store.create_version(
                post_id, fields, author_id, parent_version_id=base_version_id
            )
        if base_version_id == latest.id:
            return await self.version_store.create_version(
                post_id,
                fields,
                author_id,
                parent_version_id=base_version_id,
                expected_latest_id=latest.id,
            )

        editors = await self.sessions.active_editor_count(post_id)
        if editors < 2:
            logger.debug(
                "[EDIT] Single editor on post %s, saving on top of version %d",
                post_id, latest.version_number,
            )
            return await self.version_store.create_version(
                post_id, fields, author_id, parent_version_id=base_version_id
            )

        if strategy is None:
            base = await self.version_store.get_version(base_version_id, post_id=post_id)
            ancestor = await self.version_store.find_common_ancestor(
                post_id, base.id, latest.id
            )
            local = {**base.fields(), **{k: v for k, v in fields.items() if v is not None}}
            conflicts = self.resolver.detect(ancestor, local, latest)
            if conflicts:
                await self.log.warning(
                    f"Edit conflicts on {len(conflicts)} field(s)",
                    post_id=post_id,
                    user_id=author_id,
                    data={"fields": [c.field for c in conflicts]},
                )
                raise EditConflictError(
                    f"Edit overlaps changes in version {latest.version_number}",
                    conflicts=[c.to_dict() for c in conflicts],
                    remote_version_id=latest.id,
                )
            strategy = ConflictResolution.LOCAL

        return await self.resolver.commit(
            post_id,
            fields,
            base_version_id,
            author_id,
            strategy,
            manual_choices=manual_choices,
            retry_on_contention=False,
        )


__all__ = ["EditCoordinator"]
