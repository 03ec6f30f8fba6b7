"""
Collaborative Session Manager.

Tracks who is editing a post and holds a time-bounded edit lock:

    Empty --start--> Active(participants >= 1) --no heartbeat for TTL--> Expired

Every join/heartbeat sets ``last_activity = now`` and ``lock_expiry =
now + TTL``.  Expired sessions are excluded from every active query as
soon as their ``lock_expiry`` passes; ``cleanup_expired`` purges them
later.  Starting a session and membership changes go through atomic
storage operations (``start_post_session``, ``add_session_member``,
``remove_session_editor``) so concurrent starts see a single lock holder
and concurrent joins never lose each other's updates.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from blogflow.collaboration.models import CollaborativeSession
from blogflow.config import Settings, get_settings
from blogflow.database import SupabaseDB
from blogflow.exceptions import (
    EditLockedError,
    PermissionDeniedError,
    PostNotFoundError,
    SessionNotFoundError,
    ValidationError,
)
from blogflow.logging import ComponentLogger, LogComponent
from blogflow.utils import generate_id, utc_now

logger = logging.getLogger(__name__)


class SessionManager:
    """Starts, joins, refreshes and expires collaborative sessions.

    Args:
        db: Database client.
        settings: Runtime settings (``session_ttl_minutes``).
    """

    def __init__(self, db: SupabaseDB, settings: Optional[Settings] = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.ttl = timedelta(minutes=self.settings.session_ttl_minutes)
        self.log = ComponentLogger(LogComponent.SESSIONS)

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start_session(self, post_id: str, user_id: str) -> CollaborativeSession:
        """Start (or resume) editing a post.

        Returns the caller's existing active session, refreshed, when
        there is one.  Otherwise creates a new session with the caller
        as sole participant and active editor.

        Raises:
            PostNotFoundError: If the post does not exist.
            EditLockedError: If another user's session holds the lock;
                the error names the session to join instead.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if await self.db.get_post(post_id) is None:
            raise PostNotFoundError(f"Post {post_id} not found")

        now = utc_now()
        candidate = CollaborativeSession.new(generate_id(), post_id, user_id, self.ttl, now)
        result = await self.db.start_post_session(candidate.to_row(), now)
        session = CollaborativeSession.from_row(result["session"])

        if result["outcome"] == "locked":
            raise EditLockedError(
                f"Post {post_id} is being edited in session {session.id}",
                session_id=session.id,
            )
        if result["outcome"] == "resumed":
            logger.info("[SESSIONS] %s resumed session %s", user_id, session.id)
            return session

        logger.info("[SESSIONS] %s started session %s on post %s", user_id, session.id, post_id)
        await self.log.info(
            "Session started",
            post_id=post_id,
            user_id=user_id,
            data={"session_id": session.id},
        )
        return session

    async def join_session(self, session_id: str, user_id: str) -> CollaborativeSession:
        """Add *user_id* to an active session's participants and editors.

        Raises:
            SessionNotFoundError: If the session is unknown or expired.
        """
        if not user_id:
            raise ValidationError("user_id is required")

        session = await self._add_member(session_id, user_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found or expired")

        logger.info("[SESSIONS] %s joined session %s", user_id, session_id)
        await self.log.info(
            "Session joined",
            post_id=session.post_id,
            user_id=user_id,
            data={"session_id": session_id, "editors": len(session.active_editors)},
        )
        return session

    async def heartbeat(self, session_id: str, user_id: str) -> CollaborativeSession:
        """Refresh the session's activity on behalf of an active editor.

        Raises:
            SessionNotFoundError: If the session is unknown or expired.
            PermissionDeniedError: If *user_id* is not an active editor.
        """
        now = utc_now()
        row = await self.db.touch_session(session_id, user_id, now, now + self.ttl)
        if row is not None:
            return CollaborativeSession.from_row(row)

        existing = await self._get_live_session(session_id)
        if user_id not in existing.active_editors:
            raise PermissionDeniedError(
                f"User {user_id} is not an active editor of session {session_id}"
            )
        # Editor was present but the row moved underneath; report current state.
        return existing

    async def leave_session(self, session_id: str, user_id: str) -> CollaborativeSession:
        """Remove *user_id* from the session's active editors.

        The user stays a participant and may rejoin.

        Raises:
            SessionNotFoundError: If the session is unknown or expired.
        """
        row = await self.db.remove_session_editor(session_id, user_id, utc_now())
        if row is None:
            raise SessionNotFoundError(f"Session {session_id} not found or expired")

        session = CollaborativeSession.from_row(row)
        logger.info("[SESSIONS] %s left session %s", user_id, session_id)
        return session

    # ================================================================
    # QUERIES
    # ================================================================

    async def get_session(self, session_id: str) -> CollaborativeSession:
        """Load an active session.

        Raises:
            SessionNotFoundError: If the session is unknown or expired.
        """
        return await self._get_live_session(session_id)

    async def get_active_sessions(self, post_id: str) -> List[CollaborativeSession]:
        """Return the post's sessions whose lock has not expired."""
        now = utc_now()
        rows = await self.db.get_active_session_rows(post_id, now)
        sessions = [CollaborativeSession.from_row(row) for row in rows]
        return [s for s in sessions if not s.is_expired(now)]

    async def active_editor_count(self, post_id: str) -> int:
        """Count distinct active editors across the post's live sessions."""
        editors = set()
        for session in await self.get_active_sessions(post_id):
            editors.update(session.active_editors)
        return len(editors)

    # ================================================================
    # CLEANUP
    # ================================================================

    async def cleanup_expired(self) -> int:
        """Delete every expired session.

        Idempotent; concurrent sweeps each delete a disjoint subset.

        Returns:
            Number of sessions this call deleted.
        """
        async with self.log.timed("Session cleanup sweep"):
            removed = await self.db.delete_expired_sessions(utc_now())

        if removed:
            logger.info("[SESSIONS] Removed %d expired session(s)", removed)
        return removed

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    async def _add_member(
        self, session_id: str, user_id: str
    ) -> Optional[CollaborativeSession]:
        now = utc_now()
        row = await self.db.add_session_member(session_id, user_id, now, now + self.ttl)
        return CollaborativeSession.from_row(row) if row else None

    async def _get_live_session(self, session_id: str) -> CollaborativeSession:
        row = await self.db.get_session_row(session_id)
        if row is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        session = CollaborativeSession.from_row(row)
        if session.is_expired():
            raise SessionNotFoundError(f"Session {session_id} has expired")
        return session


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = ["SessionManager"]
