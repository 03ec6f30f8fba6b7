"""
Unified async database client for the content workflow.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Usage::

    from blogflow.database import SupabaseDB, get_db

    # In async context:
    db = await get_db()
    row = await db.get_latest_version_row(post_id)

Mutual exclusion never relies on read-modify-write from Python.  Queue
status moves through :meth:`SupabaseDB.compare_and_swap` (``UPDATE ...
WHERE id = ? AND status = expected``), cancellation through a conditional
delete, and session membership through the ``add_session_member`` /
``remove_session_editor`` RPC functions which update the arrays in a
single statement (see ``supabase/migrations``).

Transport failures and PostgREST errors are raised as
:class:`~blogflow.exceptions.StorageUnavailableError`.
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, AuthApiError, create_async_client

from blogflow.exceptions import (
    DatabaseError,
    StorageUnavailableError,
    ValidationError,
    VersionNumberTakenError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

# Tables whose rows may be moved through compare_and_swap
CAS_TABLES = frozenset({"publishing_queue", "collaborative_sessions", "posts"})


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Args:
        value: The value to check.
        name: Human-readable field name used in error messages.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def _iso(value: Union[datetime, str]) -> str:
    return value.isoformat() if isinstance(value, datetime) else value


def storage_operation(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Translate client-level failures into ``StorageUnavailableError``.

    Validation and database errors raised by the method itself pass
    through unchanged.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except (ValidationError, DatabaseError):
            raise
        except APIError as exc:
            logger.warning("[DB] %s failed: %s", func.__name__, exc)
            raise StorageUnavailableError(
                f"{func.__name__} failed: {getattr(exc, 'message', None) or exc}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("[DB] %s transport error: %s", func.__name__, exc)
            raise StorageUnavailableError(
                f"{func.__name__} could not reach the database: {exc}"
            ) from exc

    return wrapper


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key for full server-side access

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for the content workflow.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # CONDITIONAL WRITES
    # -----------------------------------------------------------------

    @storage_operation
    async def compare_and_swap(
        self,
        table: str,
        row_id: str,
        column: str,
        expected: Any,
        updates: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Update a row only if ``column`` still holds ``expected``.

        Runs a single ``UPDATE table SET ... WHERE id = row_id AND column =
        expected``; Postgres evaluates the predicate and the write
        atomically, so two concurrent callers cannot both succeed.

        Args:
            table: Table name (must be one of ``CAS_TABLES``).
            row_id: Primary key of the row.
            column: Column holding the expected value.
            expected: Value the column must hold for the swap to happen.
            updates: Column values to write.

        Returns:
            The updated row, or ``None`` when the predicate did not match
            (the row changed underneath, or does not exist).
        """
        if table not in CAS_TABLES:
            raise ValidationError(f"compare_and_swap not allowed on table '{table}'")
        validate_not_empty(row_id, "row_id")
        if not updates:
            raise ValidationError("updates cannot be empty")

        result = await (
            self.client.table(table)
            .update(updates)
            .eq("id", row_id)
            .eq(column, expected)
            .execute()
        )
        return result.data[0] if result.data else None

    # -----------------------------------------------------------------
    # POSTS
    # -----------------------------------------------------------------

    @storage_operation
    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Get a post by ID.

        Returns:
            Post dict or ``None`` if not found.
        """
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("posts")
            .select("*")
            .eq("id", post_id)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def update_post(
        self, post_id: str, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Update columns of a post.

        Returns:
            The updated row, or ``None`` if the post does not exist.
        """
        validate_not_empty(post_id, "post_id")
        if not updates:
            raise ValidationError("updates cannot be empty")

        result = await (
            self.client.table("posts")
            .update(updates)
            .eq("id", post_id)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def get_published_posts(self) -> List[Dict[str, Any]]:
        """Get the published posts needed to render the sitemap.

        Returns:
            Rows with ``id``, ``slug``, ``updated_at`` and
            ``published_at``, newest first.
        """
        result = await (
            self.client.table("posts")
            .select("id, slug, updated_at, published_at")
            .eq("status", "published")
            .order("published_at", desc=True)
            .execute()
        )
        return result.data

    @storage_operation
    async def delete_post(self, post_id: str) -> bool:
        """Delete a post row.

        Returns:
            ``True`` if a row was deleted.
        """
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("posts")
            .delete()
            .eq("id", post_id)
            .execute()
        )
        return bool(result.data)

    # -----------------------------------------------------------------
    # POST VERSIONS
    # -----------------------------------------------------------------

    @storage_operation
    async def insert_version(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a version row.

        The ``(post_id, version_number)`` unique constraint rejects a
        second writer that computed the same next number.

        Returns:
            The inserted row.

        Raises:
            ValidationError: On missing required fields.
            VersionNumberTakenError: When the version number is taken.
            DatabaseError: When the insert returns no data.
        """
        if not row:
            raise ValidationError("version row cannot be None or empty")
        missing = {"id", "post_id", "version_number", "author_id"} - set(row.keys())
        if missing:
            raise ValidationError(f"version row missing required fields: {missing}")

        try:
            result = await self.client.table("post_versions").insert(row).execute()
        except APIError as exc:
            if getattr(exc, "code", None) == UNIQUE_VIOLATION:
                raise VersionNumberTakenError(
                    row["post_id"], row["version_number"]
                ) from exc
            raise
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    @storage_operation
    async def get_version_row(self, version_id: str) -> Optional[Dict[str, Any]]:
        """Get a version row by ID."""
        validate_not_empty(version_id, "version_id")

        result = await (
            self.client.table("post_versions")
            .select("*")
            .eq("id", version_id)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def get_latest_version_row(
        self, post_id: str
    ) -> Optional[Dict[str, Any]]:
        """Get the version with the highest ``version_number`` for a post."""
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("post_versions")
            .select("*")
            .eq("post_id", post_id)
            .order("version_number", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def get_version_rows(
        self, post_id: str, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get a post's versions ordered by ``version_number`` descending."""
        validate_not_empty(post_id, "post_id")

        query = (
            self.client.table("post_versions")
            .select("*")
            .eq("post_id", post_id)
            .order("version_number", desc=True)
        )
        if limit is not None:
            validate_positive(limit, "limit")
            query = query.limit(limit)

        result = await query.execute()
        return result.data

    @storage_operation
    async def get_published_version_row(
        self, post_id: str
    ) -> Optional[Dict[str, Any]]:
        """Get the version currently flagged ``is_published`` for a post."""
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("post_versions")
            .select("*")
            .eq("post_id", post_id)
            .eq("is_published", True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def set_published_version(self, post_id: str, version_id: str) -> bool:
        """Move the post's single ``is_published`` flag to *version_id*.

        Uses the ``set_published_version`` RPC so that clearing the old
        flag and setting the new one happen in one transaction.

        Returns:
            ``True`` if the version exists for the post and was flagged.
        """
        validate_not_empty(post_id, "post_id")
        validate_not_empty(version_id, "version_id")

        result = await self.client.rpc(
            "set_published_version",
            {"p_post_id": post_id, "p_version_id": version_id},
        ).execute()
        return bool(result.data)

    @storage_operation
    async def flag_versions_post_deleted(self, post_id: str) -> int:
        """Mark every version of a post as belonging to a deleted post.

        Returns:
            Number of versions flagged.
        """
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("post_versions")
            .update({"post_deleted": True})
            .eq("post_id", post_id)
            .execute()
        )
        return len(result.data or [])

    # -----------------------------------------------------------------
    # COLLABORATIVE SESSIONS
    # -----------------------------------------------------------------

    @storage_operation
    async def start_post_session(
        self, row: Dict[str, Any], now: datetime
    ) -> Dict[str, Any]:
        """Resume, refuse or create a post's edit session in one transaction.

        The ``start_post_session`` RPC holds a per-post advisory lock while
        it decides, so two users starting at once cannot both create a
        session.  Under the lock, in order:

        - a live session that already lists the user as a participant is
          refreshed (user re-added to the editors) -> ``"resumed"``;
        - a live session with active editors -> ``"locked"``;
        - otherwise *row* is inserted -> ``"created"``.

        Args:
            row: The session to create (``CollaborativeSession.to_row()``);
                its ``last_activity`` / ``lock_expiry`` are also used for
                the refresh.
            now: Sessions with ``lock_expiry`` at or before *now* are
                ignored.

        Returns:
            ``{"outcome": "resumed" | "locked" | "created", "session": row}``.

        Raises:
            ValidationError: On missing required fields.
            DatabaseError: When the RPC returns no data.
        """
        if not row:
            raise ValidationError("session row cannot be None or empty")
        missing = {"id", "post_id", "participants", "lock_expiry"} - set(row.keys())
        if missing:
            raise ValidationError(f"session row missing required fields: {missing}")

        result = await self.client.rpc(
            "start_post_session",
            {
                "p_session_id": row["id"],
                "p_post_id": row["post_id"],
                "p_user_id": row["participants"][0],
                "p_now": _iso(now),
                "p_last_activity": row.get("last_activity") or _iso(now),
                "p_lock_expiry": row["lock_expiry"],
            },
        ).execute()
        if not result.data:
            raise DatabaseError("start_post_session returned no data")
        return result.data

    @storage_operation
    async def get_session_row(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get a session row by ID (expired or not)."""
        validate_not_empty(session_id, "session_id")

        result = await (
            self.client.table("collaborative_sessions")
            .select("*")
            .eq("id", session_id)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def get_active_session_rows(
        self, post_id: str, now: datetime
    ) -> List[Dict[str, Any]]:
        """Get a post's sessions whose ``lock_expiry`` is after *now*."""
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("collaborative_sessions")
            .select("*")
            .eq("post_id", post_id)
            .gt("lock_expiry", _iso(now))
            .order("last_activity", desc=True)
            .execute()
        )
        return result.data

    @storage_operation
    async def add_session_member(
        self,
        session_id: str,
        user_id: str,
        last_activity: datetime,
        lock_expiry: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Atomically add *user_id* to a session's participants and editors.

        The ``add_session_member`` RPC performs the set-union and the
        activity refresh in one ``UPDATE`` and only touches sessions that
        have not expired at *last_activity*.

        Returns:
            The updated session row, or ``None`` when the session does
            not exist or has expired.
        """
        validate_not_empty(session_id, "session_id")
        validate_not_empty(user_id, "user_id")

        result = await self.client.rpc(
            "add_session_member",
            {
                "p_session_id": session_id,
                "p_user_id": user_id,
                "p_last_activity": _iso(last_activity),
                "p_lock_expiry": _iso(lock_expiry),
            },
        ).execute()
        return result.data[0] if result.data else None

    @storage_operation
    async def remove_session_editor(
        self,
        session_id: str,
        user_id: str,
        last_activity: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Atomically remove *user_id* from a session's active editors.

        Participants are kept; the session's ``lock_expiry`` is unchanged.

        Returns:
            The updated session row, or ``None`` when the session does
            not exist or has expired.
        """
        validate_not_empty(session_id, "session_id")
        validate_not_empty(user_id, "user_id")

        result = await self.client.rpc(
            "remove_session_editor",
            {
                "p_session_id": session_id,
                "p_user_id": user_id,
                "p_now": _iso(last_activity),
            },
        ).execute()
        return result.data[0] if result.data else None

    @storage_operation
    async def touch_session(
        self,
        session_id: str,
        user_id: str,
        last_activity: datetime,
        lock_expiry: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Refresh a session's activity if *user_id* is an active editor.

        Conditional on the session not having expired at
        *last_activity* and on ``active_editors`` containing *user_id*.

        Returns:
            The updated row, or ``None`` if the predicate did not match.
        """
        validate_not_empty(session_id, "session_id")
        validate_not_empty(user_id, "user_id")

        result = await (
            self.client.table("collaborative_sessions")
            .update({
                "last_activity": _iso(last_activity),
                "lock_expiry": _iso(lock_expiry),
            })
            .eq("id", session_id)
            .contains("active_editors", [user_id])
            .gt("lock_expiry", _iso(last_activity))
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def delete_expired_sessions(self, now: datetime) -> int:
        """Delete every session whose ``lock_expiry`` is before *now*.

        Idempotent: rows already removed by a concurrent sweep are simply
        not matched.

        Returns:
            Number of sessions deleted by this call.
        """
        result = await (
            self.client.table("collaborative_sessions")
            .delete()
            .lt("lock_expiry", _iso(now))
            .execute()
        )
        return len(result.data or [])

    @storage_operation
    async def delete_sessions_for_post(self, post_id: str) -> int:
        """Delete all sessions of a post.

        Returns:
            Number of sessions deleted.
        """
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("collaborative_sessions")
            .delete()
            .eq("post_id", post_id)
            .execute()
        )
        return len(result.data or [])

    # -----------------------------------------------------------------
    # PUBLISHING QUEUE
    # -----------------------------------------------------------------

    @storage_operation
    async def insert_queue_item(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a publishing queue item.

        Raises:
            ValidationError: On missing required fields.
            DatabaseError: When the insert returns no data.
        """
        if not row:
            raise ValidationError("queue item cannot be None or empty")
        missing = {"id", "post_id", "scheduled_for", "status"} - set(row.keys())
        if missing:
            raise ValidationError(f"queue item missing required fields: {missing}")

        result = await self.client.table("publishing_queue").insert(row).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    @storage_operation
    async def get_queue_item(self, queue_id: str) -> Optional[Dict[str, Any]]:
        """Get a publishing queue item by ID."""
        validate_not_empty(queue_id, "queue_id")

        result = await (
            self.client.table("publishing_queue")
            .select("*")
            .eq("id", queue_id)
            .execute()
        )
        return result.data[0] if result.data else None

    @storage_operation
    async def get_due_queue_items(self, now: datetime) -> List[Dict[str, Any]]:
        """Get ``pending`` items whose ``scheduled_for`` is at or before *now*.

        Returns:
            Rows ordered by ``scheduled_for`` ascending.
        """
        result = await (
            self.client.table("publishing_queue")
            .select("*")
            .eq("status", "pending")
            .lte("scheduled_for", _iso(now))
            .order("scheduled_for", desc=False)
            .execute()
        )
        return result.data

    @storage_operation
    async def get_stuck_queue_items(self, cutoff: datetime) -> List[Dict[str, Any]]:
        """Get ``processing`` items claimed at or before *cutoff*."""
        result = await (
            self.client.table("publishing_queue")
            .select("*")
            .eq("status", "processing")
            .lte("claimed_at", _iso(cutoff))
            .execute()
        )
        return result.data

    @storage_operation
    async def list_queue_items(
        self, status: Optional[str] = None, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """List queue items ordered by ``scheduled_for`` ascending."""
        validate_positive(limit, "limit")

        query = (
            self.client.table("publishing_queue")
            .select("*")
            .order("scheduled_for", desc=False)
            .limit(limit)
        )
        if status is not None:
            query = query.eq("status", status)

        result = await query.execute()
        return result.data

    @storage_operation
    async def delete_queue_item_if_status(self, queue_id: str, status: str) -> bool:
        """Delete a queue item only if it still has *status*.

        Returns:
            ``True`` if the row was deleted by this call.
        """
        validate_not_empty(queue_id, "queue_id")

        result = await (
            self.client.table("publishing_queue")
            .delete()
            .eq("id", queue_id)
            .eq("status", status)
            .execute()
        )
        return bool(result.data)

    @storage_operation
    async def delete_pending_queue_items_for_post(self, post_id: str) -> int:
        """Delete a post's ``pending`` queue items.

        Returns:
            Number of items deleted.
        """
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table("publishing_queue")
            .delete()
            .eq("post_id", post_id)
            .eq("status", "pending")
            .execute()
        )
        return len(result.data or [])

    # -----------------------------------------------------------------
    # PROFILES
    # -----------------------------------------------------------------

    @storage_operation
    async def get_profile_role(self, user_id: str) -> Optional[str]:
        """Get the ``role`` column of a user's profile, if any."""
        validate_not_empty(user_id, "user_id")

        result = await (
            self.client.table("profiles")
            .select("role")
            .eq("id", user_id)
            .execute()
        )
        return result.data[0].get("role") if result.data else None

    # -----------------------------------------------------------------
    # ANALYTICS
    # -----------------------------------------------------------------

    @storage_operation
    async def track_event(self, event: Dict[str, Any]) -> None:
        """Record an analytics event.

        Args:
            event: Event dict.  Must contain ``post_id`` and ``event_type``.
        """
        if not event:
            raise ValidationError("event cannot be None or empty")
        if "post_id" not in event or "event_type" not in event:
            raise ValidationError("event must have 'post_id' and 'event_type'")

        await self.client.table("analytics").insert(event).execute()

    # -----------------------------------------------------------------
    # WORKFLOW LOGS
    # -----------------------------------------------------------------

    @storage_operation
    async def save_workflow_log(self, entry: Dict[str, Any]) -> None:
        """Insert a structured workflow log entry."""
        if not entry:
            raise ValidationError("log entry cannot be None or empty")

        await self.client.table("workflow_logs").insert(entry).execute()

    # -----------------------------------------------------------------
    # STORAGE
    # -----------------------------------------------------------------

    @storage_operation
    async def upload_public_file(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str,
    ) -> str:
        """Upload (or overwrite) a file in a public storage bucket.

        Returns:
            The public URL of the file.
        """
        validate_not_empty(bucket, "bucket")
        validate_not_empty(path, "path")

        storage = self.client.storage.from_(bucket)
        await storage.upload(
            path,
            content,
            {"content-type": content_type, "upsert": "true"},
        )
        return await storage.get_public_url(path)

    # -----------------------------------------------------------------
    # AUTH
    # -----------------------------------------------------------------

    @storage_operation
    async def get_user_id_for_token(self, token: str) -> Optional[str]:
        """Resolve a Supabase access token to the user's ID.

        Returns:
            The user ID, or ``None`` when the token is invalid or expired.
        """
        validate_not_empty(token, "token")

        try:
            response = await self.client.auth.get_user(token)
        except AuthApiError as exc:
            if exc.status in (401, 403):
                return None
            raise
        if response is None or response.user is None:
            return None
        return response.user.id


# =============================================================================
# GLOBAL SINGLETON
# =============================================================================

_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Get the global async database instance.

    The first call creates the :class:`SupabaseDB` singleton; subsequent
    calls return the same instance.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            # Double-check after acquiring thread lock.
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            # Double-check after acquiring async lock.
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()

    return _db_instance


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SupabaseConfig",
    "SupabaseDB",
    "get_db",
    "storage_operation",
    "validate_not_empty",
    "validate_positive",
]
