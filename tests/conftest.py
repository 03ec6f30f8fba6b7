"""Shared fixtures for the blogflow test suite."""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from blogflow.config import Settings, reset_settings
from blogflow.exceptions import VersionNumberTakenError
from blogflow.logging import init_logger
from blogflow.services import build_services
from blogflow.utils import parse_timestamp


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear service keys and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "SITE_URL",
        "NOTIFICATION_SERVICE_URL",
        "NOTIFICATION_API_KEY",
        "CRON_SECRET",
        "SESSION_TTL_MINUTES",
        "QUEUE_MAX_ATTEMPTS",
        "STUCK_TIMEOUT_MINUTES",
        "SITEMAP_BUCKET",
        "LOG_LEVEL",
        "LOG_DIR",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def _workflow_logger(tmp_path):
    """Route the structured workflow log to a temporary directory."""
    return init_logger(log_dir=str(tmp_path / "logs"))


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client.

    ``table_mock.result`` is what ``execute()`` returns; assign
    ``table_mock.result.data`` to control query results.
    """
    client = MagicMock()
    table_mock = MagicMock()
    for method in (
        "select", "insert", "update", "delete", "eq", "gt", "gte", "lt",
        "lte", "order", "limit", "range", "single", "contains",
    ):
        getattr(table_mock, method).return_value = table_mock

    table_mock.result = MagicMock(data=[], count=0)
    table_mock.execute = AsyncMock(side_effect=lambda: table_mock.result)
    client.table.return_value = table_mock

    rpc_mock = MagicMock()
    rpc_mock.result = MagicMock(data=[])
    rpc_mock.execute = AsyncMock(side_effect=lambda: rpc_mock.result)
    client.rpc.return_value = rpc_mock

    client.table_mock = table_mock
    client.rpc_mock = rpc_mock
    return client


# ---------------------------------------------------------------------------
# In-memory storage double
# ---------------------------------------------------------------------------
class InMemoryDB:
    """Implements the ``SupabaseDB`` method surface over dicts.

    Each method yields to the event loop once before touching state, so
    ``asyncio.gather`` interleaves concurrent callers; the check-and-write
    part of every conditional method runs without yielding, like the
    single SQL statement it stands in for.

    ``fail_on[method_name] = exc`` makes a method raise ``exc``.
    """

    def __init__(self) -> None:
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.versions: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.queue: Dict[str, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}
        self.events: List[Dict[str, Any]] = []
        self.workflow_logs: List[Dict[str, Any]] = []
        self.uploads: Dict[str, bytes] = {}
        self.fail_on: Dict[str, BaseException] = {}
        self.calls: List[str] = []

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        await asyncio.sleep(0)
        if name in self.fail_on:
            raise self.fail_on[name]

    @staticmethod
    def _ts(value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    @staticmethod
    def _iso(value: Any) -> Any:
        return value.isoformat() if isinstance(value, datetime) else value

    # -- seeding helpers ----------------------------------------------------

    def add_post(self, post_id: str, **fields: Any) -> Dict[str, Any]:
        row = {
            "id": post_id,
            "slug": fields.pop("slug", post_id),
            "title": "A post",
            "content": "Body text",
            "excerpt": "",
            "status": "draft",
            "published_at": None,
            "updated_at": "2025-06-01T00:00:00+00:00",
        }
        row.update(fields)
        self.posts[post_id] = row
        return row

    def add_user(self, user_id: str, token: str, role: Optional[str]) -> None:
        self.tokens[token] = user_id
        if role is not None:
            self.profiles[user_id] = {"id": user_id, "role": role}

    # -- conditional writes -------------------------------------------------

    async def compare_and_swap(self, table, row_id, column, expected, updates):
        await self._enter("compare_and_swap")
        rows = {"publishing_queue": self.queue, "collaborative_sessions": self.sessions,
                "posts": self.posts}[table]
        row = rows.get(row_id)
        if row is None or row.get(column) != expected:
            return None
        row.update({k: self._iso(v) for k, v in updates.items()})
        return copy.deepcopy(row)

    # -- posts ----------------------------------------------------------------

    async def get_post(self, post_id):
        await self._enter("get_post")
        row = self.posts.get(post_id)
        return copy.deepcopy(row) if row else None

    async def update_post(self, post_id, updates):
        await self._enter("update_post")
        row = self.posts.get(post_id)
        if row is None:
            return None
        row.update(updates)
        return copy.deepcopy(row)

    async def get_published_posts(self):
        await self._enter("get_published_posts")
        return [copy.deepcopy(p) for p in self.posts.values() if p.get("status") == "published"]

    async def delete_post(self, post_id):
        await self._enter("delete_post")
        return self.posts.pop(post_id, None) is not None

    # -- versions -------------------------------------------------------------

    async def insert_version(self, row):
        await self._enter("insert_version")
        for existing in self.versions.values():
            if (existing["post_id"] == row["post_id"]
                    and existing["version_number"] == row["version_number"]):
                raise VersionNumberTakenError(row["post_id"], row["version_number"])
        self.versions[row["id"]] = copy.deepcopy(row)
        return copy.deepcopy(row)

    async def get_version_row(self, version_id):
        await self._enter("get_version_row")
        row = self.versions.get(version_id)
        return copy.deepcopy(row) if row else None

    def _post_versions(self, post_id):
        rows = [v for v in self.versions.values() if v["post_id"] == post_id]
        return sorted(rows, key=lambda v: v["version_number"], reverse=True)

    async def get_latest_version_row(self, post_id):
        await self._enter("get_latest_version_row")
        rows = self._post_versions(post_id)
        return copy.deepcopy(rows[0]) if rows else None

    async def get_version_rows(self, post_id, limit=None):
        await self._enter("get_version_rows")
        rows = self._post_versions(post_id)
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(r) for r in rows]

    async def get_published_version_row(self, post_id):
        await self._enter("get_published_version_row")
        for row in self._post_versions(post_id):
            if row.get("is_published"):
                return copy.deepcopy(row)
        return None

    async def set_published_version(self, post_id, version_id):
        await self._enter("set_published_version")
        target = self.versions.get(version_id)
        if target is None or target["post_id"] != post_id:
            return False
        for row in self._post_versions(post_id):
            row["is_published"] = row["id"] == version_id
        return True

    async def flag_versions_post_deleted(self, post_id):
        await self._enter("flag_versions_post_deleted")
        rows = self._post_versions(post_id)
        for row in rows:
            row["post_deleted"] = True
        return len(rows)

    # -- sessions -------------------------------------------------------------

    async def start_post_session(self, row, now):
        await self._enter("start_post_session")
        user_id = row["participants"][0]
        live = sorted(
            (s for s in self.sessions.values()
             if s["post_id"] == row["post_id"] and self._ts(s["lock_expiry"]) > now),
            key=lambda s: s["last_activity"],
            reverse=True,
        )
        for session in live:
            if user_id in session["participants"]:
                if user_id not in session["active_editors"]:
                    session["active_editors"].append(user_id)
                session["last_activity"] = row["last_activity"]
                session["lock_expiry"] = row["lock_expiry"]
                return {"outcome": "resumed", "session": copy.deepcopy(session)}
        for session in live:
            if session["active_editors"]:
                return {"outcome": "locked", "session": copy.deepcopy(session)}
        self.sessions[row["id"]] = copy.deepcopy(row)
        return {"outcome": "created", "session": copy.deepcopy(row)}

    async def get_session_row(self, session_id):
        await self._enter("get_session_row")
        row = self.sessions.get(session_id)
        return copy.deepcopy(row) if row else None

    async def get_active_session_rows(self, post_id, now):
        await self._enter("get_active_session_rows")
        return [
            copy.deepcopy(s) for s in self.sessions.values()
            if s["post_id"] == post_id and self._ts(s["lock_expiry"]) > now
        ]

    async def add_session_member(self, session_id, user_id, last_activity, lock_expiry):
        await self._enter("add_session_member")
        row = self.sessions.get(session_id)
        if row is None or self._ts(row["lock_expiry"]) <= last_activity:
            return None
        for key in ("participants", "active_editors"):
            if user_id not in row[key]:
                row[key].append(user_id)
        row["last_activity"] = last_activity.isoformat()
        row["lock_expiry"] = lock_expiry.isoformat()
        return copy.deepcopy(row)

    async def remove_session_editor(self, session_id, user_id, last_activity):
        await self._enter("remove_session_editor")
        row = self.sessions.get(session_id)
        if row is None or self._ts(row["lock_expiry"]) <= last_activity:
            return None
        row["active_editors"] = [u for u in row["active_editors"] if u != user_id]
        return copy.deepcopy(row)

    async def touch_session(self, session_id, user_id, last_activity, lock_expiry):
        await self._enter("touch_session")
        row = self.sessions.get(session_id)
        if (row is None or user_id not in row["active_editors"]
                or self._ts(row["lock_expiry"]) <= last_activity):
            return None
        row["last_activity"] = last_activity.isoformat()
        row["lock_expiry"] = lock_expiry.isoformat()
        return copy.deepcopy(row)

    async def delete_expired_sessions(self, now):
        await self._enter("delete_expired_sessions")
        expired = [sid for sid, s in self.sessions.items() if self._ts(s["lock_expiry"]) < now]
        for sid in expired:
            del self.sessions[sid]
        return len(expired)

    async def delete_sessions_for_post(self, post_id):
        await self._enter("delete_sessions_for_post")
        doomed = [sid for sid, s in self.sessions.items() if s["post_id"] == post_id]
        for sid in doomed:
            del self.sessions[sid]
        return len(doomed)

    # -- publishing queue -----------------------------------------------------

    async def insert_queue_item(self, row):
        await self._enter("insert_queue_item")
        self.queue[row["id"]] = copy.deepcopy(row)
        return copy.deepcopy(row)

    async def get_queue_item(self, queue_id):
        await self._enter("get_queue_item")
        row = self.queue.get(queue_id)
        return copy.deepcopy(row) if row else None

    async def get_due_queue_items(self, now):
        await self._enter("get_due_queue_items")
        rows = [
            q for q in self.queue.values()
            if q["status"] == "pending" and self._ts(q["scheduled_for"]) <= now
        ]
        return [copy.deepcopy(q) for q in sorted(rows, key=lambda q: q["scheduled_for"])]

    async def get_stuck_queue_items(self, cutoff):
        await self._enter("get_stuck_queue_items")
        return [
            copy.deepcopy(q) for q in self.queue.values()
            if q["status"] == "processing"
            and q.get("claimed_at") and self._ts(q["claimed_at"]) <= cutoff
        ]

    async def list_queue_items(self, status=None, limit=50):
        await self._enter("list_queue_items")
        rows = [q for q in self.queue.values() if status is None or q["status"] == status]
        rows = sorted(rows, key=lambda q: q["scheduled_for"])[:limit]
        return [copy.deepcopy(q) for q in rows]

    async def delete_queue_item_if_status(self, queue_id, status):
        await self._enter("delete_queue_item_if_status")
        row = self.queue.get(queue_id)
        if row is None or row["status"] != status:
            return False
        del self.queue[queue_id]
        return True

    async def delete_pending_queue_items_for_post(self, post_id):
        await self._enter("delete_pending_queue_items_for_post")
        doomed = [
            qid for qid, q in self.queue.items()
            if q["post_id"] == post_id and q["status"] == "pending"
        ]
        for qid in doomed:
            del self.queue[qid]
        return len(doomed)

    # -- profiles, analytics, logs, storage, auth -----------------------------

    async def get_profile_role(self, user_id):
        await self._enter("get_profile_role")
        profile = self.profiles.get(user_id)
        return profile.get("role") if profile else None

    async def track_event(self, event):
        await self._enter("track_event")
        self.events.append(copy.deepcopy(event))

    async def save_workflow_log(self, entry):
        await self._enter("save_workflow_log")
        self.workflow_logs.append(entry)

    async def upload_public_file(self, bucket, path, content, content_type):
        await self._enter("upload_public_file")
        self.uploads[f"{bucket}/{path}"] = content
        return f"https://storage.example.com/{bucket}/{path}"

    async def get_user_id_for_token(self, token):
        await self._enter("get_user_id_for_token")
        return self.tokens.get(token)


@pytest.fixture
def db():
    """In-memory database with no rows."""
    return InMemoryDB()


@pytest.fixture
def settings():
    """Settings with a fixed site URL and cron secret."""
    return Settings(site_url="https://blog.example.com/", cron_secret="cron-secret")


@pytest.fixture
def services(db, settings):
    """All services wired around the in-memory database."""
    return build_services(db, settings)
