"""
Tests for the blogflow HTTP API (FastAPI TestClient over in-memory storage).

Covers:
    - Envelope shape and error code -> HTTP status mapping
    - Bearer-token identity and role checks
    - Version, session, publishing and admin routes
    - Cron-secret protected sweeps
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from blogflow.api.app import create_app
from blogflow.utils import utc_now

AUTHOR = {"Authorization": "Bearer t-author"}
AUTHOR_2 = {"Authorization": "Bearer t-author-2"}
ADMIN = {"Authorization": "Bearer t-admin"}
READER = {"Authorization": "Bearer t-reader"}


@pytest.fixture
def client(services, db):
    db.add_user("u-author", "t-author", "author")
    db.add_user("u-author-2", "t-author-2", "author")
    db.add_user("u-admin", "t-admin", "admin")
    db.add_user("u-reader", "t-reader", "reader")
    db.add_post("p-1", slug="hello", title="Hello", content="Body")
    return TestClient(create_app(services=services))


def _create_version(client, headers=AUTHOR, **body):
    payload = {"post_id": "p-1", **body}
    return client.post("/versions", json=payload, headers=headers)


# ===========================================================================
# Envelope and auth
# ===========================================================================


class TestEnvelopeAndAuth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["success"] is True
        assert body["data"]["status"] == "ok"

    def test_missing_token(self, client):
        response = client.get("/versions/p-1/history")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Missing bearer token",
            "code": "Unauthorized",
        }

    def test_unknown_token(self, client):
        response = client.get("/versions/p-1/history", headers={"Authorization": "Bearer bogus"})
        assert response.status_code == 401

    def test_reader_cannot_edit(self, client):
        response = _create_version(client, headers=READER, title="x")
        assert response.status_code == 403
        assert response.json()["code"] == "PermissionDenied"

    def test_reader_can_read(self, client):
        assert client.get("/versions/p-1/history", headers=READER).status_code == 200

    def test_request_validation_uses_envelope(self, client):
        response = client.post("/versions", json={"title": "no post"}, headers=AUTHOR)
        body = response.json()
        assert response.status_code == 400
        assert body["code"] == "ValidationError"
        assert any("post_id" in err for err in body["errors"])


# ===========================================================================
# Versions
# ===========================================================================


class TestVersionRoutes:
    def test_create_and_read(self, client):
        created = _create_version(client, title="Hello", content="Body")
        assert created.status_code == 201
        version = created.json()["data"]
        assert version["version_number"] == 1
        assert version["author_id"] == "u-author"

        latest = client.get("/versions/p-1/latest", headers=AUTHOR).json()["data"]
        assert latest["id"] == version["id"]

    def test_no_change(self, client):
        _create_version(client, title="Hello")
        response = _create_version(client, title="Hello")
        assert response.status_code == 400
        assert response.json()["code"] == "NoChange"

    def test_latest_without_versions(self, client):
        response = client.get("/versions/p-1/latest", headers=AUTHOR)
        assert response.status_code == 404
        assert response.json()["code"] == "VersionNotFound"

    def test_history_diff_and_rollback(self, client):
        v1 = _create_version(client, title="First", content="one two").json()["data"]
        v2 = _create_version(client, title="Second").json()["data"]

        history = client.get("/versions/p-1/history?limit=1", headers=AUTHOR).json()["data"]
        assert [v["id"] for v in history] == [v2["id"]]

        diff = client.get(
            f"/versions/p-1/diff?from={v1['id']}&to={v2['id']}", headers=AUTHOR
        ).json()["data"]
        assert diff["modified"] == ["title"]

        rolled = client.post(
            "/versions/p-1/rollback", json={"version_id": v1["id"]}, headers=AUTHOR
        )
        assert rolled.status_code == 201
        assert rolled.json()["data"]["title"] == "First"
        assert rolled.json()["data"]["version_number"] == 3

    def test_conflict_response(self, client):
        base = _create_version(client, title="A").json()["data"]
        session = client.post("/sessions/start", json={"post_id": "p-1"}, headers=AUTHOR)
        client.post(f"/sessions/{session.json()['data']['id']}/join", headers=AUTHOR_2)
        remote = _create_version(
            client, headers=AUTHOR_2, title="B", base_version_id=base["id"]
        ).json()["data"]

        response = _create_version(client, title="C", base_version_id=base["id"])

        body = response.json()
        assert response.status_code == 409
        assert body["code"] == "EditConflict"
        assert body["errors"][0]["field"] == "title"
        assert body["data"] == {"remote_version_id": remote["id"]}

    def test_manual_merge_requires_choices(self, client):
        base = _create_version(client, title="A").json()["data"]
        _create_version(client, headers=AUTHOR_2, title="B")

        response = client.post(
            "/versions/p-1/merge",
            json={"base_version_id": base["id"], "strategy": "manual", "title": "C"},
            headers=AUTHOR,
        )

        body = response.json()
        assert response.status_code == 409
        assert body["code"] == "ManualResolutionRequired"
        assert body["data"]["choices"] == {"title": {"local": "C", "remote": "B"}}


# ===========================================================================
# Sessions
# ===========================================================================


class TestSessionRoutes:
    def test_lifecycle(self, client):
        started = client.post("/sessions/start", json={"post_id": "p-1"}, headers=AUTHOR)
        assert started.status_code == 201
        session_id = started.json()["data"]["id"]

        joined = client.post(f"/sessions/{session_id}/join", headers=AUTHOR_2).json()["data"]
        assert joined["active_editors"] == ["u-author", "u-author-2"]

        assert client.post(f"/sessions/{session_id}/heartbeat", headers=AUTHOR).status_code == 200

        left = client.post(f"/sessions/{session_id}/leave", headers=AUTHOR_2).json()["data"]
        assert left["active_editors"] == ["u-author"]

        active = client.get("/sessions/p-1/active", headers=READER).json()["data"]
        assert [s["id"] for s in active] == [session_id]

    def test_edit_locked(self, client):
        started = client.post("/sessions/start", json={"post_id": "p-1"}, headers=AUTHOR)

        response = client.post("/sessions/start", json={"post_id": "p-1"}, headers=AUTHOR_2)

        assert response.status_code == 423
        assert response.json()["data"]["session_id"] == started.json()["data"]["id"]

    def test_unknown_session(self, client):
        response = client.post("/sessions/s-missing/join", headers=AUTHOR)
        assert response.status_code == 404
        assert response.json()["code"] == "SessionNotFound"


# ===========================================================================
# Publishing
# ===========================================================================


class TestPublishingRoutes:
    def test_publish_now(self, client, db):
        response = client.post("/publish/p-1", headers=AUTHOR)
        body = response.json()
        assert response.status_code == 200
        assert body["data"]["published_url"] == "https://blog.example.com/blog/hello"
        assert "errors" not in body
        assert db.posts["p-1"]["status"] == "published"

    def test_publish_with_warnings(self, client):
        response = client.post(
            "/publish/p-1", json={"notify_subscribers": True}, headers=AUTHOR
        )
        body = response.json()
        assert body["success"] is True
        assert len(body["errors"]) == 1

    def test_publish_incomplete(self, client, db):
        db.posts["p-1"]["content"] = ""
        response = client.post("/publish/p-1", headers=AUTHOR)
        assert response.status_code == 422
        assert response.json()["code"] == "IncompletePost"

    def test_schedule_in_past(self, client):
        past = (utc_now() - timedelta(hours=1)).isoformat()
        response = client.post(
            "/publish/p-1/schedule", json={"scheduled_for": past}, headers=AUTHOR
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidSchedule"

    def test_schedule_list_cancel(self, client):
        when = (utc_now() + timedelta(hours=1)).isoformat()
        scheduled = client.post(
            "/publish/p-1/schedule",
            json={"scheduled_for": when, "share_on_social": True},
            headers=AUTHOR,
        )
        assert scheduled.status_code == 201
        item = scheduled.json()["data"]
        assert item["status"] == "pending"
        assert item["attempts"] == 0

        queue = client.get("/publish/queue?status=pending", headers=READER).json()["data"]
        assert [q["id"] for q in queue] == [item["id"]]

        cancelled = client.delete(f"/publish/queue/{item['id']}", headers=AUTHOR)
        assert cancelled.json()["data"] == {"id": item["id"], "cancelled": True}

        again = client.delete(f"/publish/queue/{item['id']}", headers=AUTHOR)
        assert again.status_code == 404
        assert again.json()["code"] == "QueueItemNotFound"


# ===========================================================================
# Admin and sweeps
# ===========================================================================


class TestAdminRoutes:
    def test_delete_requires_admin(self, client):
        assert client.delete("/posts/p-1", headers=AUTHOR).status_code == 403

    def test_delete_post(self, client, db):
        _create_version(client, title="Kept")
        response = client.delete("/posts/p-1", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["data"]["versions_flagged"] == 1
        assert "p-1" not in db.posts

    def test_sweep_requires_secret(self, client):
        response = client.post("/sweeps/publishing", headers={"X-Cron-Secret": "wrong"})
        assert response.status_code == 401

    def test_publishing_sweep(self, client, db):
        when = (utc_now() + timedelta(hours=1)).isoformat()
        item = client.post(
            "/publish/p-1/schedule", json={"scheduled_for": when}, headers=AUTHOR
        ).json()["data"]
        db.queue[item["id"]]["scheduled_for"] = (utc_now() - timedelta(minutes=1)).isoformat()

        response = client.post("/sweeps/publishing", headers={"X-Cron-Secret": "cron-secret"})

        data = response.json()["data"]
        assert data["recovered"] == 0
        assert data["published"] == [item["id"]]

    def test_sessions_sweep(self, client):
        response = client.post("/sweeps/sessions", headers={"X-Cron-Secret": "cron-secret"})
        assert response.json() == {"success": True, "data": {"removed": 0}}
