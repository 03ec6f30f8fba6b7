"""
Tests for blogflow.versioning.version_store module.

Covers:
    - create_version: first version, carry-over, NoChange, validation
    - Contiguous version numbers, including under concurrent writers
    - Retry when a concurrent writer takes the next number
    - rollback_to_version
    - compare_versions, mark_published, find_common_ancestor
"""

import asyncio

import pytest

from blogflow.config import Settings
from blogflow.exceptions import (
    NoChangeError,
    NoCommonAncestorError,
    StorageUnavailableError,
    ValidationError,
    VersionNotFoundError,
    VersionNumberTakenError,
)
from blogflow.versioning import VersionStore


@pytest.fixture
def store(db, settings):
    return VersionStore(db, settings=settings)


# ===========================================================================
# create_version
# ===========================================================================


class TestCreateVersion:
    @pytest.mark.asyncio
    async def test_first_version(self, store):
        """The first version is number 1 with defaults for missing fields."""
        v1 = await store.create_version("p-1", {"title": "Hello"}, "u-1")

        assert v1.version_number == 1
        assert v1.title == "Hello"
        assert v1.content == ""
        assert v1.tags == []
        assert v1.parent_version_id is None
        assert [c.field for c in v1.changes] == ["initial"]

    @pytest.mark.asyncio
    async def test_unspecified_fields_carry_over(self, store):
        v1 = await store.create_version("p-1", {"title": "Hello", "content": "Body"}, "u-1")
        v2 = await store.create_version("p-1", {"title": "Hello again"}, "u-2")

        assert v2.version_number == 2
        assert v2.content == "Body"
        assert v2.parent_version_id == v1.id
        assert [c.field for c in v2.changes] == ["title"]
        assert v2.changes[0].old_value == "Hello"

    @pytest.mark.asyncio
    async def test_no_change_raises(self, store):
        await store.create_version("p-1", {"title": "Hello"}, "u-1")
        with pytest.raises(NoChangeError):
            await store.create_version("p-1", {"title": "Hello"}, "u-1")

    @pytest.mark.asyncio
    async def test_empty_first_version_raises(self, store):
        with pytest.raises(NoChangeError):
            await store.create_version("p-1", {}, "u-1")

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store):
        with pytest.raises(ValidationError, match="slug"):
            await store.create_version("p-1", {"slug": "x"}, "u-1")

    @pytest.mark.asyncio
    async def test_author_required(self, store):
        with pytest.raises(ValidationError, match="author_id"):
            await store.create_version("p-1", {"title": "x"}, "")

    @pytest.mark.asyncio
    async def test_parent_must_belong_to_post(self, store):
        other = await store.create_version("p-2", {"title": "Other"}, "u-1")
        with pytest.raises(VersionNotFoundError):
            await store.create_version("p-1", {"title": "x"}, "u-1", parent_version_id=other.id)


# ===========================================================================
# Version numbering under contention
# ===========================================================================


class TestVersionNumbering:
    @pytest.mark.asyncio
    async def test_numbers_are_contiguous(self, store):
        for i in range(5):
            await store.create_version("p-1", {"title": f"Title {i}"}, "u-1")

        history = await store.get_version_history("p-1")
        assert [v.version_number for v in history] == [5, 4, 3, 2, 1]

    @pytest.mark.asyncio
    async def test_concurrent_writers_get_distinct_numbers(self, store):
        """Writers racing for the same number retry until each has its own."""
        await store.create_version("p-1", {"title": "Base"}, "u-0")

        await asyncio.gather(
            store.create_version("p-1", {"content": "from u-1"}, "u-1"),
            store.create_version("p-1", {"excerpt": "from u-2"}, "u-2"),
        )

        numbers = sorted(v.version_number for v in await store.get_version_history("p-1"))
        assert numbers == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_retries_after_number_taken(self, store, db):
        await store.create_version("p-1", {"title": "Base"}, "u-0")
        real_insert = db.insert_version
        calls = []

        async def flaky_insert(row):
            calls.append(row["version_number"])
            if len(calls) == 1:
                raise VersionNumberTakenError("p-1", row["version_number"])
            return await real_insert(row)

        db.insert_version = flaky_insert

        v2 = await store.create_version("p-1", {"title": "Retry"}, "u-1")

        assert calls == [2, 2]
        assert v2.version_number == 2

    @pytest.mark.asyncio
    async def test_expected_latest_moved_raises(self, store):
        """A create pinned to a stale latest version is refused, not re-based."""
        v1 = await store.create_version("p-1", {"title": "A"}, "u-0")
        await store.create_version("p-1", {"title": "B"}, "u-1")

        with pytest.raises(VersionNumberTakenError):
            await store.create_version(
                "p-1", {"title": "C"}, "u-2", parent_version_id=v1.id, expected_latest_id=v1.id
            )

        assert len(await store.get_version_history("p-1")) == 2

    @pytest.mark.asyncio
    async def test_expected_latest_not_retried_on_contention(self, store, db):
        v1 = await store.create_version("p-1", {"title": "A"}, "u-0")
        calls = []

        async def taken(row):
            calls.append(row["version_number"])
            raise VersionNumberTakenError("p-1", row["version_number"])

        db.insert_version = taken

        with pytest.raises(VersionNumberTakenError):
            await store.create_version("p-1", {"title": "B"}, "u-1", expected_latest_id=v1.id)

        assert calls == [2]

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self, db):
        store = VersionStore(db, settings=Settings(version_create_attempts=2))

        async def always_taken(row):
            raise VersionNumberTakenError(row["post_id"], row["version_number"])

        db.insert_version = always_taken

        with pytest.raises(StorageUnavailableError, match="after 2 attempts"):
            await store.create_version("p-1", {"title": "x"}, "u-1")


# ===========================================================================
# Rollback
# ===========================================================================


class TestRollback:
    @pytest.mark.asyncio
    async def test_rollback_creates_new_version_with_old_fields(self, store):
        v1 = await store.create_version("p-1", {"title": "A", "content": "one"}, "u-1")
        await store.create_version("p-1", {"title": "B"}, "u-1")
        await store.create_version("p-1", {"content": "two"}, "u-1")

        v4 = await store.rollback_to_version("p-1", v1.id, "u-2")

        assert v4.version_number == 4
        assert v4.fields() == v1.fields()
        rollback = [c for c in v4.changes if c.field == "rollback"]
        assert len(rollback) == 1
        assert rollback[0].new_value == 1

    @pytest.mark.asyncio
    async def test_draft_edit_history_and_rollback(self, store, db):
        """Two titled versions, history newest-first, rollback restores the first title."""
        db.add_post("p-1", title="Draft")
        first = await store.create_version("p-1", {"title": "First title"}, "u-1")
        await store.create_version("p-1", {"title": "Second title"}, "u-1")

        history = await store.get_version_history("p-1")
        assert [v.title for v in history] == ["Second title", "First title"]

        await store.rollback_to_version("p-1", first.id, "u-1")
        latest = await store.get_latest_version("p-1")

        assert latest.title == "First title"
        assert latest.version_number == 3
        assert latest.id != first.id

    @pytest.mark.asyncio
    async def test_rollback_to_latest_still_creates_version(self, store):
        v1 = await store.create_version("p-1", {"title": "A"}, "u-1")
        v2 = await store.rollback_to_version("p-1", v1.id, "u-1")
        assert v2.version_number == 2
        assert [c.field for c in v2.changes] == ["rollback"]

    @pytest.mark.asyncio
    async def test_rollback_to_other_posts_version_fails(self, store):
        other = await store.create_version("p-2", {"title": "Other"}, "u-1")
        await store.create_version("p-1", {"title": "Mine"}, "u-1")
        with pytest.raises(VersionNotFoundError):
            await store.rollback_to_version("p-1", other.id, "u-1")


# ===========================================================================
# Reads, compare, publish flag, ancestry
# ===========================================================================


class TestReads:
    @pytest.mark.asyncio
    async def test_history_limit_and_latest(self, store):
        for i in range(3):
            await store.create_version("p-1", {"title": f"T{i}"}, "u-1")

        limited = await store.get_version_history("p-1", limit=2)
        latest = await store.get_latest_version("p-1")

        assert [v.version_number for v in limited] == [3, 2]
        assert latest.version_number == 3

    @pytest.mark.asyncio
    async def test_latest_of_unversioned_post_is_none(self, store):
        assert await store.get_latest_version("p-missing") is None

    @pytest.mark.asyncio
    async def test_compare_versions(self, store):
        v1 = await store.create_version("p-1", {"title": "A", "content": "one two"}, "u-1")
        v2 = await store.create_version("p-1", {"content": "one three"}, "u-1")

        diff = await store.compare_versions(v1.id, v2.id)

        assert diff.modified == ["content"]
        assert diff.text_diff.added_words == 1

    @pytest.mark.asyncio
    async def test_compare_across_posts_rejected(self, store):
        a = await store.create_version("p-1", {"title": "A"}, "u-1")
        b = await store.create_version("p-2", {"title": "B"}, "u-1")
        with pytest.raises(ValidationError):
            await store.compare_versions(a.id, b.id)

    @pytest.mark.asyncio
    async def test_mark_published_keeps_single_flag(self, store, db):
        v1 = await store.create_version("p-1", {"title": "A"}, "u-1")
        v2 = await store.create_version("p-1", {"title": "B"}, "u-1")

        await store.mark_published("p-1", v1.id)
        await store.mark_published("p-1", v2.id)

        flagged = [v for v in db.versions.values() if v["is_published"]]
        assert [v["id"] for v in flagged] == [v2.id]
        assert (await store.get_published_version("p-1")).id == v2.id

    @pytest.mark.asyncio
    async def test_get_unknown_version(self, store):
        with pytest.raises(VersionNotFoundError):
            await store.get_version("nope")


class TestCommonAncestor:
    @pytest.mark.asyncio
    async def test_branches_meet_at_fork(self, store):
        v1 = await store.create_version("p-1", {"title": "Base"}, "u-1")
        v2 = await store.create_version("p-1", {"title": "Left"}, "u-1")
        v3 = await store.create_version(
            "p-1", {"content": "Right"}, "u-2", parent_version_id=v1.id
        )

        ancestor = await store.find_common_ancestor("p-1", v2.id, v3.id)

        assert ancestor.id == v1.id

    @pytest.mark.asyncio
    async def test_version_is_its_own_ancestor(self, store):
        v1 = await store.create_version("p-1", {"title": "Base"}, "u-1")
        v2 = await store.create_version("p-1", {"title": "Next"}, "u-1")
        assert (await store.find_common_ancestor("p-1", v1.id, v2.id)).id == v1.id

    @pytest.mark.asyncio
    async def test_disjoint_histories(self, store, db):
        v1 = await store.create_version("p-1", {"title": "Base"}, "u-1")
        v2 = await store.create_version("p-1", {"title": "Next"}, "u-1")
        db.versions[v2.id]["parent_version_id"] = None

        with pytest.raises(NoCommonAncestorError):
            await store.find_common_ancestor("p-1", v1.id, v2.id)
