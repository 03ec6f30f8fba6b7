"""
Tests for blogflow.editing module.

Covers:
    - Direct saves: first edit, up-to-date base, single editor
    - Concurrent editors: clean merge, EditConflict, explicit strategy
    - Simultaneous saves from the same base
"""

import asyncio

import pytest

from blogflow.exceptions import EditConflictError, NoChangeError
from blogflow.versioning.models import Version


@pytest.fixture
def coordinator(services, db):
    db.add_post("p-1")
    return services.coordinator


async def _two_editors(services):
    session = await services.sessions.start_session("p-1", "u-1")
    await services.sessions.join_session(session.id, "u-2")


class TestDirectSave:
    @pytest.mark.asyncio
    async def test_first_edit_creates_version_one(self, coordinator):
        version = await coordinator.save_edit("p-1", {"title": "Hello"}, "u-1")
        assert version.version_number == 1

    @pytest.mark.asyncio
    async def test_edit_on_latest_base(self, coordinator):
        v1 = await coordinator.save_edit("p-1", {"title": "Hello"}, "u-1")
        v2 = await coordinator.save_edit(
            "p-1", {"title": "Hello world"}, "u-1", base_version_id=v1.id
        )
        assert v2.parent_version_id == v1.id

    @pytest.mark.asyncio
    async def test_single_editor_with_stale_base_saves_directly(self, coordinator):
        """With one editor there is nobody to conflict with."""
        v1 = await coordinator.save_edit("p-1", {"title": "A"}, "u-1")
        await coordinator.save_edit("p-1", {"title": "B"}, "u-1", base_version_id=v1.id)

        v3 = await coordinator.save_edit("p-1", {"title": "C"}, "u-1", base_version_id=v1.id)

        assert v3.version_number == 3
        assert v3.title == "C"

    @pytest.mark.asyncio
    async def test_no_change_propagates(self, coordinator):
        v1 = await coordinator.save_edit("p-1", {"title": "A"}, "u-1")
        with pytest.raises(NoChangeError):
            await coordinator.save_edit("p-1", {"title": "A"}, "u-1", base_version_id=v1.id)


class TestConcurrentEditors:
    @pytest.mark.asyncio
    async def test_non_overlapping_edits_merge(self, coordinator, services):
        base = await coordinator.save_edit("p-1", {"title": "A", "content": "body"}, "u-1")
        await _two_editors(services)
        await coordinator.save_edit("p-1", {"title": "B"}, "u-2", base_version_id=base.id)

        merged = await coordinator.save_edit(
            "p-1", {"content": "new body"}, "u-1", base_version_id=base.id
        )

        assert merged.title == "B"
        assert merged.content == "new body"
        assert merged.version_number == 3

    @pytest.mark.asyncio
    async def test_overlapping_edits_raise_conflict(self, coordinator, services):
        base = await coordinator.save_edit("p-1", {"title": "A"}, "u-1")
        await _two_editors(services)
        remote = await coordinator.save_edit(
            "p-1", {"title": "B"}, "u-2", base_version_id=base.id
        )

        with pytest.raises(EditConflictError) as exc_info:
            await coordinator.save_edit("p-1", {"title": "C"}, "u-1", base_version_id=base.id)

        err = exc_info.value
        assert err.remote_version_id == remote.id
        assert err.conflicts == [
            {"field": "title", "local_value": "C", "remote_value": "B", "resolution": None}
        ]

    @pytest.mark.asyncio
    async def test_explicit_strategy_resolves(self, coordinator, services):
        base = await coordinator.save_edit("p-1", {"title": "A"}, "u-1")
        await _two_editors(services)
        await coordinator.save_edit("p-1", {"title": "B"}, "u-2", base_version_id=base.id)

        merged = await coordinator.save_edit(
            "p-1", {"title": "C"}, "u-1", base_version_id=base.id, strategy="remote"
        )

        assert merged.title == "B"
        assert any(c.field == "merge" for c in merged.changes)

    @pytest.mark.asyncio
    async def test_simultaneous_overlapping_saves_conflict(self, coordinator, services):
        """Two editors saving the same field from the same base: one wins, one conflicts."""
        base = await coordinator.save_edit("p-1", {"title": "A"}, "u-1")
        await _two_editors(services)

        results = await asyncio.gather(
            coordinator.save_edit("p-1", {"title": "B"}, "u-1", base_version_id=base.id),
            coordinator.save_edit("p-1", {"title": "C"}, "u-2", base_version_id=base.id),
            return_exceptions=True,
        )

        saved = [r for r in results if isinstance(r, Version)]
        conflicts = [r for r in results if isinstance(r, EditConflictError)]
        assert len(saved) == 1
        assert len(conflicts) == 1
        assert conflicts[0].remote_version_id == saved[0].id
        history = await services.version_store.get_version_history("p-1")
        assert [v.version_number for v in history] == [2, 1]

    @pytest.mark.asyncio
    async def test_simultaneous_disjoint_saves_both_kept(self, coordinator, services):
        """Edits to different fields from the same base are merged, not lost."""
        base = await coordinator.save_edit("p-1", {"title": "A", "content": "body"}, "u-1")
        await _two_editors(services)

        await asyncio.gather(
            coordinator.save_edit("p-1", {"title": "B"}, "u-1", base_version_id=base.id),
            coordinator.save_edit("p-1", {"content": "new"}, "u-2", base_version_id=base.id),
        )

        latest = await services.version_store.get_latest_version("p-1")
        assert latest.version_number == 3
        assert latest.title == "B"
        assert latest.content == "new"
