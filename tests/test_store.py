"""Tests for ContextStore and the change log it writes."""

from __future__ import annotations

import asyncio

import aiosqlite
import pytest

from ctxwatch.errors import (
    ItemNotFoundError,
    ItemValidationError,
    StoreNotInitializedError,
    StoreUnavailableError,
)
from ctxwatch.models.config import StoreConfig
from ctxwatch.models.context import ChangeType
from ctxwatch.store.items import ContextStore
from ctxwatch.store.pool import StorePool


class TestItemMutations:
    async def test_save_creates_item_and_record(self, store, session_id):
        """A new key is stored and logged once as CREATE."""
        item = await store.save(session_id, "task_001", "First task", category="task")
        assert item.id.startswith("item_")
        assert item.priority == "normal"
        assert item.channel == "general"

        changes = await store.get_changes(session_id)
        assert len(changes) == 1
        record = changes[0]
        assert record.change_type is ChangeType.CREATE
        assert record.key == "task_001"
        assert record.item_id == item.id
        assert record.category == "task"
        assert record.size_delta == len("First task")
        assert record.created_by == "context_save"

    async def test_save_existing_key_logs_update(self, store, session_id):
        await store.save(session_id, "k", "one", priority="low")
        await store.save(session_id, "k", "three", priority="high")

        changes = await store.get_changes(session_id)
        assert [c.change_type for c in changes] == [ChangeType.CREATE, ChangeType.UPDATE]
        assert changes[1].priority == "high"
        assert changes[1].size_delta == 2

        loaded = await store.get(session_id, "k")
        assert loaded is not None
        assert loaded.value == "three"

    async def test_save_unchanged_writes_no_record(self, store, session_id):
        await store.save(session_id, "k", "same", category="note")
        await store.save(session_id, "k", "same", category="note")
        assert len(await store.get_changes(session_id)) == 1

    async def test_update_partial(self, store, session_id):
        await store.save(session_id, "k", "v", category="task", channel="alpha")
        updated = await store.update(session_id, "k", priority="high")
        assert updated.value == "v"
        assert updated.category == "task"
        assert updated.channel == "alpha"
        assert updated.priority == "high"

        changes = await store.get_changes(session_id)
        assert changes[-1].change_type is ChangeType.UPDATE
        assert changes[-1].created_by == "context_update"
        assert changes[-1].channel == "alpha"

    async def test_update_missing_raises(self, store, session_id):
        with pytest.raises(ItemNotFoundError):
            await store.update(session_id, "missing", value="x")
        assert await store.get_changes(session_id) == []

    async def test_delete_logs_last_known_classification(self, store, session_id):
        """DELETE records keep category/priority/channel of the removed item."""
        await store.save(
            session_id, "gone", "bye", category="decision", priority="high", channel="ops"
        )
        assert await store.delete(session_id, "gone") is True
        assert await store.get(session_id, "gone") is None

        record = (await store.get_changes(session_id))[-1]
        assert record.change_type is ChangeType.DELETE
        assert record.category == "decision"
        assert record.priority == "high"
        assert record.channel == "ops"
        assert record.size_delta == -3

    async def test_delete_missing_returns_false(self, store, session_id):
        assert await store.delete(session_id, "nothing") is False
        assert await store.get_changes(session_id) == []

    async def test_list_items_filters(self, store, session_id):
        await store.save(session_id, "a", "1", category="task")
        await store.save(session_id, "b", "2", category="note", channel="x")
        await store.save("other_session", "c", "3", category="task")

        assert [i.key for i in await store.list_items(session_id)] == ["a", "b"]
        assert [i.key for i in await store.list_items(session_id, category="task")] == ["a"]
        assert [i.key for i in await store.list_items(session_id, channel="x")] == ["b"]

    async def test_metadata_round_trip(self, store, session_id):
        await store.save(session_id, "m", "v", metadata={"source": "test"})
        loaded = await store.get(session_id, "m")
        assert loaded is not None
        assert loaded.metadata == {"source": "test"}


class TestValidation:
    @pytest.mark.parametrize("key", ["", "   ", "k" * 256])
    async def test_bad_keys(self, store, session_id, key):
        with pytest.raises(ItemValidationError):
            await store.save(session_id, key, "v")

    async def test_bad_category(self, store, session_id):
        with pytest.raises(ItemValidationError, match="Invalid category"):
            await store.save(session_id, "k", "v", category="bogus")

    async def test_bad_priority(self, store, session_id):
        with pytest.raises(ItemValidationError, match="Invalid priority"):
            await store.save(session_id, "k", "v", priority="urgent")

    async def test_key_is_trimmed(self, store, session_id):
        item = await store.save(session_id, "  padded  ", "v")
        assert item.key == "padded"
        assert await store.get(session_id, "padded") is not None

    async def test_validation_error_is_value_error(self, store, session_id):
        with pytest.raises(ValueError):
            await store.save(session_id, "", "v")


class TestChangeLog:
    async def test_sequence_ids_strictly_increase(self, store, session_id):
        for i in range(5):
            await store.save(session_id, f"k{i}", "v")
        await store.delete(session_id, "k2")
        seqs = [c.sequence_id for c in await store.get_changes(session_id)]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == len(seqs) == 6

    async def test_sequence_shared_across_sessions(self, store):
        """One log: sequence ids never repeat, even across sessions."""
        await store.save("s1", "k", "v")
        await store.save("s2", "k", "v")
        await store.save("s1", "k2", "v")
        s1 = [c.sequence_id for c in await store.get_changes("s1")]
        s2 = [c.sequence_id for c in await store.get_changes("s2")]
        assert not set(s1) & set(s2)
        assert await store.current_sequence("s1") == max(s1)
        assert await store.current_sequence("empty") == 0

    async def test_get_changes_since(self, store, session_id):
        for i in range(3):
            await store.save(session_id, f"k{i}", "v")
        all_changes = await store.get_changes(session_id)
        later = await store.get_changes(session_id, since=all_changes[0].sequence_id)
        assert [c.key for c in later] == ["k1", "k2"]

    async def test_records_are_immutable(self, store, session_id):
        await store.save(session_id, "k", "v")
        with pytest.raises(StoreUnavailableError, match="immutable"):
            async with store.transaction() as conn:
                await conn.execute("UPDATE context_changes SET key = 'tampered'")
        assert (await store.get_changes(session_id))[0].key == "k"

    async def test_failed_log_write_rolls_back_mutation(self, store, session_id, monkeypatch):
        """If appending the record fails, the item mutation is not persisted either."""

        async def broken_append(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store.changes, "append", broken_append)
        with pytest.raises(StoreUnavailableError):
            await store.save(session_id, "k", "v")
        monkeypatch.undo()

        assert await store.get(session_id, "k") is None
        assert await store.get_changes(session_id) == []

    async def test_failed_delete_log_keeps_item(self, store, session_id, monkeypatch):
        await store.save(session_id, "k", "v")

        async def broken_append(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store.changes, "append", broken_append)
        with pytest.raises(StoreUnavailableError):
            await store.delete(session_id, "k")
        monkeypatch.undo()

        assert await store.get(session_id, "k") is not None
        assert len(await store.get_changes(session_id)) == 1

    async def test_cancelled_begin_is_rolled_back(self, store, session_id):
        """A save cancelled while BEGIN is in flight leaves the connection usable."""
        task = asyncio.create_task(store.save(session_id, "a", "v"))
        await asyncio.sleep(0)  # the task is now awaiting BEGIN IMMEDIATE
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await store.save(session_id, "b", "v")
        assert await store.get(session_id, "a") is None
        assert [r.key for r in await store.get_changes(session_id)] == ["b"]


class TestLifecycle:
    async def test_uninitialized_store_raises(self, config):
        store = ContextStore(config.store)
        with pytest.raises(StoreNotInitializedError):
            await store.get("s", "k")

    async def test_private_connection_persists(self, tmp_path):
        """Items and records survive closing and reopening the store."""
        cfg = StoreConfig(db_path=str(tmp_path / "persist.db"))
        first = ContextStore(cfg)
        await first.initialize()
        await first.save("s", "k", "v", category="task")
        await first.close()

        second = ContextStore(cfg)
        await second.initialize()
        try:
            assert (await second.get("s", "k")) is not None
            assert len(await second.get_changes("s")) == 1
        finally:
            await second.close()

    async def test_pool_shares_connection(self, config):
        pool = StorePool()
        try:
            a = ContextStore(config.store, pool=pool)
            b = ContextStore(config.store, pool=pool)
            await a.initialize()
            await b.initialize()
            await a.save("s", "k", "v")
            assert await b.get("s", "k") is not None
            await a.close()
            # b still works: the pool owns the connection
            assert await b.get("s", "k") is not None
        finally:
            await pool.close_all()

    async def test_unopenable_path_raises_store_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        store = ContextStore(StoreConfig(db_path=str(blocker / "db.sqlite")))
        with pytest.raises(StoreUnavailableError):
            await store.initialize()
