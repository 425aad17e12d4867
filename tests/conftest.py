"""Shared fixtures for ctxwatch tests."""

from __future__ import annotations

import pytest
import pytest_asyncio

from ctxwatch.models.config import CtxWatchConfig, StoreConfig
from ctxwatch.models.context import ChangeRecord, ChangeType
from ctxwatch.store.items import ContextStore
from ctxwatch.store.pool import StorePool
from ctxwatch.store.watchers import WatcherRegistry
from ctxwatch.watch.service import WatchService


@pytest.fixture
def config(tmp_path):
    """CtxWatchConfig with a temp database path."""
    return CtxWatchConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool):
    """Initialized ContextStore backed by a temp SQLite database (pool-managed)."""
    s = ContextStore(config.store, pool=pool, items=config.items)
    await s.initialize()
    yield s
    await s.close()  # no-op for pool-managed conn; pool fixture closes the connection


@pytest_asyncio.fixture
async def registry(store, config):
    """WatcherRegistry sharing the test store's connection."""
    return WatcherRegistry(store, config.watcher)


@pytest_asyncio.fixture
async def service(store, registry, config):
    """WatchService over the test store and registry."""
    return WatchService(store, registry, config)


@pytest.fixture
def session_id():
    """The acting session for most tests."""
    return "sess_TEST01"


def make_record(
    key: str = "task_001",
    *,
    category: str | None = "task",
    priority: str | None = "normal",
    channel: str | None = "general",
    change_type: ChangeType = ChangeType.CREATE,
    sequence_id: int = 1,
    session_id: str = "sess_TEST01",
) -> ChangeRecord:
    """Helper to build a ChangeRecord without touching the database."""
    return ChangeRecord(
        sequence_id=sequence_id,
        session_id=session_id,
        item_id=f"item_{sequence_id:04d}",
        key=key,
        change_type=change_type,
        category=category,
        priority=priority,
        channel=channel,
        created_at=1_700_000_000_000 + sequence_id,
    )
