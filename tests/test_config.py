"""Tests for configuration models."""

from __future__ import annotations

import pytest

import ctxwatch
from ctxwatch.models.config import (
    DEFAULT_CATEGORIES,
    CtxWatchConfig,
    ItemConfig,
    StoreConfig,
    WatcherConfig,
)


class TestDefaults:
    def test_top_level_defaults(self) -> None:
        cfg = CtxWatchConfig.default()
        assert cfg.store.db_path == "~/.ctxwatch/context.db"
        assert cfg.store.wal_mode is True
        assert cfg.watcher.poll_batch_size == 100
        assert cfg.watcher.id_prefix == "watch_"
        assert cfg.items.valid_categories == DEFAULT_CATEGORIES
        assert cfg.items.valid_priorities == ("high", "normal", "low")

    def test_version_exported(self) -> None:
        assert ctxwatch.__version__ == "0.1.0"


class TestBounds:
    @pytest.mark.parametrize("size", [0, 10_001])
    def test_poll_batch_size_bounds(self, size: int) -> None:
        with pytest.raises(ValueError):
            WatcherConfig(poll_batch_size=size)

    def test_connection_timeout_positive(self) -> None:
        with pytest.raises(ValueError):
            StoreConfig(connection_timeout=0)

    def test_empty_id_prefix_rejected(self) -> None:
        with pytest.raises(ValueError):
            WatcherConfig(id_prefix="")

    def test_priorities_must_include_normal(self) -> None:
        with pytest.raises(ValueError, match="normal"):
            ItemConfig(valid_priorities=("high", "low"))

    def test_categories_must_not_be_empty(self) -> None:
        with pytest.raises(ValueError):
            ItemConfig(valid_categories=())


class TestCustomItems:
    async def test_custom_category_accepted_by_store_and_filters(self, tmp_path) -> None:
        config = CtxWatchConfig(
            store=StoreConfig(db_path=str(tmp_path / "custom.db")),
            items=ItemConfig(valid_categories=("task", "insight")),
        )
        async with await ctxwatch.WatchService.open(config) as service:
            watcher = await service.create("s", {"categories": ["insight"]})
            await service.store.save("s", "i1", "v", category="insight")
            result = await service.poll(watcher.id)
            assert [c.key for c in result.changes] == ["i1"]
