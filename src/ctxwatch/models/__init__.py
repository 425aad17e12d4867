"""ctxwatch data models."""

from ctxwatch.models.config import (
    DEFAULT_CATEGORIES,
    DEFAULT_PRIORITIES,
    CtxWatchConfig,
    ItemConfig,
    StoreConfig,
    WatcherConfig,
)
from ctxwatch.models.context import (
    DEFAULT_CHANNEL,
    DEFAULT_PRIORITY,
    ChangeRecord,
    ChangeType,
    ContextItem,
)
from ctxwatch.models.watcher import (
    MatchedChange,
    PollResult,
    Watcher,
    WatcherFilter,
    WatcherState,
)

__all__ = [
    # Config
    "CtxWatchConfig",
    "ItemConfig",
    "StoreConfig",
    "WatcherConfig",
    "DEFAULT_CATEGORIES",
    "DEFAULT_PRIORITIES",
    # Items and change log
    "ContextItem",
    "ChangeRecord",
    "ChangeType",
    "DEFAULT_CHANNEL",
    "DEFAULT_PRIORITY",
    # Watchers
    "Watcher",
    "WatcherFilter",
    "WatcherState",
    "MatchedChange",
    "PollResult",
]
