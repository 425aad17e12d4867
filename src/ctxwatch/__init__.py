"""
ctxwatch — change tracking and watcher polling for AI-assistant working memory.

Primary entry point::

    from ctxwatch import WatchService

    async with await WatchService.open(db_path="~/.ctxwatch/context.db") as service:
        watcher = await service.create("sess_1", {"keys": ["user_*"]})
        await service.store.save("sess_1", "user_profile", "{...}")
        result = await service.poll(watcher.id)
        print([change.key for change in result.changes])
"""

from ctxwatch.errors import (
    CtxWatchError,
    InvalidActionError,
    InvalidFilterError,
    InvalidRequestError,
    ItemNotFoundError,
    ItemValidationError,
    StoreError,
    StoreUnavailableError,
    WatchError,
    WatchErrorKind,
    WatcherNotFoundError,
    WatcherStoppedError,
)
from ctxwatch.models import (
    ChangeRecord,
    ChangeType,
    ContextItem,
    CtxWatchConfig,
    ItemConfig,
    MatchedChange,
    PollResult,
    StoreConfig,
    Watcher,
    WatcherConfig,
    WatcherFilter,
    WatcherState,
)
from ctxwatch.store import ChangeLog, ContextStore, StorePool, WatcherRegistry, make_id
from ctxwatch.watch import WatchResponse, WatchService, handle_context_watch, matches

__version__ = "0.1.0"

__all__ = [
    # Core
    "WatchService",
    "handle_context_watch",
    "WatchResponse",
    "matches",
    # Config
    "CtxWatchConfig",
    "StoreConfig",
    "ItemConfig",
    "WatcherConfig",
    # Models
    "ContextItem",
    "ChangeRecord",
    "ChangeType",
    "Watcher",
    "WatcherFilter",
    "WatcherState",
    "MatchedChange",
    "PollResult",
    # Store
    "ContextStore",
    "ChangeLog",
    "WatcherRegistry",
    "StorePool",
    "make_id",
    # Errors
    "CtxWatchError",
    "WatchError",
    "WatchErrorKind",
    "WatcherNotFoundError",
    "WatcherStoppedError",
    "InvalidActionError",
    "InvalidFilterError",
    "InvalidRequestError",
    "StoreError",
    "StoreUnavailableError",
    "ItemNotFoundError",
    "ItemValidationError",
]
