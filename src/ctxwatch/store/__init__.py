"""ctxwatch persistence layer."""

from ctxwatch.store.changes import ChangeLog
from ctxwatch.store.items import ContextStore, make_id
from ctxwatch.store.pool import StorePool
from ctxwatch.store.watchers import WatcherRegistry

__all__ = [
    "ChangeLog",
    "ContextStore",
    "StorePool",
    "WatcherRegistry",
    "make_id",
]
