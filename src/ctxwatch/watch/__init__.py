"""Watcher polling engine and request surface."""

from ctxwatch.watch.handler import WatchResponse, handle_context_watch
from ctxwatch.watch.matcher import compile_glob, key_matches, matches
from ctxwatch.watch.service import WatchService, to_matched_change

__all__ = [
    "WatchResponse",
    "WatchService",
    "compile_glob",
    "handle_context_watch",
    "key_matches",
    "matches",
    "to_matched_change",
]
