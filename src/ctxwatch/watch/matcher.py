"""Pure filter evaluation for change records."""

from __future__ import annotations

import re
from functools import lru_cache

from ctxwatch.models.context import ChangeRecord
from ctxwatch.models.watcher import WatcherFilter


@lru_cache(maxsize=1024)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """
    Compile a key glob into an anchored regex.

    ``*`` matches zero or more characters and ``?`` exactly one; everything
    else is literal. Matching is case-sensitive and covers the whole key.
    """
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def key_matches(key: str, patterns: list[str]) -> bool:
    """True if *key* matches any of *patterns*."""
    return any(compile_glob(p).fullmatch(key) is not None for p in patterns)


def matches(record: ChangeRecord, filter: WatcherFilter) -> bool:
    """
    Decide whether *record* satisfies *filter*.

    Every present filter dimension must accept the record; absent dimensions
    accept anything, so an empty filter matches every record. Only the
    record's own denormalized fields are consulted.
    """
    if filter.categories is not None and record.category not in filter.categories:
        return False
    if filter.priorities is not None and record.priority not in filter.priorities:
        return False
    if filter.channels is not None and record.channel not in filter.channels:
        return False
    if filter.keys is not None and not key_matches(record.key, filter.keys):
        return False
    return True
