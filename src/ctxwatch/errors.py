"""Exception taxonomy for ctxwatch."""

from __future__ import annotations

from enum import StrEnum


class WatchErrorKind(StrEnum):
    """Machine-readable kinds of caller-recoverable watcher failures."""

    WATCHER_NOT_FOUND = "WatcherNotFound"
    WATCHER_STOPPED = "WatcherStopped"
    INVALID_ACTION = "InvalidAction"
    INVALID_FILTER = "InvalidFilter"
    INVALID_REQUEST = "InvalidRequest"


class CtxWatchError(Exception):
    """Base class for all ctxwatch errors."""


# ── Watcher errors ─────────────────────────────────────────────────────────────


class WatchError(CtxWatchError):
    """
    Base class for expected watcher failures.

    These are reported to the caller as structured responses, never as
    process-fatal errors. ``kind`` distinguishes them programmatically.
    """

    kind: WatchErrorKind


class WatcherNotFoundError(WatchError):
    """Raised when a watcher_id does not exist (or belongs to another session)."""

    kind = WatchErrorKind.WATCHER_NOT_FOUND

    def __init__(self, watcher_id: str) -> None:
        super().__init__(f"Watcher not found: {watcher_id}")
        self.watcher_id = watcher_id


class WatcherStoppedError(WatchError):
    """Raised when polling a watcher that has been stopped."""

    kind = WatchErrorKind.WATCHER_STOPPED

    def __init__(self, watcher_id: str) -> None:
        super().__init__(f"Watcher is stopped: {watcher_id}")
        self.watcher_id = watcher_id


class InvalidActionError(WatchError):
    """Raised for an unrecognised top-level action name."""

    kind = WatchErrorKind.INVALID_ACTION

    def __init__(self, action: object) -> None:
        super().__init__(f"Unknown action: {action}")
        self.action = action


class InvalidFilterError(WatchError):
    """Raised when a watcher filter has a malformed shape or unknown values."""

    kind = WatchErrorKind.INVALID_FILTER

    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid filter: {detail}")
        self.detail = detail


class InvalidRequestError(WatchError):
    """Raised when a request is missing a required argument."""

    kind = WatchErrorKind.INVALID_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


# ── Store errors ───────────────────────────────────────────────────────────────


class StoreError(CtxWatchError):
    """Base class for persistence-layer errors."""


class StoreNotInitializedError(StoreError):
    """Raised when a store is used before ``initialize()``."""

    def __init__(self) -> None:
        super().__init__("Store is not initialized. Call initialize() first.")


class StoreUnavailableError(StoreError):
    """
    Raised when the database cannot be reached or a write fails.

    The enclosing transaction has already been rolled back when this is raised.
    """


class ItemNotFoundError(CtxWatchError):
    """Raised when a context item key does not exist in the session."""

    def __init__(self, session_id: str, key: str) -> None:
        super().__init__(f"Context item not found: {key!r} (session {session_id!r})")
        self.session_id = session_id
        self.key = key


class ItemValidationError(CtxWatchError, ValueError):
    """Raised when a context item key, value, category or priority is invalid."""
