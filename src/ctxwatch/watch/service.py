"""Watcher polling engine: create, poll, list and stop over one store."""

from __future__ import annotations

from typing import Any

import structlog

from ctxwatch.errors import WatcherNotFoundError, WatcherStoppedError
from ctxwatch.models.config import CtxWatchConfig
from ctxwatch.models.context import ChangeRecord
from ctxwatch.models.watcher import MatchedChange, PollResult, Watcher, WatcherFilter
from ctxwatch.store.items import ContextStore
from ctxwatch.store.pool import StorePool
from ctxwatch.store.watchers import WatcherRegistry
from ctxwatch.watch.matcher import matches


def to_matched_change(record: ChangeRecord) -> MatchedChange:
    """Project a change record onto the fields delivered to watchers."""
    return MatchedChange(
        key=record.key,
        type=record.change_type,
        category=record.category,
        priority=record.priority,
        channel=record.channel,
        sequence=record.sequence_id,
        timestamp=record.created_at,
    )


class WatchService:
    """
    Request-facing surface of the change tracking engine.

    A watcher is ``ACTIVE`` from creation until ``stop()``, then ``STOPPED``
    for good. Each ``poll()`` runs as one store transaction: it reads the
    watcher's unread records, filters them, and advances the cursor to the
    highest sequence_id it read, matching or not. Concurrent polls of the
    same watcher therefore never return the same record twice.

    When a ``session_id`` is passed to ``poll``/``stop``/``get``, a watcher
    owned by a different session is reported as not found.

    Usage::

        async with await WatchService.open(db_path="/tmp/ctx.db") as service:
            watcher = await service.create("sess_1", {"categories": ["task"]})
            await service.store.save("sess_1", "task_001", "Ship it", category="task")
            result = await service.poll(watcher.id)
    """

    def __init__(
        self,
        store: ContextStore,
        registry: WatcherRegistry,
        config: CtxWatchConfig | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._config = config or CtxWatchConfig()
        self._logger = structlog.get_logger("ctxwatch.service")

    @classmethod
    async def open(
        cls,
        config: CtxWatchConfig | None = None,
        *,
        db_path: str | None = None,
        pool: StorePool | None = None,
    ) -> WatchService:
        """
        Build and initialize a store, registry and service.

        Args:
            config: Configuration; defaults to ``CtxWatchConfig()``.
            db_path: Overrides ``config.store.db_path`` when given.
            pool: Optional shared ``StorePool``.

        Raises:
            StoreUnavailableError: If the database cannot be opened.
        """
        config = config or CtxWatchConfig()
        if db_path is not None:
            store_config = config.store.model_copy(update={"db_path": db_path})
            config = config.model_copy(update={"store": store_config})
        store = ContextStore(config.store, pool=pool, items=config.items)
        await store.initialize()
        registry = WatcherRegistry(store, config.watcher)
        return cls(store, registry, config)

    async def close(self) -> None:
        await self._store.close()

    async def __aenter__(self) -> WatchService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def store(self) -> ContextStore:
        return self._store

    @property
    def registry(self) -> WatcherRegistry:
        return self._registry

    # ── Operations ─────────────────────────────────────────────────────────────

    async def create(
        self,
        session_id: str,
        filters: WatcherFilter | dict[str, Any] | None = None,
    ) -> Watcher:
        """
        Create an active watcher that sees only changes made after this call.

        Raises:
            InvalidFilterError: If *filters* is malformed.
        """
        return await self._registry.create(session_id, filters)

    async def get(self, watcher_id: str, *, session_id: str | None = None) -> Watcher:
        """
        Resolve a watcher, enforcing session ownership when *session_id* is given.

        Raises:
            WatcherNotFoundError: If the watcher does not exist or is not visible.
        """
        watcher = await self._registry.get(watcher_id)
        self._check_owner(watcher, session_id)
        return watcher

    async def list_watchers(self, session_id: str) -> list[Watcher]:
        """All watchers of *session_id*, newest first, stopped ones included."""
        return await self._registry.list_watchers(session_id)

    async def stop(self, watcher_id: str, *, session_id: str | None = None) -> Watcher:
        """
        Stop a watcher permanently. Stopping twice is a no-op.

        Raises:
            WatcherNotFoundError: If the watcher does not exist or is not visible.
        """
        if session_id is not None:
            await self.get(watcher_id, session_id=session_id)
        return await self._registry.stop(watcher_id)

    async def poll(
        self,
        watcher_id: str,
        *,
        session_id: str | None = None,
        limit: int | None = None,
    ) -> PollResult:
        """
        Return the watcher's matching changes since its last poll.

        Reads at most *limit* unread records (default
        ``WatcherConfig.poll_batch_size``) in ascending sequence order,
        returns those matching the filter and moves the cursor to the last
        record read. With nothing unread the cursor is left unchanged.

        Raises:
            WatcherNotFoundError: If the watcher does not exist or is not visible.
            WatcherStoppedError: If the watcher has been stopped.
            StoreUnavailableError: If the store fails; the cursor is not moved.
        """
        batch = limit if limit is not None else self._config.watcher.poll_batch_size
        if batch < 1:
            raise ValueError("limit must be at least 1")

        changes = self._store.changes
        async with self._store.transaction() as conn:
            watcher = await self._registry.fetch(conn, watcher_id)
            self._check_owner(watcher, session_id)
            if not watcher.active:
                raise WatcherStoppedError(watcher_id)

            # One extra row tells us whether unread records remain after this batch.
            records = await changes.read_since(
                conn, watcher.session_id, watcher.last_sequence, limit=batch + 1
            )
            has_more = len(records) > batch
            records = records[:batch]

            matched = [to_matched_change(r) for r in records if matches(r, watcher.filter)]
            last_sequence = records[-1].sequence_id if records else watcher.last_sequence
            await self._registry.advance(conn, watcher_id, last_sequence)

        self._logger.debug(
            "watcher_polled",
            watcher_id=watcher_id,
            scanned=len(records),
            matched=len(matched),
            last_sequence=last_sequence,
            has_more=has_more,
        )
        return PollResult(
            watcher_id=watcher_id,
            changes=matched,
            last_sequence=last_sequence,
            has_more=has_more,
        )

    @staticmethod
    def _check_owner(watcher: Watcher, session_id: str | None) -> None:
        if session_id is not None and watcher.session_id != session_id:
            raise WatcherNotFoundError(watcher.id)
