"""SQLite-backed context item store with an atomic change log."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog
from ulid import ULID

from ctxwatch.errors import (
    CtxWatchError,
    ItemNotFoundError,
    ItemValidationError,
    StoreNotInitializedError,
    StoreUnavailableError,
)
from ctxwatch.models.config import ItemConfig, StoreConfig
from ctxwatch.models.context import (
    DEFAULT_CHANNEL,
    DEFAULT_PRIORITY,
    ChangeRecord,
    ChangeType,
    ContextItem,
)
from ctxwatch.store.changes import ChangeLog
from ctxwatch.store.pool import open_connection

if TYPE_CHECKING:
    from ctxwatch.store.pool import StorePool


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"item"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


def _value_size(value: str) -> int:
    return len(value.encode("utf-8"))


class ContextStore:
    """
    Per-session key/value context items plus their change log.

    Every mutation (``save``, ``update``, ``delete``) runs in one
    ``BEGIN IMMEDIATE`` transaction that writes both the item row and exactly
    one ``context_changes`` record, so neither is ever visible without the
    other. A failed log write rolls the mutation back and surfaces as
    ``StoreUnavailableError``.

    Usage (standalone)::

        store = ContextStore(StoreConfig())
        await store.initialize()
        try:
            await store.save("sess_1", "task_001", "Write tests", category="task")
        finally:
            await store.close()

    Usage (with pool)::

        pool = StorePool()
        store = ContextStore(config.store, pool=pool)
        await store.initialize()
        ...
        await pool.close_all()
    """

    def __init__(
        self,
        config: StoreConfig,
        pool: StorePool | None = None,
        *,
        items: ItemConfig | None = None,
    ) -> None:
        self._config = config
        self._items = items or ItemConfig()
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._lock: asyncio.Lock | None = None
        self._changes = ChangeLog()
        self._logger = structlog.get_logger("ctxwatch.store")

    @property
    def changes(self) -> ChangeLog:
        return self._changes

    @property
    def item_config(self) -> ItemConfig:
        return self._items

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection and apply the schema.

        Raises:
            StoreUnavailableError: If the database cannot be opened or the schema fails.
        """
        if self._pool is not None:
            conn = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            lock = self._pool.lock(self._db_path)
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            lock = asyncio.Lock()

        schema = (Path(__file__).parent / "schema.sql").read_text()
        async with lock:
            try:
                await conn.executescript(schema)
                await conn.commit()
            except aiosqlite.Error as exc:
                if self._pool is None:
                    await conn.close()
                raise StoreUnavailableError(f"Cannot apply schema: {exc}") from exc

        self._conn = conn
        self._lock = lock
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """
        Release the database connection.

        A pool-managed connection is left open; the pool owns its lifetime.
        """
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None
        self._lock = None

    def _conn_or_raise(self) -> tuple[aiosqlite.Connection, asyncio.Lock]:
        if self._conn is None or self._lock is None:
            raise StoreNotInitializedError()
        return self._conn, self._lock

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block as one write transaction.

        Holds the database lock, issues ``BEGIN IMMEDIATE``, commits when the
        block exits normally and rolls back on any exception (including
        cancellation). ``aiosqlite`` errors are re-raised as
        ``StoreUnavailableError``; all other exceptions propagate unchanged.
        """
        conn, lock = self._conn_or_raise()
        async with lock:
            began = False
            try:
                # A cancelled BEGIN still runs on the connection thread; the
                # rollback below is queued after it and closes it.
                await conn.execute("BEGIN IMMEDIATE")
                began = True
                yield conn
                await conn.commit()
            except BaseException as exc:
                await self._rollback(conn, exc)
                if isinstance(exc, aiosqlite.Error):
                    if not began:
                        raise StoreUnavailableError(
                            f"Cannot begin transaction: {exc}"
                        ) from exc
                    raise StoreUnavailableError(str(exc)) from exc
                raise

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the database lock for a read so no uncommitted write is observed."""
        conn, lock = self._conn_or_raise()
        async with lock:
            try:
                yield conn
            except aiosqlite.Error as exc:
                raise StoreUnavailableError(str(exc)) from exc

    async def _rollback(self, conn: aiosqlite.Connection, cause: BaseException) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error as exc:
            self._logger.error("transaction_rollback_failed", error=str(exc))
            return
        log = self._logger.debug if isinstance(cause, CtxWatchError) else self._logger.warning
        log(
            "transaction_rolled_back",
            error_type=type(cause).__name__,
            error=str(cause),
        )

    # ── Mutations ──────────────────────────────────────────────────────────────

    async def save(
        self,
        session_id: str,
        key: str,
        value: str,
        *,
        category: str | None = None,
        priority: str | None = None,
        channel: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ContextItem:
        """
        Create or replace the item stored under *key* in *session_id*.

        Logs ``CREATE`` for a new key and ``UPDATE`` for an existing one. An
        upsert that changes nothing writes no change record.

        Raises:
            ItemValidationError: If the key, value, category or priority is invalid.
            StoreUnavailableError: If the write fails (nothing is persisted).
        """
        key = self._validate_key(key)
        self._validate_value(value)
        category = self._validate_category(category)
        priority = self._validate_priority(priority) or DEFAULT_PRIORITY
        channel = channel or DEFAULT_CHANNEL

        async with self.transaction() as conn:
            existing = await self._fetch_item(conn, session_id, key)
            if existing is None:
                now = int(time.time() * 1000)
                item = ContextItem(
                    id=make_id("item"),
                    session_id=session_id,
                    key=key,
                    value=value,
                    category=category,
                    priority=priority,
                    channel=channel,
                    metadata=metadata,
                    size=_value_size(value),
                    created_at=now,
                    updated_at=now,
                )
                await conn.execute(
                    """
                    INSERT INTO context_items
                        (id, session_id, key, value, category, priority, channel,
                         metadata, size, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item.id,
                        item.session_id,
                        item.key,
                        item.value,
                        item.category,
                        item.priority,
                        item.channel,
                        json.dumps(metadata) if metadata is not None else None,
                        item.size,
                        item.created_at,
                        item.updated_at,
                    ),
                )
                await self._changes.append(conn, item, ChangeType.CREATE, size_delta=item.size)
                return item

            return await self._apply_update(
                conn,
                existing,
                value=value,
                category=category,
                priority=priority,
                channel=channel,
                metadata=metadata,
                created_by="context_save",
            )

    async def update(
        self,
        session_id: str,
        key: str,
        *,
        value: str | None = None,
        category: str | None = None,
        priority: str | None = None,
        channel: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ContextItem:
        """
        Update selected fields of an existing item. ``None`` leaves a field unchanged.

        Raises:
            ItemNotFoundError: If *key* does not exist in *session_id*.
            ItemValidationError: If a supplied field is invalid.
        """
        if value is not None:
            self._validate_value(value)
        category = self._validate_category(category)
        priority = self._validate_priority(priority)

        async with self.transaction() as conn:
            existing = await self._fetch_item(conn, session_id, key)
            if existing is None:
                raise ItemNotFoundError(session_id, key)
            return await self._apply_update(
                conn,
                existing,
                value=existing.value if value is None else value,
                category=existing.category if category is None else category,
                priority=existing.priority if priority is None else priority,
                channel=existing.channel if channel is None else channel,
                metadata=existing.metadata if metadata is None else metadata,
            )

    async def delete(self, session_id: str, key: str) -> bool:
        """
        Delete an item, logging ``DELETE`` with its last known classification.

        Returns:
            ``True`` if an item was deleted, ``False`` if *key* did not exist
            (in which case nothing is logged).
        """
        async with self.transaction() as conn:
            existing = await self._fetch_item(conn, session_id, key)
            if existing is None:
                return False
            await conn.execute("DELETE FROM context_items WHERE id = ?", (existing.id,))
            await self._changes.append(
                conn, existing, ChangeType.DELETE, size_delta=-existing.size
            )
            return True

    async def _apply_update(
        self,
        conn: aiosqlite.Connection,
        existing: ContextItem,
        *,
        value: str,
        category: str | None,
        priority: str,
        channel: str,
        metadata: dict[str, Any] | None,
        created_by: str | None = None,
    ) -> ContextItem:
        unchanged = (
            existing.value == value
            and existing.category == category
            and existing.priority == priority
            and existing.channel == channel
            and existing.metadata == metadata
        )
        if unchanged:
            return existing

        now = int(time.time() * 1000)
        updated = ContextItem(
            id=existing.id,
            session_id=existing.session_id,
            key=existing.key,
            value=value,
            category=category,
            priority=priority,
            channel=channel,
            metadata=metadata,
            size=_value_size(value),
            created_at=existing.created_at,
            updated_at=now,
        )
        await conn.execute(
            """
            UPDATE context_items SET
                value=?, category=?, priority=?, channel=?, metadata=?, size=?, updated_at=?
            WHERE id=?
            """,
            (
                updated.value,
                updated.category,
                updated.priority,
                updated.channel,
                json.dumps(metadata) if metadata is not None else None,
                updated.size,
                updated.updated_at,
                updated.id,
            ),
        )
        await self._changes.append(
            conn,
            updated,
            ChangeType.UPDATE,
            size_delta=updated.size - existing.size,
            created_by=created_by,
        )
        return updated

    # ── Queries ────────────────────────────────────────────────────────────────

    async def get(self, session_id: str, key: str) -> ContextItem | None:
        """Fetch an item by key. Returns None if not found."""
        async with self.reading() as conn:
            return await self._fetch_item(conn, session_id, key)

    async def list_items(
        self,
        session_id: str,
        *,
        category: str | None = None,
        channel: str | None = None,
    ) -> list[ContextItem]:
        """List a session's items, oldest first, optionally narrowed by category or channel."""
        conditions = ["session_id = ?"]
        params: list[Any] = [session_id]
        if category is not None:
            conditions.append("category = ?")
            params.append(category)
        if channel is not None:
            conditions.append("channel = ?")
            params.append(channel)
        async with self.reading() as conn:
            async with conn.execute(
                f"SELECT * FROM context_items WHERE {' AND '.join(conditions)}"
                " ORDER BY created_at ASC, rowid ASC",
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_item(r) for r in rows]

    async def get_changes(self, session_id: str, *, since: int = 0) -> list[ChangeRecord]:
        """Return the session's change records with ``sequence_id > since``, ascending."""
        async with self.reading() as conn:
            return await self._changes.read_since(conn, session_id, since)

    async def current_sequence(self, session_id: str) -> int:
        """Return the session's highest logged sequence_id (0 if none)."""
        async with self.reading() as conn:
            return await self._changes.max_sequence(conn, session_id)

    # ── Validation ─────────────────────────────────────────────────────────────

    def _validate_key(self, key: str) -> str:
        if not isinstance(key, str) or not key.strip():
            raise ItemValidationError("Key must be a non-empty string")
        key = key.strip()
        if len(key) > self._items.max_key_length:
            raise ItemValidationError(
                f"Key too long (max {self._items.max_key_length} characters)"
            )
        return key

    def _validate_value(self, value: str) -> None:
        if not isinstance(value, str):
            raise ItemValidationError("Value must be a string")
        if len(value) > self._items.max_value_length:
            raise ItemValidationError(
                f"Value too large (max {self._items.max_value_length} characters)"
            )

    def _validate_category(self, category: str | None) -> str | None:
        if not category:
            return None
        if category not in self._items.valid_categories:
            raise ItemValidationError(
                f"Invalid category. Must be one of: {', '.join(self._items.valid_categories)}"
            )
        return category

    def _validate_priority(self, priority: str | None) -> str | None:
        if not priority:
            return None
        if priority not in self._items.valid_priorities:
            raise ItemValidationError(
                f"Invalid priority. Must be one of: {', '.join(self._items.valid_priorities)}"
            )
        return priority

    # ── Private Helpers ────────────────────────────────────────────────────────

    async def _fetch_item(
        self, conn: aiosqlite.Connection, session_id: str, key: str
    ) -> ContextItem | None:
        async with conn.execute(
            "SELECT * FROM context_items WHERE session_id = ? AND key = ?",
            (session_id, key.strip() if isinstance(key, str) else key),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_item(row)

    @staticmethod
    def _row_to_item(row: aiosqlite.Row) -> ContextItem:
        return ContextItem(
            id=row["id"],
            session_id=row["session_id"],
            key=row["key"],
            value=row["value"],
            category=row["category"],
            priority=row["priority"],
            channel=row["channel"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            size=row["size"] or 0,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
