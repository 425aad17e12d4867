"""Persistent registry of watchers and their delivery cursors."""

from __future__ import annotations

import json
import time
import uuid
from typing import Any

import aiosqlite
import structlog

from ctxwatch.errors import WatcherNotFoundError
from ctxwatch.models.config import WatcherConfig
from ctxwatch.models.watcher import Watcher, WatcherFilter
from ctxwatch.store.items import ContextStore

_MAX_ID_ATTEMPTS = 5


class WatcherRegistry:
    """
    Lifecycle of session-scoped watchers, stored in ``context_watchers``.

    Shares the connection and lock of the ``ContextStore`` it wraps, so a
    watcher's starting cursor is read in the same transaction that inserts it
    and no change can slip between the two.

    ``last_sequence`` only ever moves forward and ``is_active`` only ever goes
    from 1 to 0; no row is deleted here.
    """

    def __init__(self, store: ContextStore, config: WatcherConfig | None = None) -> None:
        self._store = store
        self._config = config or WatcherConfig()
        self._logger = structlog.get_logger("ctxwatch.watchers")

    async def create(
        self,
        session_id: str,
        filter: WatcherFilter | dict[str, Any] | None = None,
    ) -> Watcher:
        """
        Register a new active watcher starting from the session's current log position.

        Args:
            session_id: Owning session; the watcher only sees this session's changes.
            filter: A ``WatcherFilter`` or a raw filter mapping. ``None`` or ``{}``
                matches every change.

        Returns:
            The created Watcher with ``last_sequence`` set to the session's
            highest sequence_id (0 when the log is empty).

        Raises:
            InvalidFilterError: If the filter is malformed.
            StoreUnavailableError: If the insert fails (no watcher is created).
        """
        parsed = WatcherFilter.parse(filter, self._store.item_config)
        filters_json = json.dumps(parsed.to_dict())
        now = int(time.time() * 1000)

        async with self._store.transaction() as conn:
            current = await self._store.changes.max_sequence(conn, session_id)
            watcher_id = await self._insert(conn, session_id, filters_json, current, now)

        self._logger.info(
            "watcher_created",
            watcher_id=watcher_id,
            session_id=session_id,
            filters=parsed.to_dict(),
            last_sequence=current,
        )
        return Watcher(
            id=watcher_id,
            session_id=session_id,
            filter=parsed,
            last_sequence=current,
            active=True,
            created_at=now,
        )

    async def get(self, watcher_id: str) -> Watcher:
        """
        Fetch a watcher by ID.

        Raises:
            WatcherNotFoundError: If no watcher with this ID exists.
        """
        async with self._store.reading() as conn:
            return await self.fetch(conn, watcher_id)

    async def list_watchers(
        self, session_id: str, *, include_stopped: bool = True
    ) -> list[Watcher]:
        """
        List a session's watchers, newest first.

        Args:
            session_id: The owning session.
            include_stopped: Also return stopped watchers when True.
        """
        sql = "SELECT * FROM context_watchers WHERE session_id = ?"
        if not include_stopped:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at DESC, rowid DESC"
        async with self._store.reading() as conn:
            async with conn.execute(sql, (session_id,)) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_watcher(r) for r in rows]

    async def stop(self, watcher_id: str) -> Watcher:
        """
        Stop a watcher. Stopping an already stopped watcher is a no-op.

        Raises:
            WatcherNotFoundError: If no watcher with this ID exists.
        """
        async with self._store.transaction() as conn:
            watcher = await self.fetch(conn, watcher_id)
            if watcher.active:
                await conn.execute(
                    "UPDATE context_watchers SET is_active = 0 WHERE id = ?", (watcher_id,)
                )
                watcher.active = False
                self._logger.info(
                    "watcher_stopped", watcher_id=watcher_id, session_id=watcher.session_id
                )
        return watcher

    async def fetch(self, conn: aiosqlite.Connection, watcher_id: str) -> Watcher:
        """Read a watcher on an already held connection (e.g. inside a transaction)."""
        async with conn.execute(
            "SELECT * FROM context_watchers WHERE id = ?", (watcher_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise WatcherNotFoundError(watcher_id)
        return self._row_to_watcher(row)

    async def advance(
        self,
        conn: aiosqlite.Connection,
        watcher_id: str,
        last_sequence: int,
    ) -> None:
        """
        Move a watcher's cursor forward and stamp ``last_poll_at``.

        Must be called inside the transaction that read the records. ``MAX``
        keeps the cursor from ever moving backwards.
        """
        await conn.execute(
            """
            UPDATE context_watchers
            SET last_sequence = MAX(last_sequence, ?), last_poll_at = ?
            WHERE id = ? AND is_active = 1
            """,
            (last_sequence, int(time.time() * 1000), watcher_id),
        )

    # ── Private Helpers ────────────────────────────────────────────────────────

    def _new_id(self) -> str:
        return f"{self._config.id_prefix}{uuid.uuid4().hex[:8]}"

    async def _insert(
        self,
        conn: aiosqlite.Connection,
        session_id: str,
        filters_json: str,
        last_sequence: int,
        now: int,
    ) -> str:
        # Eight hex chars can collide; retry with a fresh ID on primary key conflict.
        for _ in range(_MAX_ID_ATTEMPTS):
            watcher_id = self._new_id()
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO context_watchers
                    (id, session_id, filters, last_sequence, is_active, created_at)
                VALUES (?, ?, ?, ?, 1, ?)
                """,
                (watcher_id, session_id, filters_json, last_sequence, now),
            )
            inserted = cursor.rowcount
            await cursor.close()
            if inserted == 1:
                return watcher_id
        raise aiosqlite.IntegrityError(
            f"could not allocate a unique watcher id after {_MAX_ID_ATTEMPTS} attempts"
        )

    @staticmethod
    def _row_to_watcher(row: aiosqlite.Row) -> Watcher:
        return Watcher(
            id=row["id"],
            session_id=row["session_id"],
            filter=WatcherFilter.model_validate(json.loads(row["filters"] or "{}")),
            last_sequence=row["last_sequence"],
            active=bool(row["is_active"]),
            created_at=row["created_at"],
            last_poll_at=row["last_poll_at"],
        )
