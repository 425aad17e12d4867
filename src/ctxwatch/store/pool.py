"""
Shared connection pool for ctxwatch stores.

A single ``StorePool`` manages one ``aiosqlite.Connection`` per database path.
Every ``ContextStore`` pointing at the same path shares that connection and
its write lock, so item mutations, watcher creation and polls from any number
of stores serialise through one lock instead of failing with
``database is locked``.

Usage::

    pool = StorePool()

    store_a = ContextStore(config.store, pool=pool)
    store_b = ContextStore(config.store, pool=pool)   # same DB path → same connection

    await store_a.initialize()   # opens the connection
    await store_b.initialize()   # reuses it

    await pool.close_all()       # close all managed connections once at shutdown
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

from ctxwatch.errors import StoreUnavailableError

_logger = structlog.get_logger("ctxwatch.store.pool")


def resolve_db_path(db_path: str) -> str:
    """Expand ``~`` and resolve *db_path* to the key used by the pool."""
    return str(Path(db_path).expanduser().resolve())


async def open_connection(
    db_path: str,
    *,
    wal_mode: bool = True,
    connection_timeout: float = 30.0,
) -> aiosqlite.Connection:
    """
    Open and configure a new connection to *db_path*.

    Raises:
        StoreUnavailableError: If the file cannot be opened or configured.
    """
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    except (OSError, aiosqlite.Error) as exc:
        raise StoreUnavailableError(f"Cannot open database {db_path!r}: {exc}") from exc
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except aiosqlite.Error as exc:
        await conn.close()
        raise StoreUnavailableError(f"Cannot configure database {db_path!r}: {exc}") from exc
    return conn


class StorePool:
    """
    Process-scoped registry of open ``aiosqlite.Connection`` objects.

    Only safe to use from a single asyncio event loop.

    For each unique resolved database path the pool holds exactly one
    connection and one ``asyncio.Lock``. Stores hold the lock for the whole
    of every transaction, which also keeps readers sharing the connection
    from observing another coroutine's uncommitted writes.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the shared connection for *db_path*, opening it if needed.

        Raises:
            StoreUnavailableError: If the connection cannot be opened.
        """
        resolved = resolve_db_path(db_path)

        if resolved in self._connections:
            return self._connections[resolved]

        if resolved not in self._open_locks:
            self._open_locks[resolved] = asyncio.Lock()

        async with self._open_locks[resolved]:
            # Another coroutine may have opened it while we waited
            if resolved in self._connections:
                return self._connections[resolved]

            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            self._connections[resolved] = conn
            self._locks[resolved] = asyncio.Lock()
            _logger.debug("pool_connection_opened", db_path=resolved)
            return conn

    def lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the serialisation lock for *db_path*.

        Raises ``KeyError`` if called before ``acquire()``.
        """
        return self._locks[resolve_db_path(db_path)]

    async def close_path(self, db_path: str) -> None:
        """Close and remove the connection for a single path."""
        resolved = resolve_db_path(db_path)
        conn = self._connections.pop(resolved, None)
        self._locks.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if conn is not None:
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._connections):
            await self.close_path(path)

    @staticmethod
    def default() -> StorePool:
        """
        Return the process-level default pool.

        Tests should create their own ``StorePool()`` instances for isolation.
        """
        global _default_pool
        if _default_pool is None:
            _default_pool = StorePool()
        return _default_pool


_default_pool: StorePool | None = None
