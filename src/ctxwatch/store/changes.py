"""Change log writer and reader over the ``context_changes`` table."""

from __future__ import annotations

import time

import aiosqlite
import structlog

from ctxwatch.models.context import ChangeRecord, ChangeType, ContextItem

_logger = structlog.get_logger("ctxwatch.store.changes")

_CREATED_BY = {
    ChangeType.CREATE: "context_save",
    ChangeType.UPDATE: "context_update",
    ChangeType.DELETE: "context_delete",
}


class ChangeLog:
    """
    Append-only log of context item mutations.

    Every method takes the connection of the caller's open transaction:
    ``append()`` must run in the same transaction as the item mutation it
    records so that neither can be observed without the other. Records are
    never updated (a schema trigger rejects it) or deleted here.
    """

    async def append(
        self,
        conn: aiosqlite.Connection,
        item: ContextItem,
        change_type: ChangeType,
        *,
        size_delta: int,
        created_by: str | None = None,
    ) -> ChangeRecord:
        """
        Append one record for a mutation of *item*.

        For ``DELETE`` *item* must be the row as it was before removal; its
        classification fields are copied onto the record.

        Returns:
            The stored record, carrying its assigned ``sequence_id``.
        """
        now = int(time.time() * 1000)
        created_by = created_by or _CREATED_BY[change_type]
        cursor = await conn.execute(
            """
            INSERT INTO context_changes
                (session_id, item_id, key, operation, category, priority, channel,
                 size_delta, created_at, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.session_id,
                item.id,
                item.key,
                change_type.value,
                item.category,
                item.priority,
                item.channel,
                size_delta,
                now,
                created_by,
            ),
        )
        sequence_id = cursor.lastrowid
        await cursor.close()
        if sequence_id is None:
            raise aiosqlite.OperationalError("change log insert returned no sequence id")

        _logger.debug(
            "change_logged",
            session_id=item.session_id,
            key=item.key,
            change_type=change_type.value,
            sequence_id=sequence_id,
        )
        return ChangeRecord(
            sequence_id=sequence_id,
            session_id=item.session_id,
            item_id=item.id,
            key=item.key,
            change_type=change_type,
            category=item.category,
            priority=item.priority,
            channel=item.channel,
            size_delta=size_delta,
            created_at=now,
            created_by=created_by,
        )

    async def max_sequence(self, conn: aiosqlite.Connection, session_id: str) -> int:
        """Return the highest sequence_id logged for *session_id*, or 0 if none."""
        async with conn.execute(
            "SELECT COALESCE(MAX(sequence_id), 0) FROM context_changes WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def read_since(
        self,
        conn: aiosqlite.Connection,
        session_id: str,
        after: int,
        *,
        limit: int | None = None,
    ) -> list[ChangeRecord]:
        """
        Return records of *session_id* with ``sequence_id > after``.

        Args:
            conn: Connection to read from.
            session_id: Only this session's records are returned.
            after: Exclusive lower bound on ``sequence_id``.
            limit: Maximum number of records; ``None`` for all.

        Returns:
            Records in ascending ``sequence_id`` order.
        """
        sql = (
            "SELECT * FROM context_changes"
            " WHERE session_id = ? AND sequence_id > ? ORDER BY sequence_id ASC"
        )
        params: list[object] = [session_id, after]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        async with conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_record(r) for r in rows]

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> ChangeRecord:
        return ChangeRecord(
            sequence_id=row["sequence_id"],
            session_id=row["session_id"],
            item_id=row["item_id"],
            key=row["key"],
            change_type=ChangeType(row["operation"]),
            category=row["category"],
            priority=row["priority"],
            channel=row["channel"],
            size_delta=row["size_delta"] or 0,
            created_at=row["created_at"],
            created_by=row["created_by"],
        )
