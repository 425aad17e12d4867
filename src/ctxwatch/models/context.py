"""Storage models for context items and their change records."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

DEFAULT_CHANNEL = "general"
DEFAULT_PRIORITY = "normal"


class ChangeType(StrEnum):
    """Kind of mutation captured by a change record."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ContextItem:
    """Thin data class for context item rows (not Pydantic — avoids heavy validation on reads)."""

    __slots__ = (
        "category",
        "channel",
        "created_at",
        "id",
        "key",
        "metadata",
        "priority",
        "session_id",
        "size",
        "updated_at",
        "value",
    )

    def __init__(
        self,
        id: str,
        session_id: str,
        key: str,
        value: str,
        category: str | None = None,
        priority: str = DEFAULT_PRIORITY,
        channel: str = DEFAULT_CHANNEL,
        metadata: dict[str, Any] | None = None,
        size: int = 0,
        created_at: int = 0,
        updated_at: int = 0,
    ) -> None:
        self.id = id
        self.session_id = session_id
        self.key = key
        self.value = value
        self.category = category
        self.priority = priority
        self.channel = channel
        self.metadata = metadata
        self.size = size
        self.created_at = created_at
        self.updated_at = updated_at

    def __repr__(self) -> str:
        return f"ContextItem(session_id={self.session_id!r}, key={self.key!r})"


class ChangeRecord:
    """
    One immutable entry of the change log.

    Classification fields are copied from the item at mutation time so that
    filters can be evaluated without reading the item back (it may be gone).
    ``created_at`` is informational; ordering is defined by ``sequence_id``.
    """

    __slots__ = (
        "category",
        "change_type",
        "channel",
        "created_at",
        "created_by",
        "item_id",
        "key",
        "priority",
        "sequence_id",
        "session_id",
        "size_delta",
    )

    def __init__(
        self,
        sequence_id: int,
        session_id: str,
        item_id: str,
        key: str,
        change_type: ChangeType,
        category: str | None,
        priority: str | None,
        channel: str | None,
        size_delta: int = 0,
        created_at: int = 0,
        created_by: str | None = None,
    ) -> None:
        self.sequence_id = sequence_id
        self.session_id = session_id
        self.item_id = item_id
        self.key = key
        self.change_type = change_type
        self.category = category
        self.priority = priority
        self.channel = channel
        self.size_delta = size_delta
        self.created_at = created_at
        self.created_by = created_by

    def __repr__(self) -> str:
        return (
            f"ChangeRecord(sequence_id={self.sequence_id}, key={self.key!r},"
            f" change_type={self.change_type.value})"
        )
