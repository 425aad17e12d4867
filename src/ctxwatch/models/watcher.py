"""Watcher registration, filter and poll result models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ctxwatch.errors import InvalidFilterError
from ctxwatch.models.config import ItemConfig
from ctxwatch.models.context import ChangeType


class WatcherState(StrEnum):
    """Lifecycle states of a watcher. ``STOPPED`` is terminal."""

    ACTIVE = "active"
    STOPPED = "stopped"


class WatcherFilter(BaseModel):
    """
    Filter specification for a watcher.

    Each dimension is either ``None`` (no constraint) or a non-empty list of
    accepted values. A change matches when every present dimension accepts it.
    ``keys`` holds glob patterns where ``*`` matches any run of characters and
    ``?`` matches exactly one.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    categories: list[StrictStr] | None = None
    priorities: list[StrictStr] | None = None
    keys: list[StrictStr] | None = None
    channels: list[StrictStr] | None = None

    @field_validator("categories", "priorities", "keys", "channels")
    @classmethod
    def non_empty_unique(cls, value: list[str] | None, info: ValidationInfo) -> list[str] | None:
        if value is None:
            return None
        if not value:
            raise ValueError(f"{info.field_name} must not be an empty list")
        if any(not v.strip() for v in value):
            raise ValueError(f"{info.field_name} must not contain blank values")
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def known_values(self, info: ValidationInfo) -> WatcherFilter:
        config = (info.context or {}).get("item_config")
        if config is None:
            return self
        for category in self.categories or ():
            if category not in config.valid_categories:
                raise ValueError(f"Invalid category: {category}")
        for priority in self.priorities or ():
            if priority not in config.valid_priorities:
                raise ValueError(f"Invalid priority: {priority}")
        return self

    @classmethod
    def parse(cls, raw: Any, config: ItemConfig | None = None) -> WatcherFilter:
        """
        Validate a raw request filter.

        ``None`` and ``{}`` both yield the match-everything filter.

        Raises:
            InvalidFilterError: If the shape or any value is invalid.
        """
        if raw is None:
            return cls()
        if isinstance(raw, WatcherFilter):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            raise InvalidFilterError("filters must be an object")
        try:
            return cls.model_validate(raw, context={"item_config": config})
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            message = first["msg"].removeprefix("Value error, ")
            detail = f"{location}: {message}" if location else message
            raise InvalidFilterError(detail) from exc

    def is_empty(self) -> bool:
        return all(
            v is None for v in (self.categories, self.priorities, self.keys, self.channels)
        )

    def to_dict(self) -> dict[str, list[str]]:
        """Return only the present dimensions, as sent back to callers."""
        return self.model_dump(exclude_none=True)


class Watcher:
    """Thin data class for watcher rows."""

    __slots__ = (
        "active",
        "created_at",
        "filter",
        "id",
        "last_poll_at",
        "last_sequence",
        "session_id",
    )

    def __init__(
        self,
        id: str,
        session_id: str,
        filter: WatcherFilter,
        last_sequence: int,
        active: bool,
        created_at: int,
        last_poll_at: int | None = None,
    ) -> None:
        self.id = id
        self.session_id = session_id
        self.filter = filter
        self.last_sequence = last_sequence
        self.active = active
        self.created_at = created_at
        self.last_poll_at = last_poll_at

    @property
    def state(self) -> WatcherState:
        return WatcherState.ACTIVE if self.active else WatcherState.STOPPED

    def __repr__(self) -> str:
        return (
            f"Watcher(id={self.id!r}, session_id={self.session_id!r},"
            f" state={self.state.value}, last_sequence={self.last_sequence})"
        )


class MatchedChange(BaseModel):
    """A change record projected for delivery to a watcher."""

    key: str
    type: ChangeType
    category: str | None = None
    priority: str | None = None
    channel: str | None = None
    sequence: int
    timestamp: int = Field(description="Unix ms timestamp of the mutation (informational).")


class PollResult(BaseModel):
    """Result of a successful poll. An empty ``changes`` list is success."""

    watcher_id: str
    changes: list[MatchedChange] = Field(default_factory=list)
    last_sequence: int = Field(description="The watcher's cursor after this poll.")
    has_more: bool = Field(
        default=False,
        description="True when unread records remain beyond this poll's batch.",
    )
