"""Configuration models for ctxwatch stores and watchers."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "task",
    "decision",
    "progress",
    "note",
    "error",
    "warning",
    "git",
    "system",
)
DEFAULT_PRIORITIES: tuple[str, ...] = ("high", "normal", "low")


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.ctxwatch/context.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds SQLite waits on a locked database before raising.",
    )


class ItemConfig(BaseModel):
    """Validation rules for context items and the filter values that refer to them."""

    valid_categories: tuple[str, ...] = Field(
        default=DEFAULT_CATEGORIES,
        description="Category values accepted on items and in watcher filters.",
    )

    valid_priorities: tuple[str, ...] = Field(
        default=DEFAULT_PRIORITIES,
        description="Priority values accepted on items and in watcher filters.",
    )

    max_key_length: int = Field(default=255, ge=1, le=4_096)

    max_value_length: int = Field(
        default=1_000_000,
        ge=1,
        description="Maximum item value length in characters.",
    )

    @model_validator(mode="after")
    def validate_value_sets(self) -> ItemConfig:
        if not self.valid_categories:
            raise ValueError("valid_categories must not be empty")
        if "normal" not in self.valid_priorities:
            raise ValueError("valid_priorities must include the default priority 'normal'")
        return self


class WatcherConfig(BaseModel):
    """Configuration for watcher creation and polling."""

    poll_batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description=(
            "Maximum number of change records read by a single poll. "
            "Unread records beyond the batch are reported via has_more."
        ),
    )

    id_prefix: str = Field(
        default="watch_",
        min_length=1,
        max_length=16,
        description="Prefix prepended to generated watcher IDs.",
    )


class CtxWatchConfig(BaseModel):
    """
    Top-level configuration.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = CtxWatchConfig(
            store=StoreConfig(db_path="/tmp/ctx.db"),
            watcher=WatcherConfig(poll_batch_size=500),
        )
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    items: ItemConfig = Field(default_factory=ItemConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)

    @classmethod
    def default(cls) -> CtxWatchConfig:
        """Return a config instance with all defaults."""
        return cls()
