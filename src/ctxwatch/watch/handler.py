"""Multiplexed ``context_watch`` request handler."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from ctxwatch.errors import InvalidActionError, InvalidRequestError, WatchError, WatchErrorKind
from ctxwatch.models.watcher import Watcher
from ctxwatch.watch.service import WatchService

_logger = structlog.get_logger("ctxwatch.handler")


class WatchResponse(BaseModel):
    """
    Structured outcome of one ``context_watch`` request.

    ``error`` carries the failure kind so callers can branch on it without
    parsing ``message``. ``to_text()`` renders the plain-text form: the JSON
    payload on success, ``"Error: <message>"`` on failure.
    """

    ok: bool
    data: dict[str, Any] | None = None
    error: WatchErrorKind | None = None
    message: str | None = None

    @classmethod
    def success(cls, data: dict[str, Any]) -> WatchResponse:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, exc: WatchError) -> WatchResponse:
        return cls(ok=False, error=exc.kind, message=str(exc))

    def to_text(self) -> str:
        if self.ok:
            return json.dumps(self.data, indent=2)
        return f"Error: {self.message}"


def _watcher_summary(watcher: Watcher) -> dict[str, Any]:
    return {
        "watcherId": watcher.id,
        "active": watcher.active,
        "filters": watcher.filter.to_dict(),
        "lastSequence": watcher.last_sequence,
        "createdAt": watcher.created_at,
        "lastPollAt": watcher.last_poll_at,
    }


def _require_watcher_id(args: Mapping[str, Any], action: str) -> str:
    watcher_id = args.get("watcherId")
    if not isinstance(watcher_id, str) or not watcher_id:
        raise InvalidRequestError(f"watcherId is required for {action} action")
    return watcher_id


async def handle_context_watch(
    args: Mapping[str, Any],
    service: WatchService,
    session_id: str,
) -> WatchResponse:
    """
    Dispatch one request on its ``action`` (``create``, ``poll``, ``list``, ``stop``).

    Args:
        args: Request arguments: ``action`` plus ``filters`` (create) or
            ``watcherId`` (poll, stop).
        service: The watch service to act on.
        session_id: The acting session; scopes every operation.

    Returns:
        A WatchResponse. Expected watcher failures (unknown or stopped
        watcher, unknown action, bad filter, missing argument) are returned as
        failures rather than raised.

    Raises:
        StoreUnavailableError: If the store fails; never converted to a response.
    """
    action = args.get("action")
    try:
        if action == "create":
            watcher = await service.create(session_id, args.get("filters"))
            return WatchResponse.success(
                {
                    "watcherId": watcher.id,
                    "created": True,
                    "filters": watcher.filter.to_dict(),
                    "currentSequence": watcher.last_sequence,
                }
            )

        if action == "poll":
            watcher_id = _require_watcher_id(args, "poll")
            result = await service.poll(watcher_id, session_id=session_id)
            return WatchResponse.success(
                {
                    "watcherId": result.watcher_id,
                    "changes": [c.model_dump(mode="json") for c in result.changes],
                    "hasMore": result.has_more,
                    "lastSequence": result.last_sequence,
                }
            )

        if action == "stop":
            watcher_id = _require_watcher_id(args, "stop")
            await service.stop(watcher_id, session_id=session_id)
            return WatchResponse.success({"watcherId": watcher_id, "stopped": True})

        if action == "list":
            watchers = await service.list_watchers(session_id)
            return WatchResponse.success(
                {
                    "total": len(watchers),
                    "watchers": [_watcher_summary(w) for w in watchers],
                }
            )

        raise InvalidActionError(action)
    except WatchError as exc:
        _logger.info(
            "watch_request_failed",
            action=str(action),
            kind=exc.kind.value,
            error=str(exc),
        )
        return WatchResponse.failure(exc)
