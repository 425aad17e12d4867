"""
Example 01: Watching Context Changes
====================================

Demonstrates the poll-based change tracking flow:
- Opening a WatchService as an async context manager
- Creating watchers with category, priority and key-glob filters
- Saving, updating and deleting context items
- Polling each watcher for only the changes it cares about
- Stopping a watcher and seeing later polls fail

Run:
    uv run python examples/01_watch_changes.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from ctxwatch import WatchService, WatcherStoppedError, handle_context_watch

    print("=== ctxwatch Example ===\n")

    session_id = "sess_example"
    db_path = "/tmp/ctxwatch_example_01.db"
    Path(db_path).unlink(missing_ok=True)

    async with await WatchService.open(db_path=db_path) as service:
        urgent = await service.create(
            session_id, {"categories": ["task", "progress"], "priorities": ["high"]}
        )
        config = await service.create(session_id, {"keys": ["user_*", "*_config"]})
        everything = await service.create(session_id)
        print(f"Watchers: {urgent.id} (urgent), {config.id} (config), {everything.id} (all)\n")

        store = service.store
        await store.save(session_id, "task_deploy", "Deploy v2", category="task", priority="high")
        await store.save(session_id, "user_profile", '{"name": "Ada"}')
        await store.save(session_id, "app_config", '{"debug": false}')
        await store.save(session_id, "note_1", "Remember the milk", category="note")
        await store.update(session_id, "task_deploy", value="Deploy v2.1")
        await store.delete(session_id, "note_1")

        for name, watcher in (("urgent", urgent), ("config", config), ("all", everything)):
            result = await service.poll(watcher.id)
            print(f"{name}: {len(result.changes)} change(s), cursor={result.last_sequence}")
            for change in result.changes:
                print(f"  #{change.sequence} {change.type.value:<6} {change.key}")
        print()

        # Nothing new: polling again returns an empty list
        again = await service.poll(everything.id)
        print(f"Second poll of 'all': {len(again.changes)} change(s)\n")

        # The request-style surface returns structured responses
        response = await handle_context_watch({"action": "list"}, service, session_id)
        print(f"list -> total={response.data['total']}")

        await service.stop(urgent.id)
        try:
            await service.poll(urgent.id)
        except WatcherStoppedError as exc:
            print(f"poll after stop -> {exc.kind.value}: {exc}")

    print("\nService closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
