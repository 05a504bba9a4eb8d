from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any


class EventBus:
    """In-process fan-out of progress events, keyed by the client application id."""

    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def publish(self, key: str, event: dict[str, Any]) -> None:
        async with self._lock:
            for queue in list(self._queues.get(key, [])):
                await queue.put(event)

    async def subscribe(self, key: str) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        async with self._lock:
            self._queues[key].append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
                if event.get("stage") in {"complete", "error"}:
                    return
        finally:
            async with self._lock:
                if queue in self._queues.get(key, []):
                    self._queues[key].remove(queue)
                if not self._queues.get(key):
                    self._queues.pop(key, None)

    def subscriber_count(self, key: str) -> int:
        return len(self._queues.get(key, []))


def publish_nowait(bus: EventBus, key: str, event: dict[str, Any]) -> None:
    """Publish from synchronous code, scheduling on the running loop when there is one."""
    if not bus.subscriber_count(key):
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(bus.publish(key, event))
    else:
        loop.create_task(bus.publish(key, event))
