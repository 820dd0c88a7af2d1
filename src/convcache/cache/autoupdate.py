"""Counter-driven auto-update.

``tick()`` is called by the dispatch layer before each tool call. Every
``update_interval`` calls it schedules an ``update`` with a synthesized
summary. The update runs in the background; at most one is in flight per
topic, and failures are logged, never raised to the caller of ``tick()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from convcache.cache.manifest import format_ts

if TYPE_CHECKING:
    from convcache.cache.service import CacheService

logger = logging.getLogger(__name__)


class AutoUpdateTrigger:
    """Tool-call counter plus a single-slot background update per topic."""

    def __init__(self, service: CacheService) -> None:
        self._service = service
        self._in_flight: dict[str | None, asyncio.Task] = {}

    @property
    def pending(self) -> int:
        return sum(1 for task in self._in_flight.values() if not task.done())

    def tick(self) -> asyncio.Task | None:
        """Advance the counter; return the scheduled update task, if any."""
        state = self._service.state
        state.tool_call_count += 1

        if not (state.auto_update_enabled() and state.is_initialized):
            return None
        if state.tool_call_count % state.update_interval != 0:
            return None

        topic = state.active_topic
        running = self._in_flight.get(topic)
        if running is not None and not running.done():
            logger.debug("Auto-update for %s still running, skipping", topic or "legacy cache")
            return None

        summary = (
            f"Auto-update triggered after {state.tool_call_count} tool calls "
            f"at {format_ts(self._service._now())}"
        )
        task = asyncio.get_running_loop().create_task(self._run(topic, summary))
        self._in_flight[topic] = task
        task.add_done_callback(lambda t, topic=topic: self._forget(topic, t))
        return task

    def _forget(self, topic: str | None, task: asyncio.Task) -> None:
        if self._in_flight.get(topic) is task:
            del self._in_flight[topic]

    async def _run(self, topic: str | None, summary: str) -> None:
        try:
            await self._service.update(summary, topic=topic)
        except Exception as e:
            logger.error("Auto-update failed: %s", e)

    async def drain(self) -> None:
        """Wait for every in-flight auto-update to finish."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight auto-updates."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
