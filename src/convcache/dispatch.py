"""Route named tool calls to cache operations.

Before routing, every call except ``get_cache_status`` advances the
auto-update counter; status checks are excluded so that polling the cache
never triggers writes to it.
"""

from __future__ import annotations

import logging

from convcache.cache.service import CacheResult, CacheService
from convcache.errors import CacheError
from convcache.tools.cache_tools import TOOLS, get_cache_tools

logger = logging.getLogger(__name__)

UNCOUNTED_TOOLS = frozenset({"get_cache_status"})


class CacheDispatcher:
    """Dispatch layer for one session (one CacheService)."""

    def __init__(self, service: CacheService) -> None:
        self.service = service
        self._tools = get_cache_tools(service)

    @property
    def tool_definitions(self) -> list[dict]:
        return TOOLS

    async def dispatch(self, name: str, args: dict | None = None) -> CacheResult:
        if name not in UNCOUNTED_TOOLS:
            self.service.trigger.tick()

        handler = self._tools.get(name)
        if handler is None:
            return CacheResult(text=f"Error: Unknown tool: {name}", is_error=True)

        try:
            return await handler(args or {})
        except CacheError as e:
            return CacheResult(text=str(e), is_error=True, data={"error": type(e).__name__})
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            return CacheResult(text=f"Error: {e}", is_error=True)

    async def close(self) -> None:
        await self.service.aclose()
