"""MCP tools for conversation cache access.

These functions are designed to be exposed as tools to the AI agent.
Each takes the raw ``arguments`` object of a tool call (camelCase keys),
checks its shape and forwards to ``CacheService``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from convcache.errors import ValidationError

if TYPE_CHECKING:
    from convcache.cache.service import CacheResult, CacheService

ToolHandler = Callable[[dict], Awaitable["CacheResult"]]

_TOPIC = {"type": "string", "description": "Topic name, e.g. 'quantum_physics'"}
_CACHE_DIR = {"type": "string", "description": "Base cache directory (defaults to config)"}

TOOLS: list[dict[str, Any]] = [
    {
        "name": "start_cache",
        "description": (
            "Start caching for a topic in one call: creates the topic-isolated cache "
            "directory and files, and enables automatic progress saving."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "topic": _TOPIC,
                "projectName": {"type": "string"},
                "cacheDir": _CACHE_DIR,
            },
            "required": ["topic"],
        },
    },
    {
        "name": "handle_conversation_title",
        "description": (
            "Set up caching from the conversation's title: the title becomes a topic "
            "name (e.g. 'Quantum Physics Discussion' -> 'quantum_physics_discussion'). "
            "An existing topic is loaded, a new one is created, and automatic "
            "progress saving is enabled either way."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "conversationTitle": {"type": "string"},
                "cacheDir": _CACHE_DIR,
            },
            "required": ["conversationTitle"],
        },
    },
    {
        "name": "init_cache",
        "description": (
            "Initialize a conversation cache (optionally for a topic). Creating a new "
            "directory requires confirmCreate=true and understoodGrowth=true. "
            "Re-running on an existing cache rewrites its files."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "cacheDir": _CACHE_DIR,
                "projectName": {"type": "string"},
                "topic": _TOPIC,
                "confirmCreate": {"type": "boolean", "default": False},
                "understoodGrowth": {"type": "boolean", "default": False},
                "sessionOnly": {"type": "boolean", "default": False},
            },
        },
    },
    {
        "name": "update_cache",
        "description": (
            "Append progress to the cache: a conversation summary (required) and "
            "optional project, decision and next-step updates."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "conversationSummary": {"type": "string"},
                "projectUpdate": {"type": "string"},
                "decisionsUpdate": {"type": "string"},
                "nextStepsUpdate": {"type": "string"},
                "topic": _TOPIC,
            },
            "required": ["conversationSummary"],
        },
    },
    {
        "name": "load_cache",
        "description": (
            "Restore conversation context from a topic's cache. Without a topic "
            "(and without useLegacy) it lists the available topics instead."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "cacheDir": _CACHE_DIR,
                "topic": _TOPIC,
                "useLegacy": {"type": "boolean", "default": False},
            },
        },
    },
    {
        "name": "auto_update_cache",
        "description": "Enable or disable automatic cache updates every N tool calls.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "enable": {"type": "boolean"},
                "updateInterval": {"type": "integer", "minimum": 1},
                "topic": _TOPIC,
            },
            "required": ["enable"],
        },
    },
    {
        "name": "get_cache_status",
        "description": "Report cache state for one topic, or for the whole session.",
        "inputSchema": {"type": "object", "properties": {"topic": _TOPIC}},
    },
    {
        "name": "get_cache_topics",
        "description": "List cache topics with directory and auto-update status.",
        "inputSchema": {"type": "object", "properties": {"cacheDir": _CACHE_DIR}},
    },
    {
        "name": "archive_cache",
        "description": (
            "Archive a finished topic. Files are kept and remain loadable. "
            "Requires confirmArchive=true."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "topic": _TOPIC,
                "cacheDir": _CACHE_DIR,
                "confirmArchive": {"type": "boolean", "default": False},
            },
            "required": ["topic"],
        },
    },
    {
        "name": "cleanup_cache",
        "description": (
            "Remove stale or excess topics from the topic index (never deletes files). "
            "Requires confirmCleanup=true."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "cacheDir": _CACHE_DIR,
                "cleanupAfterDays": {"type": "integer", "default": 30},
                "maxSessions": {"type": "integer", "default": 10},
                "confirmCleanup": {"type": "boolean", "default": False},
            },
        },
    },
]


# ── Argument helpers ─────────────────────────────────────────


def _str(args: dict, key: str, required: bool = False) -> str | None:
    value = args.get(key)
    if value is None:
        if required:
            raise ValidationError(f"Invalid arguments: {key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Invalid arguments: {key} must be a string")
    return value


def _bool(args: dict, key: str, default: bool | None = False) -> bool | None:
    value = args.get(key, default)
    if value is None and default is None:
        raise ValidationError(f"Invalid arguments: {key} is required")
    if not isinstance(value, bool):
        raise ValidationError(f"Invalid arguments: {key} must be a boolean")
    return value


def _int(args: dict, key: str) -> int | None:
    value = args.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError(f"Invalid arguments: {key} must be an integer")
    return int(value)


def get_cache_tools(service: CacheService) -> dict[str, ToolHandler]:
    """Return a dict of tool_name -> async callable(arguments) for cache operations."""

    async def start_cache(args: dict) -> CacheResult:
        return await service.start(
            topic=_str(args, "topic", required=True),
            project_name=_str(args, "projectName"),
            cache_dir=_str(args, "cacheDir"),
        )

    async def handle_conversation_title(args: dict) -> CacheResult:
        return await service.handle_conversation_title(
            title=_str(args, "conversationTitle", required=True),
            cache_dir=_str(args, "cacheDir"),
        )

    async def init_cache(args: dict) -> CacheResult:
        return await service.init(
            cache_dir=_str(args, "cacheDir"),
            topic=_str(args, "topic"),
            project_name=_str(args, "projectName"),
            confirm_create=_bool(args, "confirmCreate"),
            understood_growth=_bool(args, "understoodGrowth"),
            session_only=_bool(args, "sessionOnly"),
        )

    async def update_cache(args: dict) -> CacheResult:
        return await service.update(
            conversation_summary=_str(args, "conversationSummary", required=True),
            topic=_str(args, "topic"),
            project_update=_str(args, "projectUpdate"),
            decisions_update=_str(args, "decisionsUpdate"),
            next_steps_update=_str(args, "nextStepsUpdate"),
        )

    async def load_cache(args: dict) -> CacheResult:
        return await service.load(
            cache_dir=_str(args, "cacheDir"),
            topic=_str(args, "topic"),
            use_legacy=_bool(args, "useLegacy"),
        )

    async def auto_update_cache(args: dict) -> CacheResult:
        return await service.configure_auto_update(
            enable=_bool(args, "enable", default=None),
            update_interval=_int(args, "updateInterval"),
            topic=_str(args, "topic"),
        )

    async def get_cache_status(args: dict) -> CacheResult:
        return await service.status(topic=_str(args, "topic"))

    async def get_cache_topics(args: dict) -> CacheResult:
        return await service.list_topics(cache_dir=_str(args, "cacheDir"))

    async def archive_cache(args: dict) -> CacheResult:
        return await service.archive(
            topic=_str(args, "topic", required=True),
            cache_dir=_str(args, "cacheDir"),
            confirm_archive=_bool(args, "confirmArchive"),
        )

    async def cleanup_cache(args: dict) -> CacheResult:
        return await service.cleanup(
            cache_dir=_str(args, "cacheDir"),
            cleanup_after_days=_int(args, "cleanupAfterDays"),
            max_sessions=_int(args, "maxSessions"),
            confirm_cleanup=_bool(args, "confirmCleanup"),
        )

    return {
        "start_cache": start_cache,
        "handle_conversation_title": handle_conversation_title,
        "init_cache": init_cache,
        "update_cache": update_cache,
        "load_cache": load_cache,
        "auto_update_cache": auto_update_cache,
        "get_cache_status": get_cache_status,
        "get_cache_topics": get_cache_topics,
        "archive_cache": archive_cache,
        "cleanup_cache": cleanup_cache,
    }
