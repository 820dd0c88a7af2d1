"""Per-session cache state.

One ``CacheState`` belongs to one ``CacheService``; it is never shared
between connections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from convcache.errors import ValidationError


@dataclass
class CacheState:
    """Mutable record of the current session's cache configuration."""

    base_cache_dir: Path
    update_interval: int = 10
    is_initialized: bool = False
    # None means legacy (non-topic) mode.
    active_topic: str | None = None
    # Only consulted when no topic is active.
    global_auto_update_enabled: bool = False
    per_topic_auto_update: dict[str, bool] = field(default_factory=dict)
    tool_call_count: int = 0
    last_update: datetime | None = None
    has_create_permission: bool = False
    permission_granted_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.update_interval <= 0:
            raise ValidationError(f"update_interval must be positive, got {self.update_interval}")

    def auto_update_enabled(self) -> bool:
        """Effective enablement: the active topic's flag, else the global flag."""
        if self.active_topic is not None:
            return self.per_topic_auto_update.get(self.active_topic, False)
        return self.global_auto_update_enabled

    def activate(self, topic: str | None) -> None:
        self.active_topic = topic
        self.is_initialized = True

    def forget_topic(self, topic: str) -> None:
        """Drop per-topic settings; clears the active topic if it was this one."""
        self.per_topic_auto_update.pop(topic, None)
        if self.active_topic == topic:
            self.active_topic = None
            self.global_auto_update_enabled = False
