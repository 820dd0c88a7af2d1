"""Configuration loading from environment variables and convcache.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from convcache.errors import ValidationError

_DEFAULT_CACHE_DIR = Path.home() / "Claude_Session"
_CONFIG_FILENAME = "convcache.toml"


@dataclass
class CacheConfig:
    """Top-level convcache configuration."""

    cache_dir: Path = _DEFAULT_CACHE_DIR
    update_interval: int = 10
    max_read_lines: int = 2000
    session_only_days: int = 7
    cleanup_after_days: int = 30
    max_sessions: int = 10
    manifest_retries: int = 3
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> CacheConfig:
    """Load configuration from environment variables and optional convcache.toml.

    Priority: environment variables > convcache.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.convcache/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".convcache" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    cache_data = file_data.get("cache", {})
    cleanup_data = file_data.get("cleanup", {})

    config = CacheConfig(
        cache_dir=Path(
            os.getenv("CONVCACHE_DIR", cache_data.get("dir", str(_DEFAULT_CACHE_DIR)))
        ).expanduser(),
        update_interval=int(
            os.getenv("CONVCACHE_UPDATE_INTERVAL", cache_data.get("update_interval", 10))
        ),
        max_read_lines=int(
            os.getenv("CONVCACHE_MAX_READ_LINES", cache_data.get("max_read_lines", 2000))
        ),
        session_only_days=int(cache_data.get("session_only_days", 7)),
        cleanup_after_days=int(cleanup_data.get("after_days", 30)),
        max_sessions=int(cleanup_data.get("max_sessions", 10)),
        manifest_retries=int(cache_data.get("manifest_retries", 3)),
        log_level=os.getenv("CONVCACHE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    if config.update_interval <= 0:
        raise ValidationError(
            f"update_interval must be a positive number of tool calls, got {config.update_interval}"
        )
    return config
