"""Error taxonomy for the conversation cache.

Every error carries a message that is safe to show to the agent as-is,
including what to do next.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base class for all cache errors."""


class ValidationError(CacheError):
    """Malformed arguments. Raised before any I/O happens."""


class NotInitialized(CacheError):
    """No cache has been initialized or loaded in this session."""


class DirectoryMissing(CacheError):
    """The resolved cache directory does not exist."""


class TopicNotFound(CacheError):
    """The topic is not known to the manifest or has no directory."""


class ManifestCorrupt(CacheError):
    """The manifest file could not be parsed. Never escapes ManifestStore.load."""


class ManifestConflict(CacheError):
    """The manifest changed on disk between load and save."""


class IOFailure(CacheError):
    """An underlying read/write failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
