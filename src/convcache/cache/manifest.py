"""Persisted topic index: one ``session_manifest.json`` per base directory.

The manifest is the only shared, read-modify-written document in the cache.
Writes go through a temp file + ``os.replace`` so a crash never leaves a
half-written file, and ``save`` refuses to overwrite bytes it did not load
(optimistic check) so concurrent writers surface as ``ManifestConflict``
instead of silently losing updates.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import frontmatter

from convcache.cache.paths import CACHE_FILES, MANIFEST_FILENAME
from convcache.errors import ManifestConflict, ManifestCorrupt

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"


def format_ts(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_ts(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class ManifestEntry:
    """Lifecycle metadata for one topic."""

    created_at: datetime
    last_used: datetime
    project_name: str
    session_only: bool = False
    auto_cleanup_after_days: int | None = None
    archived_at: datetime | None = None

    def to_dict(self) -> dict:
        data = {
            "createdAt": format_ts(self.created_at),
            "lastUsed": format_ts(self.last_used),
            "projectName": self.project_name,
            "sessionOnly": self.session_only,
            "autoCleanupAfterDays": self.auto_cleanup_after_days,
        }
        if self.archived_at is not None:
            data["archivedAt"] = format_ts(self.archived_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ManifestEntry:
        archived = data.get("archivedAt")
        return cls(
            created_at=parse_ts(data["createdAt"]),
            last_used=parse_ts(data.get("lastUsed") or data["createdAt"]),
            project_name=str(data.get("projectName", "Unknown Project")),
            session_only=bool(data.get("sessionOnly", False)),
            auto_cleanup_after_days=data.get("autoCleanupAfterDays"),
            archived_at=parse_ts(archived) if archived else None,
        )


@dataclass
class Manifest:
    """In-memory view of the manifest file.

    A topic lives in at most one of ``active_sessions`` / ``archived_sessions``;
    the mutators below keep it that way.
    """

    active_sessions: dict[str, ManifestEntry] = field(default_factory=dict)
    archived_sessions: dict[str, ManifestEntry] | None = None
    manifest_version: str = MANIFEST_VERSION
    # Not persisted: set when load() had to rebuild a corrupt file.
    recovered: bool = False
    # SHA-256 of the bytes this manifest was loaded from (None: file absent).
    fingerprint: str | None = field(default=None, repr=False, compare=False)

    def topic_state(self, topic: str) -> str | None:
        if topic in self.active_sessions:
            return "active"
        if self.archived_sessions and topic in self.archived_sessions:
            return "archived"
        return None

    def upsert_active(self, topic: str, entry: ManifestEntry) -> bool:
        """Insert or replace an active entry. Returns True if it was un-archived."""
        unarchived = False
        if self.archived_sessions and topic in self.archived_sessions:
            del self.archived_sessions[topic]
            unarchived = True
        self.active_sessions[topic] = entry
        return unarchived

    def archive(self, topic: str, archived_at: datetime) -> ManifestEntry:
        entry = self.active_sessions.pop(topic)
        entry.archived_at = archived_at
        if self.archived_sessions is None:
            self.archived_sessions = {}
        self.archived_sessions[topic] = entry
        return entry

    def remove_active(self, topic: str) -> ManifestEntry | None:
        return self.active_sessions.pop(topic, None)

    def to_dict(self) -> dict:
        data: dict = {
            "activeSessions": {t: e.to_dict() for t, e in self.active_sessions.items()},
            "manifestVersion": self.manifest_version,
        }
        if self.archived_sessions is not None:
            data["archivedSessions"] = {
                t: e.to_dict() for t, e in self.archived_sessions.items()
            }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Manifest:
        if not isinstance(data, dict) or not isinstance(data.get("activeSessions"), dict):
            raise ManifestCorrupt("manifest has no activeSessions object")
        archived_raw = data.get("archivedSessions")
        try:
            active = {t: ManifestEntry.from_dict(e) for t, e in data["activeSessions"].items()}
            archived = (
                {t: ManifestEntry.from_dict(e) for t, e in archived_raw.items()}
                if isinstance(archived_raw, dict)
                else None
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ManifestCorrupt(f"invalid manifest entry: {e}") from e
        manifest = cls(
            active_sessions=active,
            archived_sessions=archived,
            manifest_version=str(data.get("manifestVersion", MANIFEST_VERSION)),
        )
        # A topic found in both sets is treated as archived.
        if manifest.archived_sessions:
            for topic in manifest.archived_sessions:
                manifest.active_sessions.pop(topic, None)
        return manifest


def _digest(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


class ManifestStore:
    """Load/save the manifest for a base cache directory."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def path(self, base: Path) -> Path:
        return Path(base) / MANIFEST_FILENAME

    def _current_fingerprint(self, base: Path) -> str | None:
        path = self.path(base)
        if not path.exists():
            return None
        return _digest(path.read_bytes())

    def load(self, base: Path) -> Manifest:
        """Read the manifest; a missing file yields an empty one.

        A corrupt file is kept aside as ``*.corrupt-<ts>`` and the active set is
        rebuilt from topic directories on a best-effort basis.
        """
        path = self.path(base)
        if not path.exists():
            return Manifest(active_sessions={})

        raw = path.read_bytes()
        fingerprint = _digest(raw)
        try:
            manifest = self._decode(raw)
        except ManifestCorrupt as e:
            logger.warning("Manifest %s is corrupt (%s), rebuilding from topic directories", path, e)
            self._preserve_corrupt(path, raw)
            manifest = self._recover(Path(base))
        manifest.fingerprint = fingerprint
        return manifest

    def _decode(self, raw: bytes) -> Manifest:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestCorrupt(str(e)) from e
        return Manifest.from_dict(data)

    def _preserve_corrupt(self, path: Path, raw: bytes) -> None:
        """Keep one copy of each distinct corrupt payload; repeated reads add nothing."""
        for existing in path.parent.glob(f"{path.name}.corrupt-*"):
            try:
                if existing.read_bytes() == raw:
                    return
            except OSError:
                continue
        ts = self._clock().strftime("%Y%m%dT%H%M%S")
        backup = path.with_name(f"{path.name}.corrupt-{ts}")
        try:
            backup.write_bytes(raw)
        except OSError as e:
            logger.warning("Could not preserve corrupt manifest at %s: %s", backup, e)

    def _recover(self, base: Path) -> Manifest:
        """Rebuild active entries from conversation_log.md frontmatter in subdirectories."""
        manifest = Manifest(active_sessions={}, recovered=True)
        if not base.is_dir():
            return manifest
        for sub in sorted(p for p in base.iterdir() if p.is_dir()):
            log_file = sub / CACHE_FILES[0]
            if not log_file.is_file():
                continue
            try:
                meta = dict(frontmatter.load(str(log_file)).metadata)
            except Exception:
                meta = {}
            if meta.get("topic") != sub.name:
                continue
            mtime = datetime.fromtimestamp(log_file.stat().st_mtime, tz=timezone.utc)
            created = meta.get("created")
            try:
                created_at = parse_ts(str(created)) if created else mtime
            except ValueError:
                created_at = mtime
            manifest.active_sessions[sub.name] = ManifestEntry(
                created_at=created_at,
                last_used=mtime,
                project_name=str(meta.get("project", "Unknown Project")),
            )
        logger.warning("Recovered %d topic(s) into manifest", len(manifest.active_sessions))
        return manifest

    def save(self, base: Path, manifest: Manifest) -> None:
        """Atomically overwrite the manifest if nobody else wrote it since load."""
        path = self.path(base)
        if self._current_fingerprint(base) != manifest.fingerprint:
            raise ManifestConflict(f"Manifest {path} changed since it was loaded")

        raw = (json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False) + "\n").encode("utf-8")
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("wb") as f:
            f.write(raw)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        manifest.fingerprint = _digest(raw)
        manifest.recovered = False
