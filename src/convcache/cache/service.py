"""Cache lifecycle operations: init, update, load, auto-update, status,
topic listing, archive, cleanup and title-based setup.

Responsibilities:
1. Resolve the target directory (topic or legacy) for every operation
2. Gate directory creation behind explicit consent
3. Write/append markdown artifacts through the injected FileIO
4. Keep the manifest in step with the topic lifecycle (active → archived)
5. Track per-session state (active topic, auto-update flags, counters)

Topic lifecycle: Uninitialized → Active → Archived. ``init`` on an archived
topic moves it back to Active. ``load`` on an archived topic is read-only.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from convcache.cache.autoupdate import AutoUpdateTrigger
from convcache.cache.fileio import FileIO, LocalFileIO
from convcache.cache.manifest import Manifest, ManifestEntry, ManifestStore, format_ts
from convcache.cache.paths import (
    CACHE_FILES,
    check_create_permission,
    resolve_cache_dir,
    topic_from_title,
    validate_topic,
)
from convcache.cache.state import CacheState
from convcache.cache.templates import (
    TemplateContext,
    render_initial_files,
    render_update_section,
    split_artifact,
)
from convcache.config import CacheConfig
from convcache.errors import (
    DirectoryMissing,
    IOFailure,
    ManifestConflict,
    NotInitialized,
    TopicNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Unknown Project"


@dataclass
class CacheResult:
    """Outcome of a cache operation, rendered as text for the agent."""

    text: str
    is_error: bool = False
    # Consent or confirmation missing; nothing was changed.
    blocked: bool = False
    data: dict = field(default_factory=dict)


class CacheService:
    """Topic-isolated conversation cache for one session."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        fileio: FileIO | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or CacheConfig()
        self.fileio = fileio or LocalFileIO()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.manifests = ManifestStore(self._clock)
        self.state = CacheState(
            base_cache_dir=Path(self.config.cache_dir),
            update_interval=self.config.update_interval,
        )
        self.trigger = AutoUpdateTrigger(self)
        self._manifest_locks: dict[Path, asyncio.Lock] = {}

    # ── Helpers ──────────────────────────────────────────────

    def _now(self) -> datetime:
        return self._clock()

    def _base(self, cache_dir: str | Path | None) -> Path:
        return Path(cache_dir).expanduser() if cache_dir else Path(self.config.cache_dir)

    def _get_manifest_lock(self, base: Path) -> asyncio.Lock:
        key = base.resolve()
        if key not in self._manifest_locks:
            self._manifest_locks[key] = asyncio.Lock()
        return self._manifest_locks[key]

    async def _read_manifest(self, base: Path) -> Manifest:
        return await asyncio.to_thread(self.manifests.load, base)

    async def _mutate_manifest(self, base: Path, mutate: Callable[[Manifest], bool]) -> Manifest:
        """Run one load→mutate→save cycle, retrying if another writer got in first.

        ``mutate`` returns False when it changed nothing, which skips the save.
        It may run more than once, always against a freshly loaded manifest.
        """
        async with self._get_manifest_lock(base):
            retries = max(1, self.config.manifest_retries)
            for attempt in range(1, retries + 1):
                manifest = await self._read_manifest(base)
                if not mutate(manifest):
                    return manifest
                try:
                    await asyncio.to_thread(self.manifests.save, base, manifest)
                    return manifest
                except ManifestConflict:
                    if attempt == retries:
                        raise
                    logger.warning(
                        "Manifest in %s changed concurrently, retrying (%d/%d)",
                        base,
                        attempt,
                        retries,
                    )

    def _topic_label(self, topic: str | None) -> str:
        return f'topic "{topic}"' if topic else "legacy cache"

    # ── init ─────────────────────────────────────────────────

    async def init(
        self,
        cache_dir: str | Path | None = None,
        topic: str | None = None,
        project_name: str | None = None,
        confirm_create: bool = False,
        understood_growth: bool = False,
        session_only: bool = False,
    ) -> CacheResult:
        """Create (or re-create) a cache directory and its artifacts.

        Existing artifacts are rewritten from the templates, not merged.
        """
        topic = validate_topic(topic)
        base = self._base(cache_dir)
        target = resolve_cache_dir(base, topic)

        if not await self.fileio.directory_exists(target):
            block = check_create_permission(confirm_create, understood_growth)
            if block is not None:
                return CacheResult(
                    text=f"⚠️ **Permission required to create {target}**\n\n{block.instructions}",
                    blocked=True,
                    data={"cacheDir": str(target), "missing": list(block.missing)},
                )
            self.state.has_create_permission = True
            self.state.permission_granted_at = self._now()

        await self.fileio.create_directory(target)

        now = self._now()
        ts = format_ts(now)
        project = project_name or DEFAULT_PROJECT_NAME
        cleanup_days = self.config.session_only_days if session_only else None
        files = render_initial_files(
            TemplateContext(
                cache_dir=target,
                project_name=project,
                timestamp=ts,
                topic=topic,
                auto_cleanup_after_days=cleanup_days,
            )
        )
        for name, content in files.items():
            await self.fileio.write_file(target / name, content, "rewrite")

        unarchived = False
        if topic:
            entry = ManifestEntry(
                created_at=now,
                last_used=now,
                project_name=project,
                session_only=session_only,
                auto_cleanup_after_days=cleanup_days,
            )

            def upsert(manifest: Manifest) -> bool:
                nonlocal unarchived
                unarchived = manifest.upsert_active(topic, entry)
                return True

            await self._mutate_manifest(base, upsert)

        self.state.base_cache_dir = base
        self.state.activate(topic)
        self.state.last_update = now
        logger.info("Initialized %s at %s", self._topic_label(topic), target)

        lines = [
            "✅ **Cache System Initialized**",
            "",
            f"**Cache Directory**: {target}",
            f"**Scope**: {self._topic_label(topic)}",
            f"**Project**: {project}",
        ]
        if session_only:
            lines.append(f"**Session-only**: suggested cleanup after {cleanup_days} days")
        if unarchived:
            lines.append(f'**Note**: topic "{topic}" was archived and is active again')
        lines += ["", "**Files Created**:"] + [f"- {name}" for name in files]
        lines += [
            "",
            "**Next Steps**:",
            "1. Use `update_cache` to record project details and progress",
            "2. Use `auto_update_cache` to save progress automatically",
            "3. In future sessions, use `load_cache`"
            + (f' with topic "{topic}"' if topic else "")
            + " to restore context",
        ]
        return CacheResult(
            text="\n".join(lines),
            data={
                "cacheDir": str(target),
                "topic": topic,
                "files": list(files),
                "unarchived": unarchived,
            },
        )

    # ── update ───────────────────────────────────────────────

    async def update(
        self,
        conversation_summary: str,
        topic: str | None = None,
        project_update: str | None = None,
        decisions_update: str | None = None,
        next_steps_update: str | None = None,
    ) -> CacheResult:
        """Append timestamped sections; the conversation log always gets one."""
        if not conversation_summary or not conversation_summary.strip():
            raise ValidationError("conversationSummary is required and must not be empty")
        topic = validate_topic(topic)
        if not self.state.is_initialized:
            raise NotInitialized(
                "Cache system not initialized. Use init_cache (or load_cache) first."
            )

        target_topic = topic if topic is not None else self.state.active_topic
        base = self.state.base_cache_dir
        target = resolve_cache_dir(base, target_topic)
        if not await self.fileio.directory_exists(target):
            raise DirectoryMissing(
                f"Cache directory not found: {target}. "
                f"Use init_cache{f' with topic {target_topic!r}' if target_topic else ''} first."
            )

        now = self._now()
        ts = format_ts(now)
        sections = {
            CACHE_FILES[0]: conversation_summary,
            CACHE_FILES[1]: project_update,
            CACHE_FILES[2]: decisions_update,
            CACHE_FILES[3]: next_steps_update,
        }
        updated: list[str] = []
        for name, text in sections.items():
            if not text or not text.strip():
                continue
            await self.fileio.write_file(
                target / name, render_update_section(name, ts, text), "append"
            )
            updated.append(name)

        if target_topic:
            await self._touch(base, target_topic, now)

        self.state.last_update = now

        labels = {
            CACHE_FILES[0]: "Conversation summary added",
            CACHE_FILES[1]: "Project state updated",
            CACHE_FILES[2]: "Decisions documented",
            CACHE_FILES[3]: "Next steps updated",
        }
        lines = [
            "✅ **Cache Updated**",
            "",
            f"**Timestamp**: {ts}",
            f"**Scope**: {self._topic_label(target_topic)}",
            "**Updates Applied**:",
        ] + [f"- {labels[name]}" for name in updated]
        lines += ["", f"**Cache Location**: {target}"]
        return CacheResult(
            text="\n".join(lines),
            data={"timestamp": ts, "topic": target_topic, "updated": updated},
        )

    async def _touch(self, base: Path, topic: str, now: datetime) -> None:
        def touch(manifest: Manifest) -> bool:
            entry = manifest.active_sessions.get(topic)
            if entry is None:
                return False
            entry.last_used = now
            return True

        await self._mutate_manifest(base, touch)

    # ── load ─────────────────────────────────────────────────

    async def load(
        self,
        cache_dir: str | Path | None = None,
        topic: str | None = None,
        use_legacy: bool = False,
    ) -> CacheResult:
        """Restore context from a topic (or, explicitly, the legacy cache).

        Without a topic and without ``use_legacy`` nothing is loaded; known
        topics are listed instead so the wrong project is never picked up.
        """
        topic = validate_topic(topic)
        base = self._base(cache_dir)
        if topic is None and not use_legacy:
            return await self._discovery(base)

        target = resolve_cache_dir(base, topic)
        if not await self.fileio.directory_exists(target):
            raise TopicNotFound(
                f"Cache directory not found: {target}. Use init_cache to create it."
            )

        files: dict[str, str | None] = {}
        metadata: dict[str, dict] = {}
        errors: dict[str, str] = {}
        for name in CACHE_FILES:
            try:
                raw = await self.fileio.read_file(
                    target / name, False, 0, self.config.max_read_lines
                )
            except IOFailure as e:
                files[name] = None
                errors[name] = str(e)
                continue
            metadata[name], files[name] = split_artifact(raw)

        archived = False
        if topic:
            archived = await self._register_loaded_topic(base, topic, metadata)
        if not archived:
            self.state.base_cache_dir = base
            self.state.activate(topic)

        now = self._now()
        lines = [
            "# 🔄 **Loading Conversation Context from Cache**",
            "",
            f"**Cache Directory**: {target}",
            f"**Scope**: {self._topic_label(topic)}",
            f"**Load Time**: {format_ts(now)}",
        ]
        if archived:
            lines.append(
                f'**Note**: topic "{topic}" is archived. Its content is shown read-only; '
                "run init_cache on it to make it active again."
            )
        lines += ["", "---", ""]
        for name in CACHE_FILES:
            title = name.removesuffix(".md").replace("_", " ").upper()
            if name in errors:
                lines += [f"## ❌ {name} - Load Error", "", errors[name], "", "---", ""]
            else:
                lines += [f"## 📄 {title}", "", files[name].strip(), "", "---", ""]
        loaded = len(CACHE_FILES) - len(errors)
        lines.append(f"**Loaded {loaded}/{len(CACHE_FILES)} files.**")
        if not archived:
            lines.append("Use `update_cache` to add new progress as we continue working.")
        return CacheResult(
            text="\n".join(lines),
            data={
                "cacheDir": str(target),
                "topic": topic,
                "archived": archived,
                "files": files,
                "errors": errors,
            },
        )

    async def _register_loaded_topic(self, base: Path, topic: str, metadata: dict) -> bool:
        """Touch (or adopt) the manifest entry for a loaded topic. Returns True if archived."""
        now = self._now()
        archived = False

        def register(manifest: Manifest) -> bool:
            nonlocal archived
            state = manifest.topic_state(topic)
            if state == "archived":
                archived = True
                return False
            if state == "active":
                manifest.active_sessions[topic].last_used = now
                return True
            # Directory exists but the manifest forgot it (cleanup or recovery).
            project = metadata.get(CACHE_FILES[0], {}).get("project") or DEFAULT_PROJECT_NAME
            manifest.active_sessions[topic] = ManifestEntry(
                created_at=now, last_used=now, project_name=str(project)
            )
            logger.info('Re-registered topic "%s" found on disk', topic)
            return True

        await self._mutate_manifest(base, register)
        return archived

    async def _discovery(self, base: Path) -> CacheResult:
        manifest = await self._read_manifest(base)
        active = sorted(
            manifest.active_sessions.items(), key=lambda kv: kv[1].last_used, reverse=True
        )
        archived = sorted((manifest.archived_sessions or {}).keys())
        if not active and not archived:
            text = (
                "No cache topics found in "
                f"{base}.\n\n"
                "Start one with init_cache (topic, projectName, confirmCreate=true, "
                "understoodGrowth=true), or pass useLegacy=true to load a pre-topic cache."
            )
        else:
            lines = [
                "Which topic should be loaded? No topic was given, so nothing was loaded.",
                "",
                "**Active topics** (most recent first):",
            ]
            lines += [
                f"- {name}: {entry.project_name} (last used {format_ts(entry.last_used)})"
                for name, entry in active
            ] or ["- (none)"]
            if archived:
                lines += ["", "**Archived topics** (read-only):"] + [f"- {n}" for n in archived]
            lines += ["", 'Call load_cache with topic="<name>", or useLegacy=true.']
            text = "\n".join(lines)
        return CacheResult(
            text=text,
            data={"topics": [name for name, _ in active], "archived": archived},
        )

    # ── configure auto-update ────────────────────────────────

    async def configure_auto_update(
        self,
        enable: bool,
        update_interval: int | None = None,
        topic: str | None = None,
    ) -> CacheResult:
        """Arm/disarm auto-update per topic; the interval is shared by all topics."""
        topic = validate_topic(topic)
        if update_interval is not None and update_interval <= 0:
            raise ValidationError(f"updateInterval must be positive, got {update_interval}")

        target = topic if topic is not None else self.state.active_topic
        if target is not None:
            self.state.per_topic_auto_update[target] = enable
            if target == self.state.active_topic:
                self.state.global_auto_update_enabled = enable
        else:
            self.state.global_auto_update_enabled = enable
        if update_interval is not None:
            self.state.update_interval = update_interval

        status = "ENABLED" if enable else "DISABLED"
        lines = [
            f"✅ **Auto-Cache {status}**",
            "",
            f"**Scope**: {self._topic_label(target)}",
        ]
        if enable:
            lines.append(f"**Update Interval**: every {self.state.update_interval} tool calls")
        lines.append(f"**Current Tool Call Count**: {self.state.tool_call_count}")
        if target is not None and target != self.state.active_topic:
            lines.append(
                f'**Note**: "{target}" is not the active topic; the setting applies once it is loaded.'
            )
        return CacheResult(
            text="\n".join(lines),
            data={
                "topic": target,
                "enabled": enable,
                "updateInterval": self.state.update_interval,
            },
        )

    # ── status ───────────────────────────────────────────────

    async def status(self, topic: str | None = None) -> CacheResult:
        """Read-only report, for one topic or for the whole session."""
        topic = validate_topic(topic)
        base = self.state.base_cache_dir
        manifest = await self._read_manifest(base)
        last = format_ts(self.state.last_update) if self.state.last_update else "Never"

        if topic is not None:
            state = manifest.topic_state(topic)
            entry = (
                manifest.active_sessions.get(topic)
                if state == "active"
                else (manifest.archived_sessions or {}).get(topic)
            )
            exists = await self.fileio.directory_exists(resolve_cache_dir(base, topic))
            enabled = self.state.per_topic_auto_update.get(topic, False)
            lines = [
                f"# 📊 **Cache Status: {topic}**",
                "",
                f"- **State**: {state or 'unknown'}",
                f"- **Directory exists**: {'yes' if exists else 'no'}",
                f"- **Active topic**: {'yes' if self.state.active_topic == topic else 'no'}",
                f"- **Auto-Update**: {'enabled' if enabled else 'disabled'}",
            ]
            if entry is not None:
                lines += [
                    f"- **Project**: {entry.project_name}",
                    f"- **Created**: {format_ts(entry.created_at)}",
                    f"- **Last Used**: {format_ts(entry.last_used)}",
                    f"- **Session-only**: {'yes' if entry.session_only else 'no'}",
                ]
                if entry.archived_at:
                    lines.append(f"- **Archived**: {format_ts(entry.archived_at)}")
            data = {
                "topic": topic,
                "state": state,
                "directoryExists": exists,
                "autoUpdate": enabled,
            }
        else:
            lines = [
                "# 📊 **Cache System Status**",
                "",
                "## Configuration:",
                f"- **Initialized**: {'yes' if self.state.is_initialized else 'no'}",
                f"- **Cache Directory**: {base}",
                f"- **Active Topic**: {self.state.active_topic or '(legacy / none)'}",
                f"- **Auto-Update**: {'enabled' if self.state.auto_update_enabled() else 'disabled'}",
                f"- **Update Interval**: every {self.state.update_interval} tool calls",
                f"- **Tool Call Count**: {self.state.tool_call_count}",
                f"- **Last Update**: {last}",
                f"- **Pending auto-updates**: {self.trigger.pending}",
                "",
                "## Topics:",
            ]
            topics = {}
            for name in sorted(manifest.active_sessions):
                enabled = self.state.per_topic_auto_update.get(name, False)
                topics[name] = enabled
                lines.append(f"- {name}: auto-update {'on' if enabled else 'off'}")
            if not topics:
                lines.append("- (none)")
            if self.state.auto_update_enabled() and not self.state.is_initialized:
                lines += ["", "⚠️ Auto-update is enabled but the cache is not initialized."]
            data = {
                "initialized": self.state.is_initialized,
                "activeTopic": self.state.active_topic,
                "toolCallCount": self.state.tool_call_count,
                "topics": topics,
            }
        if manifest.recovered:
            lines += [
                "",
                "⚠️ The manifest was unreadable and has been rebuilt from topic directories.",
            ]
        data["manifestRecovered"] = manifest.recovered
        return CacheResult(text="\n".join(lines), data=data)

    # ── list topics ──────────────────────────────────────────

    async def list_topics(self, cache_dir: str | Path | None = None) -> CacheResult:
        base = self._base(cache_dir)
        manifest = await self._read_manifest(base)

        topics = []
        for name, entry in sorted(
            manifest.active_sessions.items(), key=lambda kv: kv[1].last_used, reverse=True
        ):
            topics.append(
                {
                    "topic": name,
                    "projectName": entry.project_name,
                    "lastUsed": format_ts(entry.last_used),
                    "sessionOnly": entry.session_only,
                    "directoryExists": await self.fileio.directory_exists(
                        resolve_cache_dir(base, name)
                    ),
                    "autoUpdate": self.state.per_topic_auto_update.get(name, False),
                    "active": name == self.state.active_topic,
                }
            )

        legacy = False
        if await self.fileio.directory_exists(base):
            present = set(await self.fileio.list_directory(base))
            legacy = all(name in present for name in CACHE_FILES)

        lines = [f"# 📚 **Cache Topics in {base}**", ""]
        for t in topics:
            flags = []
            if t["active"]:
                flags.append("active")
            if t["autoUpdate"]:
                flags.append("auto-update")
            if t["sessionOnly"]:
                flags.append("session-only")
            if not t["directoryExists"]:
                flags.append("directory missing")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            lines.append(f"- **{t['topic']}**: {t['projectName']} (last used {t['lastUsed']}){suffix}")
        if not topics:
            lines.append("No active topics.")
        archived = sorted((manifest.archived_sessions or {}).keys())
        if archived:
            lines += ["", f"**Archived**: {', '.join(archived)}"]
        if legacy:
            lines += ["", "**Legacy cache** found directly in the base directory (load with useLegacy=true)."]
        if manifest.recovered:
            lines += ["", "⚠️ The manifest was unreadable and has been rebuilt from topic directories."]
        return CacheResult(
            text="\n".join(lines),
            data={
                "topics": topics,
                "archived": archived,
                "legacy": legacy,
                "manifestRecovered": manifest.recovered,
            },
        )

    # ── archive ──────────────────────────────────────────────

    async def archive(
        self,
        topic: str,
        cache_dir: str | Path | None = None,
        confirm_archive: bool = False,
    ) -> CacheResult:
        """Move a topic to the archived set. Files on disk are never touched."""
        topic = validate_topic(topic)
        if topic is None:
            raise ValidationError("topic is required")
        base = self._base(cache_dir)
        if not confirm_archive:
            return CacheResult(
                text=(
                    f'⚠️ **Confirm archiving topic "{topic}"**\n\n'
                    "Archiving removes the topic from the active list and turns off its "
                    "auto-update. All files stay on disk and can still be read with load_cache.\n\n"
                    "Re-run archive_cache with confirmArchive=true to proceed."
                ),
                blocked=True,
                data={"topic": topic},
            )

        archived_at = self._now()

        def move(manifest: Manifest) -> bool:
            if topic not in manifest.active_sessions:
                raise TopicNotFound(
                    f'Topic "{topic}" is not an active topic in {base}. '
                    "Use get_cache_topics to see available topics."
                )
            manifest.archive(topic, archived_at)
            return True

        await self._mutate_manifest(base, move)
        was_active = self.state.active_topic == topic
        self.state.forget_topic(topic)
        logger.info('Archived topic "%s"', topic)

        lines = [
            f'✅ **Topic "{topic}" archived**',
            "",
            f"**Archived At**: {format_ts(archived_at)}",
            f"**Files**: kept in {resolve_cache_dir(base, topic)}",
        ]
        if was_active:
            lines.append("**Note**: this was the active topic; no topic is active now.")
        return CacheResult(
            text="\n".join(lines),
            data={"topic": topic, "archivedAt": format_ts(archived_at), "wasActive": was_active},
        )

    # ── cleanup ──────────────────────────────────────────────

    def _select_for_cleanup(
        self,
        manifest: Manifest,
        cutoff: datetime,
        max_sessions: int,
        protected: str | None,
    ) -> list[str]:
        ranked = sorted(
            manifest.active_sessions.items(), key=lambda kv: kv[1].last_used, reverse=True
        )
        selected = []
        for rank, (name, entry) in enumerate(ranked):
            if name == protected:
                continue
            if entry.last_used < cutoff or rank >= max_sessions:
                selected.append(name)
        return selected

    async def cleanup(
        self,
        cache_dir: str | Path | None = None,
        cleanup_after_days: int | None = None,
        max_sessions: int | None = None,
        confirm_cleanup: bool = False,
    ) -> CacheResult:
        """Drop stale or excess topics from the manifest. Never deletes files."""
        base = self._base(cache_dir)
        days = self.config.cleanup_after_days if cleanup_after_days is None else cleanup_after_days
        limit = self.config.max_sessions if max_sessions is None else max_sessions
        if days < 0:
            raise ValidationError(f"cleanupAfterDays must not be negative, got {days}")
        if limit < 0:
            raise ValidationError(f"maxSessions must not be negative, got {limit}")

        cutoff = self._now() - timedelta(days=days)
        protected = (
            self.state.active_topic
            if base.resolve() == self.state.base_cache_dir.resolve()
            else None
        )

        if not confirm_cleanup:
            manifest = await self._read_manifest(base)
            candidates = self._select_for_cleanup(manifest, cutoff, limit, protected)
            listing = "\n".join(f"- {name}" for name in candidates) or "- (nothing to remove)"
            return CacheResult(
                text=(
                    "⚠️ **Confirm cleanup**\n\n"
                    f"Topics unused for more than {days} days, or beyond the {limit} most "
                    "recently used, would be removed from the topic index:\n"
                    f"{listing}\n\n"
                    "No files are deleted. Re-run cleanup_cache with confirmCleanup=true to proceed."
                ),
                blocked=True,
                data={"candidates": candidates},
            )

        removed: list[str] = []

        def prune(manifest: Manifest) -> bool:
            removed[:] = self._select_for_cleanup(manifest, cutoff, limit, protected)
            for name in removed:
                manifest.remove_active(name)
            return bool(removed)

        manifest = await self._mutate_manifest(base, prune)
        for name in removed:
            self.state.per_topic_auto_update.pop(name, None)
        logger.info("Cleanup removed %d topic(s) from %s", len(removed), base)

        directories = [str(resolve_cache_dir(base, name)) for name in removed]
        lines = ["✅ **Cleanup complete**", ""]
        if removed:
            lines.append("**Removed from topic index**:")
            lines += [f"- {name}" for name in removed]
            lines += [
                "",
                "Files were NOT deleted. Remove these directories manually if no longer needed:",
            ] + [f"- {d}" for d in directories]
        else:
            lines.append("Nothing to clean up.")
        lines += ["", f"**Active topics remaining**: {len(manifest.active_sessions)}"]
        return CacheResult(
            text="\n".join(lines),
            data={
                "removed": removed,
                "retained": sorted(manifest.active_sessions),
                "directories": directories,
            },
        )

    # ── start (init + auto-update) ───────────────────────────

    async def start(
        self,
        topic: str,
        project_name: str | None = None,
        cache_dir: str | Path | None = None,
    ) -> CacheResult:
        """One-call setup: create the topic with consent and arm auto-update."""
        topic = validate_topic(topic)
        if topic is None:
            raise ValidationError("topic is required")
        init_result = await self.init(
            cache_dir=cache_dir,
            topic=topic,
            project_name=project_name or topic,
            confirm_create=True,
            understood_growth=True,
        )
        auto_result = await self.configure_auto_update(True, topic=topic)
        return CacheResult(
            text=f"{init_result.text}\n\n{auto_result.text}",
            data={**init_result.data, "autoUpdate": True},
        )

    # ── conversation title ───────────────────────────────────

    async def handle_conversation_title(
        self,
        title: str,
        cache_dir: str | Path | None = None,
    ) -> CacheResult:
        """Map a conversation title to a topic, then resume it or start it.

        An existing topic directory is loaded and its auto-update armed; a new
        one goes through ``start``. Archived topics are loaded read-only and
        left unarmed.
        """
        topic = topic_from_title(title)
        base = self._base(cache_dir)
        if not await self.fileio.directory_exists(resolve_cache_dir(base, topic)):
            result = await self.start(topic, project_name=title.strip(), cache_dir=base)
            return CacheResult(
                text=f'🆕 **New topic "{topic}"** from conversation title "{title.strip()}"\n\n'
                + result.text,
                data={**result.data, "resumed": False},
            )

        loaded = await self.load(cache_dir=base, topic=topic)
        if loaded.data["archived"]:
            return CacheResult(
                text=loaded.text,
                data={**loaded.data, "resumed": True, "autoUpdate": False},
            )
        armed = await self.configure_auto_update(True, topic=topic)
        return CacheResult(
            text=f'🔁 **Resuming topic "{topic}"** from conversation title "{title.strip()}"\n\n'
            f"{loaded.text}\n\n{armed.text}",
            data={**loaded.data, "resumed": True, "autoUpdate": True},
        )

    # ── shutdown ─────────────────────────────────────────────

    async def aclose(self) -> None:
        """Wait for in-flight auto-updates before the session ends."""
        await self.trigger.drain()
