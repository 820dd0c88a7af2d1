"""Tests for the cache lifecycle operations."""

from __future__ import annotations

from pathlib import Path

import pytest

from convcache.cache.fileio import LocalFileIO
from convcache.cache.manifest import ManifestEntry
from convcache.cache.paths import CACHE_FILES, MANIFEST_FILENAME, PROTOCOL_FILENAME
from convcache.cache.service import CacheService
from convcache.errors import (
    DirectoryMissing,
    IOFailure,
    NotInitialized,
    TopicNotFound,
    ValidationError,
)

ALL_FILES = [*CACHE_FILES, PROTOCOL_FILENAME]


async def _init(service: CacheService, topic: str | None, **kwargs):
    return await service.init(
        topic=topic, confirm_create=True, understood_growth=True, **kwargs
    )


class TestInit:
    @pytest.mark.asyncio
    async def test_creates_topic_directory_and_manifest_entry(
        self, service: CacheService, base_dir: Path
    ):
        result = await _init(service, "demo", project_name="Rocket")
        assert not result.is_error and not result.blocked
        topic_dir = base_dir / "demo"
        assert topic_dir.is_dir()
        assert sorted(p.name for p in topic_dir.iterdir()) == sorted(ALL_FILES)

        manifest = service.manifests.load(base_dir)
        entry = manifest.active_sessions["demo"]
        assert entry.project_name == "Rocket"
        assert entry.session_only is False
        assert entry.auto_cleanup_after_days is None
        assert service.state.active_topic == "demo"
        assert service.state.is_initialized
        assert service.state.has_create_permission

    @pytest.mark.asyncio
    async def test_blocked_without_consent(self, service: CacheService, base_dir: Path):
        result = await service.init(topic="demo", confirm_create=True)
        assert result.blocked
        assert not result.is_error
        assert result.data["missing"] == ["understoodGrowth"]
        assert not (base_dir / "demo").exists()
        assert not service.state.is_initialized

    @pytest.mark.asyncio
    async def test_existing_directory_bypasses_gate(
        self, service: CacheService, base_dir: Path
    ):
        (base_dir / "demo").mkdir(parents=True)
        result = await service.init(topic="demo")
        assert not result.blocked
        assert (base_dir / "demo" / "conversation_log.md").exists()

    @pytest.mark.asyncio
    async def test_reinit_rewrites_files(self, service: CacheService, base_dir: Path):
        await _init(service, "demo")
        await service.update("first summary")
        await _init(service, "demo")
        log = (base_dir / "demo" / "conversation_log.md").read_text(encoding="utf-8")
        assert "first summary" not in log

    @pytest.mark.asyncio
    async def test_session_only_sets_cleanup_hint(self, service: CacheService, base_dir: Path):
        await _init(service, "scratch", session_only=True)
        entry = service.manifests.load(base_dir).active_sessions["scratch"]
        assert entry.session_only is True
        assert entry.auto_cleanup_after_days == 7

    @pytest.mark.asyncio
    async def test_legacy_init_writes_base_without_manifest(
        self, service: CacheService, base_dir: Path
    ):
        await _init(service, None)
        for name in ALL_FILES:
            assert (base_dir / name).exists()
        assert not (base_dir / MANIFEST_FILENAME).exists()
        assert service.state.active_topic is None
        assert service.state.is_initialized

    @pytest.mark.asyncio
    async def test_init_unarchives_topic(self, service: CacheService, base_dir: Path):
        await _init(service, "demo")
        await service.archive("demo", confirm_archive=True)
        result = await _init(service, "demo")
        assert result.data["unarchived"] is True
        manifest = service.manifests.load(base_dir)
        assert manifest.topic_state("demo") == "active"
        assert "demo" not in manifest.archived_sessions

    @pytest.mark.asyncio
    async def test_rejects_path_like_topic(self, service: CacheService):
        with pytest.raises(ValidationError):
            await _init(service, "../escape")

    @pytest.mark.asyncio
    async def test_files_carry_frontmatter(self, service: CacheService, base_dir: Path):
        await _init(service, "demo", project_name="Rocket")
        text = (base_dir / "demo" / "next_steps.md").read_text(encoding="utf-8")
        assert text.startswith("---\n")
        assert "topic: demo" in text
        assert "project: Rocket" in text

    @pytest.mark.asyncio
    async def test_protocol_file_has_resume_hint(self, service: CacheService, base_dir: Path):
        await _init(service, "demo")
        text = (base_dir / "demo" / PROTOCOL_FILENAME).read_text(encoding="utf-8")
        assert f'load_cache({{"cacheDir": "{base_dir}", "topic": "demo"}})' in text


class TestUpdate:
    @pytest.mark.asyncio
    async def test_appends_summary_and_touches_last_used(
        self, service: CacheService, base_dir: Path, clock
    ):
        await _init(service, "demo")
        before = service.manifests.load(base_dir).active_sessions["demo"].last_used
        clock.advance(minutes=5)

        result = await service.update("fixed bug", topic="demo")
        log = (base_dir / "demo" / "conversation_log.md").read_text(encoding="utf-8")
        assert "## Update: 2026-01-15T12:05:00.000Z\nfixed bug" in log
        assert result.data["updated"] == ["conversation_log.md"]
        after = service.manifests.load(base_dir).active_sessions["demo"].last_used
        assert after > before

    @pytest.mark.asyncio
    async def test_optional_sections_only_when_given(
        self, service: CacheService, base_dir: Path
    ):
        await _init(service, "demo")
        await service.update("summary", decisions_update="use asyncio", project_update="  ")
        topic_dir = base_dir / "demo"
        assert "use asyncio" in (topic_dir / "decisions_made.md").read_text(encoding="utf-8")
        assert "Project Update" not in (topic_dir / "current_project_state.md").read_text(
            encoding="utf-8"
        )
        assert "Next Steps Update" not in (topic_dir / "next_steps.md").read_text(
            encoding="utf-8"
        )

    @pytest.mark.asyncio
    async def test_every_call_appends(self, service: CacheService, base_dir: Path):
        await _init(service, "demo")
        await service.update("same")
        await service.update("same")
        log = (base_dir / "demo" / "conversation_log.md").read_text(encoding="utf-8")
        assert log.count("\nsame\n") == 2

    @pytest.mark.asyncio
    async def test_requires_initialization(self, service: CacheService):
        with pytest.raises(NotInitialized):
            await service.update("too early")

    @pytest.mark.asyncio
    async def test_unknown_topic_directory(self, service: CacheService):
        await _init(service, "demo")
        with pytest.raises(DirectoryMissing):
            await service.update("summary", topic="never-created")

    @pytest.mark.asyncio
    async def test_requires_summary(self, service: CacheService):
        await _init(service, "demo")
        with pytest.raises(ValidationError):
            await service.update("   ")

    @pytest.mark.asyncio
    async def test_legacy_update_does_not_create_manifest(
        self, service: CacheService, base_dir: Path
    ):
        await _init(service, None)
        await service.update("legacy note")
        assert "legacy note" in (base_dir / "conversation_log.md").read_text(encoding="utf-8")
        assert not (base_dir / MANIFEST_FILENAME).exists()


class TestLoad:
    @pytest.mark.asyncio
    async def test_without_topic_lists_topics(self, service: CacheService, base_dir: Path):
        await _init(service, "alpha")
        await _init(service, "beta")
        fresh = CacheService(service.config, clock=service._clock)

        result = await fresh.load()
        assert not result.is_error
        assert sorted(result.data["topics"]) == ["alpha", "beta"]
        assert "alpha" in result.text
        assert not fresh.state.is_initialized

    @pytest.mark.asyncio
    async def test_without_topics_offers_init(self, service: CacheService):
        result = await service.load()
        assert result.data["topics"] == []
        assert "init_cache" in result.text

    @pytest.mark.asyncio
    async def test_loads_topic_content(self, service: CacheService, base_dir: Path):
        await _init(service, "demo")
        await service.update("remember the milk")
        fresh = CacheService(service.config, clock=service._clock)

        result = await fresh.load(topic="demo")
        assert not result.is_error
        assert "remember the milk" in result.data["files"]["conversation_log.md"]
        assert result.data["errors"] == {}
        # Frontmatter is stripped from the presented body.
        assert not result.data["files"]["next_steps.md"].startswith("---")
        assert fresh.state.active_topic == "demo"
        assert fresh.state.is_initialized

    @pytest.mark.asyncio
    async def test_missing_topic(self, service: CacheService):
        with pytest.raises(TopicNotFound):
            await service.load(topic="ghost")

    @pytest.mark.asyncio
    async def test_one_unreadable_file_does_not_abort(
        self, service: CacheService, base_dir: Path
    ):
        await _init(service, "demo")
        (base_dir / "demo" / "decisions_made.md").unlink()

        result = await service.load(topic="demo")
        assert not result.is_error
        assert result.data["files"]["decisions_made.md"] is None
        assert "decisions_made.md" in result.data["errors"]
        for name in ("conversation_log.md", "current_project_state.md", "next_steps.md"):
            assert result.data["files"][name]
        assert "Load Error" in result.text

    @pytest.mark.asyncio
    async def test_explicit_legacy(self, service: CacheService, base_dir: Path):
        await _init(service, None)
        result = await service.load(use_legacy=True)
        assert "Session Conversation Log" in result.data["files"]["conversation_log.md"]
        assert service.state.active_topic is None

    @pytest.mark.asyncio
    async def test_reregisters_topic_dropped_from_manifest(
        self, service: CacheService, base_dir: Path, clock
    ):
        await _init(service, "old", project_name="Legacy Project")
        clock.advance(days=40)
        await _init(service, "new")
        await service.cleanup(confirm_cleanup=True)
        assert "old" not in service.manifests.load(base_dir).active_sessions

        await service.load(topic="old")
        entry = service.manifests.load(base_dir).active_sessions["old"]
        assert entry.project_name == "Legacy Project"
        assert service.state.active_topic == "old"

    @pytest.mark.asyncio
    async def test_truncates_long_files(self, config, clock, base_dir: Path):
        config.max_read_lines = 5
        service = CacheService(config, clock=clock)
        await _init(service, "demo")
        for i in range(10):
            await service.update(f"entry {i}")
        result = await service.load(topic="demo")
        assert "more lines not shown" in result.data["files"]["conversation_log.md"]


class TestConfigureAutoUpdate:
    @pytest.mark.asyncio
    async def test_active_topic_mirrors_global(self, service: CacheService):
        await _init(service, "demo")
        await service.configure_auto_update(True)
        assert service.state.per_topic_auto_update["demo"] is True
        assert service.state.global_auto_update_enabled is True

    @pytest.mark.asyncio
    async def test_other_topic_does_not_touch_global(self, service: CacheService):
        await _init(service, "other")
        await _init(service, "demo")
        result = await service.configure_auto_update(True, topic="other")
        assert service.state.per_topic_auto_update == {"other": True}
        assert service.state.global_auto_update_enabled is False
        assert "not the active topic" in result.text

    @pytest.mark.asyncio
    async def test_legacy_sets_global(self, service: CacheService):
        await service.configure_auto_update(True)
        assert service.state.global_auto_update_enabled is True
        assert service.state.per_topic_auto_update == {}

    @pytest.mark.asyncio
    async def test_interval_is_shared(self, service: CacheService):
        await service.configure_auto_update(True, update_interval=7, topic="a")
        await service.configure_auto_update(False, topic="b")
        assert service.state.update_interval == 7

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self, service: CacheService):
        with pytest.raises(ValidationError):
            await service.configure_auto_update(True, update_interval=0)


class TestStatusAndTopics:
    @pytest.mark.asyncio
    async def test_global_status(self, service: CacheService):
        await _init(service, "a")
        await _init(service, "b")
        await service.configure_auto_update(True, topic="a")
        result = await service.status()
        assert result.data["initialized"] is True
        assert result.data["activeTopic"] == "b"
        assert result.data["topics"] == {"a": True, "b": False}

    @pytest.mark.asyncio
    async def test_topic_status(self, service: CacheService):
        await _init(service, "demo", project_name="Rocket")
        result = await service.status(topic="demo")
        assert result.data["state"] == "active"
        assert result.data["directoryExists"] is True
        assert "Rocket" in result.text

    @pytest.mark.asyncio
    async def test_status_does_not_mutate(self, service: CacheService):
        await _init(service, "demo")
        before = (service.state.tool_call_count, service.state.active_topic)
        await service.status()
        await service.status(topic="missing")
        assert (service.state.tool_call_count, service.state.active_topic) == before

    @pytest.mark.asyncio
    async def test_list_topics_annotates_entries(self, service: CacheService, base_dir: Path):
        await _init(service, "a")
        await _init(service, "b")
        await service.configure_auto_update(True, topic="b")
        (base_dir / "a" / "conversation_log.md").unlink()
        for name in ALL_FILES:
            (base_dir / "a" / name).unlink(missing_ok=True)
        (base_dir / "a").rmdir()

        result = await service.list_topics()
        topics = {t["topic"]: t for t in result.data["topics"]}
        assert topics["a"]["directoryExists"] is False
        assert topics["b"]["autoUpdate"] is True
        assert topics["b"]["active"] is True
        assert result.data["legacy"] is False

    @pytest.mark.asyncio
    async def test_list_topics_detects_legacy(self, service: CacheService):
        await _init(service, None)
        result = await service.list_topics()
        assert result.data["legacy"] is True
        assert result.data["topics"] == []


    @pytest.mark.asyncio
    async def test_rebuilt_manifest_is_reported_until_next_write(
        self, service: CacheService, base_dir: Path, clock
    ):
        await _init(service, "demo", project_name="Rocket")
        (base_dir / MANIFEST_FILENAME).write_text("{garbage", encoding="utf-8")

        for _ in range(3):
            status = await service.status()
            topics = await service.list_topics()
            assert status.data["manifestRecovered"] is True
            assert topics.data["manifestRecovered"] is True
            assert "rebuilt from topic directories" in status.text
            assert "rebuilt from topic directories" in topics.text
            clock.advance(seconds=5)
        assert [t["topic"] for t in topics.data["topics"]] == ["demo"]
        assert len(list(base_dir.glob(f"{MANIFEST_FILENAME}.corrupt-*"))) == 1

        await service.update("after recovery")
        assert (await service.status()).data["manifestRecovered"] is False
        assert (await service.list_topics()).data["manifestRecovered"] is False
        entry = service.manifests.load(base_dir).active_sessions["demo"]
        assert entry.project_name == "Rocket"


class TestArchive:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, service: CacheService, base_dir: Path):
        await _init(service, "demo")
        result = await service.archive("demo")
        assert result.blocked
        assert service.manifests.load(base_dir).topic_state("demo") == "active"

    @pytest.mark.asyncio
    async def test_archive_then_load_still_reads(
        self, service: CacheService, base_dir: Path
    ):
        await _init(service, "demo")
        await service.configure_auto_update(True)
        await service.update("keep me")

        result = await service.archive("demo", confirm_archive=True)
        assert result.data["wasActive"] is True
        manifest = service.manifests.load(base_dir)
        assert "demo" not in manifest.active_sessions
        assert manifest.archived_sessions["demo"].archived_at is not None
        assert service.state.active_topic is None
        assert service.state.global_auto_update_enabled is False
        assert "demo" not in service.state.per_topic_auto_update
        assert (base_dir / "demo" / "conversation_log.md").exists()

        loaded = await service.load(topic="demo")
        assert loaded.data["archived"] is True
        assert "keep me" in loaded.data["files"]["conversation_log.md"]
        # Archived topics are read-only: they do not become the active topic.
        assert service.state.active_topic is None

    @pytest.mark.asyncio
    async def test_unknown_topic(self, service: CacheService):
        with pytest.raises(TopicNotFound):
            await service.archive("ghost", confirm_archive=True)

    @pytest.mark.asyncio
    async def test_archive_twice_fails(self, service: CacheService):
        await _init(service, "demo")
        await service.archive("demo", confirm_archive=True)
        with pytest.raises(TopicNotFound):
            await service.archive("demo", confirm_archive=True)


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_old_topics_only_from_index(
        self, service: CacheService, base_dir: Path, clock
    ):
        await _init(service, "a")
        clock.advance(days=40)
        await _init(service, "b")

        result = await service.cleanup(
            cleanup_after_days=30, max_sessions=10, confirm_cleanup=True
        )
        assert result.data["removed"] == ["a"]
        manifest = service.manifests.load(base_dir)
        assert list(manifest.active_sessions) == ["b"]
        for name in ALL_FILES:
            assert (base_dir / "a" / name).exists()
        assert str(base_dir / "a") in result.data["directories"]

    @pytest.mark.asyncio
    async def test_keeps_most_recent_n(self, service: CacheService, base_dir: Path, clock):
        for name in ["t1", "t2", "t3", "t4", "t5"]:
            await _init(service, name)
            clock.advance(hours=1)

        result = await service.cleanup(max_sessions=2, confirm_cleanup=True)
        assert sorted(result.data["removed"]) == ["t1", "t2", "t3"]
        assert sorted(service.manifests.load(base_dir).active_sessions) == ["t4", "t5"]

    @pytest.mark.asyncio
    async def test_never_removes_active_topic(
        self, service: CacheService, base_dir: Path, clock
    ):
        for name in ["t1", "t2", "t3", "t4"]:
            await _init(service, name)
            clock.advance(days=60)
        service.state.activate("t1")

        await service.cleanup(max_sessions=2, cleanup_after_days=365, confirm_cleanup=True)
        assert sorted(service.manifests.load(base_dir).active_sessions) == ["t1", "t3", "t4"]

    @pytest.mark.asyncio
    async def test_unconfirmed_only_previews(
        self, service: CacheService, base_dir: Path, clock
    ):
        await _init(service, "a")
        clock.advance(days=40)
        await _init(service, "b")
        result = await service.cleanup()
        assert result.blocked
        assert result.data["candidates"] == ["a"]
        assert sorted(service.manifests.load(base_dir).active_sessions) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_drops_auto_update_flags(self, service: CacheService, clock):
        await _init(service, "a")
        await service.configure_auto_update(True, topic="a")
        clock.advance(days=40)
        await _init(service, "b")
        await service.cleanup(confirm_cleanup=True)
        assert "a" not in service.state.per_topic_auto_update


class TestStart:
    @pytest.mark.asyncio
    async def test_start_inits_and_arms_auto_update(
        self, service: CacheService, base_dir: Path
    ):
        result = await service.start("quantum")
        assert (base_dir / "quantum" / "conversation_log.md").exists()
        assert service.state.per_topic_auto_update["quantum"] is True
        assert service.state.auto_update_enabled()
        assert result.data["autoUpdate"] is True
        entry = service.manifests.load(base_dir).active_sessions["quantum"]
        assert entry.project_name == "quantum"


class TestConversationTitle:
    @pytest.mark.asyncio
    async def test_new_title_starts_topic(self, service: CacheService, base_dir: Path):
        result = await service.handle_conversation_title("Quantum Physics Discussion")
        assert result.data["resumed"] is False
        assert result.data["topic"] == "quantum_physics_discussion"
        assert (base_dir / "quantum_physics_discussion" / "conversation_log.md").exists()
        assert service.state.active_topic == "quantum_physics_discussion"
        assert service.state.per_topic_auto_update["quantum_physics_discussion"] is True
        entry = service.manifests.load(base_dir).active_sessions["quantum_physics_discussion"]
        assert entry.project_name == "Quantum Physics Discussion"

    @pytest.mark.asyncio
    async def test_known_title_resumes_topic(self, service: CacheService, base_dir: Path):
        await _init(service, "quantum_physics_discussion")
        await service.update("where we stopped")
        await _init(service, "other")

        result = await service.handle_conversation_title("Quantum Physics Discussion")
        assert result.data["resumed"] is True
        assert result.data["autoUpdate"] is True
        assert "where we stopped" in result.text
        assert service.state.active_topic == "quantum_physics_discussion"
        assert service.state.auto_update_enabled()
        log = (base_dir / "quantum_physics_discussion" / "conversation_log.md").read_text(
            encoding="utf-8"
        )
        assert "where we stopped" in log

    @pytest.mark.asyncio
    async def test_archived_title_is_read_only(self, service: CacheService):
        await _init(service, "old_notes")
        await service.archive("old_notes", confirm_archive=True)

        result = await service.handle_conversation_title("Old Notes")
        assert result.data["archived"] is True
        assert result.data["autoUpdate"] is False
        assert service.state.active_topic is None
        assert "old_notes" not in service.state.per_topic_auto_update

    @pytest.mark.asyncio
    async def test_title_without_words_rejected(self, service: CacheService):
        with pytest.raises(ValidationError):
            await service.handle_conversation_title("?!")


class TestManifestRace:
    @pytest.mark.asyncio
    async def test_retries_after_concurrent_write(
        self, service: CacheService, base_dir: Path, clock, monkeypatch
    ):
        await _init(service, "a")
        real_save = service.manifests.save
        raced = []

        def racing_save(base, manifest):
            if not raced:
                raced.append(True)
                other = service.manifests.load(base)
                other.active_sessions["intruder"] = ManifestEntry(
                    created_at=clock(), last_used=clock(), project_name="Other"
                )
                real_save(base, other)
            real_save(base, manifest)

        monkeypatch.setattr(service.manifests, "save", racing_save)
        await _init(service, "b")
        assert sorted(service.manifests.load(base_dir).active_sessions) == [
            "a",
            "b",
            "intruder",
        ]


class TestIOFailures:
    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, service: CacheService, monkeypatch):
        await _init(service, "demo")

        async def broken_write(self, path, content, mode="rewrite"):
            raise IOFailure(f"disk full: {path}", str(path))

        monkeypatch.setattr(LocalFileIO, "write_file", broken_write)
        with pytest.raises(IOFailure):
            await service.update("will not land")
