"""Markdown bodies for the cache artifacts.

Each artifact starts with a small YAML frontmatter block so a topic
directory can be identified (and the manifest rebuilt) from its files alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import frontmatter

from convcache.cache.paths import CACHE_FILES, PROTOCOL_FILENAME

SECTION_TITLES = {
    "conversation_log.md": "Update",
    "current_project_state.md": "Project Update",
    "decisions_made.md": "Decision Update",
    "next_steps.md": "Next Steps Update",
}


@dataclass
class TemplateContext:
    cache_dir: Path
    project_name: str
    timestamp: str
    topic: str | None = None
    auto_cleanup_after_days: int | None = None


def _with_header(ctx: TemplateContext, artifact: str, body: str) -> str:
    meta = {"artifact": artifact, "project": ctx.project_name, "created": ctx.timestamp}
    if ctx.topic:
        meta["topic"] = ctx.topic
    return frontmatter.dumps(frontmatter.Post(body, **meta)) + "\n"


def _conversation_log(ctx: TemplateContext) -> str:
    scope = f"Topic: {ctx.topic}" if ctx.topic else "Legacy (no topic)"
    lifetime = (
        f"session-only (suggested cleanup after {ctx.auto_cleanup_after_days} days)"
        if ctx.auto_cleanup_after_days
        else "persistent"
    )
    return (
        "# Session Conversation Log\n"
        f"**Initialized:** {ctx.timestamp}\n\n"
        f"## Project Context: {ctx.project_name}\n"
        f"- {scope}\n"
        "- Session started with cache system initialization\n\n"
        "## Cache Status:\n"
        f"- **Directory**: {ctx.cache_dir}\n"
        f"- **Lifetime**: {lifetime}\n"
        "- **Auto-update**: Not yet enabled\n"
    )


def _project_state(ctx: TemplateContext) -> str:
    return (
        "# Project State\n\n"
        "## Current Project Status:\n"
        f"- **Project Name**: {ctx.project_name}\n"
        f"- **Initialization Date**: {ctx.timestamp}\n\n"
        "## Project Details:\n"
        "- No project details captured yet\n"
        "- Use update_cache with projectUpdate to add them\n"
    )


def _decisions(ctx: TemplateContext) -> str:
    return (
        "# Key Decisions and Approaches\n\n"
        "## Cache System Initialization\n"
        f"**Date**: {ctx.timestamp}\n"
        "**Decision**: Activated conversation cache for persistent memory\n"
        f"**Location**: {ctx.cache_dir}\n"
    )


def _next_steps(ctx: TemplateContext) -> str:
    return (
        "# Next Steps\n\n"
        "1. Add project context with `update_cache`\n"
        "2. Enable periodic saving with `auto_update_cache`\n"
        "3. In a new conversation, restore this context with `load_cache`"
        + (f' and topic "{ctx.topic}"' if ctx.topic else "")
        + "\n"
    )


def _protocol(ctx: TemplateContext) -> str:
    files = "\n".join(f"- `{name}`" for name in CACHE_FILES)
    topic_arg = f', "topic": "{ctx.topic}"' if ctx.topic else ""
    base = ctx.cache_dir.parent if ctx.topic else ctx.cache_dir
    return (
        "# Cache System Protocol\n\n"
        f"- **Initialized**: {ctx.timestamp}\n"
        f"- **Directory**: {ctx.cache_dir}\n\n"
        "## Files\n"
        f"{files}\n\n"
        "## Usage\n"
        f'- Resume: `load_cache({{"cacheDir": "{base}"{topic_arg}}})`\n'
        "- Record progress: `update_cache` with conversationSummary and optional "
        "projectUpdate / decisionsUpdate / nextStepsUpdate\n"
        "- Automatic saving: `auto_update_cache` with enable=true\n"
        "- Retire: `archive_cache` (files are kept and stay loadable)\n"
    )


_BUILDERS = {
    "conversation_log.md": _conversation_log,
    "current_project_state.md": _project_state,
    "decisions_made.md": _decisions,
    "next_steps.md": _next_steps,
    PROTOCOL_FILENAME: _protocol,
}


def render_initial_files(ctx: TemplateContext) -> dict[str, str]:
    """filename -> full initial content, for every artifact including the protocol."""
    return {name: _with_header(ctx, name, build(ctx)) for name, build in _BUILDERS.items()}


def render_update_section(filename: str, timestamp: str, text: str) -> str:
    title = SECTION_TITLES[filename]
    return f"\n\n## {title}: {timestamp}\n{text.strip()}\n\n"


def split_artifact(text: str) -> tuple[dict, str]:
    """Separate the frontmatter header from the markdown body."""
    try:
        post = frontmatter.loads(text)
    except Exception:
        return {}, text
    return dict(post.metadata), post.content
