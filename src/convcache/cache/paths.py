"""Cache directory resolution and the directory-creation consent gate."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from convcache.errors import ValidationError

MANIFEST_FILENAME = "session_manifest.json"
PROTOCOL_FILENAME = "cache_protocol.md"

# Load order matters: it is the order the context is presented in.
CACHE_FILES = (
    "conversation_log.md",
    "current_project_state.md",
    "decisions_made.md",
    "next_steps.md",
)

_ILLEGAL_TOPIC_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def resolve_cache_dir(base: Path | str, topic: str | None = None) -> Path:
    """Map (base, topic) to a concrete directory. No topic means the base itself."""
    base = Path(base)
    if not topic:
        return base
    return base / topic


def validate_topic(topic: str | None) -> str | None:
    """Reject topic names that are empty or would escape the base directory."""
    if topic is None:
        return None
    if not isinstance(topic, str):
        raise ValidationError(f"Invalid topic {topic!r}: expected a string")
    name = topic.strip()
    if not name:
        raise ValidationError("Invalid topic: must not be empty")
    if name in (".", "..") or _ILLEGAL_TOPIC_CHARS.search(topic):
        raise ValidationError(
            f"Invalid topic {topic!r}: use a plain name without path separators, "
            "e.g. 'quantum_physics'"
        )
    return name


def topic_from_title(title: str) -> str:
    """Turn a conversation title into a topic name.

    "Quantum Physics Discussion" -> "quantum_physics_discussion"
    """
    slug = _NON_SLUG_CHARS.sub("_", title.lower()).strip("_")
    if not slug:
        raise ValidationError(
            f"Invalid conversation title {title!r}: it needs at least one letter or digit"
        )
    return slug


@dataclass(frozen=True)
class BlockReason:
    """Why directory creation was refused, plus how to proceed."""

    missing: tuple[str, ...]
    instructions: str


def check_create_permission(confirm_create: bool, understood_growth: bool) -> BlockReason | None:
    """Return None only when both consent flags are set.

    Only consulted when the target directory does not exist yet.
    """
    missing = []
    if not confirm_create:
        missing.append("confirmCreate")
    if not understood_growth:
        missing.append("understoodGrowth")
    if not missing:
        return None

    instructions = (
        "Creating a cache directory needs explicit consent.\n\n"
        "The cache writes markdown files that grow with every update "
        "(conversation log, project state, decisions, next steps). "
        "Nothing is deleted automatically.\n\n"
        f"Missing: {', '.join(missing)}\n"
        "Re-run init_cache with confirmCreate=true and understoodGrowth=true to proceed."
    )
    return BlockReason(missing=tuple(missing), instructions=instructions)
