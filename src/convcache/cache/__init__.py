"""Conversation cache: topic-isolated markdown memory + manifest.

Layout:
    <cache_dir>/
    ├── session_manifest.json          # Topic index (active + archived)
    ├── <topic>/
    │   ├── conversation_log.md        # Timestamped progress (append-only)
    │   ├── current_project_state.md   # Project details
    │   ├── decisions_made.md          # Decisions and approaches
    │   ├── next_steps.md              # Priorities
    │   └── cache_protocol.md          # Usage instructions
    └── conversation_log.md …          # Legacy (no-topic) cache, same files

The service owns per-session state; nothing here is process-global.
"""
