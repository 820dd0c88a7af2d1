"""Local REPL for development and testing.

Each input line is ``<tool_name> [json-arguments]``, e.g.::

    init_cache {"topic": "demo", "confirmCreate": true, "understoodGrowth": true}
"""

from __future__ import annotations

import asyncio
import json
import sys

from convcache.cache.service import CacheService
from convcache.config import CacheConfig
from convcache.dispatch import CacheDispatcher
from convcache.errors import ValidationError


def parse_line(line: str) -> tuple[str, dict]:
    """Split a REPL line into tool name and argument object."""
    name, _, rest = line.strip().partition(" ")
    rest = rest.strip()
    if not rest:
        return name, {}
    try:
        args = json.loads(rest)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Arguments are not valid JSON: {e}") from e
    if not isinstance(args, dict):
        raise ValidationError("Arguments must be a JSON object")
    return name, args


def _read_input() -> str | None:
    try:
        sys.stdout.write("\ncache> ")
        sys.stdout.flush()
        raw = sys.stdin.buffer.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\n")
    except EOFError:
        return None


async def run_repl(config: CacheConfig) -> None:
    dispatcher = CacheDispatcher(CacheService(config))
    loop = asyncio.get_running_loop()

    print("convcache REPL (type 'tools' to list tools, 'exit' or Ctrl+C to quit)")
    print("-" * 48)

    try:
        while True:
            line = await loop.run_in_executor(None, _read_input)
            if line is None or line.strip().lower() in ("exit", "quit"):
                print("Bye!")
                break
            if not line.strip():
                continue
            if line.strip() == "tools":
                for tool in dispatcher.tool_definitions:
                    print(f"- {tool['name']}")
                continue

            try:
                name, args = parse_line(line)
            except ValidationError as e:
                print(f"Error: {e}")
                continue

            result = await dispatcher.dispatch(name, args)
            print(result.text)
    finally:
        await dispatcher.close()
