"""Entry point: python -m convcache [serve|repl]

- No args / "serve": MCP server on stdio (for agent hosts)
- "repl":            Interactive REPL (development/testing)
"""

from __future__ import annotations

import asyncio
import logging
import sys

from convcache.config import load_config


def _setup_logging(level: str) -> None:
    # stdout carries the MCP protocol; logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_serve() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from convcache.server import serve

    asyncio.run(serve(config))


def _run_repl() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from convcache.repl import run_repl

    try:
        asyncio.run(run_repl(config))
    except KeyboardInterrupt:
        pass


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        try:
            _run_serve()
        except KeyboardInterrupt:
            pass
    elif cmd in ("repl", "chat"):
        _run_repl()
    else:
        print("Usage: python -m convcache [serve|repl]")
        print("  serve  MCP server on stdio (default)")
        print("  repl   Interactive REPL")
        sys.exit(1)


if __name__ == "__main__":
    main()
