"""MCP server: conversation cache tools over stdio.

Protocol: JSON-RPC 2.0 over stdio (NDJSON). Each server process serves a
single client, so it owns exactly one CacheService and its session state.

Usage:
  python -m convcache serve
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from convcache.cache.service import CacheService
from convcache.config import CacheConfig
from convcache.dispatch import CacheDispatcher

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────

SERVER_NAME = "convcache"
SERVER_VERSION = "0.1.0"
PROTOCOL_VERSION = "2024-11-05"

# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


# ── Request handler ──────────────────────────────────────────


async def handle_request(req: dict, dispatcher: CacheDispatcher) -> dict | None:
    req_id = req.get("id")
    method = req.get("method", "")

    # Notifications (no id) get no response
    if req_id is None:
        if method == "notifications/initialized":
            logger.info("Client initialized")
        return None

    if method == "initialize":
        return jsonrpc_result(req_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        })

    if method == "tools/list":
        return jsonrpc_result(req_id, {"tools": dispatcher.tool_definitions})

    if method == "tools/call":
        params = req.get("params") or {}
        tool_name = params.get("name", "")
        args = params.get("arguments") or {}
        if not isinstance(args, dict):
            return jsonrpc_error(req_id, -32602, "Invalid params: arguments must be an object")

        result = await dispatcher.dispatch(tool_name, args)
        response = {"content": [{"type": "text", "text": result.text}]}
        if result.is_error:
            response["isError"] = True
        return jsonrpc_result(req_id, response)

    return jsonrpc_error(req_id, -32601, f"Method not found: {method}")


# ── Stdio transport (NDJSON) ─────────────────────────────────


async def serve(config: CacheConfig) -> None:
    """Read requests from stdin until EOF, then wait for pending auto-updates."""
    logger.info("Starting %s (cache_dir=%s)", SERVER_NAME, config.cache_dir)
    dispatcher = CacheDispatcher(CacheService(config))

    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

    try:
        while True:
            line = await reader.readline()
            if not line:
                break
            line = line.decode("utf-8").strip()
            if not line:
                continue

            try:
                req = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Parse error: %s", e)
                sys.stdout.write(json.dumps(jsonrpc_error(None, -32700, "Parse error")) + "\n")
                sys.stdout.flush()
                continue

            if not isinstance(req, dict):
                sys.stdout.write(json.dumps(jsonrpc_error(None, -32600, "Invalid Request")) + "\n")
                sys.stdout.flush()
                continue

            logger.debug("<- %s", req.get("method", "?"))
            try:
                response = await handle_request(req, dispatcher)
            except Exception as e:
                logger.error("Handler error: %s", e)
                response = jsonrpc_error(req.get("id"), -32603, f"Internal error: {e}")
            if response:
                sys.stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
                sys.stdout.flush()
    finally:
        await dispatcher.close()
        logger.info("%s stopped.", SERVER_NAME)
