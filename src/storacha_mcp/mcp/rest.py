"""REST transport for the storage tools.

A single JSON-RPC endpoint for clients that cannot hold an MCP session:

    POST /rest     initialize, tools/list, tools/call
    GET  /health   liveness probe
    GET  /         server info
"""
from __future__ import annotations

import json
import logging
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .. import __version__
from .registry import ToolRegistry, is_error

logger = logging.getLogger(__name__)

# MCP Protocol version
MCP_VERSION = "2024-11-05"

SERVER_NAME = "storacha-mcp"

REST_ENDPOINT = "/rest"


def _result(req_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _error(req_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


async def handle_mcp_request(registry: ToolRegistry, request: dict[str, Any]) -> dict[str, Any]:
    """
    Handle one JSON-RPC request.
    """
    method = request.get("method", "")
    req_id = request.get("id")

    if method == "initialize":
        return _result(req_id, {
            "protocolVersion": MCP_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        })

    elif method == "tools/list":
        return _result(req_id, {"tools": registry.list_tools()})

    elif method == "tools/call":
        params = request.get("params") or {}
        tool_name = params.get("name")
        tool_args = params.get("arguments") or {}

        try:
            # tools block on network I/O
            result = await run_in_threadpool(registry.call, tool_name, tool_args)
        except KeyError:
            return _error(req_id, -32602, f"Unknown tool: {tool_name}")
        except TypeError as e:
            return _error(req_id, -32602, f"Invalid arguments for {tool_name}: {e}")

        return _result(req_id, {
            "content": [{"type": "text", "text": json.dumps(result)}],
            "isError": is_error(result),
        })

    return _error(req_id, -32601, f"Method not found: {method}")


def create_app(registry: ToolRegistry) -> Starlette:
    async def health(request: Request) -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse({
            "status": "healthy",
            "server": SERVER_NAME,
            "version": __version__,
            "mcp_version": MCP_VERSION,
        })

    async def info(request: Request) -> JSONResponse:
        return JSONResponse({
            "name": SERVER_NAME,
            "version": __version__,
            "endpoint": REST_ENDPOINT,
            "tools": [tool["name"] for tool in registry.list_tools()],
        })

    async def rest(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(_error(None, -32700, "Parse error"), status_code=400)
        if not isinstance(body, dict):
            return JSONResponse(_error(None, -32600, "Invalid Request"), status_code=400)

        return JSONResponse(await handle_mcp_request(registry, body))

    return Starlette(
        debug=False,
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/", info, methods=["GET"]),
            Route(REST_ENDPOINT, rest, methods=["POST"]),
        ],
    )


def serve_rest(registry: ToolRegistry) -> None:
    settings = registry.settings
    logger.info("REST endpoint: http://%s:%d%s", settings.host, settings.port, REST_ENDPOINT)
    uvicorn.run(
        create_app(registry),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_keep_alive=max(1, settings.connection_timeout_ms // 1000),
    )
