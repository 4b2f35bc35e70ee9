"""MCP server for the storage tools.

Serves the embedded ToolRegistry over stdio, SSE or streamable HTTP.
The REST transport lives in `rest.py`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP
from starlette.concurrency import run_in_threadpool

from .. import __version__
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "Storage MCP Server"

MCP_TRANSPORTS = ("stdio", "sse", "streamable-http")


def build_server(registry: ToolRegistry) -> FastMCP:
    """Register the storage tools on a new FastMCP instance.

    The storage calls block on HTTP, so each tool runs them in a worker
    thread and the event loop stays free for other sessions.
    """
    mcp = FastMCP(SERVER_NAME, json_response=True)

    @mcp.tool()
    async def identity() -> dict[str, Any]:
        """Returns the DID key of the Storacha agent loaded from the private key storage config."""
        return await run_in_threadpool(registry.storage.identity)

    @mcp.tool()
    async def upload(
        file: str,
        name: str,
        type: Optional[str] = None,
        delegation: Optional[str] = None,
        gatewayUrl: Optional[str] = None,
        publishToFilecoin: bool = False,
    ) -> dict[str, Any]:
        """Upload a file to the Storacha Network.

        The file must be provided as a base64 encoded string. The file name
        should include the extension (e.g. "document.pdf") to enable automatic
        MIME type detection.
        """
        return await run_in_threadpool(
            registry.storage.upload,
            file=file,
            name=name,
            type=type,
            delegation=delegation,
            gatewayUrl=gatewayUrl,
            publishToFilecoin=publishToFilecoin,
        )

    @mcp.tool()
    async def retrieve(filepath: str, useMultiformatBase64: bool = False) -> dict[str, Any]:
        """Retrieve a file from the Storacha Network as base64.

        `filepath` is <cid>/<filename>, /ipfs/<cid>/<filename> or
        ipfs://<cid>/<filename>.
        """
        return await run_in_threadpool(
            registry.storage.retrieve, filepath=filepath, useMultiformatBase64=useMultiformatBase64
        )

    return mcp


def serve_from_registry(registry: ToolRegistry, transport: str = "stdio") -> None:
    """Expose the ToolRegistry over MCP and block until the server exits."""
    if transport not in MCP_TRANSPORTS:
        raise ValueError(f"Unsupported MCP transport: {transport}")

    mcp = build_server(registry)
    settings = registry.settings
    if transport != "stdio":
        mcp.settings.host = settings.host
        mcp.settings.port = settings.port
        logger.info("HTTP endpoint: http://%s:%d", settings.host, settings.port)

    logger.info("Starting %s %s in %s mode", SERVER_NAME, __version__, transport)
    mcp.run(transport=transport)  # type: ignore[arg-type]
