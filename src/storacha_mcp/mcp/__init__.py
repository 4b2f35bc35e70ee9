"""MCP surface of the storage server.

The tools live in a single in-process registry; the MCP server and the REST
transport only expose it.
"""

from .registry import ToolRegistry

__all__ = ["ToolRegistry"]
