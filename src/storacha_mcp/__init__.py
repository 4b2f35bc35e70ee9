"""Storacha MCP storage server.

Exposes `identity`, `upload` and `retrieve` tools that move files in and out
of the Storacha network as content-addressed (UnixFS) directories.
"""

__version__ = "1.0.0"
