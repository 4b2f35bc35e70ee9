"""Embedded tool registry for the storage server.

The same registry backs every transport:
- The MCP server (stdio, SSE, streamable HTTP) registers these tools with FastMCP.
- The REST transport dispatches JSON-RPC `tools/call` requests to them.
- The CLI calls them in-process for one-off uploads and retrievals.

Tools never raise. Failures come back as an error envelope
`{"name", "message", "cause"}` so one bad call cannot take the server down.
"""

from __future__ import annotations

import logging
import mimetypes
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

from ..config import Settings, load_storage_config
from ..storage import codec
from ..storage.client import StorageClient, StorageConfig, UploadFile, UploadOptions
from ..storage.delegation import resolve_delegation
from ..storage.errors import ConfigError, FileSizeError
from ..storage.service import UploadService

logger = logging.getLogger(__name__)

UPLOAD_RETRIES = 3


def detect_mime_type(name: str) -> Optional[str]:
    """Guess a MIME type from the file extension."""
    mime, _ = mimetypes.guess_type(name, strict=False)
    return mime


def error_envelope(prefix: str, exc: BaseException) -> Dict[str, Any]:
    message = getattr(exc, "message", None) or str(exc) or "Unknown error"
    cause = exc.__cause__
    return {
        "name": type(exc).__name__,
        "message": f"{prefix}{message}",
        "cause": str(cause) if cause is not None else None,
    }


def is_error(result: Dict[str, Any]) -> bool:
    return set(result) == {"name", "message", "cause"}


class StorageTools:
    """The `identity`, `upload` and `retrieve` tools.

    Every call builds its own `StorageClient` on a fresh HTTP session that is
    closed when the call returns. Per-call overrides are applied to a copy of
    the shared config.
    """

    def __init__(
        self,
        config: StorageConfig,
        max_file_size: int = 100 * 1024 * 1024,
        service: Optional[UploadService] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.config = config
        self.max_file_size = max_file_size
        self._service = service
        self._session_factory = session_factory

    @contextmanager
    def _client(self, config: StorageConfig) -> Iterator[StorageClient]:
        session = self._session_factory()
        try:
            yield StorageClient(config, service=self._service, session=session)
        finally:
            session.close()

    def identity(self) -> Dict[str, Any]:
        """Return the agent DID of the configured signer."""
        try:
            if self.config.signer is None:
                raise ConfigError("Private key is required")
            return {"id": self.config.signer.did()}
        except Exception as e:
            logger.exception("Error handling identity")
            return error_envelope("Identity check failed: ", e)

    def upload(
        self,
        file: str,
        name: str,
        type: Optional[str] = None,
        delegation: Optional[str] = None,
        gatewayUrl: Optional[str] = None,
        publishToFilecoin: bool = False,
    ) -> Dict[str, Any]:
        """Upload one base64 file; the result root addresses a directory holding it."""
        try:
            # before any network access
            proof = resolve_delegation(delegation, self.config.delegation)

            size = len(codec.decode(file))
            if size > self.max_file_size:
                raise FileSizeError(
                    f"File size {size} exceeds the maximum of {self.max_file_size} bytes"
                )

            overrides: Dict[str, Any] = {"delegation": proof}
            if gatewayUrl:
                overrides["gateway_url"] = gatewayUrl
            with self._client(replace(self.config, **overrides)) as client:
                client.initialize()
                result = client.upload_files(
                    [UploadFile(name=name, content=file, type=type or detect_mime_type(name))],
                    UploadOptions(retries=UPLOAD_RETRIES, publish_to_filecoin=publishToFilecoin),
                )
            return result.to_dict()
        except Exception as e:
            logger.exception("Error handling upload of %s", name)
            return error_envelope("Upload failed: ", e)

    def retrieve(self, filepath: str, useMultiformatBase64: bool = False) -> Dict[str, Any]:
        """Fetch `<cid>/<path>` through the gateway as base64."""
        try:
            with self._client(self.config) as client:
                return client.retrieve(filepath, use_multiformat_base64=useMultiformatBase64).to_dict()
        except Exception as e:
            logger.exception("Error handling retrieve of %s", filepath)
            return error_envelope("Retrieve failed: ", e)


TOOLS: List[Dict[str, Any]] = [
    {
        "name": "identity",
        "description": "Returns the DID key of the Storacha agent loaded from the private key storage config.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "retrieve",
        "description": (
            "Retrieve a file from the Storacha Network. Provide the path as "
            "<cid>/<filename>, /ipfs/<cid>/<filename> or ipfs://<cid>/<filename>. "
            "The file is fetched from the configured gateway and returned base64 encoded."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "filepath": {
                    "type": "string",
                    "description": "Path of the file to retrieve, e.g. <cid>/photo.png",
                },
                "useMultiformatBase64": {
                    "type": "boolean",
                    "description": "Return multibase (self-describing) base64 instead of standard base64",
                },
            },
            "required": ["filepath"],
        },
    },
    {
        "name": "upload",
        "description": (
            "Upload a file to the Storacha Network. The file must be provided as a base64 "
            "encoded string. The file name should include the extension (e.g. \"document.pdf\") "
            "to enable automatic MIME type detection."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "file": {"type": "string", "description": "The content of the file encoded as a base64 string"},
                "name": {"type": "string", "description": "Name for the uploaded file, including its extension"},
                "type": {"type": "string", "description": "MIME type (inferred from the extension if omitted)"},
                "delegation": {
                    "type": "string",
                    "description": "Delegation proof (the server default is used if omitted)",
                },
                "gatewayUrl": {"type": "string", "description": "Custom gateway URL"},
                "publishToFilecoin": {
                    "type": "boolean",
                    "description": "Also publish the upload to the Filecoin network (default false)",
                },
            },
            "required": ["file", "name"],
        },
    },
]


class ToolRegistry:
    """Single-process tool registry shared by the CLI and every transport."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage_config: Optional[StorageConfig] = None,
        service: Optional[UploadService] = None,
    ) -> None:
        self.settings = settings or Settings.load().validate()
        self.storage_config = storage_config or load_storage_config(self.settings)
        self.storage = StorageTools(
            self.storage_config,
            max_file_size=self.settings.max_file_size,
            service=service,
        )

    def list_tools(self) -> List[Dict[str, Any]]:
        return TOOLS

    def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Dispatch a tool call by name. Unknown tools raise KeyError."""
        handlers = {
            "identity": self.storage.identity,
            "upload": self.storage.upload,
            "retrieve": self.storage.retrieve,
        }
        handler = handlers[name]
        return handler(**(arguments or {}))
