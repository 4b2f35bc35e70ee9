"""Storage client: the upload and retrieve pipelines.

Upload:   base64 files -> one UnixFS directory -> CAR -> upload service.
Retrieve: locator -> gateway `?format=car` -> verified blocks -> DAG walk
          -> base64 text.

A client is cheap and meant to be built per call; it holds no state shared
with other calls.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from ..urls import DEFAULT_GATEWAY_URL, car_request_url, gateway_url
from . import codec, paths
from .car import CAR_MIME_TYPE, read_car, write_car
from .cid import CID
from .delegation import Delegation
from .errors import AbortError, ConfigError, HttpError, normalize_errors
from .identity import Signer
from .piece import PieceHasher
from .service import HttpUploadService, UploadService
from .unixfs import DirectoryEncoder, DirectoryEntryLink, UnixFSFile, export_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Identity, default delegation and endpoints.

    Shared and read-only; per-call overrides go through
    `dataclasses.replace`.
    """
    signer: Optional[Signer] = None
    delegation: Optional[Delegation] = None
    gateway_url: str = DEFAULT_GATEWAY_URL
    service_url: str = ""
    timeout_s: float = 120.0


@dataclass
class UploadFile:
    name: str
    content: str  # base64
    type: Optional[str] = None


@dataclass
class UploadOptions:
    retries: int = 3
    publish_to_filecoin: bool = False
    signal: Optional[threading.Event] = None


@dataclass
class UploadResult:
    root: CID
    url: str
    files: Dict[str, CID] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "url": self.url,
            "files": {name: str(cid) for name, cid in self.files.items()},
        }


@dataclass
class RetrieveResult:
    data: str
    type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"data": self.data}
        if self.type:
            out["type"] = self.type
        return out


class LinkCollector:
    """Buffers directory entry links reported while a batch is encoded."""

    def __init__(self) -> None:
        self._links: List[DirectoryEntryLink] = []

    def __call__(self, link: DirectoryEntryLink) -> None:
        self._links.append(link)

    def drain(self) -> Dict[str, CID]:
        """Name -> CID for every reported entry; the unnamed root is skipped."""
        files = {link.name: link.cid for link in self._links if link.name}
        self._links.clear()
        return files


class StorageClient:
    def __init__(
        self,
        config: StorageConfig,
        service: Optional[UploadService] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self._service = service
        # a session passed in belongs to the caller
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._initialized = False

    def initialize(self) -> None:
        """Check identity and delegation and open the upload service."""
        if self._initialized:
            return
        if self.config.signer is None:
            raise ConfigError("Private key is required")
        if self.config.delegation is None:
            raise ConfigError("Delegation is required")
        if self._service is None:
            if not self.config.service_url:
                raise ConfigError("Upload service URL is required (UPLOAD_SERVICE_URL)")
            self._service = HttpUploadService(
                self.config.service_url, timeout_s=self.config.timeout_s, session=self._session
            )
        self._initialized = True
        logger.debug("Storage client initialized for %s", self.config.signer.did())

    def is_connected(self) -> bool:
        return self._initialized

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "StorageClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def gateway_url(self) -> str:
        return self.config.gateway_url or DEFAULT_GATEWAY_URL

    @normalize_errors
    def upload_files(self, files: List[UploadFile], options: Optional[UploadOptions] = None) -> UploadResult:
        """Upload `files` as one directory and return root and per-file CIDs."""
        options = options or UploadOptions()
        if not self._initialized or self._service is None:
            raise ConfigError("Client not initialized")
        if options.signal is not None and options.signal.is_set():
            raise AbortError("Upload aborted")

        entries = [UnixFSFile(name=f.name, content=codec.decode(f.content)) for f in files]

        collector = LinkCollector()
        encoder = DirectoryEncoder(on_directory_entry_link=collector)
        root = encoder.encode_directory(entries)
        car = write_car([root], encoder.blocks)

        # only attached when the upload should be replicated to Filecoin
        piece = PieceHasher().digest(car) if options.publish_to_filecoin else None

        logger.info("Uploading %d file(s) as %s (%d bytes)", len(entries), root, len(car))
        self._service.store(
            car,
            root=root,
            issuer=self.config.signer,
            proofs=[self.config.delegation],
            retries=options.retries,
            piece=piece,
            signal=options.signal,
        )

        return UploadResult(
            root=root,
            url=gateway_url(self.gateway_url, str(root)),
            files=collector.drain(),
        )

    @normalize_errors
    def retrieve(self, filepath: str, use_multiformat_base64: bool = False) -> RetrieveResult:
        """Fetch one file through the gateway and verify it block by block."""
        resource = paths.parse(filepath)
        url = car_request_url(self.gateway_url, str(resource.cid), resource.pathname)

        logger.info("Retrieving %s", url)
        response = self._session.get(url, headers={"Accept": CAR_MIME_TYPE}, timeout=self.config.timeout_s)
        if not response.ok:
            raise HttpError(response.status_code, response.reason or "")

        store = read_car(response.content)
        content = export_file(store, resource.cid, resource.pathname)
        data = codec.stream_to_text(content, use_multiformat_base64)

        return RetrieveResult(data=data, type=response.headers.get("content-type") or None)
