"""Connection to the storage network's upload service.

The service is consumed as an opaque collaborator through `UploadService`.
`HttpUploadService` is the default connection: it PUTs the batch CAR to
``{url}/car/{root}`` and authenticates with the agent's DID, a signature
over the root CID, and the delegation proofs as bearer tokens.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Protocol, Sequence

import requests

from .. import __version__
from .car import CAR_MIME_TYPE
from .cid import CID
from .codec import encode
from .delegation import Delegation
from .errors import AbortError, HttpError
from .identity import Signer

logger = logging.getLogger(__name__)

_RETRY_STATUSES = {429, 500, 502, 503, 504}


def client_header() -> str:
    """Value of the X-Client header, built from the package version."""
    return f"Storacha/1 (python; storacha-mcp) MCP/{__version__.split('.')[0]}"


class UploadService(Protocol):
    def store(
        self,
        car: bytes,
        *,
        root: CID,
        issuer: Signer,
        proofs: Sequence[Delegation],
        retries: int = 3,
        piece: Optional[CID] = None,
        signal: Optional[threading.Event] = None,
    ) -> None:
        ...


class HttpUploadService:
    """Upload service reached over HTTP with `requests`."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 120.0,
        session: Optional[requests.Session] = None,
        backoff_s: float = 1.0,
    ):
        self.url = url.rstrip("/")
        self.timeout_s = timeout_s
        self.backoff_s = backoff_s
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._session.headers["X-Client"] = client_header()

    def close(self) -> None:
        """Close the HTTP session if this service opened it."""
        if self._owns_session:
            self._session.close()

    def _headers(self, root: CID, issuer: Signer, proofs: Sequence[Delegation], piece: Optional[CID]) -> dict:
        headers = {
            "Content-Type": CAR_MIME_TYPE,
            "X-Agent-DID": issuer.did(),
            "X-Agent-Signature": encode(issuer.sign(root.binary), use_multiformat=True),
            "Authorization": ", ".join(f"Bearer {p.encode()}" for p in proofs),
        }
        if piece is not None:
            headers["X-Piece-CID"] = str(piece)
        return headers

    def store(
        self,
        car: bytes,
        *,
        root: CID,
        issuer: Signer,
        proofs: Sequence[Delegation],
        retries: int = 3,
        piece: Optional[CID] = None,
        signal: Optional[threading.Event] = None,
    ) -> None:
        """Write `car` under `root`, retrying transient failures `retries` times."""
        url = f"{self.url}/car/{root}"
        headers = self._headers(root, issuer, proofs, piece)
        attempts = max(0, retries) + 1

        for attempt in range(1, attempts + 1):
            if signal is not None and signal.is_set():
                raise AbortError("Upload aborted")
            try:
                response = self._session.put(url, data=car, headers=headers, timeout=self.timeout_s)
            except requests.exceptions.RequestException as e:
                if attempt == attempts:
                    raise
                logger.warning("Upload attempt %d/%d failed: %s", attempt, attempts, e)
            else:
                if response.ok:
                    logger.info("Stored %d bytes under %s", len(car), root)
                    return
                if response.status_code not in _RETRY_STATUSES or attempt == attempts:
                    raise HttpError(response.status_code, response.reason or "", prefix="Error uploading file")
                logger.warning(
                    "Upload attempt %d/%d failed: %s %s",
                    attempt, attempts, response.status_code, response.reason,
                )
            time.sleep(self.backoff_s * attempt)
