"""Content-addressed storage pipelines.

This package handles:
- Parsing IPFS locators and delegation proofs
- Base64 transcoding (standard and multiformat)
- UnixFS import/export and CAR block containers
- Uploading batches to, and retrieving files from, the Storacha network
"""

from .cid import CID
from .client import (
    RetrieveResult,
    StorageClient,
    StorageConfig,
    UploadFile,
    UploadOptions,
    UploadResult,
)
from .delegation import Delegation, parse_delegation, resolve_delegation
from .errors import (
    AbortError,
    BlockError,
    ConfigError,
    DelegationError,
    FileSizeError,
    FormatError,
    HttpError,
    PathParseError,
    StorageError,
    UnknownError,
)
from .identity import Signer
from .paths import Resource

__all__ = [
    "CID",
    "RetrieveResult",
    "StorageClient",
    "StorageConfig",
    "UploadFile",
    "UploadOptions",
    "UploadResult",
    "Delegation",
    "parse_delegation",
    "resolve_delegation",
    "AbortError",
    "BlockError",
    "ConfigError",
    "DelegationError",
    "FileSizeError",
    "FormatError",
    "HttpError",
    "PathParseError",
    "StorageError",
    "UnknownError",
    "Signer",
    "Resource",
]
