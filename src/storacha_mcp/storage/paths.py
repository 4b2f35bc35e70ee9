"""IPFS resource locators.

Accepted forms, all equivalent:

    <cid>/<path>
    /ipfs/<cid>/<path>
    ipfs/<cid>/<path>
    ipfs://<cid>/<path>

Only the lowercase scheme is recognized.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .cid import CID
from .errors import PathParseError

_SCHEME = "ipfs://"
_PATH_PREFIXES = ("/ipfs/", "ipfs/")


@dataclass(frozen=True)
class Resource:
    """A content id plus the path of an entry below it."""
    protocol: Literal["ipfs"]
    cid: CID
    pathname: str  # always starts with "/"; kept verbatim


def normalize(path: str) -> str:
    """Strip any recognized prefix, leaving `<cid>/<path>`.

    Display/logging helper only; the content id is not validated.
    """
    if path.startswith(_SCHEME):
        path = path[len(_SCHEME):]
    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            return path[len(prefix):]
    return path


def parse(path: str) -> Resource:
    """Parse a locator into a `Resource`.

    Raises PathParseError when there is no slash after the content id, when
    the filename is empty, or when the content id does not parse.
    """
    normalized = normalize(path)

    slash = normalized.find("/")
    if slash == -1:
        raise PathParseError(
            "Invalid IPFS path: Must contain a slash separator between CID and filename",
            path,
        )

    cid_text = normalized[:slash]
    pathname = normalized[slash:]
    if len(pathname) <= 1:
        raise PathParseError("Invalid IPFS path: Filename cannot be empty", path)

    try:
        cid = CID.parse(cid_text)
    except ValueError as e:
        raise PathParseError(f'Invalid IPFS path: Invalid CID "{cid_text}"', path) from e

    return Resource(protocol="ipfs", cid=cid, pathname=pathname)
