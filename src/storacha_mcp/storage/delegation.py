"""Delegation proofs.

A proof is a CAR archive of UCAN blocks, transported as base64 text
(multiformat or standard, see `codec.decode`). Two wrappings are seen in
the wild: the archive wrapped in an identity CID (codec `car`), which is
what current tooling prints, and the bare archive. Both are accepted.

The proof is opaque here: it is decoded for transport and forwarded to the
upload service, never verified locally.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import libipld

from . import codec
from .car import BlockStore, read_car
from .cid import CAR, CID, IDENTITY, decode_varint, encode_varint
from .errors import BlockError, DelegationError, FormatError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Delegation:
    root: CID
    archive: bytes
    blocks: BlockStore = field(repr=False, compare=False)

    def payload(self) -> Any:
        """Decoded dag-cbor root block."""
        return libipld.decode_dag_cbor(self.blocks.get(self.root))

    def encode(self) -> str:
        """Proof text: multibase base64 of the archive's identity CID."""
        cid = (
            encode_varint(1) + encode_varint(CAR)
            + encode_varint(IDENTITY) + encode_varint(len(self.archive)) + self.archive
        )
        return libipld.encode_multibase("m", cid)


def _unwrap_identity_cid(raw: bytes) -> Optional[bytes]:
    try:
        version, pos = decode_varint(raw, 0)
        content_codec, pos = decode_varint(raw, pos)
        hash_code, pos = decode_varint(raw, pos)
        size, pos = decode_varint(raw, pos)
    except ValueError:
        return None
    if (version, content_codec, hash_code) != (1, CAR, IDENTITY) or pos + size != len(raw):
        return None
    return raw[pos:]


def parse_delegation(raw: str) -> Delegation:
    """Decode a proof from its text form.

    All whitespace is removed first so pasted proofs with line breaks still
    parse. Raises DelegationError on malformed input.
    """
    cleaned = _WHITESPACE.sub("", raw or "")
    if not cleaned:
        raise DelegationError("Failed to parse delegation: empty input")
    try:
        data = codec.decode(cleaned)
    except FormatError as e:
        raise DelegationError(f"Failed to parse delegation: {e.message}") from e

    archive = _unwrap_identity_cid(data) or data
    try:
        store = read_car(archive)
    except BlockError as e:
        raise DelegationError(f"Failed to parse delegation: {e.message}") from e
    if not store.roots:
        raise DelegationError("Failed to parse delegation: archive has no root")
    root = store.roots[0]
    if root not in store:
        raise DelegationError(f"Failed to parse delegation: missing root block {root}")

    logger.debug("Parsed delegation %s (%d blocks)", root, len(store))
    return Delegation(root=root, archive=archive, blocks=store)


def resolve_delegation(request_value: Optional[str], default: Optional[Delegation]) -> Delegation:
    """Pick the delegation for a call: the request's own proof wins over the
    configured default."""
    if request_value:
        return parse_delegation(request_value)
    if default is not None:
        return default
    raise DelegationError(
        "Delegation is required. Please provide it either in the request "
        "or via the DELEGATION environment variable."
    )


def summarize(delegation: Delegation) -> Dict[str, Any]:
    """Best-effort view of a UCAN payload for logs and the CLI."""
    try:
        payload = delegation.payload()
    except Exception:
        return {"root": str(delegation.root)}
    # archives wrap the delegation under a single version key
    if isinstance(payload, dict) and len(payload) == 1:
        link = next(iter(payload.values()))
        try:
            payload = libipld.decode_dag_cbor(delegation.blocks.get(CID.coerce(link)))
        except Exception:
            return {"root": str(delegation.root)}
    if not isinstance(payload, dict):
        return {"root": str(delegation.root)}
    return {
        "root": str(delegation.root),
        "capabilities": [c.get("can") for c in payload.get("att", []) if isinstance(c, dict)],
        "expiration": payload.get("exp"),
    }
