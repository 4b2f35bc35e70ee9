"""CAR (content-addressed archive) block containers.

A CARv1 stream is ``varint(len) header`` followed by ``varint(len) cid
block`` sections; the header is dag-cbor ``{"roots": [...], "version": 1}``.
CARv2 wraps a CARv1 payload behind a fixed pragma and a 40 byte header.

Reading verifies every block against its CID before it is accepted into the
store, so nothing coming from a gateway is trusted as-is.
"""

from __future__ import annotations

import logging
import struct
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import libipld

from .cid import CID, IDENTITY, decode_varint, encode_varint
from .errors import BlockError

logger = logging.getLogger(__name__)

CAR_MIME_TYPE = "application/vnd.ipld.car"

_CARV2_PRAGMA = bytes.fromhex("0aa16776657273696f6e02")
_CARV2_HEADER_SIZE = 40


class BlockStore:
    """In-memory, random-access blocks.

    Blocks are keyed by multihash so a CIDv0 link finds a block stored under
    its CIDv1 equivalent.
    """

    def __init__(self, roots: Optional[List[CID]] = None):
        self.roots: List[CID] = list(roots or [])
        self._blocks: Dict[bytes, Tuple[CID, bytes]] = {}

    def put(self, cid: CID, block: bytes) -> None:
        self._blocks[cid.multihash] = (cid, block)

    def get(self, cid: CID) -> bytes:
        # identity CIDs carry their block inline
        if cid.hash_code == IDENTITY:
            return cid.digest
        try:
            return self._blocks[cid.multihash][1]
        except KeyError:
            raise BlockError(f"not found: {cid}") from None

    def __contains__(self, cid: object) -> bool:
        return isinstance(cid, CID) and cid.multihash in self._blocks

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[Tuple[CID, bytes]]:
        return iter(self._blocks.values())


def _read_header(buf: bytes, offset: int) -> Tuple[List[CID], int]:
    try:
        size, pos = decode_varint(buf, offset)
    except ValueError as e:
        raise BlockError(f"Invalid CAR: {e}") from e
    end = pos + size
    if size == 0 or end > len(buf):
        raise BlockError("Invalid CAR: truncated header")
    try:
        header = libipld.decode_dag_cbor(buf[pos:end])
    except Exception as e:
        raise BlockError(f"Invalid CAR header: {e}") from e
    if not isinstance(header, dict) or header.get("version") != 1:
        raise BlockError("Invalid CAR header: unsupported version")
    try:
        roots = [CID.coerce(r) for r in header.get("roots") or []]
    except ValueError as e:
        raise BlockError(f"Invalid CAR header: {e}") from e
    return roots, end


def _unwrap_v2(buf: bytes) -> bytes:
    if len(buf) < len(_CARV2_PRAGMA) + _CARV2_HEADER_SIZE:
        raise BlockError("Invalid CAR: truncated CARv2 header")
    # characteristics (16) | data offset (8) | data size (8) | index offset (8)
    start = len(_CARV2_PRAGMA) + 16
    data_offset, data_size = struct.unpack_from("<QQ", buf, start)
    if data_offset + data_size > len(buf):
        raise BlockError("Invalid CAR: CARv2 payload out of range")
    return buf[data_offset:data_offset + data_size]


def read_car(data: bytes, verify: bool = True) -> BlockStore:
    """Decode a CAR into a `BlockStore`.

    Raises BlockError on malformed input or when a block does not match its
    CID.
    """
    buf = bytes(data)
    if buf.startswith(_CARV2_PRAGMA):
        buf = _unwrap_v2(buf)

    roots, pos = _read_header(buf, 0)
    store = BlockStore(roots)

    while pos < len(buf):
        try:
            size, pos = decode_varint(buf, pos)
            end = pos + size
            if end > len(buf):
                raise ValueError("section extends past end of data")
            cid, block_start = CID.read(buf, pos)
        except ValueError as e:
            raise BlockError(f"Invalid CAR section: {e}") from e
        if block_start > end:
            raise BlockError("Invalid CAR section: CID longer than section")
        block = buf[block_start:end]
        if verify:
            try:
                ok = cid.verify(block)
            except ValueError as e:
                raise BlockError(f"Cannot verify block {cid}: {e}") from e
            if not ok:
                raise BlockError(f"Block does not match its CID: {cid}")
        store.put(cid, block)
        pos = end

    logger.debug("Decoded CAR with %d blocks, roots=%s", len(store), [str(r) for r in roots])
    return store


def _encode_header(roots: List[CID]) -> bytes:
    # dag-cbor {"roots": [tag42(0x00 ++ cid)], "version": 1}, keys in canonical order
    out = bytearray(b"\xa2")
    out += b"\x65roots"
    out += _cbor_head(4, len(roots))
    for root in roots:
        link = b"\x00" + root.binary
        out += b"\xd8\x2a"
        out += _cbor_head(2, len(link))
        out += link
    out += b"\x67version\x01"
    return bytes(out)


def _cbor_head(major: int, length: int) -> bytes:
    if length < 24:
        return bytes([(major << 5) | length])
    if length < 0x100:
        return bytes([(major << 5) | 24, length])
    if length < 0x10000:
        return bytes([(major << 5) | 25]) + struct.pack(">H", length)
    return bytes([(major << 5) | 26]) + struct.pack(">I", length)


def write_car(roots: List[CID], blocks: Iterable[Tuple[CID, bytes]]) -> bytes:
    """Encode a CARv1 archive."""
    header = _encode_header(roots)
    out = bytearray(encode_varint(len(header)))
    out += header
    for cid, block in blocks:
        section = cid.binary + block
        out += encode_varint(len(section))
        out += section
    return bytes(out)
