"""Filecoin piece commitment.

Attached to uploads that should be replicated into Filecoin deals. The
digest is the root of a binary sha2-256 merkle tree (top two bits of every
node cleared) over the fr32-padded payload, wrapped in a piece CID:

    CIDv1(raw, multihash 0x1011, varint(padding) ++ height ++ root)
"""

from __future__ import annotations

import hashlib
from typing import List

from .cid import CID, RAW, encode_varint

FR32_SHA2_256_TRUNC254_PADDED_BINARY_TREE = 0x1011

_IN_CHUNK = 127
_OUT_CHUNK = 128
_QUAD_BITS = 254
_QUAD_MASK = (1 << _QUAD_BITS) - 1


def _unpadded_size(payload_size: int) -> int:
    size = _IN_CHUNK
    while size < payload_size:
        size *= 2
    return size


def fr32_pad(data: bytes) -> bytes:
    """Insert two zero bits after every 254 bits. `len(data)` must be a
    multiple of 127."""
    if len(data) % _IN_CHUNK:
        raise ValueError("fr32 input must be a multiple of 127 bytes")
    out = bytearray()
    for i in range(0, len(data), _IN_CHUNK):
        value = int.from_bytes(data[i:i + _IN_CHUNK], "little")
        padded = 0
        for quad in range(4):
            padded |= ((value >> (_QUAD_BITS * quad)) & _QUAD_MASK) << (256 * quad)
        out += padded.to_bytes(_OUT_CHUNK, "little")
    return bytes(out)


def _trunc254(left: bytes, right: bytes) -> bytes:
    digest = bytearray(hashlib.sha256(left + right).digest())
    digest[31] &= 0x3F
    return bytes(digest)


class PieceHasher:
    """Computes piece CIDs for payloads of any size."""

    name = "fr32-sha2-256-trunc254-padded-binary-tree"
    code = FR32_SHA2_256_TRUNC254_PADDED_BINARY_TREE

    def digest(self, payload: bytes) -> CID:
        unpadded = _unpadded_size(len(payload))
        padding = unpadded - len(payload)
        padded = fr32_pad(bytes(payload) + b"\x00" * padding)

        nodes: List[bytes] = [padded[i:i + 32] for i in range(0, len(padded), 32)]
        height = 0
        while len(nodes) > 1:
            nodes = [_trunc254(nodes[i], nodes[i + 1]) for i in range(0, len(nodes), 2)]
            height += 1

        digest = encode_varint(padding) + bytes([height]) + nodes[0]
        return CID(1, RAW, self.code, digest)
